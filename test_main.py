"""
test_main.py - CLI smoke tests against a temporary receipts directory.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterator

import pytest

from main import main
from models import Receipt
from receipt_store import JsonReceiptStore

USER = "alex"


@pytest.fixture(autouse=True)
def restore_root_logging() -> Iterator[None]:
    # main() reconfigures the root logger for the CLI.
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def store_dir(tmp_path: Path) -> Path:
    store = JsonReceiptStore(str(tmp_path / "store"))
    store.put(
        USER,
        [
            Receipt(id="a", store_name="Cafe X", date="2024-01-01", total=10.0),
            Receipt(id="b", store_name="Cafe X", date="2024-01-01", total=10.0),
            Receipt(id="solo", store_name="Bakery", date="2024-01-03", total=4.0),
        ],
    )
    return tmp_path / "store"


def _run(store_dir: Path, *args: str) -> int:
    return main(["--user", USER, "--store-dir", str(store_dir), *args])


def test_review_json_lists_groups(store_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(store_dir, "review", "--json") == 0
    groups = json.loads(capsys.readouterr().out)
    assert [g["id"] for g in groups] == ["group-a"]
    assert [m["id"] for m in groups[0]["members"]] == ["a", "b"]


def test_check_exit_code_signals_duplicate(store_dir: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    candidate = tmp_path / "candidate.json"
    candidate.write_text(json.dumps({"storeName": "CAFE X", "date": "2024-01-01", "total": 10}), encoding="utf-8")
    assert _run(store_dir, "check", str(candidate), "--json") == 1
    assert json.loads(capsys.readouterr().out) == {"duplicate": True, "duplicate_of": "a"}


def test_resolve_deletes_from_disk(store_dir: Path) -> None:
    assert _run(store_dir, "resolve", "group-a", "--keep", "b") == 0
    remaining = [r.id for r in JsonReceiptStore(str(store_dir)).get(USER)]
    assert remaining == ["b", "solo"]


def test_dismiss_only_confirms_group_and_changes_nothing(
    store_dir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    before = (store_dir / "receipts_alex.json").read_text(encoding="utf-8")
    assert _run(store_dir, "dismiss", "group-a") == 0
    out = capsys.readouterr().out
    assert "group-a exists" in out
    assert "not persisted" in out
    assert (store_dir / "receipts_alex.json").read_text(encoding="utf-8") == before

    # the group is still there for the next review
    assert _run(store_dir, "review", "--json") == 0
    assert [g["id"] for g in json.loads(capsys.readouterr().out)] == ["group-a"]

    assert _run(store_dir, "dismiss", "group-zzz") == 2


def test_import_csv_flags_stored_duplicates(store_dir: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    csv_path = tmp_path / "statement.csv"
    csv_path.write_text("store,date,amount\nCafe X,2024-01-01,10.00\nGas,2024-01-04,40\n", encoding="utf-8")
    assert _run(store_dir, "import-csv", str(csv_path), "--json") == 0
    result = json.loads(capsys.readouterr().out)
    assert len(result["accepted"]) == 1
    assert result["flagged"][0]["duplicate_of"] == "a"


def test_export_then_import_backup(store_dir: Path, tmp_path: Path) -> None:
    backup = tmp_path / "backup.json"
    assert _run(store_dir, "export", str(backup)) == 0
    other_dir = tmp_path / "restored"
    assert main(["--store-dir", str(other_dir), "import", str(backup)]) == 0
    assert len(JsonReceiptStore(str(other_dir)).get(USER)) == 3


def test_errors_return_exit_code_two(store_dir: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(store_dir, "check", str(tmp_path / "missing.json")) == 2
    assert _run(store_dir, "resolve", "group-zzz", "--keep", "a") == 2
    assert "not found" in capsys.readouterr().err.lower()
