"""
test_ingest.py - Sequential ingestion and CSV import tests.

Covers:
- ingest_receipts accept/flag decisions, including within one batch
- allow_duplicates
- load_receipts_csv header mapping, refunds, skipped rows, errors
- receipts_from_csv
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from ingest import ingest_receipts, load_receipts_csv, receipts_from_csv
from models import Receipt, ReceiptSource, TransactionKind
from receipt_store import InMemoryReceiptStore

USER = "alex"


def _r(receipt_id: str, store: str = "Cafe X", date: str = "2024-01-01", total: float = 10.0, **extra: Any) -> Receipt:
    return Receipt(id=receipt_id, store_name=store, date=date, total=total, **extra)


def _write(tmp_path: Path, name: str, content: str) -> str:
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return str(path)


def test_new_receipts_are_stored_newest_first() -> None:
    store = InMemoryReceiptStore()
    store.put(USER, [_r("old", store="Bakery")])

    report = ingest_receipts([_r("a", store="Deli"), _r("b", store="Gas")], store, USER)

    assert [r.id for r in report.accepted] == ["a", "b"]
    assert report.flagged == []
    assert [r.id for r in store.get(USER)] == ["b", "a", "old"]


def test_fingerprint_duplicate_is_flagged_not_stored() -> None:
    store = InMemoryReceiptStore()
    store.put(USER, [_r("stored")])

    report = ingest_receipts([_r("candidate", store="  CAFE  x ")], store, USER)

    assert report.accepted == []
    assert report.flagged_count == 1
    assert report.flagged[0].duplicate_of == "stored"
    assert [r.id for r in store.get(USER)] == ["stored"]


def test_duplicates_within_one_batch_are_caught() -> None:
    store = InMemoryReceiptStore()
    report = ingest_receipts([_r("first"), _r("second")], store, USER)
    assert [r.id for r in report.accepted] == ["first"]
    assert report.flagged[0].receipt.id == "second"
    assert report.flagged[0].duplicate_of == "first"


def test_fuzzy_near_duplicates_are_not_flagged_at_insertion() -> None:
    store = InMemoryReceiptStore()
    store.put(USER, [_r("stored", total=10.00)])
    report = ingest_receipts([_r("candidate", total=10.50)], store, USER)
    assert report.accepted_count == 1


def test_allow_duplicates_stores_and_still_reports() -> None:
    store = InMemoryReceiptStore()
    store.put(USER, [_r("stored")])
    report = ingest_receipts([_r("candidate")], store, USER, allow_duplicates=True)
    assert report.accepted_count == 1
    assert report.flagged[0].duplicate_of == "stored"
    assert len(store.get(USER)) == 2


def test_load_csv_maps_headers_case_insensitively(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        "statement.csv",
        "Merchant,Date,Amount,Currency\n"
        "Whole Foods,01/15/2024,\"$1,054.20\",usd\n"
        "Cafe X,2024-01-16,-4.50,\n",
    )
    payloads = load_receipts_csv(path)
    assert payloads == [
        {"storeName": "Whole Foods", "date": "01/15/2024", "total": 1054.2, "currency": "usd"},
        {"storeName": "Cafe X", "date": "2024-01-16", "total": 4.5, "type": "refund"},
    ]


def test_load_csv_skips_rows_without_store_and_amount(tmp_path: Path) -> None:
    path = _write(tmp_path, "rows.csv", "store,date,total\nA,2024-01-01,1\n,2024-01-02,\nB,2024-01-03,2\n")
    assert [p["storeName"] for p in load_receipts_csv(path)] == ["A", "B"]


def test_load_csv_missing_columns_raises(tmp_path: Path) -> None:
    path = _write(tmp_path, "bad.csv", "store,when,amount\nA,2024-01-01,1\n")
    with pytest.raises(ValueError, match="date"):
        load_receipts_csv(path)


def test_load_csv_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_receipts_csv(str(tmp_path / "nope.csv"))


def test_receipts_from_csv_tags_source_and_normalizes_dates(tmp_path: Path) -> None:
    path = _write(tmp_path, "s.csv", "Store Name,Date,Amount\nDeli,01/15/2024,12.5\nDeli,01/15/2024,-3\n")
    receipts = receipts_from_csv(path)
    assert [r.source for r in receipts] == [ReceiptSource.CSV, ReceiptSource.CSV]
    assert [r.date for r in receipts] == ["2024-01-15", "2024-01-15"]
    assert receipts[1].type == TransactionKind.REFUND
    assert receipts[1].total == 3.0


def test_csv_import_then_ingest_flags_repeated_rows(tmp_path: Path) -> None:
    path = _write(tmp_path, "dup.csv", "store,date,amount\nDeli,2024-01-15,12.50\nDELI ,2024-01-15,12.5\n")
    store = InMemoryReceiptStore()
    report = ingest_receipts(receipts_from_csv(path), store, USER)
    assert report.accepted_count == 1
    assert report.flagged_count == 1


def test_candidate_reusing_a_stored_id_is_rejected() -> None:
    store = InMemoryReceiptStore()
    store.put(USER, [_r("same", store="Bakery")])
    with pytest.raises(ValueError, match="same"):
        ingest_receipts([_r("fresh", store="Gas"), _r("same", store="Deli")], store, USER)
    assert [r.id for r in store.get(USER)] == ["same"]


def test_repeated_id_within_batch_is_rejected() -> None:
    store = InMemoryReceiptStore()
    with pytest.raises(ValueError):
        ingest_receipts([_r("same", store="A"), _r("same", store="B")], store, USER)
    assert store.get(USER) == []
