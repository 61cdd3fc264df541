"""
receipt_store.py - Per-user receipt persistence.

The duplicate engine never reaches for ambient storage; callers inject a
ReceiptStore. Two implementations ship:

    InMemoryReceiptStore  - dict-backed, for tests and embedding
    JsonReceiptStore      - one JSON file per user, atomic writes

Collections are stored newest-first, the order ingestion prepends in.
"""

from __future__ import annotations

import json
import os
import re
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from logging_config import get_logger
from models import Receipt

logger = get_logger(__name__)

BACKUP_VERSION = "1.0"
_USER_ID_RE = re.compile(r"^[A-Za-z0-9_.@-]+$")


class StoreError(RuntimeError):
    """Raised when stored or imported data cannot be used."""


def _validate_user_id(user_id: str) -> str:
    text = str(user_id or "").strip()
    if not text or not _USER_ID_RE.match(text) or text in {".", ".."}:
        raise ValueError(f"Invalid user id: {user_id!r}")
    return text


class ReceiptStore(ABC):
    """Keyed receipt storage: one ordered collection per user."""

    @abstractmethod
    def get(self, user_id: str) -> list[Receipt]:
        """Return the user's receipts (empty list when none are stored)."""

    @abstractmethod
    def put(self, user_id: str, receipts: Iterable[Receipt]) -> None:
        """Replace the user's whole collection."""

    def save_receipt(self, user_id: str, receipt: Receipt) -> None:
        """Prepend a receipt to the user's collection."""
        self.put(user_id, [receipt, *self.get(user_id)])

    def update_receipt(self, user_id: str, receipt: Receipt) -> bool:
        """Replace the stored receipt with the same id. False when absent."""
        receipts = self.get(user_id)
        found = False
        updated: list[Receipt] = []
        for stored in receipts:
            if stored.id == receipt.id:
                updated.append(receipt)
                found = True
            else:
                updated.append(stored)
        if found:
            self.put(user_id, updated)
        return found

    def delete_receipts(self, user_id: str, receipt_ids: Iterable[str]) -> int:
        """Remove receipts by id and return how many were removed."""
        targets = set(receipt_ids)
        if not targets:
            return 0
        receipts = self.get(user_id)
        kept = [receipt for receipt in receipts if receipt.id not in targets]
        removed = len(receipts) - len(kept)
        if removed:
            self.put(user_id, kept)
        logger.info(
            "receipts_deleted | user_id=%s | requested=%s | removed=%s",
            user_id,
            len(targets),
            removed,
        )
        return removed

    def export_backup(self, user_id: str, profile: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """Build a JSON-serializable backup of the user's data."""
        profile_data = dict(profile or {})
        profile_data.setdefault("id", user_id)
        return {
            "version": BACKUP_VERSION,
            "profile": profile_data,
            "receipts": [receipt.to_json_dict() for receipt in self.get(user_id)],
            "exportedAt": datetime.now(timezone.utc).isoformat(),
        }

    def import_backup(self, payload: Any) -> tuple[dict[str, Any], list[Receipt]]:
        """Restore a backup produced by export_backup.

        The backup's profile id selects which user's collection is replaced.
        """
        if not isinstance(payload, dict):
            raise StoreError("Invalid backup file format.")
        profile = payload.get("profile")
        raw_receipts = payload.get("receipts")
        if not isinstance(profile, dict) or not isinstance(raw_receipts, list):
            raise StoreError("Invalid backup file format.")

        try:
            user_id = _validate_user_id(profile.get("id"))
        except ValueError as exc:
            raise StoreError(f"Backup profile has no usable id: {exc}") from exc

        try:
            receipts = [Receipt.model_validate(item) for item in raw_receipts]
        except ValidationError as exc:
            raise StoreError(f"Backup contains invalid receipts: {exc}") from exc

        seen: set[str] = set()
        repeated: list[str] = []
        for receipt in receipts:
            if receipt.id in seen:
                repeated.append(receipt.id)
            seen.add(receipt.id)
        if repeated:
            raise StoreError(f"Backup contains repeated receipt ids: {repeated}")

        self.put(user_id, receipts)
        logger.info(
            "backup_imported | user_id=%s | receipts=%s | version=%s",
            user_id,
            len(receipts),
            payload.get("version"),
        )
        return profile, receipts


class InMemoryReceiptStore(ReceiptStore):
    """Dict-backed store. Receipts are copied on the way in and out."""

    def __init__(self) -> None:
        self._data: dict[str, list[Receipt]] = {}

    def get(self, user_id: str) -> list[Receipt]:
        return [receipt.model_copy(deep=True) for receipt in self._data.get(user_id, [])]

    def put(self, user_id: str, receipts: Iterable[Receipt]) -> None:
        self._data[user_id] = [receipt.model_copy(deep=True) for receipt in receipts]


class JsonReceiptStore(ReceiptStore):
    """Disk-backed store using one JSON file per user and atomic writes."""

    def __init__(self, root: Optional[str] = None) -> None:
        target = root or os.getenv("RECEIPTS_DIR", "data/receipts")
        self.root = Path(target).resolve()

    def path_for(self, user_id: str) -> Path:
        return self.root / f"receipts_{_validate_user_id(user_id)}.json"

    def get(self, user_id: str) -> list[Receipt]:
        """Load receipts from disk, returning [] if missing/unreadable."""
        path = self.path_for(user_id)
        if not path.exists():
            return []

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(raw, list):
                raise ValueError(f"expected a JSON list, got {type(raw).__name__}")
            return [Receipt.model_validate(item) for item in raw]
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning(
                "receipts_load_warning | path=%s | error_type=%s | error=%s | fallback=[]",
                path,
                type(exc).__name__,
                exc,
            )
            return []

    def put(self, user_id: str, receipts: Iterable[Receipt]) -> None:
        """Persist the collection atomically via temp-file + replace."""
        path = self.path_for(user_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        payload = [receipt.to_json_dict() for receipt in receipts]
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=str(path.parent),
            delete=False,
            suffix=".tmp",
            prefix="receipts-",
        ) as tmp_file:
            tmp_path = Path(tmp_file.name)
            try:
                json.dump(payload, tmp_file, ensure_ascii=False, indent=2)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())
            except Exception:
                tmp_file.close()
                tmp_path.unlink(missing_ok=True)
                raise

        os.replace(tmp_path, path)
        logger.debug("receipts_saved | path=%s | count=%s", path, len(payload))
