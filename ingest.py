"""
ingest.py - Sequential ingestion of candidate receipts.

Each candidate passes once through the fingerprint matcher before it is
stored. Candidates are processed strictly one at a time, and every
accepted receipt is visible to the next check, so two copies of the same
receipt in one batch are caught as well.

Also home to the CSV bulk importer, which turns a bank/card export into
extraction-style payloads for extract.build_receipt.
"""

from __future__ import annotations

import os
from typing import Any, Iterable, Optional

import pandas as pd
from pydantic import BaseModel, Field

from extract import build_receipt
from fingerprint import find_fingerprint_match
from logging_config import get_logger
from models import Receipt, ReceiptSource, TransactionKind
from normalize import parse_amount
from receipt_store import ReceiptStore

logger = get_logger(__name__)

STORE_COLUMNS = ["store", "storename", "store_name", "store name", "merchant", "payee", "description"]
DATE_COLUMNS = ["date", "transaction date", "transaction_date", "posted date"]
AMOUNT_COLUMNS = ["amount", "total"]
OPTIONAL_COLUMNS = {"currency": "currency", "time": "time", "type": "type"}


class FlaggedReceipt(BaseModel):
    """A candidate held back because it fingerprints like a stored receipt."""

    receipt: Receipt
    duplicate_of: str = Field(..., description="Id of the stored receipt it matched.")


class IngestReport(BaseModel):
    """Outcome of one ingestion batch."""

    accepted: list[Receipt] = Field(default_factory=list)
    flagged: list[FlaggedReceipt] = Field(default_factory=list)

    @property
    def accepted_count(self) -> int:
        return len(self.accepted)

    @property
    def flagged_count(self) -> int:
        return len(self.flagged)


def ingest_receipts(
    candidates: Iterable[Receipt],
    store: ReceiptStore,
    user_id: str,
    allow_duplicates: bool = False,
) -> IngestReport:
    """Check each candidate against the stored collection, then store or flag it.

    With allow_duplicates=True fingerprint matches are still reported in
    `flagged` but are stored anyway (the user confirmed the capture).

    Raises:
        ValueError: a candidate id is already stored or repeats within the
            batch. Nothing from the batch is stored in that case.
    """
    candidates = list(candidates)
    report = IngestReport()
    known = store.get(user_id)

    taken = {receipt.id for receipt in known}
    for candidate in candidates:
        if candidate.id in taken:
            logger.warning("ingest_id_conflict | user_id=%s | receipt_id=%s", user_id, candidate.id)
            raise ValueError(f"Receipt id already in use: {candidate.id}")
        taken.add(candidate.id)

    for candidate in candidates:
        match = find_fingerprint_match(candidate, known)
        if match is not None:
            report.flagged.append(FlaggedReceipt(receipt=candidate, duplicate_of=match.id))
            logger.info(
                "ingest_flagged | user_id=%s | receipt_id=%s | duplicate_of=%s | forced=%s",
                user_id,
                candidate.id,
                match.id,
                allow_duplicates,
            )
            if not allow_duplicates:
                continue

        store.save_receipt(user_id, candidate)
        known.insert(0, candidate)
        report.accepted.append(candidate)
        logger.debug("ingest_accepted | user_id=%s | receipt_id=%s", user_id, candidate.id)

    logger.info(
        "ingest_complete | user_id=%s | accepted=%s | flagged=%s",
        user_id,
        report.accepted_count,
        report.flagged_count,
    )
    return report


def _pick_column(columns: list[str], options: list[str]) -> Optional[str]:
    for option in options:
        if option in columns:
            return option
    return None


def load_receipts_csv(csv_path: str) -> list[dict[str, Any]]:
    """Load a transactions CSV into extraction-style payload dicts.

    Headers are matched case-insensitively. Negative amounts become
    refunds carrying the absolute total.

    Raises:
        FileNotFoundError: csv_path does not exist.
        ValueError: unreadable file or missing store/date/amount columns.
    """
    if csv_path is None or not str(csv_path).strip():
        raise ValueError("csv_path cannot be empty")
    csv_path = str(csv_path).strip()
    if not os.path.exists(csv_path):
        raise FileNotFoundError(f"Receipts CSV not found: {csv_path}")

    read_options = {"dtype": str, "keep_default_na": False, "skipinitialspace": True}
    try:
        df = pd.read_csv(csv_path, encoding="utf-8-sig", **read_options)
    except UnicodeDecodeError:
        logger.warning(
            "csv_encoding_warning | path=%s | reason='utf-8 decode failed' | fallback=latin-1",
            csv_path,
        )
        df = pd.read_csv(csv_path, encoding="latin-1", **read_options)
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise ValueError(f"Failed to read CSV '{csv_path}': {exc}") from exc

    df.columns = [str(col).strip().lower() for col in df.columns]
    columns = list(df.columns)

    store_col = _pick_column(columns, STORE_COLUMNS)
    date_col = _pick_column(columns, DATE_COLUMNS)
    amount_col = _pick_column(columns, AMOUNT_COLUMNS)
    missing = [
        name
        for name, col in (("store", store_col), ("date", date_col), ("amount", amount_col))
        if col is None
    ]
    if missing:
        raise ValueError(
            f"Receipts CSV missing required columns: {missing}\n"
            f"Found: {columns}\n"
            "Make sure your CSV has store, date and amount headers."
        )

    payloads: list[dict[str, Any]] = []
    skipped = 0
    for row in df.to_dict("records"):
        store = str(row.get(store_col) or "").strip()
        amount = parse_amount(row.get(amount_col))
        if not store and amount is None:
            skipped += 1
            continue

        payload: dict[str, Any] = {
            "storeName": store,
            "date": str(row.get(date_col) or "").strip(),
        }
        if amount is not None:
            payload["total"] = abs(amount)
            if amount < 0:
                payload["type"] = TransactionKind.REFUND.value
        for column, key in OPTIONAL_COLUMNS.items():
            value = str(row.get(column) or "").strip()
            if value:
                payload.setdefault(key, value.lower() if key == "type" else value)
        payloads.append(payload)

    if skipped:
        logger.warning("csv_rows_skipped | path=%s | skipped=%s | reason='no store and no amount'", csv_path, skipped)
    logger.info("csv_loaded | path=%s | rows=%s | payloads=%s", csv_path, len(df), len(payloads))
    return payloads


def receipts_from_csv(csv_path: str, strict: bool = False) -> list[Receipt]:
    """Load a CSV and sanitize every row into a Receipt tagged with source=csv."""
    return [
        build_receipt(payload, source=ReceiptSource.CSV, strict=strict)
        for payload in load_receipts_csv(csv_path)
    ]
