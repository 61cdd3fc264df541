"""
extract.py - Extraction boundary: untyped LLM JSON -> Receipt.

The language model that reads receipt photos, pasted emails and CSV
snippets is an external collaborator. It is injected as a plain callable
(`raw input -> dict`) and nothing here knows which model or SDK sits
behind it.

What this module owns is the sanitation of that JSON:

- Lenient mode (default) fills missing fields with the same defaults the
  capture screens always used ("Unknown Store", today's date, USD, total
  0) and logs a warning naming every field it had to invent.
- Strict mode raises ExtractionError when the fields duplicate detection
  depends on (store name, date, total) are missing or malformed, so the
  caller can ask the user to retry or correct the capture.
"""

from __future__ import annotations

import secrets
import string
import time
from datetime import date
from typing import Any, Callable, Optional, Union

from logging_config import get_logger
from models import Receipt, ReceiptItem, ReceiptSource, TransactionKind
from normalize import normalize_date, parse_amount

logger = get_logger(__name__)

ID_ALPHABET = string.ascii_lowercase + string.digits
ID_LENGTH = 9

DEFAULT_STORE_NAMES: dict[ReceiptSource, str] = {
    ReceiptSource.SCAN: "Unknown Store",
    ReceiptSource.EMAIL: "Online Merchant",
    ReceiptSource.CSV: "Unknown Store",
}
DEFAULT_CURRENCY = "USD"
DEFAULT_CATEGORY = "Other"

Extractor = Callable[[Any], Any]


class ExtractionError(ValueError):
    """Raised when an extraction payload cannot become a Receipt."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


def new_receipt_id() -> str:
    """Random 9-character lowercase alphanumeric id."""
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(ID_LENGTH))


def _first(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return value
    return None


def _sanitize_items(raw_items: Any, strict: bool) -> list[ReceiptItem]:
    if raw_items is None:
        return []
    if not isinstance(raw_items, list):
        if strict:
            raise ExtractionError("items must be a list", field="items")
        logger.warning("extract_items_warning | type=%s | fallback=[]", type(raw_items).__name__)
        return []

    items: list[ReceiptItem] = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict) or not str(raw.get("name") or "").strip():
            if strict:
                raise ExtractionError(f"item {index} has no name", field="items")
            logger.warning("extract_item_skipped | index=%s | raw=%r", index, raw)
            continue

        try:
            quantity = int(float(raw.get("quantity") or 1))
        except (TypeError, ValueError, OverflowError):
            quantity = 1
        if quantity < 1:
            quantity = 1

        price = parse_amount(raw.get("price"))
        items.append(
            ReceiptItem(
                name=str(raw["name"]).strip(),
                quantity=quantity,
                price=price if price is not None else 0.0,
                category=str(raw.get("category") or DEFAULT_CATEGORY),
                subcategory=raw.get("subcategory") or None,
            )
        )
    return items


def build_receipt(
    payload: dict[str, Any],
    source: Union[ReceiptSource, str] = ReceiptSource.SCAN,
    strict: bool = False,
    now: Optional[float] = None,
) -> Receipt:
    """Sanitize one extraction payload into a new Receipt.

    Args:
        payload: JSON object from the extraction service. camelCase
            (`storeName`) and snake_case (`store_name`) keys are accepted.
        source: Ingestion channel; also selects the default store name.
        strict: Raise ExtractionError instead of defaulting the
            store name, date or total.
        now: Epoch seconds used for `created_at` and the default date.

    Raises:
        ExtractionError: payload is not an object, or (strict) a
            matching field is missing or malformed.
    """
    if not isinstance(payload, dict):
        raise ExtractionError(
            f"Extraction result must be a JSON object, got {type(payload).__name__}"
        )

    source = ReceiptSource(source)
    timestamp = time.time() if now is None else now
    defaulted: list[str] = []

    store_name = str(_first(payload, "storeName", "store_name", "store", "merchant") or "").strip()
    if not store_name:
        if strict:
            raise ExtractionError("store name is missing", field="storeName")
        store_name = DEFAULT_STORE_NAMES[source]
        defaulted.append("storeName")

    raw_date = _first(payload, "date", "transactionDate")
    receipt_date = normalize_date(raw_date)
    if not receipt_date:
        if strict:
            raise ExtractionError(f"date is missing or unparsable: {raw_date!r}", field="date")
        receipt_date = date.fromtimestamp(timestamp).isoformat()
        defaulted.append("date")

    kind = TransactionKind.PURCHASE
    raw_type = str(payload.get("type") or "").strip().lower()
    if raw_type == TransactionKind.REFUND.value:
        kind = TransactionKind.REFUND

    raw_total = _first(payload, "total", "amount")
    total = parse_amount(raw_total)
    if total is None:
        if strict:
            raise ExtractionError(f"total is missing or not a number: {raw_total!r}", field="total")
        total = 0.0
        defaulted.append("total")
    elif total < 0:
        if strict:
            raise ExtractionError(f"total cannot be negative: {raw_total!r}", field="total")
        logger.warning("extract_negative_total | raw=%r | fallback='refund with absolute total'", raw_total)
        total = abs(total)
        kind = TransactionKind.REFUND

    currency = str(payload.get("currency") or "").strip().upper()
    if not currency:
        currency = DEFAULT_CURRENCY
        defaulted.append("currency")

    raw_time = payload.get("time")
    raw_text = _first(payload, "rawText", "raw_text")
    receipt = Receipt(
        id=new_receipt_id(),
        type=kind,
        store_name=store_name,
        date=receipt_date,
        time=str(raw_time).strip() if raw_time else None,
        total=total,
        currency=currency,
        items=_sanitize_items(payload.get("items"), strict),
        created_at=int(timestamp * 1000),
        source=source,
        raw_text=str(raw_text) if raw_text is not None else None,
    )

    if defaulted:
        logger.warning(
            "extract_defaulted_fields | receipt_id=%s | source=%s | fields=%s",
            receipt.id,
            source.value,
            defaulted,
        )
    return receipt


def extract_with(
    extractor: Extractor,
    raw_input: Any,
    source: Union[ReceiptSource, str] = ReceiptSource.SCAN,
    strict: bool = False,
) -> Receipt:
    """Run the injected extractor on raw input and sanitize its result."""
    result = extractor(raw_input)
    if not isinstance(result, dict):
        raise ExtractionError(
            f"Extractor returned {type(result).__name__}, expected a JSON object"
        )
    return build_receipt(result, source=source, strict=strict)
