"""
normalize.py - Field normalization for duplicate detection.

Core normalizers:
    normalize_store_name(name)  -> lower-cased, trimmed, single-spaced name
    normalize_time(time)        -> time string, "00:00:00" when absent
    to_cents(amount)            -> Decimal rounded half-up to 2 places
    format_total(amount)        -> "12.30"
    parse_receipt_date(value)   -> datetime.date or None
    normalize_date(value)       -> ISO YYYY-MM-DD or ""
    parse_amount(value)         -> signed float or None

Design principles:
    - SAME normalization for the candidate and the stored side
    - Pure transformations, no I/O
    - Invalid input degrades to neutral defaults instead of raising
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from dateutil import parser as dateparser

from logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_TIME = "00:00:00"
CENT = Decimal("0.01")
ZERO = Decimal("0.00")

_WHITESPACE_RE = re.compile(r"\s+")
_NULL_TOKENS = {"n/a", "na", "none", "null", "unknown", "nan"}


def normalize_store_name(name: Any) -> str:
    """Lower-case, trim and collapse internal whitespace runs."""
    if name is None:
        return ""
    if not isinstance(name, str):
        name = str(name)
    return _WHITESPACE_RE.sub(" ", name.strip().lower())


def normalize_time(value: Any) -> str:
    """Return the time of day as given, or the midnight default when absent."""
    if value is None:
        return DEFAULT_TIME
    text = str(value).strip()
    return text or DEFAULT_TIME


def to_cents(amount: Any) -> Decimal:
    """Round an amount to cents, half-up, via its decimal string form.

    Going through str() keeps 10.005 at 10.01 instead of the 10.00 that
    binary float rounding produces. Missing or non-numeric values are 0.
    """
    if amount is None or isinstance(amount, bool):
        return ZERO
    if isinstance(amount, float) and not math.isfinite(amount):
        return ZERO
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        logger.debug("to_cents | non_numeric=%r | fallback=0.00", amount)
        return ZERO
    if not value.is_finite():
        return ZERO
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def format_total(amount: Any) -> str:
    """Format a total with exactly two decimal places."""
    return f"{to_cents(amount):.2f}"


def parse_receipt_date(value: Any) -> Optional[date]:
    """Parse a receipt date string, returning None when it is unusable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text or text.lower() in _NULL_TOKENS:
        return None
    if not any(char.isdigit() for char in text):
        return None

    try:
        return date.fromisoformat(text)
    except ValueError:
        pass

    try:
        parsed = dateparser.parse(text, dayfirst=False)
    except (ValueError, TypeError, OverflowError) as exc:
        logger.debug(
            "parse_receipt_date | parse_error=%s | raw=%r | fallback=None",
            type(exc).__name__,
            text,
        )
        return None
    if parsed is None:
        return None
    return parsed.date()


def normalize_date(value: Any) -> str:
    """Normalize date text to ISO YYYY-MM-DD, or "" when unparsable."""
    parsed = parse_receipt_date(value)
    if parsed is None:
        if value not in (None, ""):
            logger.warning("normalize_date | parse_failed | raw=%r | fallback=''", value)
        return ""
    return parsed.isoformat()


def parse_amount(value: Any) -> Optional[float]:
    """Parse a money string like "$1,234.50" or "(12.00)" into a signed float."""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        number = float(value)
        return round(number, 2) if math.isfinite(number) else None

    text = str(value).strip()
    if not text or text.lower() in _NULL_TOKENS:
        return None

    negative = text.startswith("-") or (text.startswith("(") and text.endswith(")"))
    cleaned = (
        text.replace("$", "")
        .replace("€", "")
        .replace("£", "")
        .replace(",", "")
        .replace("(", "")
        .replace(")", "")
        .replace("-", "")
        .strip()
    )
    try:
        number = float(cleaned)
    except ValueError:
        logger.warning("parse_amount | parse_failed | raw=%r | fallback=None", value)
        return None
    if not math.isfinite(number):
        return None
    return round(-number if negative else number, 2)
