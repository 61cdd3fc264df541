"""
fingerprint.py - Insertion-time exact duplicate check.

A fingerprint is the composite key

    normalized store name | date | time (default 00:00:00) | total (2 dp)

A candidate receipt is a duplicate when any stored receipt produces the
identical key. Items, currency and provenance never take part.

Tolerant (fuzzy) matching only happens in grouper.py during batch review.
"""

from __future__ import annotations

from typing import Iterable, Optional

from logging_config import get_logger
from models import Receipt
from normalize import format_total, normalize_store_name, normalize_time

logger = get_logger(__name__)

KEY_SEPARATOR = "|"


def fingerprint_key(receipt: Receipt) -> str:
    """Build the exact-match key for a receipt."""
    return KEY_SEPARATOR.join(
        [
            normalize_store_name(receipt.store_name),
            str(receipt.date or "").strip(),
            normalize_time(receipt.time),
            format_total(receipt.total),
        ]
    )


def find_fingerprint_match(candidate: Receipt, existing: Iterable[Receipt]) -> Optional[Receipt]:
    """Return the first stored receipt sharing the candidate's fingerprint."""
    key = fingerprint_key(candidate)
    for stored in existing:
        if fingerprint_key(stored) == key:
            logger.debug(
                "fingerprint_match | candidate_id=%s | stored_id=%s | key=%r",
                candidate.id,
                stored.id,
                key,
            )
            return stored
    return None


def is_duplicate(candidate: Receipt, existing: Iterable[Receipt]) -> bool:
    """True iff any stored receipt has the same fingerprint as the candidate."""
    return find_fingerprint_match(candidate, existing) is not None
