"""
grouper.py - Batch duplicate clustering for review.

Partitions a full receipt collection into groups of probable duplicates:

1. Stable-sort by date, most recent first. Receipts whose date cannot be
   parsed sort last, in their original relative order.
2. Walk the sorted list. Each receipt not yet claimed anchors a group;
   every later unclaimed receipt that matches the anchor (exact or fuzzy)
   joins it.
3. Groups with at least two members are kept and their members claimed,
   so no receipt ever appears in two groups.

Matching is always against the group's anchor, not between every pair of
members. A group is labelled "exact" only when every member matched the
anchor exactly; one fuzzy member downgrades the whole group to "fuzzy".
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from logging_config import get_logger
from models import DuplicateGroup, MatchReason, Receipt
from normalize import CENT, normalize_store_name, parse_receipt_date, to_cents

logger = get_logger(__name__)

FUZZY_TOLERANCE = Decimal("0.15")
MIN_DENOMINATOR = Decimal("1")
MIN_GROUP_SIZE = 2
GROUP_ID_PREFIX = "group-"


def _same_store_and_date(r1: Receipt, r2: Receipt) -> bool:
    return (
        normalize_store_name(r1.store_name) == normalize_store_name(r2.store_name)
        and str(r1.date or "").strip() == str(r2.date or "").strip()
    )


def is_exact_match(r1: Receipt, r2: Receipt) -> bool:
    """Same store and date, totals within one cent after rounding to cents."""
    if not _same_store_and_date(r1, r2):
        return False
    return abs(to_cents(r1.total) - to_cents(r2.total)) < CENT


def is_fuzzy_match(r1: Receipt, r2: Receipt) -> bool:
    """Same store and date, totals within 15% of r1's total.

    Both totals are rounded half-up to cents before the relative difference
    is taken, so 10.00 vs 10.005 compares as 10.00 vs 10.01. The
    denominator is floored at 1.00 so near-zero totals do not blow up.
    """
    if not _same_store_and_date(r1, r2):
        return False
    t1 = to_cents(r1.total)
    t2 = to_cents(r2.total)
    return abs(t1 - t2) / max(t1, MIN_DENOMINATOR) < FUZZY_TOLERANCE


def _date_sort_key(receipt: Receipt) -> tuple[int, int]:
    parsed = parse_receipt_date(receipt.date)
    if parsed is None:
        return (1, 0)
    return (0, -parsed.toordinal())


def sort_by_date_desc(receipts: Iterable[Receipt]) -> list[Receipt]:
    """Most recent first; unparsable dates last; ties keep input order."""
    return sorted(receipts, key=_date_sort_key)


def group_duplicates(receipts: Iterable[Receipt]) -> list[DuplicateGroup]:
    """Cluster probable duplicates. Recomputed from scratch on every call."""
    ordered = sort_by_date_desc(receipts)
    claimed: set[str] = set()
    groups: list[DuplicateGroup] = []

    for i, anchor in enumerate(ordered):
        if anchor.id in claimed:
            continue

        members = [anchor]
        reason = MatchReason.EXACT

        for other in ordered[i + 1 :]:
            if other.id in claimed:
                continue

            exact = is_exact_match(anchor, other)
            fuzzy = exact or is_fuzzy_match(anchor, other)
            if not fuzzy:
                continue

            members.append(other)
            if not exact:
                reason = MatchReason.FUZZY
            logger.debug(
                "group_member | anchor_id=%s | member_id=%s | exact=%s | anchor_total=%.2f | member_total=%.2f",
                anchor.id,
                other.id,
                exact,
                anchor.total,
                other.total,
            )

        if len(members) < MIN_GROUP_SIZE:
            continue

        claimed.update(member.id for member in members)
        groups.append(
            DuplicateGroup(
                id=f"{GROUP_ID_PREFIX}{anchor.id}",
                members=members,
                reason=reason,
            )
        )

    logger.info(
        "group_duplicates | receipts=%s | groups=%s | grouped_receipts=%s",
        len(ordered),
        len(groups),
        len(claimed),
    )
    return groups
