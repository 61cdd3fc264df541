"""
summary.py - Spending figures for the dashboard.

Refunds count as negative spending everywhere. Category totals are built
from line items (price * quantity), so receipts without items contribute
to the totals but not to the category breakdown.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable, Optional

import pandas as pd

from logging_config import get_logger
from models import Receipt
from normalize import parse_receipt_date

logger = get_logger(__name__)

DEFAULT_CATEGORY = "Other"
RECENT_LIMIT = 10


def receipts_frame(receipts: Iterable[Receipt]) -> pd.DataFrame:
    """One row per receipt with parsed date and signed total."""
    rows = [
        {
            "id": receipt.id,
            "store_name": receipt.store_name,
            "date": receipt.date,
            "parsed_date": parse_receipt_date(receipt.date),
            "total": receipt.total,
            "signed_total": receipt.signed_total,
        }
        for receipt in receipts
    ]
    return pd.DataFrame(
        rows,
        columns=["id", "store_name", "date", "parsed_date", "total", "signed_total"],
    )


def items_frame(receipts: Iterable[Receipt]) -> pd.DataFrame:
    """One row per line item with its signed line total."""
    rows = []
    for receipt in receipts:
        sign = -1.0 if receipt.is_refund else 1.0
        for item in receipt.items:
            rows.append(
                {
                    "receipt_id": receipt.id,
                    "category": item.category or DEFAULT_CATEGORY,
                    "line_total": sign * item.price * item.quantity,
                }
            )
    return pd.DataFrame(rows, columns=["receipt_id", "category", "line_total"])


def search_receipts(receipts: Iterable[Receipt], term: str = "") -> list[Receipt]:
    """Purchase-history search, newest capture first.

    Matches `term` case-insensitively against the store name and every
    item name. An empty term keeps everything.
    """
    needle = str(term or "").strip().lower()
    matches = [
        receipt
        for receipt in receipts
        if needle in receipt.store_name.lower()
        or any(needle in item.name.lower() for item in receipt.items)
    ]
    return sorted(matches, key=lambda receipt: receipt.created_at, reverse=True)


def spending_summary(receipts: Iterable[Receipt], today: Optional[date] = None) -> dict[str, Any]:
    """Aggregate totals, current-month spend, categories and recent history."""
    receipts = list(receipts)
    today = today or date.today()
    df = receipts_frame(receipts)

    count = len(df)
    total_spent = round(float(df["signed_total"].sum()), 2) if count else 0.0
    average = round(total_spent / count, 2) if count else 0.0

    this_month = 0.0
    if count:
        in_month = df["parsed_date"].map(
            lambda value: value is not None and value.year == today.year and value.month == today.month
        ).astype(bool)
        this_month = round(float(df.loc[in_month, "signed_total"].sum()), 2)

    by_category: list[dict[str, Any]] = []
    items = items_frame(receipts)
    if not items.empty:
        grouped = items.groupby("category")["line_total"].sum().sort_values(ascending=False)
        by_category = [
            {"name": str(name), "value": round(float(value), 2)} for name, value in grouped.items()
        ]

    recent: list[dict[str, Any]] = []
    if count:
        dated = df[df["parsed_date"].notna()].sort_values("parsed_date", kind="stable")
        recent = [
            {"date": row.date, "total": round(float(row.total), 2)}
            for row in dated.tail(RECENT_LIMIT).itertuples(index=False)
        ]

    logger.debug(
        "spending_summary | receipts=%s | total_spent=%.2f | this_month=%.2f",
        count,
        total_spent,
        this_month,
    )
    return {
        "total_spent": total_spent,
        "receipt_count": count,
        "average_receipt": average,
        "this_month": this_month,
        "by_category": by_category,
        "recent": recent,
    }
