"""
models.py - Data models shared by the duplicate engine.

Every module communicates through these models:

    extract.py       ->  Receipt (sanitized from extraction payloads)
    fingerprint.py   ->  bool / Receipt (insertion-time exact check)
    grouper.py       ->  list[DuplicateGroup]
    review.py        ->  resolution state over DuplicateGroup
    receipt_store.py ->  list[Receipt] per user

Receipts keep the camelCase field names used by the stored JSON
(`storeName`, `createdAt`, ...) as aliases, so persisted collections and
backups round-trip unchanged. Python code uses the snake_case names.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TransactionKind(str, Enum):
    """Whether money left (purchase) or came back (refund)."""

    PURCHASE = "purchase"
    REFUND = "refund"


class ReceiptSource(str, Enum):
    """Ingestion channel the receipt came through."""

    SCAN = "scan"
    EMAIL = "email"
    CSV = "csv"


class MatchReason(str, Enum):
    """Why the grouper considers a cluster of receipts duplicates.

    EXACT means every member matched the anchor within one cent.
    FUZZY means at least one member only matched within the 15% tolerance.
    """

    EXACT = "exact"
    FUZZY = "fuzzy"


class ReceiptItem(BaseModel):
    """One purchased or refunded line on a receipt."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Line item name as extracted.")
    quantity: int = Field(
        default=1,
        gt=0,
        description="Number of units. Always a positive integer.",
    )
    price: float = Field(
        default=0.0,
        description="Unit price. Line total is price * quantity.",
    )
    category: Optional[str] = Field(
        default=None,
        description="Spending category, e.g. 'Groceries', 'Electronics'.",
    )
    subcategory: Optional[str] = Field(default=None)

    @property
    def line_total(self) -> float:
        return round(self.price * self.quantity, 2)


class Receipt(BaseModel):
    """A single financial transaction record.

    Only four fields matter to duplicate detection: store_name, date,
    time and total. Items, currency and provenance are carried along for
    the review UI and the spending summary but never compared.

    `total` is caller-supplied and is not re-derived from the items.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "id": "k3j9x0a1b",
                    "type": "purchase",
                    "storeName": "Whole Foods",
                    "date": "2024-01-01",
                    "time": "14:32:00",
                    "total": 54.20,
                    "currency": "USD",
                    "items": [
                        {"name": "Oat milk", "quantity": 2, "price": 4.99, "category": "Groceries"}
                    ],
                    "createdAt": 1704119520000,
                    "source": "scan",
                }
            ]
        },
    )

    id: str = Field(..., description="Unique within a user's collection.")
    type: TransactionKind = Field(default=TransactionKind.PURCHASE)
    store_name: str = Field(
        ...,
        alias="storeName",
        description="Merchant name as extracted, before normalization.",
    )
    date: str = Field(
        ...,
        description="Calendar date, normally ISO YYYY-MM-DD. Compared as a string.",
    )
    time: Optional[str] = Field(
        default=None,
        description="Time of day (HH:MM:SS). Missing time fingerprints as 00:00:00.",
    )
    total: float = Field(default=0.0, ge=0)
    currency: str = Field(default="USD")
    items: list[ReceiptItem] = Field(default_factory=list)
    created_at: int = Field(
        default=0,
        alias="createdAt",
        description="Creation timestamp in epoch milliseconds.",
    )
    source: ReceiptSource = Field(default=ReceiptSource.SCAN)
    raw_text: Optional[str] = Field(default=None, alias="rawText")
    image_url: Optional[str] = Field(default=None, alias="imageUrl")

    @property
    def is_refund(self) -> bool:
        return self.type == TransactionKind.REFUND

    @property
    def signed_total(self) -> float:
        """Total with refunds counted as negative spending."""
        return -self.total if self.is_refund else self.total

    def to_json_dict(self) -> dict:
        """Serialize using the stored (camelCase) field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DuplicateGroup(BaseModel):
    """A cluster of probable duplicate receipts reviewed as a unit.

    Members are listed in review order: the first member is the receipt
    the group was anchored on (the most recent one), and the group id is
    derived from it.
    """

    id: str = Field(..., description="'group-<anchor receipt id>'.")
    members: list[Receipt] = Field(..., min_length=2)
    reason: MatchReason = Field(default=MatchReason.EXACT)

    @property
    def member_ids(self) -> list[str]:
        return [member.id for member in self.members]

    @property
    def size(self) -> int:
        return len(self.members)

    def to_json_dict(self) -> dict:
        return {
            "id": self.id,
            "reason": self.reason.value,
            "members": [member.to_json_dict() for member in self.members],
        }
