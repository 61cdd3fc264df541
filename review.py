"""
review.py - One duplicate review pass over a user's collection.

The grouper runs once when the review is created. Each group is then
settled exactly once, either by keeping one member and deleting the rest
or by dismissing it (the receipts are distinct transactions). Settled
groups drop out of `active_groups` for the rest of this pass.

Dismissals are not remembered across passes: a new DuplicateReview over
the same data will surface the same groups again.
"""

from __future__ import annotations

from typing import Callable, Iterable, Optional

from grouper import group_duplicates
from logging_config import get_logger
from models import DuplicateGroup, Receipt
from receipt_store import ReceiptStore

logger = get_logger(__name__)

RESOLVED = "resolved"
DISMISSED = "dismissed"


class ReviewError(ValueError):
    """Raised for resolution requests that do not fit the group."""


class UnknownGroupError(ReviewError):
    """Raised when a group id is not part of this review pass."""


class DuplicateReview:
    """Resolution state for the groups found in one grouper run.

    Deletions go to `on_delete` when given, otherwise to `store` for
    `user_id`. A review with neither only records decisions.
    """

    def __init__(
        self,
        receipts: Iterable[Receipt],
        store: Optional[ReceiptStore] = None,
        user_id: Optional[str] = None,
        on_delete: Optional[Callable[[list[str]], None]] = None,
    ) -> None:
        if store is not None and not user_id:
            raise ValueError("user_id is required when a store is given")
        self.store = store
        self.user_id = user_id
        self.on_delete = on_delete
        self.groups: list[DuplicateGroup] = group_duplicates(receipts)
        self._by_id = {group.id: group for group in self.groups}
        self.decisions: dict[str, str] = {}

    @property
    def active_groups(self) -> list[DuplicateGroup]:
        return [group for group in self.groups if group.id not in self.decisions]

    @property
    def is_finished(self) -> bool:
        return not self.active_groups

    def get_group(self, group_id: str) -> DuplicateGroup:
        group = self._by_id.get(group_id)
        if group is None:
            raise UnknownGroupError(f"Unknown duplicate group: {group_id}")
        return group

    def _require_active(self, group_id: str) -> DuplicateGroup:
        group = self.get_group(group_id)
        if group_id in self.decisions:
            raise ReviewError(f"Group {group_id} was already {self.decisions[group_id]}")
        return group

    def resolve_group(
        self,
        group_id: str,
        keep_id: str,
        delete_ids: Optional[Iterable[str]] = None,
    ) -> list[str]:
        """Keep one member and delete the others.

        When delete_ids is omitted every other member is deleted.
        Returns the ids that were deleted.
        """
        group = self._require_active(group_id)
        member_ids = group.member_ids
        if keep_id not in member_ids:
            raise ReviewError(f"Receipt {keep_id} is not a member of {group_id}")

        if delete_ids is None:
            to_delete = [member_id for member_id in member_ids if member_id != keep_id]
        else:
            to_delete = list(dict.fromkeys(delete_ids))
            if keep_id in to_delete:
                raise ReviewError(f"Cannot both keep and delete receipt {keep_id}")
            outsiders = [receipt_id for receipt_id in to_delete if receipt_id not in member_ids]
            if outsiders:
                raise ReviewError(f"Receipts {outsiders} are not members of {group_id}")

        if to_delete:
            if self.on_delete is not None:
                self.on_delete(to_delete)
            elif self.store is not None:
                self.store.delete_receipts(self.user_id, to_delete)

        self.decisions[group_id] = RESOLVED
        logger.info(
            "group_resolved | group_id=%s | reason=%s | kept=%s | deleted=%s",
            group_id,
            group.reason.value,
            keep_id,
            to_delete,
        )
        return to_delete

    def dismiss_group(self, group_id: str) -> None:
        """Mark a group as legitimately distinct transactions."""
        group = self._require_active(group_id)
        self.decisions[group_id] = DISMISSED
        logger.info(
            "group_dismissed | group_id=%s | reason=%s | members=%s",
            group_id,
            group.reason.value,
            group.member_ids,
        )
