"""
test_review.py - Duplicate review pass tests.

Covers:
- resolve_group deletes through the injected store or callback
- dismiss_group deletes nothing
- validation of keep/delete ids and unknown or settled groups
- a new pass re-surfaces dismissed groups
"""

from __future__ import annotations

from typing import Any

import pytest

from models import Receipt
from receipt_store import InMemoryReceiptStore
from review import DuplicateReview, ReviewError, UnknownGroupError

USER = "alex"


def _r(receipt_id: str, store: str = "Cafe X", date: str = "2024-01-01", total: float = 10.0, **extra: Any) -> Receipt:
    return Receipt(id=receipt_id, store_name=store, date=date, total=total, **extra)


@pytest.fixture
def store() -> InMemoryReceiptStore:
    store = InMemoryReceiptStore()
    store.put(
        USER,
        [
            _r("a"),
            _r("b"),
            _r("c"),
            _r("d", store="Deli", date="2024-01-02", total=20.0),
            _r("e", store="Deli", date="2024-01-02", total=21.0),
            _r("solo", store="Bakery"),
        ],
    )
    return store


def test_review_lists_groups(store: InMemoryReceiptStore) -> None:
    review = DuplicateReview(store.get(USER), store=store, user_id=USER)
    assert [g.id for g in review.groups] == ["group-d", "group-a"]
    assert len(review.active_groups) == 2
    assert review.is_finished is False


def test_resolve_deletes_the_other_members(store: InMemoryReceiptStore) -> None:
    review = DuplicateReview(store.get(USER), store=store, user_id=USER)
    deleted = review.resolve_group("group-a", keep_id="b", delete_ids=["a", "c"])

    assert deleted == ["a", "c"]
    remaining = {r.id for r in store.get(USER)}
    assert remaining == {"b", "d", "e", "solo"}
    assert [g.id for g in review.active_groups] == ["group-d"]


def test_resolve_without_delete_ids_deletes_all_others(store: InMemoryReceiptStore) -> None:
    review = DuplicateReview(store.get(USER), store=store, user_id=USER)
    deleted = review.resolve_group("group-d", keep_id="e")
    assert deleted == ["d"]
    assert "d" not in {r.id for r in store.get(USER)}


def test_dismiss_keeps_every_receipt(store: InMemoryReceiptStore) -> None:
    review = DuplicateReview(store.get(USER), store=store, user_id=USER)
    review.dismiss_group("group-d")
    assert len(store.get(USER)) == 6
    assert [g.id for g in review.active_groups] == ["group-a"]


def test_review_finishes_after_all_groups_settled(store: InMemoryReceiptStore) -> None:
    review = DuplicateReview(store.get(USER), store=store, user_id=USER)
    review.dismiss_group("group-d")
    review.resolve_group("group-a", keep_id="a")
    assert review.is_finished is True
    assert review.decisions == {"group-d": "dismissed", "group-a": "resolved"}


def test_on_delete_callback_takes_precedence() -> None:
    deleted_batches: list[list[str]] = []
    review = DuplicateReview([_r("a"), _r("b")], on_delete=deleted_batches.append)
    review.resolve_group("group-a", keep_id="a")
    assert deleted_batches == [["b"]]


def test_dismissed_groups_reappear_in_a_new_pass(store: InMemoryReceiptStore) -> None:
    first = DuplicateReview(store.get(USER))
    first.dismiss_group("group-a")
    second = DuplicateReview(store.get(USER))
    assert "group-a" in [g.id for g in second.active_groups]


ERROR_CASES: list[dict[str, Any]] = [
    {"group": "group-missing", "keep": "a", "delete": None, "error": UnknownGroupError, "desc": "unknown group"},
    {"group": "group-a", "keep": "zzz", "delete": None, "error": ReviewError, "desc": "keep not a member"},
    {"group": "group-a", "keep": "a", "delete": ["a", "b"], "error": ReviewError, "desc": "keep also deleted"},
    {"group": "group-a", "keep": "a", "delete": ["d"], "error": ReviewError, "desc": "delete outside group"},
]


@pytest.mark.parametrize("case", ERROR_CASES, ids=[c["desc"] for c in ERROR_CASES])
def test_invalid_resolutions_raise(store: InMemoryReceiptStore, case: dict[str, Any]) -> None:
    review = DuplicateReview(store.get(USER), store=store, user_id=USER)
    with pytest.raises(case["error"]):
        review.resolve_group(case["group"], keep_id=case["keep"], delete_ids=case["delete"])
    assert len(store.get(USER)) == 6


def test_settled_group_cannot_be_settled_again(store: InMemoryReceiptStore) -> None:
    review = DuplicateReview(store.get(USER), store=store, user_id=USER)
    review.dismiss_group("group-a")
    with pytest.raises(ReviewError, match="already dismissed"):
        review.resolve_group("group-a", keep_id="a")
    with pytest.raises(ReviewError):
        review.dismiss_group("group-a")


def test_store_requires_user_id() -> None:
    with pytest.raises(ValueError):
        DuplicateReview([], store=InMemoryReceiptStore())
