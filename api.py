"""
api.py - FastAPI HTTP layer for the duplicate engine.

Exposes the engine to the review UI:
- receipt listing, ingestion with the insertion-time duplicate check,
  deletion
- duplicate review (list groups, resolve, dismiss)
- spending summary, backup export/import

No matching or grouping logic lives here. One review pass per user is
held in memory and discarded whenever that user's collection changes
outside the review itself.
"""

from __future__ import annotations

import os
import threading
from typing import Any, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from extract import ExtractionError, build_receipt
from fingerprint import find_fingerprint_match
from ingest import ingest_receipts
from logging_config import get_logger, level_from_env, setup_logging
from models import Receipt, ReceiptSource
from receipt_store import JsonReceiptStore, ReceiptStore, StoreError
from review import DuplicateReview, UnknownGroupError
from summary import search_receipts, spending_summary

logger = get_logger("spendwise-api")

app = FastAPI(
    title="SpendWise Duplicate Engine API",
    version="1.0.0",
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)

# Allows local UI use from file:// or another local host/port.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ResolveRequest(BaseModel):
    keep_id: str
    delete_ids: Optional[list[str]] = None


receipt_store: ReceiptStore = JsonReceiptStore()
review_sessions: dict[str, DuplicateReview] = {}
store_lock = threading.Lock()


def _invalidate_review(user_id: str) -> None:
    review_sessions.pop(user_id, None)


def _current_review(user_id: str, refresh: bool = False) -> DuplicateReview:
    """Return the user's open review pass, starting one when needed."""
    review = review_sessions.get(user_id)
    if review is None or refresh:
        review = DuplicateReview(receipt_store.get(user_id), store=receipt_store, user_id=user_id)
        review_sessions[user_id] = review
    return review


def _review_payload(review: DuplicateReview) -> dict[str, Any]:
    return {
        "groups": [group.to_json_dict() for group in review.active_groups],
        "total_groups": len(review.groups),
        "finished": review.is_finished,
    }


def _candidate_from_payload(payload: dict[str, Any], source: ReceiptSource, strict: bool) -> Receipt:
    """Accept either a complete stored-shape receipt or an extraction payload."""
    if payload.get("id"):
        return Receipt.model_validate(payload)
    return build_receipt(payload, source=source, strict=strict)


@app.get("/health")
def health() -> dict[str, str]:
    """Service health check."""
    return {"status": "ok"}


@app.get("/users/{user_id}/receipts")
def list_receipts(user_id: str, q: Optional[str] = Query(default=None)) -> list[dict[str, Any]]:
    """Stored order, or purchase-history search results when q is given."""
    try:
        receipts = receipt_store.get(user_id)
        if q is not None:
            receipts = search_receipts(receipts, q)
        return [receipt.to_json_dict() for receipt in receipts]
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/users/{user_id}/receipts/check")
def check_receipt(
    user_id: str,
    payload: dict[str, Any] = Body(...),
    source: ReceiptSource = Query(default=ReceiptSource.SCAN),
) -> dict[str, Any]:
    """Run the insertion-time duplicate check without storing anything."""
    try:
        candidate = _candidate_from_payload(payload, source, strict=False)
        match = find_fingerprint_match(candidate, receipt_store.get(user_id))
    except (ValueError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"duplicate": match is not None, "duplicate_of": match.id if match else None}


@app.post("/users/{user_id}/receipts")
def add_receipt(
    user_id: str,
    payload: dict[str, Any] = Body(...),
    source: ReceiptSource = Query(default=ReceiptSource.SCAN),
    strict: bool = Query(default=False),
    force: bool = Query(default=False),
) -> dict[str, Any]:
    """Sanitize, duplicate-check and store one receipt.

    Responds 409 when the receipt fingerprints like a stored one, unless
    force=true.
    """
    try:
        candidate = _candidate_from_payload(payload, source, strict=strict)
        with store_lock:
            report = ingest_receipts([candidate], receipt_store, user_id, allow_duplicates=force)
            if report.accepted:
                _invalidate_review(user_id)
    except ExtractionError as exc:
        detail = {"message": str(exc), "field": exc.field}
        raise HTTPException(status_code=422, detail=detail) from exc
    except (ValueError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if not report.accepted:
        flagged = report.flagged[0]
        raise HTTPException(
            status_code=409,
            detail={
                "message": "Receipt looks like one that is already stored.",
                "duplicate_of": flagged.duplicate_of,
                "receipt": flagged.receipt.to_json_dict(),
            },
        )
    return {
        "receipt": report.accepted[0].to_json_dict(),
        "duplicate_of": report.flagged[0].duplicate_of if report.flagged else None,
    }


@app.delete("/users/{user_id}/receipts/{receipt_id}")
def delete_receipt(user_id: str, receipt_id: str) -> dict[str, Any]:
    try:
        with store_lock:
            removed = receipt_store.delete_receipts(user_id, [receipt_id])
            if removed:
                _invalidate_review(user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not removed:
        raise HTTPException(status_code=404, detail=f"Receipt not found: {receipt_id}")
    return {"id": receipt_id, "removed": removed}


@app.get("/users/{user_id}/duplicates")
def list_duplicates(user_id: str, refresh: bool = Query(default=False)) -> dict[str, Any]:
    """Return the open review pass, recomputing groups when refresh=true."""
    try:
        with store_lock:
            review = _current_review(user_id, refresh=refresh)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _review_payload(review)


@app.post("/users/{user_id}/duplicates/{group_id}/resolve")
def resolve_duplicate_group(
    user_id: str,
    group_id: str,
    request: ResolveRequest = Body(...),
) -> dict[str, Any]:
    try:
        with store_lock:
            review = _current_review(user_id)
            deleted = review.resolve_group(group_id, request.keep_id, request.delete_ids)
    except UnknownGroupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.error(
            "resolve_group_error | user_id=%s | group_id=%s | error_type=%s | error=%s",
            user_id,
            group_id,
            type(exc).__name__,
            exc,
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail="Failed to resolve duplicate group.") from exc
    return {"group_id": group_id, "kept": request.keep_id, "deleted": deleted, **_review_payload(review)}


@app.post("/users/{user_id}/duplicates/{group_id}/dismiss")
def dismiss_duplicate_group(user_id: str, group_id: str) -> dict[str, Any]:
    try:
        with store_lock:
            review = _current_review(user_id)
            review.dismiss_group(group_id)
    except UnknownGroupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"group_id": group_id, "dismissed": True, **_review_payload(review)}


@app.get("/users/{user_id}/summary")
def get_summary(user_id: str) -> dict[str, Any]:
    try:
        return spending_summary(receipt_store.get(user_id))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/users/{user_id}/export")
def export_backup(user_id: str) -> dict[str, Any]:
    try:
        return receipt_store.export_backup(user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/import")
def import_backup(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    try:
        with store_lock:
            profile, receipts = receipt_store.import_backup(payload)
            _invalidate_review(str(profile["id"]))
    except StoreError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"user_id": profile["id"], "receipts": len(receipts)}


if __name__ == "__main__":
    load_dotenv()
    setup_logging(level=level_from_env())
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("api:app", host="0.0.0.0", port=port, reload=False)
