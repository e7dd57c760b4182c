"""API routes for transactions and reviewer actions on them."""

import json
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from refund_review.core.config import Settings
from refund_review.core.dependencies import (
    CurrentReviewer,
    RequireOverride,
    get_ingestion_service,
    get_review_service,
    get_settings_dep,
)
from refund_review.domain.models.transaction import Priority, Transaction, TransactionStatus
from refund_review.realtime.live_query import QuerySnapshot
from refund_review.schemas.transaction import (
    AuditTrailResponse,
    DecisionRequest,
    EscalateRequest,
    FeedbackRequest,
    NoteRequest,
    OverrideRequest,
    TransactionFeedResponse,
    TransactionIngest,
    TransactionListResponse,
)
from refund_review.services.ingestion_service import IngestionService
from refund_review.services.review_service import ReviewService

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("", response_model=TransactionListResponse)
async def list_transactions(
    reviewer: CurrentReviewer,
    date_from: datetime | None = Query(None, description="Only transactions created at or after"),
    priority: Priority | Literal["all"] = Query("all"),
    status: TransactionStatus | None = Query(None),
    limit: int | None = Query(None, ge=1),
    cursor: str | None = Query(None, description="Cursor from a previous page"),
    service: ReviewService = Depends(get_review_service),
    settings: Settings = Depends(get_settings_dep),
) -> TransactionListResponse:
    """List transactions in the reviewer's scope, newest first."""
    page_size = min(limit or settings.transactions.page_size, settings.transactions.max_page_size)
    page = await service.list_transactions(
        reviewer,
        date_from=date_from,
        priority=None if priority == "all" else priority,
        status=status,
        limit=page_size,
        cursor=cursor,
    )
    return TransactionListResponse(
        items=page.items,
        page_size=page_size,
        has_more=page.has_more,
        next_cursor=page.next_cursor,
    )


def format_sse(snapshot: QuerySnapshot[dict]) -> str:
    """Render one live transaction-list snapshot as a Server-Sent Event."""
    if snapshot.ok:
        body = TransactionFeedResponse(
            items=[Transaction.model_validate(r) for r in snapshot.records]
        ).model_dump_json()
        return f"event: transactions\ndata: {body}\n\n"
    body = json.dumps({"error": snapshot.error, "reason": snapshot.reason})
    return f"event: error\ndata: {body}\n\n"


@router.get("/stream")
async def stream_transactions(
    request: Request,
    reviewer: CurrentReviewer,
    date_from: datetime | None = Query(None),
    priority: Priority | Literal["all"] = Query("all"),
    status: TransactionStatus | None = Query(None),
    limit: int | None = Query(None, ge=1),
    service: ReviewService = Depends(get_review_service),
    settings: Settings = Depends(get_settings_dep),
) -> StreamingResponse:
    """Push the first page of the reviewer's list on connect and after every change."""
    live = service.watch_transactions(
        reviewer,
        date_from=date_from,
        priority=None if priority == "all" else priority,
        status=status,
        limit=min(limit or settings.transactions.page_size, settings.transactions.max_page_size),
    )

    async def events():
        try:
            async for snapshot in live:
                if await request.is_disconnected():
                    break
                yield format_sse(snapshot)
        finally:
            live.cancel()

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@router.post("", response_model=Transaction, status_code=201)
async def ingest_transaction(
    request: TransactionIngest,
    reviewer: RequireOverride,
    service: IngestionService = Depends(get_ingestion_service),
) -> Transaction:
    """Create a flagged transaction (administrative)."""
    return await service.ingest(request)


@router.get("/{transaction_id}", response_model=Transaction)
async def get_transaction(
    transaction_id: str,
    reviewer: CurrentReviewer,
    service: ReviewService = Depends(get_review_service),
) -> Transaction:
    return await service.get_transaction(reviewer, transaction_id)


@router.get("/{transaction_id}/audit", response_model=AuditTrailResponse)
async def get_audit_trail(
    transaction_id: str,
    reviewer: CurrentReviewer,
    limit: int = Query(100, ge=1, le=500),
    cursor: str | None = Query(None, description="Cursor from a previous page"),
    service: ReviewService = Depends(get_review_service),
) -> AuditTrailResponse:
    """Audit entries for a transaction, oldest first."""
    page = await service.get_audit_page(reviewer, transaction_id, limit=limit, cursor=cursor)
    return AuditTrailResponse(
        transaction_id=transaction_id,
        items=[entry.model_dump() for entry in page.items],
        has_more=page.has_more,
        next_cursor=page.next_cursor,
    )


@router.post("/{transaction_id}/decision", response_model=Transaction)
async def set_decision(
    transaction_id: str,
    request: DecisionRequest,
    reviewer: CurrentReviewer,
    service: ReviewService = Depends(get_review_service),
) -> Transaction:
    return await service.set_decision(
        reviewer,
        transaction_id,
        request.decision,
        notes=request.notes,
        risk_score=request.risk_score,
    )


@router.post("/{transaction_id}/feedback", response_model=Transaction)
async def submit_feedback(
    transaction_id: str,
    request: FeedbackRequest,
    reviewer: CurrentReviewer,
    service: ReviewService = Depends(get_review_service),
) -> Transaction:
    return await service.submit_feedback(reviewer, transaction_id, request)


@router.post("/{transaction_id}/escalate", response_model=Transaction)
async def escalate(
    transaction_id: str,
    request: EscalateRequest,
    reviewer: CurrentReviewer,
    service: ReviewService = Depends(get_review_service),
) -> Transaction:
    return await service.escalate(reviewer, transaction_id, request.reason, notes=request.notes)


@router.post("/{transaction_id}/override", response_model=Transaction)
async def override_decision(
    transaction_id: str,
    request: OverrideRequest,
    reviewer: CurrentReviewer,
    service: ReviewService = Depends(get_review_service),
) -> Transaction:
    return await service.override_decision(
        reviewer, transaction_id, request.next_decision, notes=request.notes
    )


@router.post("/{transaction_id}/notes", response_model=Transaction)
async def add_note(
    transaction_id: str,
    request: NoteRequest,
    reviewer: CurrentReviewer,
    service: ReviewService = Depends(get_review_service),
) -> Transaction:
    return await service.add_note(reviewer, transaction_id, request.note)
