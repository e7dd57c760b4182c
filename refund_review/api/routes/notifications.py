"""API routes for the reviewer notification feed."""

import json

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from refund_review.core.dependencies import CurrentReviewer, get_fanout
from refund_review.domain.models.notification import Notification
from refund_review.realtime.live_query import QuerySnapshot
from refund_review.schemas.notification import NotificationFeedResponse
from refund_review.services.notification_fanout import NotificationFanout

router = APIRouter(prefix="/notifications", tags=["notifications"])


def format_sse(snapshot: QuerySnapshot[Notification]) -> str:
    """Render one live-query snapshot as a Server-Sent Event."""
    if snapshot.ok:
        body = NotificationFeedResponse(
            items=snapshot.records,
            unread_count=NotificationFanout.unread_count(snapshot.records),
        ).model_dump_json()
        return f"event: notifications\ndata: {body}\n\n"
    body = json.dumps({"error": snapshot.error, "reason": snapshot.reason})
    return f"event: error\ndata: {body}\n\n"


@router.get("", response_model=NotificationFeedResponse)
async def list_notifications(
    reviewer: CurrentReviewer,
    limit: int | None = Query(None, ge=1, le=200),
    fanout: NotificationFanout = Depends(get_fanout),
) -> NotificationFeedResponse:
    items = await fanout.list_for(reviewer, limit)
    return NotificationFeedResponse(items=items, unread_count=fanout.unread_count(items))


@router.get("/stream")
async def stream_notifications(
    request: Request,
    reviewer: CurrentReviewer,
    limit: int | None = Query(None, ge=1, le=200),
    fanout: NotificationFanout = Depends(get_fanout),
) -> StreamingResponse:
    """Push the reviewer's feed on connect and after every relevant change."""
    live = fanout.subscribe(reviewer.id, limit)

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


@router.post("/{notification_id}/read", response_model=Notification)
async def mark_read(
    notification_id: str,
    reviewer: CurrentReviewer,
    fanout: NotificationFanout = Depends(get_fanout),
) -> Notification:
    return await fanout.mark_read(reviewer, notification_id)
