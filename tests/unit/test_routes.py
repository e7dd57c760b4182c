"""Tests for the HTTP API."""

import asyncio
import json
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from refund_review.api.routes.notifications import format_sse, stream_notifications
from refund_review.api.routes.transactions import format_sse as format_transactions_sse
from refund_review.api.routes.transactions import stream_transactions
from refund_review.core.config import get_settings
from refund_review.core.dependencies import get_current_reviewer
from refund_review.domain.models.notification import Notification, NotificationType
from refund_review.domain.models.transaction import Priority
from refund_review.main import create_app
from refund_review.realtime.change_feed import ChangeEvent, ChangeKind
from refund_review.realtime.live_query import QuerySnapshot, ViewState
from refund_review.services.notification_fanout import NotificationFanout
from refund_review.services.review_service import ReviewService
from refund_review.services.reviewer_directory import ReviewerDirectory
from tests.factories import (
    EXECUTIVE,
    OPERATIONS_MANAGER,
    REGIONAL_MANAGER,
    T0,
    WAREHOUSE_MANAGER,
    insert_reviewer,
    insert_transaction,
    make_transaction,
    transaction_record,
)

API = "/api/v1"


@pytest.fixture
def app(engine, store, feed):
    app = create_app()
    app.state.engine = engine
    app.state.store = store
    app.state.feed = feed
    app.state.fanout = NotificationFanout(store, feed, ReviewerDirectory(store))
    return app


@pytest.fixture
async def client(app) -> AsyncGenerator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def as_reviewer(app, reviewer) -> None:
    app.dependency_overrides[get_current_reviewer] = lambda: reviewer


class TestHealthRoutes:
    """Test health check routes."""

    async def test_health(self, client):
        response = await client.get(f"{API}/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_ready(self, client):
        response = await client.get(f"{API}/health/ready")
        assert response.json() == {"status": "ready", "database": "connected"}

    async def test_live(self, client):
        response = await client.get(f"{API}/health/live")
        assert response.json() == {"status": "alive"}


class TestAuthentication:
    """Test unauthenticated requests."""

    async def test_missing_token_is_401(self, client):
        response = await client.get(f"{API}/transactions")

        assert response.status_code == 401
        assert response.json()["reason"] == "unauthenticated"


class TestMe:
    """Test the current reviewer endpoint."""

    async def test_capabilities(self, app, client):
        as_reviewer(app, REGIONAL_MANAGER)

        body = (await client.get(f"{API}/me")).json()

        assert body["reviewer"]["id"] == REGIONAL_MANAGER.id
        assert body["capabilities"]["can_escalate"] is True
        assert body["capabilities"]["can_override"] is False
        assert body["capabilities"]["scope"] == "region"


class TestTransactionRoutes:
    """Test transaction listing and reviewer actions."""

    async def test_list_is_scoped(self, app, client, store):
        await insert_transaction(store, id="T1", region_id="R-01")
        await insert_transaction(store, id="T2", region_id="R-02")
        as_reviewer(app, REGIONAL_MANAGER)

        body = (await client.get(f"{API}/transactions", params={"priority": "all"})).json()

        assert [t["id"] for t in body["items"]] == ["T2"]
        assert body["has_more"] is False
        assert body["page_size"] == 25

    async def test_list_pages_with_cursor(self, app, client, store):
        for i in range(3):
            await insert_transaction(store, id=f"T{i}", created_at=T0.replace(minute=i))
        as_reviewer(app, OPERATIONS_MANAGER)

        first = (await client.get(f"{API}/transactions", params={"limit": 2})).json()
        second = (
            await client.get(
                f"{API}/transactions", params={"limit": 2, "cursor": first["next_cursor"]}
            )
        ).json()

        assert [t["id"] for t in first["items"]] == ["T2", "T1"]
        assert first["has_more"] is True
        assert [t["id"] for t in second["items"]] == ["T0"]

    async def test_list_filters_priority(self, app, client, store):
        await insert_transaction(store, id="T1", priority=Priority.LOW)
        await insert_transaction(store, id="T2", priority=Priority.HIGH)
        as_reviewer(app, OPERATIONS_MANAGER)

        body = (await client.get(f"{API}/transactions", params={"priority": "low"})).json()

        assert [t["id"] for t in body["items"]] == ["T1"]

    async def test_get_outside_scope_is_403(self, app, client, store):
        await insert_transaction(store, id="T1", warehouse_id="WH002")
        as_reviewer(app, WAREHOUSE_MANAGER)

        response = await client.get(f"{API}/transactions/T1")

        assert response.status_code == 403
        assert response.json()["reason"] == "access_denied"

    async def test_get_missing_is_404(self, app, client):
        as_reviewer(app, OPERATIONS_MANAGER)

        response = await client.get(f"{API}/transactions/missing")

        assert response.status_code == 404
        assert response.json()["reason"] == "not_found"

    async def test_decision_and_audit_trail(self, app, client, store):
        await insert_transaction(store, id="T1")
        as_reviewer(app, WAREHOUSE_MANAGER)

        response = await client.post(
            f"{API}/transactions/T1/decision", json={"decision": "fraud", "notes": "confirmed"}
        )
        audit = (await client.get(f"{API}/transactions/T1/audit")).json()

        assert response.status_code == 200
        assert response.json()["status"] == "reviewed"
        assert [e["action"] for e in audit["items"]] == ["DECISION_SET"]
        assert audit["items"][0]["actor_id"] == WAREHOUSE_MANAGER.id
        assert audit["has_more"] is False

    async def test_audit_trail_pages_with_cursor(self, app, client, store):
        await insert_transaction(store, id="T1")
        as_reviewer(app, OPERATIONS_MANAGER)
        for note in ("first", "second", "third"):
            await client.post(f"{API}/transactions/T1/notes", json={"note": note})

        first = (await client.get(f"{API}/transactions/T1/audit", params={"limit": 2})).json()
        second = (
            await client.get(
                f"{API}/transactions/T1/audit", params={"limit": 2, "cursor": first["next_cursor"]}
            )
        ).json()

        assert [e["payload"]["note"] for e in first["items"]] == ["first", "second"]
        assert first["has_more"] is True
        assert [e["payload"]["note"] for e in second["items"]] == ["third"]
        assert second["has_more"] is False
        assert second["next_cursor"] is None

    async def test_escalate_requires_capability(self, app, client, store):
        await insert_transaction(store, id="T1")
        as_reviewer(app, WAREHOUSE_MANAGER)

        response = await client.post(
            f"{API}/transactions/T1/escalate", json={"reason": "amount outlier"}
        )

        assert response.status_code == 403
        assert response.json()["errors"]["capability"] == "can_escalate"

    async def test_escalate(self, app, client, store):
        await insert_transaction(store, id="T1", region_id="R-02")
        as_reviewer(app, REGIONAL_MANAGER)

        response = await client.post(
            f"{API}/transactions/T1/escalate", json={"reason": "amount outlier"}
        )

        body = response.json()
        assert body["status"] == "escalated"
        assert body["escalation"]["reason"] == "amount outlier"
        assert "Escalation Reason:" in body["escalation"]["letter"]

    async def test_override_to_escalated_is_400(self, app, client, store):
        await insert_transaction(store, id="T1")
        as_reviewer(app, OPERATIONS_MANAGER)

        response = await client.post(
            f"{API}/transactions/T1/override", json={"next_decision": "escalated"}
        )

        assert response.status_code == 400
        assert response.json()["reason"] == "validation_failed"

    async def test_feedback_and_note(self, app, client, store):
        await insert_transaction(store, id="T1")
        as_reviewer(app, OPERATIONS_MANAGER)

        feedback = await client.post(
            f"{API}/transactions/T1/feedback",
            json={"transaction_reviewed": True, "suspicious": "unsure"},
        )
        note = await client.post(f"{API}/transactions/T1/notes", json={"note": "called"})

        assert feedback.json()["status"] == "reviewed"
        assert feedback.json()["feedback"]["suspicious"] == "unsure"
        assert note.json()["last_note"]["note"] == "called"

    async def test_executive_cannot_edit(self, app, client, store):
        await insert_transaction(store, id="T1")
        as_reviewer(app, EXECUTIVE)

        response = await client.post(f"{API}/transactions/T1/notes", json={"note": "x"})

        assert response.status_code == 403

    async def test_ingest(self, app, client):
        as_reviewer(app, OPERATIONS_MANAGER)

        response = await client.post(
            f"{API}/transactions",
            json={
                "warehouse_id": "WH001",
                "region_id": "R-01",
                "refund_amount": "55.10",
                "risk_score": 0.2,
            },
        )

        assert response.status_code == 201
        assert response.json()["priority"] == "low"
        assert response.json()["status"] == "pending"

    async def test_ingest_requires_override(self, app, client):
        as_reviewer(app, REGIONAL_MANAGER)

        response = await client.post(
            f"{API}/transactions",
            json={"warehouse_id": "WH001", "region_id": "R-01", "refund_amount": "1", "risk_score": 0.2},
        )

        assert response.status_code == 403


class TestNotificationRoutes:
    """Test the notification feed endpoints."""

    async def _notify(self, app, **overrides) -> None:
        record = transaction_record(make_transaction(**overrides))
        await app.state.fanout.handle_change(
            ChangeEvent(collection="transactions", id=record["id"], kind=ChangeKind.ADDED, record=record)
        )

    async def test_list_and_mark_read(self, app, client):
        await self._notify(app, id="T1", warehouse_id="WH001")
        await self._notify(app, id="T2", warehouse_id="WH002")
        as_reviewer(app, WAREHOUSE_MANAGER)

        feed = (await client.get(f"{API}/notifications")).json()
        [item] = feed["items"]
        read = await client.post(f"{API}/notifications/{item['id']}/read")
        after = (await client.get(f"{API}/notifications")).json()

        assert feed["unread_count"] == 1
        assert item["transaction_id"] == "T1"
        assert read.json()["read_at"] is not None
        assert after["unread_count"] == 0

    async def test_mark_read_missing_is_404(self, app, client):
        as_reviewer(app, OPERATIONS_MANAGER)

        response = await client.post(f"{API}/notifications/missing/read")

        assert response.status_code == 404


class TestFormatSse:
    """Test Server-Sent Event rendering."""

    def test_ready_snapshot(self):
        notification = Notification(
            id="n1",
            created_at=T0,
            message="High-risk refund flagged (82%): FABC1234",
            type=NotificationType.HIGH_RISK,
            priority=Priority.HIGH,
        )
        event = format_sse(QuerySnapshot(state=ViewState.READY, records=[notification]))

        assert event.startswith("event: notifications\ndata: ")
        assert event.endswith("\n\n")
        body = json.loads(event.split("data: ", 1)[1])
        assert body["unread_count"] == 1
        assert body["items"][0]["id"] == "n1"

    def test_error_snapshot(self):
        event = format_sse(
            QuerySnapshot(state=ViewState.ERROR, error="Reviewer profile not found", reason="unauthenticated")
        )

        assert event.startswith("event: error\n")
        assert json.loads(event.split("data: ", 1)[1])["reason"] == "unauthenticated"


def _connected_request(disconnected: bool = False) -> MagicMock:
    request = MagicMock()
    request.is_disconnected = AsyncMock(return_value=disconnected)
    return request


class TestStreamRoutes:
    """Test the Server-Sent Event endpoints."""

    def test_stream_path_is_not_taken_for_a_transaction_id(self, app):
        paths = [route.path for route in app.routes]

        assert paths.index(f"{API}/transactions/stream") < paths.index(
            f"{API}/transactions/{{transaction_id}}"
        )

    async def test_notification_stream_releases_subscription_on_close(self, store, feed):
        await insert_reviewer(store, WAREHOUSE_MANAGER)
        fanout = NotificationFanout(store, feed, ReviewerDirectory(store))
        before = feed.subscriber_count

        response = await stream_notifications(
            request=_connected_request(), reviewer=WAREHOUSE_MANAGER, limit=None, fanout=fanout
        )
        events = response.body_iterator
        first = await anext(events)
        assert feed.subscriber_count == before + 1

        await events.aclose()

        assert first.startswith("event: notifications\n")
        assert response.media_type == "text/event-stream"
        assert feed.subscriber_count == before

    async def test_notification_stream_stops_when_client_disconnects(self, store, feed):
        await insert_reviewer(store, WAREHOUSE_MANAGER)
        fanout = NotificationFanout(store, feed, ReviewerDirectory(store))
        before = feed.subscriber_count

        response = await stream_notifications(
            request=_connected_request(disconnected=True),
            reviewer=WAREHOUSE_MANAGER,
            limit=None,
            fanout=fanout,
        )

        assert [chunk async for chunk in response.body_iterator] == []
        assert feed.subscriber_count == before

    async def test_transaction_stream_is_scoped_and_released(self, store, feed):
        await insert_transaction(store, id="T1", region_id="R-01")
        await insert_transaction(store, id="T2", region_id="R-02")
        before = feed.subscriber_count

        response = await stream_transactions(
            request=_connected_request(),
            reviewer=REGIONAL_MANAGER,
            date_from=None,
            priority="all",
            status=None,
            limit=None,
            service=ReviewService(store),
            settings=get_settings(),
        )
        events = response.body_iterator
        first = await anext(events)
        assert feed.subscriber_count == before + 1

        await events.aclose()

        assert first.startswith("event: transactions\ndata: ")
        body = json.loads(first.split("data: ", 1)[1])
        assert [t["id"] for t in body["items"]] == ["T2"]
        assert feed.subscriber_count == before

    async def test_transaction_stream_pushes_changes(self, store, feed):
        response = await stream_transactions(
            request=_connected_request(),
            reviewer=OPERATIONS_MANAGER,
            date_from=None,
            priority=Priority.HIGH,
            status=None,
            limit=None,
            service=ReviewService(store),
            settings=get_settings(),
        )
        events = response.body_iterator
        try:
            await anext(events)
            await insert_transaction(store, id="T1")
            await insert_transaction(store, id="T2", priority=Priority.LOW)
            update = await asyncio.wait_for(anext(events), timeout=1)
        finally:
            await events.aclose()

        body = json.loads(update.split("data: ", 1)[1])
        assert [t["id"] for t in body["items"]] == ["T1"]

    def test_transaction_error_snapshot(self):
        event = format_transactions_sse(
            QuerySnapshot(state=ViewState.ERROR, error="The store is unavailable", reason="store_unavailable")
        )

        assert event.startswith("event: error\n")
        assert json.loads(event.split("data: ", 1)[1])["reason"] == "store_unavailable"
