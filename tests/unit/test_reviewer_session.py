"""Unit tests for the reviewer session."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

from refund_review.core.errors import (
    AccessDeniedError,
    PartialWriteFailureError,
    StoreUnavailableError,
)
from refund_review.domain.models.transaction import HumanDecision, TransactionStatus
from refund_review.services.review_service import ReviewService, TransactionPage
from refund_review.services.reviewer_session import ReviewerSession
from tests.factories import (
    EXECUTIVE,
    OPERATIONS_MANAGER,
    REGIONAL_MANAGER,
    insert_transaction,
    make_transaction,
    transaction_record,
)


def _mock_service(*transactions) -> MagicMock:
    service = MagicMock(spec=ReviewService)
    service.list_transactions = AsyncMock(return_value=TransactionPage(items=list(transactions)))
    service.apply = AsyncMock()
    return service


class TestReviewerSessionWithMockService:
    """Test staging, confirmation and revert around the service call."""

    async def test_success_confirms_authoritative_result(self):
        original = make_transaction()
        authoritative = make_transaction(status=TransactionStatus.REVIEWED, updated_at=original.created_at)
        service = _mock_service(original)
        service.apply.return_value = authoritative
        session = ReviewerSession(service, OPERATIONS_MANAGER)
        await session.load()

        result = await session.set_decision("T1", HumanDecision.FRAUD)

        assert result.ok is True
        assert result.transaction == authoritative
        assert session.view("T1").status is TransactionStatus.REVIEWED
        assert not session.controller.is_staged("T1")

    async def test_change_is_visible_while_write_is_in_flight(self):
        service = _mock_service(make_transaction())
        session = ReviewerSession(service, OPERATIONS_MANAGER)
        await session.load()
        release = asyncio.Event()
        seen = []

        async def slow_apply(principal, transaction_id, operation):
            seen.append(session.view(transaction_id).status)
            await release.wait()
            raise StoreUnavailableError("The store is unavailable")

        service.apply.side_effect = slow_apply
        task = asyncio.create_task(session.escalate("T1", "amount outlier"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        release.set()
        result = await task

        assert seen == [TransactionStatus.ESCALATED]
        assert result.ok is False
        assert result.reason == "store_unavailable"
        assert session.view("T1").status is TransactionStatus.PENDING
        assert session.view("T1").escalation is None

    async def test_failure_reverts_to_prior_snapshot(self):
        original = make_transaction()
        service = _mock_service(original)
        service.apply.side_effect = StoreUnavailableError("The store is unavailable")
        session = ReviewerSession(service, OPERATIONS_MANAGER)
        await session.load()

        result = await session.add_note("T1", "called customer")

        assert result.ok is False
        assert result.message == "The store is unavailable"
        assert session.view("T1") == original
        assert result.transaction == original

    async def test_partial_write_keeps_committed_state(self):
        service = _mock_service(make_transaction())
        committed = transaction_record(make_transaction(status=TransactionStatus.REVIEWED))
        service.apply.side_effect = PartialWriteFailureError(
            "The change was saved but its audit entry was not", committed=committed
        )
        session = ReviewerSession(service, OPERATIONS_MANAGER)
        await session.load()

        result = await session.set_decision("T1", HumanDecision.VALID)

        assert result.ok is False
        assert result.reason == "partial_write_failure"
        assert session.view("T1").status is TransactionStatus.REVIEWED
        assert not session.controller.is_staged("T1")

    async def test_denied_before_anything_is_staged(self):
        service = _mock_service(make_transaction())
        session = ReviewerSession(service, EXECUTIVE)
        await session.load()

        result = await session.add_note("T1", "x")

        assert result.ok is False
        assert result.reason == "access_denied"
        service.apply.assert_not_called()
        assert not session.controller.is_staged("T1")

    async def test_no_principal(self):
        service = _mock_service()
        session = ReviewerSession(service, None)

        result = await session.add_note("T1", "x")

        assert result.reason == "unauthenticated"
        service.apply.assert_not_called()

    async def test_invalid_input_is_a_failed_result(self):
        service = _mock_service(make_transaction())
        session = ReviewerSession(service, OPERATIONS_MANAGER)
        await session.load()

        result = await session.add_note("T1", "   ")

        assert result.ok is False
        assert result.reason == "validation_failed"
        service.apply.assert_not_called()

    async def test_actions_on_one_transaction_run_in_order(self):
        service = _mock_service(make_transaction())
        session = ReviewerSession(service, OPERATIONS_MANAGER)
        await session.load()
        order = []

        async def apply(principal, transaction_id, operation):
            order.append(("start", operation.note))
            await asyncio.sleep(0.01)
            order.append(("end", operation.note))
            return make_transaction()

        service.apply.side_effect = apply

        await asyncio.gather(session.add_note("T1", "a"), session.add_note("T1", "b"))

        assert order == [("start", "a"), ("end", "a"), ("start", "b"), ("end", "b")]

    async def test_decision_on_escalated_refused_before_staging(self):
        service = _mock_service(make_transaction(status=TransactionStatus.ESCALATED))
        session = ReviewerSession(service, REGIONAL_MANAGER)
        await session.load()

        result = await session.set_decision("T1", HumanDecision.FRAUD)

        assert result.ok is False
        assert result.reason == "access_denied"
        service.apply.assert_not_called()
        assert not session.controller.is_staged("T1")
        assert session.view("T1").status is TransactionStatus.ESCALATED

    async def test_locks_released_after_actions(self):
        service = _mock_service(make_transaction())
        session = ReviewerSession(service, OPERATIONS_MANAGER)
        await session.load()

        async def apply(principal, transaction_id, operation):
            await asyncio.sleep(0)
            return make_transaction(id=transaction_id)

        service.apply.side_effect = apply
        await asyncio.gather(
            session.add_note("T1", "a"),
            session.add_note("T1", "b"),
            session.add_note("T2", "c"),
        )
        await session.add_note("T1", "   ")

        assert session._locks == {}
        assert not session._lock_users

    async def test_service_denial_reverts(self):
        service = _mock_service(make_transaction())
        service.apply.side_effect = AccessDeniedError("Access denied")
        session = ReviewerSession(service, OPERATIONS_MANAGER)
        await session.load()

        result = await session.override_decision("T1", HumanDecision.VALID)

        assert result.reason == "access_denied"
        assert session.view("T1").human_decision is None


class TestReviewerSessionWithStore:
    """Test a session over the real service."""

    async def test_load_and_decide(self, store):
        await insert_transaction(store, id="T1")
        session = ReviewerSession(ReviewService(store), OPERATIONS_MANAGER)

        page = await session.load()
        result = await session.set_decision("T1", HumanDecision.FRAUD)

        assert [t.id for t in page.items] == ["T1"]
        assert result.ok
        assert session.view("T1").status is TransactionStatus.REVIEWED

    async def test_load_keeps_pending_stage_visible(self, store):
        await insert_transaction(store, id="T1")
        session = ReviewerSession(ReviewService(store), OPERATIONS_MANAGER)
        await session.load()
        session.controller.stage("T1", {"status": "escalated"})

        page = await session.load()

        assert page.items[0].status is TransactionStatus.ESCALATED
