"""One reviewer's working session.

Ties the optimistic controller to the review service: an action is staged
locally, written authoritatively, then confirmed or reverted. Every action
returns an ``OperationResult`` whose ``reason`` is the display code of the
failure, if any.

Actions on the same transaction run one at a time in the order issued;
actions on different transactions may overlap.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime

from refund_review.core.errors import PartialWriteFailureError, RefundReviewError
from refund_review.domain.models.reviewer import Reviewer
from refund_review.domain.models.transaction import (
    HumanDecision,
    Priority,
    ReviewerFeedback,
    Transaction,
    TransactionStatus,
)
from refund_review.domain.state_machine import (
    AddNote,
    Escalate,
    OverrideDecision,
    ReviewOperation,
    SetDecision,
    SubmitFeedback,
    apply_operation,
)
from refund_review.services.optimistic import OptimisticUpdateController
from refund_review.services.review_service import (
    ReviewService,
    TransactionPage,
    authorize,
    authorize_against_current,
    require_principal,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OperationResult:
    ok: bool
    transaction: Transaction | None = None
    reason: str | None = None
    message: str | None = None


class ReviewerSession:
    def __init__(
        self,
        service: ReviewService,
        principal: Reviewer | None,
        controller: OptimisticUpdateController | None = None,
    ):
        self.service = service
        self.principal = principal
        self.controller = controller or OptimisticUpdateController()
        self._locks: dict[str, asyncio.Lock] = {}
        # Callers holding or waiting for each lock; a lock is dropped at zero
        self._lock_users: Counter[str] = Counter()

    async def load(
        self,
        *,
        date_from: datetime | None = None,
        priority: Priority | None = None,
        status: TransactionStatus | None = None,
        limit: int = 25,
        cursor: str | None = None,
    ) -> TransactionPage:
        """Fetch a page and sync it into the controller. Pending stages stay visible."""
        page = await self.service.list_transactions(
            self.principal,
            date_from=date_from,
            priority=priority,
            status=status,
            limit=limit,
            cursor=cursor,
        )
        records = [t.model_dump() for t in page.items]
        self.controller.sync(records)
        return TransactionPage(
            items=[Transaction.model_validate(r) for r in self.controller.overlay(records)],
            next_cursor=page.next_cursor,
        )

    def view(self, transaction_id: str) -> Transaction | None:
        record = self.controller.view(transaction_id)
        return Transaction.model_validate(record) if record is not None else None

    async def set_decision(
        self,
        transaction_id: str,
        decision: HumanDecision,
        notes: str = "",
        risk_score: float | None = None,
    ) -> OperationResult:
        op = SetDecision(decision=HumanDecision(decision), notes=notes, risk_score=risk_score)
        return await self.run(transaction_id, op)

    async def submit_feedback(self, transaction_id: str, feedback: ReviewerFeedback) -> OperationResult:
        return await self.run(transaction_id, SubmitFeedback(feedback=feedback))

    async def escalate(self, transaction_id: str, reason: str, notes: str = "") -> OperationResult:
        return await self.run(transaction_id, Escalate(reason=reason, notes=notes))

    async def override_decision(
        self, transaction_id: str, next_decision: HumanDecision, notes: str = ""
    ) -> OperationResult:
        op = OverrideDecision(next_decision=HumanDecision(next_decision), notes=notes)
        return await self.run(transaction_id, op)

    async def add_note(self, transaction_id: str, note: str) -> OperationResult:
        return await self.run(transaction_id, AddNote(note=note))

    async def run(self, transaction_id: str, operation: ReviewOperation) -> OperationResult:
        lock = self._locks.setdefault(transaction_id, asyncio.Lock())
        self._lock_users[transaction_id] += 1
        try:
            async with lock:
                return await self._run(transaction_id, operation)
        finally:
            self._lock_users[transaction_id] -= 1
            if not self._lock_users[transaction_id]:
                del self._lock_users[transaction_id]
                del self._locks[transaction_id]

    async def _run(self, transaction_id: str, operation: ReviewOperation) -> OperationResult:
        revert = None
        try:
            reviewer = require_principal(self.principal)
            authorize(reviewer, operation)

            current = self.view(transaction_id)
            if current is not None:
                authorize_against_current(reviewer, operation, current)
                transition = apply_operation(current, operation, reviewer, datetime.now(UTC))
                revert = self.controller.stage(transaction_id, transition.patch)

            updated = await self.service.apply(reviewer, transaction_id, operation)
        except PartialWriteFailureError as e:
            if revert is not None:
                revert()
            if e.committed is not None:
                self.controller.sync([e.committed])
            return self._failure(transaction_id, e)
        except RefundReviewError as e:
            if revert is not None:
                revert()
            return self._failure(transaction_id, e)

        self.controller.confirm(transaction_id, updated.model_dump())
        return OperationResult(ok=True, transaction=updated)

    def _failure(self, transaction_id: str, error: RefundReviewError) -> OperationResult:
        logger.info(
            "Reviewer action rejected",
            extra={"transaction_id": transaction_id, "reason": error.reason},
        )
        return OperationResult(
            ok=False,
            transaction=self.view(transaction_id),
            reason=error.reason,
            message=error.message,
        )
