"""Review service: the authoritative path for every reviewer action.

Each mutating call runs the same sequence:

1. the principal must be present and hold the capability (no store access
   before this passes),
2. the transaction is read through the reviewer's scope,
3. the state machine computes the transition,
4. the transaction patch and its audit entry are written together.

When the store cannot batch atomically, or atomic writes are disabled, the
two writes run in sequence and an audit failure after a committed primary
write is raised as ``PartialWriteFailureError``.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from refund_review.core.errors import (
    AccessDeniedError,
    PartialWriteFailureError,
    RefundReviewError,
    UnauthorizedError,
)
from refund_review.domain.models.audit import AuditEntry
from refund_review.domain.models.reviewer import Reviewer
from refund_review.domain.models.transaction import (
    HumanDecision,
    Priority,
    ReviewerFeedback,
    Transaction,
    TransactionStatus,
)
from refund_review.domain.predicates import Op, Predicate
from refund_review.domain.roles import capabilities_for
from refund_review.domain.state_machine import (
    AddNote,
    Escalate,
    OverrideDecision,
    ReviewOperation,
    SetDecision,
    SubmitFeedback,
    Transition,
    apply_operation,
)
from refund_review.persistence.base import Collection, OrderBy
from refund_review.persistence.scoped import ScopedView
from refund_review.persistence.store import Store
from refund_review.realtime.live_query import LiveQuery
from refund_review.services.audit_log import AuditLogWriter, AuditPage

logger = logging.getLogger(__name__)


_NEWEST_FIRST = OrderBy(field="created_at", descending=True)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _list_filters(
    date_from: datetime | None,
    priority: Priority | None,
    status: TransactionStatus | None,
) -> Predicate:
    filters = Predicate.everything()
    if date_from is not None:
        filters = filters & Predicate.where("created_at", Op.GTE, date_from)
    if priority is not None:
        filters = filters & Predicate.where("priority", Op.EQ, priority)
    if status is not None:
        filters = filters & Predicate.where("status", Op.EQ, status)
    return filters


@dataclass
class TransactionPage:
    items: list[Transaction]
    next_cursor: str | None = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


def require_principal(principal: Reviewer | None) -> Reviewer:
    """Fail closed when no reviewer was resolved for the caller."""
    if principal is None:
        raise UnauthorizedError("No authenticated reviewer")
    return principal


def authorize(principal: Reviewer, operation: ReviewOperation) -> None:
    """Check the capability an operation needs before anything is read or written."""
    caps = capabilities_for(principal.role)

    required = ["can_edit_transactions"]
    if isinstance(operation, OverrideDecision):
        required.append("can_override")
    elif isinstance(operation, Escalate) or (
        isinstance(operation, SetDecision) and operation.decision is HumanDecision.ESCALATED
    ):
        required.append("can_escalate")

    missing = [name for name in required if not getattr(caps, name)]
    if missing:
        raise AccessDeniedError(
            "Your role cannot perform this action",
            details={
                "role": principal.role.value,
                "capability": missing[0],
                "operation": type(operation).__name__,
            },
        )


def authorize_against_current(
    principal: Reviewer, operation: ReviewOperation, current: Transaction
) -> None:
    """Checks that depend on the transaction as it stands."""
    # Moving an escalated transaction back to reviewed is an override.
    if (
        isinstance(operation, SetDecision)
        and operation.decision is not HumanDecision.ESCALATED
        and current.status is TransactionStatus.ESCALATED
        and not capabilities_for(principal.role).can_override
    ):
        raise AccessDeniedError(
            "Only a reviewer who can override may decide an escalated transaction",
            details={"role": principal.role.value, "capability": "can_override"},
        )


class ReviewService:
    """Service for reviewer actions on transactions."""

    def __init__(
        self,
        store: Store,
        audit_log: AuditLogWriter | None = None,
        *,
        atomic: bool = True,
        clock=_utcnow,
    ):
        self.store = store
        self.audit_log = audit_log or AuditLogWriter(store, clock=clock)
        self.atomic = atomic
        self._clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_transaction(self, principal: Reviewer | None, transaction_id: str) -> Transaction:
        reviewer = require_principal(principal)
        record = await ScopedView(self.store, reviewer).get(Collection.TRANSACTIONS, transaction_id)
        return Transaction.model_validate(record)

    async def list_transactions(
        self,
        principal: Reviewer | None,
        *,
        date_from: datetime | None = None,
        priority: Priority | None = None,
        status: TransactionStatus | None = None,
        limit: int = 25,
        cursor: str | None = None,
    ) -> TransactionPage:
        """Transactions inside the reviewer's scope, newest first."""
        reviewer = require_principal(principal)
        page = await ScopedView(self.store, reviewer).query(
            Collection.TRANSACTIONS,
            _list_filters(date_from, priority, status),
            order_by=_NEWEST_FIRST,
            limit=limit,
            cursor=cursor,
        )
        return TransactionPage(
            items=[Transaction.model_validate(r) for r in page.records],
            next_cursor=page.next_cursor,
        )

    def watch_transactions(
        self,
        principal: Reviewer | None,
        *,
        date_from: datetime | None = None,
        priority: Priority | None = None,
        status: TransactionStatus | None = None,
        limit: int = 25,
    ) -> LiveQuery[dict]:
        """Live first page of ``list_transactions``.

        Changing filters means cancelling this query and watching again.
        """
        reviewer = require_principal(principal)
        return ScopedView(self.store, reviewer).subscribe(
            Collection.TRANSACTIONS,
            _list_filters(date_from, priority, status),
            order_by=_NEWEST_FIRST,
            limit=limit,
        )

    async def get_audit_trail(
        self, principal: Reviewer | None, transaction_id: str
    ) -> list[AuditEntry]:
        # Visibility of the trail follows visibility of the transaction
        await self.get_transaction(principal, transaction_id)
        return await self.audit_log.list_for_transaction(transaction_id)

    async def get_audit_page(
        self,
        principal: Reviewer | None,
        transaction_id: str,
        limit: int = 100,
        cursor: str | None = None,
    ) -> AuditPage:
        await self.get_transaction(principal, transaction_id)
        return await self.audit_log.page_for_transaction(transaction_id, limit, cursor)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def set_decision(
        self,
        principal: Reviewer | None,
        transaction_id: str,
        decision: HumanDecision,
        notes: str = "",
        risk_score: float | None = None,
    ) -> Transaction:
        op = SetDecision(decision=HumanDecision(decision), notes=notes, risk_score=risk_score)
        return await self.apply(principal, transaction_id, op)

    async def submit_feedback(
        self, principal: Reviewer | None, transaction_id: str, feedback: ReviewerFeedback
    ) -> Transaction:
        return await self.apply(principal, transaction_id, SubmitFeedback(feedback=feedback))

    async def escalate(
        self, principal: Reviewer | None, transaction_id: str, reason: str, notes: str = ""
    ) -> Transaction:
        return await self.apply(principal, transaction_id, Escalate(reason=reason, notes=notes))

    async def override_decision(
        self,
        principal: Reviewer | None,
        transaction_id: str,
        next_decision: HumanDecision,
        notes: str = "",
    ) -> Transaction:
        op = OverrideDecision(next_decision=HumanDecision(next_decision), notes=notes)
        return await self.apply(principal, transaction_id, op)

    async def add_note(self, principal: Reviewer | None, transaction_id: str, note: str) -> Transaction:
        return await self.apply(principal, transaction_id, AddNote(note=note))

    async def apply(
        self, principal: Reviewer | None, transaction_id: str, operation: ReviewOperation
    ) -> Transaction:
        """Authorize, compute and persist one review operation."""
        reviewer = require_principal(principal)
        authorize(reviewer, operation)

        current = await self.get_transaction(reviewer, transaction_id)
        authorize_against_current(reviewer, operation, current)

        transition = apply_operation(current, operation, reviewer, self._clock())

        try:
            record = await self._persist(reviewer, transaction_id, transition)
        except RefundReviewError as e:
            logger.warning(
                "Review operation failed",
                extra={
                    "transaction_id": transaction_id,
                    "actor_id": reviewer.id,
                    "action": transition.action.value,
                    "reason": e.reason,
                },
            )
            raise

        logger.info(
            "Review operation applied",
            extra={
                "transaction_id": transaction_id,
                "actor_id": reviewer.id,
                "action": transition.action.value,
                "status": transition.status.value,
            },
        )
        return Transaction.model_validate(record)

    async def _persist(self, reviewer: Reviewer, transaction_id: str, transition: Transition) -> dict:
        # All reads happen before the batch opens
        entry = await self.audit_log.prepare(
            transaction_id,
            reviewer,
            transition.action,
            transition.audit_payload,
            now=transition.snapshot.updated_at,
        )

        if self.atomic and self.store.supports_atomic_batch:
            async with self.store.batch() as writer:
                record = await writer.write(Collection.TRANSACTIONS, transaction_id, transition.patch)
                await self.audit_log.write(entry, writer=writer)
            return record

        record = await self.store.write(Collection.TRANSACTIONS, transaction_id, transition.patch)
        try:
            await self.audit_log.write(entry)
        except RefundReviewError as e:
            logger.error(
                "Audit append failed after primary write",
                extra={"transaction_id": transaction_id, "action": transition.action.value},
            )
            raise PartialWriteFailureError(
                "The change was saved but its audit entry was not",
                details={
                    "transaction_id": transaction_id,
                    "action": transition.action.value,
                    "cause": e.reason,
                },
                committed=record,
            ) from e
        return record
