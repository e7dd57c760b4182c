"""Notification fanout.

Watches committed transaction changes and creates a notification when a
transaction is created at high or critical priority, or when its priority
rises into that band. Each notification carries the transaction's
warehouse and region so the scope predicate used for transactions also
decides who receives it.

Subscribers get a ``LiveQuery`` that resolves the reviewer's profile, and
therefore their scope, again for every delivery.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from refund_review.core.config import NotificationsConfig
from refund_review.core.errors import UnauthorizedError, WriteConflictError
from refund_review.domain import scope
from refund_review.domain.escalation import format_percent
from refund_review.domain.models.notification import Notification, NotificationType
from refund_review.domain.models.reviewer import Reviewer
from refund_review.domain.models.transaction import HIGH_RISK_PRIORITIES, TransactionStatus
from refund_review.domain.predicates import Op, Predicate
from refund_review.persistence.base import Collection, OrderBy
from refund_review.persistence.scoped import ScopedView
from refund_review.persistence.store import Store
from refund_review.persistence.tables import read_marker_id
from refund_review.realtime.change_feed import (
    ChangeEvent,
    ChangeFeed,
    ChangeKind,
    FeedSubscription,
)
from refund_review.realtime.live_query import LiveQuery
from refund_review.services.review_service import require_principal
from refund_review.services.reviewer_directory import ReviewerDirectory

logger = logging.getLogger(__name__)

_HIGH_RISK_VALUES = frozenset(p.value for p in HIGH_RISK_PRIORITIES)
_NEWEST_FIRST = OrderBy(field="created_at", descending=True)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def is_high_risk(record: dict[str, Any] | None) -> bool:
    return record is not None and str(record.get("priority")) in _HIGH_RISK_VALUES


def reached_high_risk(event: ChangeEvent) -> bool:
    """True when the change moves a transaction into the high-risk band."""
    if not is_high_risk(event.record):
        return False
    if event.kind is ChangeKind.ADDED:
        return True
    return not is_high_risk(event.previous)


def became_escalated(event: ChangeEvent) -> bool:
    escalated = TransactionStatus.ESCALATED.value
    if event.record.get("status") != escalated:
        return False
    return event.previous is None or event.previous.get("status") != escalated


def high_risk_message(record: dict[str, Any]) -> str:
    code = record.get("transaction_code") or record["id"]
    return f"High-risk refund flagged ({format_percent(record['risk_score'])}): {code}"


def escalation_message(record: dict[str, Any]) -> str:
    code = record.get("transaction_code") or record["id"]
    return f"Refund escalated for review: {code}"


class NotificationFanout:
    def __init__(
        self,
        store: Store,
        feed: ChangeFeed,
        directory: ReviewerDirectory,
        config: NotificationsConfig | None = None,
        clock=_utcnow,
    ):
        self.store = store
        self.feed = feed
        self.directory = directory
        self.config = config or NotificationsConfig()
        self._clock = clock
        self._subscription: FeedSubscription | None = None
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Producing notifications
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start watching transaction changes in a background task."""
        if self.running:
            logger.warning("Notification fanout already running")
            return

        self._subscription = self.feed.subscribe([Collection.TRANSACTIONS])

        async def consume() -> None:
            async for event in self._subscription:
                try:
                    await self.handle_change(event)
                except Exception as e:
                    logger.exception(
                        "Error creating notification",
                        extra={"transaction_id": event.id, "error": str(e)},
                    )

        self._task = asyncio.create_task(consume())
        logger.info("Notification fanout started")

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Notification fanout stopped")

    async def handle_change(self, event: ChangeEvent) -> list[Notification]:
        """Create the notifications one committed transaction change calls for."""
        created = []
        if reached_high_risk(event):
            created.append(
                await self._create(event.record, NotificationType.HIGH_RISK, high_risk_message)
            )
        if self.config.notify_on_escalation and became_escalated(event):
            created.append(
                await self._create(event.record, NotificationType.ESCALATION, escalation_message)
            )
        return created

    async def _create(self, transaction: dict[str, Any], kind: NotificationType, render) -> Notification:
        notification = Notification(
            id=uuid4().hex,
            created_at=self._clock(),
            message=render(transaction),
            type=kind,
            priority=transaction["priority"],
            transaction_id=transaction["id"],
            warehouse_id=transaction.get("warehouse_id"),
            region_id=transaction.get("region_id"),
        )
        await self.store.append(Collection.NOTIFICATIONS, notification.model_dump(exclude={"read_at"}))
        logger.info(
            "Notification created",
            extra={
                "notification_id": notification.id,
                "transaction_id": notification.transaction_id,
                "type": kind.value,
            },
        )
        return notification

    # ------------------------------------------------------------------
    # Delivering notifications
    # ------------------------------------------------------------------

    async def list_for(self, principal: Reviewer | None, limit: int | None = None) -> list[Notification]:
        """Notifications inside the reviewer's scope, newest first, with their read state."""
        reviewer = require_principal(principal)
        page = await self.store.query(
            Collection.NOTIFICATIONS,
            scope.resolve(reviewer),
            order_by=_NEWEST_FIRST,
            limit=limit or self.config.feed_limit,
        )
        if not page.records:
            return []

        reads = await self.store.query(
            Collection.NOTIFICATION_READS,
            Predicate.where("reviewer_id", Op.EQ, reviewer.id)
            & Predicate.where("notification_id", Op.IN, [r["id"] for r in page.records]),
            order_by=OrderBy(field="read_at"),
            limit=len(page.records),
        )
        read_at = {r["notification_id"]: r["read_at"] for r in reads.records}

        return [
            Notification.model_validate({**record, "read_at": read_at.get(record["id"])})
            for record in page.records
        ]

    @staticmethod
    def unread_count(notifications: list[Notification]) -> int:
        return sum(1 for n in notifications if n.is_unread)

    def subscribe(self, reviewer_id: str, limit: int | None = None) -> LiveQuery[Notification]:
        """Live feed for one reviewer.

        The profile is loaded again for every delivery, so a role or
        assignment change applies on the next update. A reviewer that no
        longer exists gets an error snapshot, never an unscoped feed.
        """

        async def run() -> list[Notification]:
            reviewer = await self.directory.get(reviewer_id)
            if reviewer is None:
                raise UnauthorizedError("Reviewer profile not found", details={"id": reviewer_id})
            return await self.list_for(reviewer, limit)

        def relevant(event: ChangeEvent) -> bool:
            if event.collection == Collection.NOTIFICATION_READS.value:
                return event.record.get("reviewer_id") == reviewer_id
            if event.collection == Collection.REVIEWERS.value:
                return event.id == reviewer_id
            return True

        return LiveQuery(
            run,
            self.feed,
            [Collection.NOTIFICATIONS, Collection.NOTIFICATION_READS, Collection.REVIEWERS],
            relevant=relevant,
        )

    async def mark_read(self, principal: Reviewer | None, notification_id: str) -> Notification:
        """Mark a notification read for the calling reviewer only.

        Marking twice keeps the first read time.
        """
        reviewer = require_principal(principal)
        record = await ScopedView(self.store, reviewer).get(Collection.NOTIFICATIONS, notification_id)

        marker_id = read_marker_id(notification_id, reviewer.id)
        marker = await self.store.get(Collection.NOTIFICATION_READS, marker_id)
        if marker is None:
            try:
                await self.store.append(
                    Collection.NOTIFICATION_READS,
                    {
                        "id": marker_id,
                        "notification_id": notification_id,
                        "reviewer_id": reviewer.id,
                        "read_at": self._clock(),
                    },
                )
            except WriteConflictError:
                # Another request from the same reviewer got there first
                logger.debug("Read marker already exists", extra={"id": marker_id})
            marker = await self.store.get(Collection.NOTIFICATION_READS, marker_id)

        return Notification.model_validate({**record, "read_at": marker["read_at"]})
