"""Audit log writer.

One entry per state-changing review operation. Entries are append-only
and read back oldest first: ``created_at`` ascending, insertion order
(``seq``) on ties.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from refund_review.domain.models.audit import AuditAction, AuditEntry
from refund_review.domain.models.reviewer import Reviewer
from refund_review.domain.predicates import Op, Predicate
from refund_review.persistence.base import Collection, OrderBy
from refund_review.persistence.store import Store, StoreWriter

logger = logging.getLogger(__name__)

_OLDEST_FIRST = OrderBy(field="created_at", descending=False)
_NEWEST_FIRST = OrderBy(field="created_at", descending=True)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class AuditPage:
    items: list[AuditEntry]
    next_cursor: str | None = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


class AuditLogWriter:
    """Service for appending and reading audit entries."""

    def __init__(self, store: Store, clock=_utcnow):
        self.store = store
        self._clock = clock

    async def _latest_timestamp(self, transaction_id: str) -> datetime | None:
        page = await self.store.query(
            Collection.AUDIT_ENTRIES,
            Predicate.where("transaction_id", Op.EQ, transaction_id),
            order_by=_NEWEST_FIRST,
            limit=1,
        )
        if not page.records:
            return None
        return page.records[0]["created_at"]

    async def prepare(
        self,
        transaction_id: str,
        principal: Reviewer,
        action: AuditAction,
        payload: dict[str, Any],
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Build the record for a new entry.

        The timestamp never goes backwards relative to the transaction's
        latest entry, so a skewed clock cannot reorder the trail.
        """
        created_at = now or self._clock()
        latest = await self._latest_timestamp(transaction_id)
        if latest is not None and latest > created_at:
            created_at = latest

        return {
            "transaction_id": transaction_id,
            "created_at": created_at,
            "actor_id": principal.id,
            "actor_email": principal.email,
            "action": AuditAction(action).value,
            "payload": payload,
        }

    async def write(self, record: dict[str, Any], writer: StoreWriter | None = None) -> AuditEntry:
        """Persist a prepared record, inside ``writer``'s batch when given."""
        seq = await (writer or self.store).append(Collection.AUDIT_ENTRIES, record)
        logger.info(
            "Audit entry appended",
            extra={
                "transaction_id": record["transaction_id"],
                "action": record["action"],
                "seq": seq,
            },
        )
        return AuditEntry(seq=int(seq), **record)

    async def append(
        self,
        transaction_id: str,
        principal: Reviewer,
        action: AuditAction,
        payload: dict[str, Any],
        now: datetime | None = None,
    ) -> AuditEntry:
        record = await self.prepare(transaction_id, principal, action, payload, now=now)
        return await self.write(record)

    async def page_for_transaction(
        self, transaction_id: str, limit: int = 100, cursor: str | None = None
    ) -> AuditPage:
        page = await self.store.query(
            Collection.AUDIT_ENTRIES,
            Predicate.where("transaction_id", Op.EQ, transaction_id),
            order_by=_OLDEST_FIRST,
            limit=limit,
            cursor=cursor,
        )
        return AuditPage(
            items=[AuditEntry.model_validate(record) for record in page.records],
            next_cursor=page.next_cursor,
        )

    async def list_for_transaction(
        self, transaction_id: str, page_size: int = 500
    ) -> list[AuditEntry]:
        """The whole trail, fetched page by page."""
        entries: list[AuditEntry] = []
        cursor = None
        while True:
            page = await self.page_for_transaction(transaction_id, page_size, cursor)
            entries.extend(page.items)
            if not page.has_more:
                return entries
            cursor = page.next_cursor
