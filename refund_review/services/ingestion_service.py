"""Ingestion service for flagged refunds.

Risk scores are opaque model output: they are clamped to [0, 1] and, when
the pipeline sends no priority, the priority is derived from the score.
New transactions always start ``pending``.
"""

import logging
from datetime import UTC, datetime
from uuid import uuid4

from refund_review.domain.models.transaction import Transaction, TransactionStatus
from refund_review.domain.risk import clamp01, priority_for_risk
from refund_review.domain.state_machine import to_record_value
from refund_review.persistence.base import Collection
from refund_review.persistence.store import Store
from refund_review.schemas.transaction import TransactionIngest

logger = logging.getLogger(__name__)


class IngestionService:
    """Service for creating transactions from scoring output."""

    def __init__(self, store: Store):
        self.store = store

    async def ingest(self, event: TransactionIngest) -> Transaction:
        risk_score = clamp01(event.risk_score)
        now = datetime.now(UTC)

        transaction = Transaction(
            **event.model_dump(exclude={"id", "created_at", "risk_score", "priority"}),
            id=event.id or uuid4().hex,
            created_at=event.created_at or now,
            updated_at=now,
            risk_score=risk_score,
            priority=event.priority or priority_for_risk(risk_score),
            status=TransactionStatus.PENDING,
        )

        record = {
            name: to_record_value(getattr(transaction, name))
            for name in Transaction.model_fields
        }
        await self.store.append(Collection.TRANSACTIONS, record)

        logger.info(
            "Transaction ingested",
            extra={
                "transaction_id": transaction.id,
                "warehouse_id": transaction.warehouse_id,
                "region_id": transaction.region_id,
                "priority": transaction.priority.value,
            },
        )
        return transaction
