"""Unit tests for the ingestion service."""

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from refund_review.domain.models.transaction import Priority, TransactionStatus
from refund_review.persistence.base import Collection
from refund_review.schemas.transaction import TransactionIngest
from refund_review.services.ingestion_service import IngestionService
from tests.factories import T0


def _event(**overrides) -> TransactionIngest:
    values = {
        "warehouse_id": "WH001",
        "region_id": "R-01",
        "refund_amount": Decimal("310.00"),
        "risk_score": 0.93,
    }
    values.update(overrides)
    return TransactionIngest(**values)


class TestIngestionService:
    """Test creating transactions from scoring output."""

    async def test_derives_priority_and_starts_pending(self):
        store = MagicMock()
        store.append = AsyncMock(return_value="x")

        transaction = await IngestionService(store).ingest(_event())

        assert transaction.priority is Priority.CRITICAL
        assert transaction.status is TransactionStatus.PENDING
        assert transaction.id
        collection, record = store.append.call_args.args
        assert collection is Collection.TRANSACTIONS
        assert record["priority"] == "critical"
        assert record["status"] == "pending"

    async def test_clamps_risk_score(self):
        store = MagicMock()
        store.append = AsyncMock(return_value="x")

        transaction = await IngestionService(store).ingest(_event(risk_score=4.2))

        assert transaction.risk_score == 1.0

    async def test_explicit_priority_and_id_are_kept(self):
        store = MagicMock()
        store.append = AsyncMock(return_value="x")

        transaction = await IngestionService(store).ingest(
            _event(id="T42", priority=Priority.LOW, created_at=T0)
        )

        assert transaction.id == "T42"
        assert transaction.priority is Priority.LOW
        assert transaction.created_at == T0

    async def test_persists_to_store(self, store):
        before = datetime.now(UTC)

        transaction = await IngestionService(store).ingest(_event(transaction_code="FXYZ0001"))

        record = await store.get(Collection.TRANSACTIONS, transaction.id)
        assert record["transaction_code"] == "FXYZ0001"
        assert record["created_at"] >= before.replace(microsecond=0)
