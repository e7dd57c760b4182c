"""Unit tests for the database setup commands."""

import random
from datetime import UTC, datetime
from unittest.mock import patch

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

from cli.db_setup import DEMO_REVIEWERS, demo_transaction, main, seed_database
from refund_review.core.config import DatabaseConfig, Settings
from refund_review.domain.risk import priority_for_risk

NOW = datetime(2025, 3, 1, tzinfo=UTC)


class TestDemoTransaction:
    """Test demo data generation."""

    def test_same_seed_same_data(self):
        first = demo_transaction(random.Random(7), 0, NOW)
        second = demo_transaction(random.Random(7), 0, NOW)
        assert first == second

    def test_codes_and_ranges(self):
        rng = random.Random(1)
        for index in range(20):
            event = demo_transaction(rng, index, NOW)
            assert event.transaction_code.startswith("F")
            assert len(event.transaction_code) == 8
            assert 0.0 <= event.risk_score <= 1.0
            assert event.created_at <= NOW
            assert event.customer_id == f"CUST-{1000 + index}"


class TestSeedDatabase:
    """Test seeding a scratch database."""

    async def test_seed_creates_reviewers_transactions_and_notifications(self, tmp_path):
        url = f"sqlite+aiosqlite:///{tmp_path / 'seed.db'}"
        settings = Settings(database=DatabaseConfig(url_app=url))

        with patch("cli.db_setup.get_settings", return_value=settings):
            result = await seed_database(30, seed=3)

        engine = create_async_engine(url)
        async with engine.connect() as conn:
            reviewers = (await conn.execute(text("SELECT count(*) FROM reviewers"))).scalar()
            transactions = (await conn.execute(text("SELECT count(*) FROM transactions"))).scalar()
            notifications = (await conn.execute(text("SELECT count(*) FROM notifications"))).scalar()
        await engine.dispose()

        rng = random.Random(3)
        high_risk = sum(
            priority_for_risk(demo_transaction(rng, i, NOW).risk_score).value in ("high", "critical")
            for i in range(30)
        )
        assert result.success
        assert reviewers == len(DEMO_REVIEWERS)
        assert transactions == 30
        assert notifications == high_risk


class TestMain:
    """Test argument handling."""

    def test_negative_count_rejected(self):
        try:
            main(["seed", "--count", "-1"])
        except SystemExit as e:
            assert "--count" in str(e)
        else:
            raise AssertionError("expected SystemExit")
