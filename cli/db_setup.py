"""
Database setup commands.

Usage:
    uv run db-init                       # Create tables
    uv run db-seed --count 80            # Demo reviewers and transactions
    uv run db-seed --count 20 --seed 7   # Reproducible demo data

Both commands read DATABASE_URL_APP like the service does.
"""

from __future__ import annotations

import argparse
import asyncio
import random
import string
import sys
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from refund_review.core.config import get_settings
from refund_review.core.database import create_async_engine, create_schema, create_session_factory
from refund_review.core.logging import get_logger, setup_logging
from refund_review.domain.models.reviewer import Reviewer, Role
from refund_review.domain.models.transaction import (
    ModelExplanation,
    ModelRecommendation,
    TransactionFlag,
)
from refund_review.persistence.sql_store import SqlStore
from refund_review.realtime.change_feed import ChangeFeed
from refund_review.schemas.transaction import TransactionIngest
from refund_review.services.ingestion_service import IngestionService
from refund_review.services.notification_fanout import NotificationFanout
from refund_review.services.reviewer_directory import ReviewerDirectory

logger = get_logger(__name__)

WAREHOUSES = ["WH001", "WH002", "WH003", "WH004", "WH005", "WH006"]
REGIONS = ["R01", "R02"]
OPERATORS = ["OP8566", "OP4919", "OP4101", "OP1126", "OP8843"]

DEMO_REVIEWERS = [
    Reviewer(
        id="local-dev-reviewer",
        email="ops@example.com",
        display_name="Operations Manager",
        role=Role.OPERATIONS_MANAGER,
    ),
    Reviewer(
        id="demo-warehouse-manager",
        email="wh001@example.com",
        display_name="WH001 Manager",
        role=Role.WAREHOUSE_MANAGER,
        assigned_warehouse_id="WH001",
    ),
    Reviewer(
        id="demo-regional-manager",
        email="r01@example.com",
        display_name="R01 Manager",
        role=Role.REGIONAL_MANAGER,
        assigned_region_id="R01",
    ),
    Reviewer(
        id="demo-executive",
        email="exec@example.com",
        display_name="Executive",
        role=Role.EXECUTIVE,
    ),
]


@dataclass
class SetupResult:
    """Result of a setup step."""

    success: bool
    message: str


def _transaction_code(rng: random.Random) -> str:
    alphabet = "".join(c for c in string.ascii_uppercase + string.digits if c not in "IO01")
    return "F" + "".join(rng.choice(alphabet) for _ in range(7))


def demo_transaction(rng: random.Random, index: int, now: datetime) -> TransactionIngest:
    risk = 0.15 + rng.random() * 0.85
    amount = round(20 + rng.random() * 2500)

    flags = []
    if risk >= 0.8:
        flags.append(TransactionFlag.MODEL_HIGH_RISK)
    if rng.random() < 0.25:
        flags.append(TransactionFlag.REPEAT_REFUNDER)
    if amount >= 1800:
        flags.append(TransactionFlag.AMOUNT_OUTLIER)

    if risk >= 0.8:
        recommendation = ModelRecommendation.FRAUD
    elif risk >= 0.55:
        recommendation = ModelRecommendation.REVIEW
    else:
        recommendation = ModelRecommendation.VALID

    return TransactionIngest(
        created_at=now - timedelta(seconds=rng.randint(0, 45 * 24 * 3600)),
        warehouse_id=rng.choice(WAREHOUSES),
        region_id=rng.choice(REGIONS),
        refund_amount=Decimal(amount),
        risk_score=risk,
        model_recommendation=recommendation,
        model_explanation=ModelExplanation(
            summary="High-risk refund pattern detected by the model.",
            reasons=[
                "Unusual refund frequency for customer",
                "Order/refund mismatch signal",
                "High refund amount relative to historical baseline",
            ],
        ),
        flags=flags,
        transaction_code=_transaction_code(rng),
        member_id=str(rng.randint(100000, 999999)),
        operator_id=rng.choice(OPERATORS),
        customer_id=f"CUST-{1000 + index}",
        order_id=f"ORD-{9000 + index}",
    )


async def init_database() -> SetupResult:
    settings = get_settings()
    engine = create_async_engine(settings.database)
    try:
        await create_schema(engine)
    finally:
        await engine.dispose()
    logger.info("Schema ready", dialect=engine.dialect.name)
    return SetupResult(success=True, message="Schema created")


async def seed_database(count: int, seed: int | None = None) -> SetupResult:
    """Create demo reviewers and transactions.

    Transactions go through the ingestion service with the fanout running,
    so high-risk ones produce notifications exactly as in the service.
    """
    settings = get_settings()
    engine = create_async_engine(settings.database)
    await create_schema(engine)

    feed = ChangeFeed()
    store = SqlStore(create_session_factory(engine), feed)
    directory = ReviewerDirectory(store)
    fanout = NotificationFanout(store, feed, directory, settings.notifications)
    ingestion = IngestionService(store)

    rng = random.Random(seed)
    now = datetime.now(UTC)

    try:
        for reviewer in DEMO_REVIEWERS:
            await directory.save(reviewer)

        await fanout.start()
        for index in range(count):
            await ingestion.ingest(demo_transaction(rng, index, now))
    finally:
        # Drains what is already queued, then ends the fanout
        await fanout.stop()
        await engine.dispose()

    logger.info("Demo data seeded", reviewers=len(DEMO_REVIEWERS), transactions=count)
    return SetupResult(success=True, message=f"Seeded {count} transactions")


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Refund Review database setup")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init", help="Create tables")
    seed = sub.add_parser("seed", help="Insert demo reviewers and transactions")
    seed.add_argument("--count", type=int, default=80)
    seed.add_argument("--seed", type=int, default=None, help="Random seed for reproducible data")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    setup_logging(get_settings())

    if args.command == "init":
        result = asyncio.run(init_database())
    else:
        if args.count < 0:
            raise SystemExit("--count must be zero or more")
        result = asyncio.run(seed_database(args.count, args.seed))

    print(result.message)
    return 0 if result.success else 1


def db_init() -> int:
    return main(["init"])


def db_seed() -> int:
    return main(["seed", *sys.argv[1:]])
