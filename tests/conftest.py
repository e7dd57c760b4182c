"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
import sys
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

ROOT = Path(__file__).resolve().parents[1]

# Add project root to path for imports
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Set test environment variables before importing the app
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("AUTH0_DOMAIN", "test.local")
os.environ.setdefault("AUTH0_AUDIENCE", "https://refund-review-api")
os.environ.setdefault("AUTH0_ALGORITHMS", "RS256")

from refund_review.core.database import Base, create_session_factory  # noqa: E402
from refund_review.domain.models.reviewer import Reviewer  # noqa: E402
from refund_review.domain.models.transaction import Transaction  # noqa: E402
from refund_review.persistence import tables  # noqa: E402, F401
from refund_review.persistence.sql_store import SqlStore  # noqa: E402
from refund_review.realtime.change_feed import ChangeFeed  # noqa: E402
from tests.factories import (  # noqa: E402
    EXECUTIVE,
    OPERATIONS_MANAGER,
    REGIONAL_MANAGER,
    WAREHOUSE_MANAGER,
    make_transaction,
)


@pytest.fixture
def ops_manager() -> Reviewer:
    return OPERATIONS_MANAGER


@pytest.fixture
def regional_manager() -> Reviewer:
    return REGIONAL_MANAGER


@pytest.fixture
def warehouse_manager() -> Reviewer:
    return WAREHOUSE_MANAGER


@pytest.fixture
def executive() -> Reviewer:
    return EXECUTIVE


@pytest.fixture
def sample_transaction() -> Transaction:
    return make_transaction()


# =============================================================================
# Store
# =============================================================================


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator:
    """SQLite engine on a throwaway file with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'refund_review.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture
def store(engine, feed) -> SqlStore:
    return SqlStore(create_session_factory(engine), feed)
