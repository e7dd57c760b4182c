"""Database connection and session management."""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.ext.asyncio import (
    create_async_engine as sqlalchemy_create_async_engine,
)
from sqlalchemy.orm import declarative_base

from refund_review.core.config import DatabaseConfig

logger = logging.getLogger(__name__)

Base = declarative_base()


def create_async_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create async database engine."""
    options: dict[str, Any] = {"echo": config.echo}
    if not config.is_sqlite:
        options.update(
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            pool_recycle=config.pool_recycle,
            pool_pre_ping=True,
            connect_args={
                "server_settings": {"timezone": "UTC"},
                "timeout": 30,
            },
        )

    engine = sqlalchemy_create_async_engine(config.async_url, **options)
    logger.info(
        "Database engine created",
        extra={"dialect": engine.dialect.name, "atomic_audit_writes": config.atomic_audit_writes},
    )
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async session factory."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    # Registers the table definitions on Base.metadata
    from refund_review.persistence import tables  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
