"""SQLAlchemy 2.0 async implementation of the store contract.

Each public call runs in its own transaction; ``batch()`` shares one
transaction across several writes so a state change and its audit entry
commit together. Change events are published only after commit.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel
from sqlalchemy import Table, and_, false, insert, or_, select, true, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from refund_review.core.errors import (
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
    WriteConflictError,
)
from refund_review.domain.predicates import Op, Predicate
from refund_review.persistence.base import BaseCursor, Collection, OrderBy, Page
from refund_review.persistence.store import PredicateProvider, Store, StoreWriter
from refund_review.persistence.tables import (
    AuditEntryRow,
    NotificationReadRow,
    NotificationRow,
    ReviewerRow,
    TransactionRow,
)
from refund_review.realtime.change_feed import ChangeEvent, ChangeFeed, ChangeKind
from refund_review.realtime.live_query import LiveQuery

logger = logging.getLogger(__name__)

_TABLES: dict[Collection, Table] = {
    Collection.REVIEWERS: ReviewerRow.__table__,
    Collection.TRANSACTIONS: TransactionRow.__table__,
    Collection.AUDIT_ENTRIES: AuditEntryRow.__table__,
    Collection.NOTIFICATIONS: NotificationRow.__table__,
    Collection.NOTIFICATION_READS: NotificationReadRow.__table__,
}

_INTEGER_KEYS = {Collection.AUDIT_ENTRIES: "seq"}


def _table(collection: Collection) -> Table:
    return _TABLES[Collection(collection)]


def _key_name(collection: Collection) -> str:
    return _INTEGER_KEYS.get(Collection(collection), "id")


def _key_value(collection: Collection, id: str) -> Any:
    if Collection(collection) in _INTEGER_KEYS:
        try:
            return int(id)
        except ValueError:
            raise NotFoundError(
                "Record not found", details={"collection": collection.value, "id": id}
            ) from None
    return id


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_db_value(v) for v in value]
    return value


def _db_values(table: Table, fields: dict[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - set(table.c.keys())
    if unknown:
        raise ValidationError(
            "Unknown fields for collection",
            details={"collection": table.name, "fields": sorted(unknown)},
        )
    return {name: _db_value(value) for name, value in fields.items()}


def where_clause(table: Table, predicate: Predicate):
    """Translate a ``Predicate`` into a SQL boolean expression."""
    if predicate.match_nothing:
        return false()

    clauses = []
    for condition in predicate.conditions:
        if condition.field not in table.c:
            raise ValueError(f"Unknown field '{condition.field}' for {table.name}")
        column = table.c[condition.field]
        if condition.op is Op.EQ:
            clauses.append(column == _db_value(condition.value))
        elif condition.op is Op.IN:
            clauses.append(column.in_([_db_value(v) for v in condition.value]))
        elif condition.op is Op.GTE:
            clauses.append(column >= _db_value(condition.value))
        elif condition.op is Op.LTE:
            clauses.append(column <= _db_value(condition.value))
    return and_(true(), *clauses)


class _SqlWriter(StoreWriter):
    """Writes bound to one open session; events are held until commit."""

    def __init__(self, session: AsyncSession, events: list[ChangeEvent]):
        self._session = session
        self._events = events

    async def _fetch(self, table: Table, key_name: str, key: Any) -> dict[str, Any] | None:
        result = await self._session.execute(select(table).where(table.c[key_name] == key))
        row = result.mappings().first()
        return dict(row) if row is not None else None

    async def write(self, collection: Collection, id: str, patch: dict[str, Any]) -> dict[str, Any]:
        table = _table(collection)
        key_name = _key_name(collection)
        key = _key_value(collection, id)
        values = _db_values(table, patch)

        previous = await self._fetch(table, key_name, key)
        if previous is None:
            raise NotFoundError("Record not found", details={"collection": table.name, "id": id})

        if values:
            await self._session.execute(
                update(table).where(table.c[key_name] == key).values(**values)
            )
        current = await self._fetch(table, key_name, key)

        self._events.append(
            ChangeEvent(
                collection=table.name,
                id=str(id),
                kind=ChangeKind.MODIFIED,
                record=current,
                previous=previous,
            )
        )
        return current

    async def append(self, collection: Collection, record: dict[str, Any]) -> str:
        table = _table(collection)
        key_name = _key_name(collection)
        values = _db_values(table, record)
        if key_name == "id" and not values.get("id"):
            values["id"] = uuid4().hex

        result = await self._session.execute(insert(table).values(**values))
        key = result.inserted_primary_key[0]
        current = await self._fetch(table, key_name, key)

        self._events.append(
            ChangeEvent(collection=table.name, id=str(key), kind=ChangeKind.ADDED, record=current)
        )
        return str(key)


class SqlStore(Store):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed | None = None,
    ):
        self._session_factory = session_factory
        self.feed = feed or ChangeFeed()

    @property
    def supports_atomic_batch(self) -> bool:
        return True

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[_SqlWriter]:
        events: list[ChangeEvent] = []
        try:
            async with self._session_factory() as session, session.begin():
                yield _SqlWriter(session, events)
        except IntegrityError as e:
            logger.warning("Store rejected write", extra={"error": str(e.orig)})
            raise WriteConflictError(
                "The store rejected the write", details={"error": str(e.orig)}
            ) from e
        except (SQLAlchemyError, OSError) as e:
            logger.error("Store operation failed", extra={"error": str(e)})
            raise StoreUnavailableError(
                "The store is unavailable", details={"error": str(e)}
            ) from e

        for event in events:
            self.feed.publish(event)

    def batch(self):
        return self._transaction()

    async def write(self, collection: Collection, id: str, patch: dict[str, Any]) -> dict[str, Any]:
        async with self._transaction() as writer:
            return await writer.write(collection, id, patch)

    async def append(self, collection: Collection, record: dict[str, Any]) -> str:
        async with self._transaction() as writer:
            return await writer.append(collection, record)

    async def get(self, collection: Collection, id: str) -> dict[str, Any] | None:
        table = _table(collection)
        key_name = _key_name(collection)
        async with self._transaction() as writer:
            return await writer._fetch(table, key_name, _key_value(collection, id))

    async def query(
        self,
        collection: Collection,
        predicate: Predicate,
        order_by: OrderBy = OrderBy(),
        limit: int = 25,
        cursor: str | None = None,
    ) -> Page:
        table = _table(collection)
        key_column = table.c[_key_name(collection)]
        order_column = table.c[order_by.field]

        conditions = [where_clause(table, predicate)]
        if cursor:
            cursor_obj = BaseCursor.decode(cursor)
            if cursor_obj is None:
                raise ValidationError("Invalid cursor", details={"cursor": cursor})
            cursor_key = _key_value(collection, cursor_obj.id)
            if order_by.descending:
                conditions.append(
                    or_(
                        order_column < cursor_obj.timestamp,
                        and_(order_column == cursor_obj.timestamp, key_column < cursor_key),
                    )
                )
            else:
                conditions.append(
                    or_(
                        order_column > cursor_obj.timestamp,
                        and_(order_column == cursor_obj.timestamp, key_column > cursor_key),
                    )
                )

        ordering = (
            (order_column.desc(), key_column.desc())
            if order_by.descending
            else (order_column.asc(), key_column.asc())
        )
        stmt = select(table).where(and_(*conditions)).order_by(*ordering).limit(limit + 1)

        async with self._transaction() as writer:
            result = await writer._session.execute(stmt)
            records = [dict(row) for row in result.mappings().all()]

        next_cursor: str | None = None
        if len(records) > limit:
            records = records[:limit]
            last = records[-1]
            timestamp = last[order_by.field]
            if isinstance(timestamp, datetime):
                next_cursor = BaseCursor(
                    timestamp=timestamp, id=str(last[key_column.name])
                ).encode()

        return Page(records=records, next_cursor=next_cursor)

    def subscribe(
        self,
        collection: Collection,
        predicate: PredicateProvider,
        order_by: OrderBy = OrderBy(),
        limit: int = 25,
    ) -> LiveQuery[dict[str, Any]]:
        async def run() -> list[dict[str, Any]]:
            page = await self.query(collection, await predicate(), order_by, limit)
            return page.records

        return LiveQuery(run, self.feed, [collection])
