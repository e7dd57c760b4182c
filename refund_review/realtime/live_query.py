"""Cancelable live queries.

A ``LiveQuery`` yields a fresh ``QuerySnapshot`` immediately and then once
per batch of relevant changes. The query runner is called again for every
snapshot, so anything it resolves (such as a reviewer's scope) is never
cached between deliveries. A failing run yields an error snapshot instead
of an empty one, and the stream keeps going.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from refund_review.core.errors import reason_for
from refund_review.realtime.change_feed import ChangeEvent, ChangeFeed

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ViewState(str, Enum):
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class QuerySnapshot(Generic[T]):
    state: ViewState
    records: list[T] = field(default_factory=list)
    error: str | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.state is ViewState.READY


class LiveQuery(Generic[T]):
    def __init__(
        self,
        runner: Callable[[], Awaitable[list[T]]],
        feed: ChangeFeed,
        collections: Iterable[Any],
        relevant: Callable[[ChangeEvent], bool] | None = None,
    ):
        self._runner = runner
        self._relevant = relevant
        # Subscribe before the first run so no change between run and wait is lost.
        self._subscription = feed.subscribe(collections)
        self._started = False

    @property
    def cancelled(self) -> bool:
        return self._subscription.cancelled

    def cancel(self) -> None:
        """Stop the stream. Synchronous and idempotent."""
        self._subscription.cancel()

    def __aiter__(self) -> LiveQuery[T]:
        return self

    async def __anext__(self) -> QuerySnapshot[T]:
        if self.cancelled:
            raise StopAsyncIteration

        if self._started:
            if not await self._wait_for_change():
                raise StopAsyncIteration
        self._started = True

        return await self.snapshot()

    async def snapshot(self) -> QuerySnapshot[T]:
        try:
            records = await self._runner()
        except Exception as e:
            logger.warning("Live query failed", extra={"error": str(e)})
            return QuerySnapshot(state=ViewState.ERROR, error=str(e), reason=reason_for(e))
        return QuerySnapshot(state=ViewState.READY, records=records)

    async def _wait_for_change(self) -> bool:
        while True:
            event = await self._subscription.get()
            if event is None:
                return False
            # Coalesce whatever else already arrived into one delivery
            batch = [event, *self._subscription.drain()]
            if self._relevant is None or any(self._relevant(e) for e in batch):
                return True
