"""In-process change feed.

The store publishes one event per committed record change; subscribers
receive them on their own unbounded ``asyncio.Queue``. Subscriptions are
cancelled synchronously and cancelling twice is a no-op.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"


@dataclass(frozen=True)
class ChangeEvent:
    collection: str
    id: str
    kind: ChangeKind
    record: dict[str, Any]
    previous: dict[str, Any] | None = None


_CLOSED = object()


def collection_name(collection: str | Enum) -> str:
    if isinstance(collection, Enum):
        return collection.value
    return collection


class FeedSubscription:
    """One consumer's view of the feed, filtered by collection."""

    def __init__(self, feed: ChangeFeed, collections: frozenset[str]):
        self._feed = feed
        self.collections = collections
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def deliver(self, event: ChangeEvent) -> None:
        if not self._cancelled and event.collection in self.collections:
            self._queue.put_nowait(event)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._feed.discard(self)
        # Wake a consumer blocked in get()
        self._queue.put_nowait(_CLOSED)

    async def get(self) -> ChangeEvent | None:
        """Next event, or ``None`` once cancelled."""
        if self._cancelled and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item

    def drain(self) -> list[ChangeEvent]:
        """Return every event already queued without waiting."""
        events: list[ChangeEvent] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                break
            events.append(item)
        return events

    def __aiter__(self) -> FeedSubscription:
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class ChangeFeed:
    def __init__(self) -> None:
        self._subscriptions: set[FeedSubscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, collections: Iterable[str]) -> FeedSubscription:
        subscription = FeedSubscription(self, frozenset(collection_name(c) for c in collections))
        self._subscriptions.add(subscription)
        return subscription

    def discard(self, subscription: FeedSubscription) -> None:
        self._subscriptions.discard(subscription)

    def publish(self, event: ChangeEvent) -> None:
        logger.debug(
            "Change published",
            extra={"collection": event.collection, "id": event.id, "kind": event.kind.value},
        )
        for subscription in list(self._subscriptions):
            subscription.deliver(event)
