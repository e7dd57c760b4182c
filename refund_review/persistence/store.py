"""Store contract consumed by the review core.

Records are plain dicts keyed by the persisted field names. Writes are
partial field updates with last-write-wins semantics; there is no
compare-and-swap.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

from refund_review.domain.predicates import Predicate
from refund_review.persistence.base import Collection, OrderBy, Page
from refund_review.realtime.live_query import LiveQuery

PredicateProvider = Callable[[], Awaitable[Predicate]]


class StoreWriter(ABC):
    """The mutating half of the contract, shared by the store and its batches."""

    @abstractmethod
    async def write(self, collection: Collection, id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Apply ``patch`` to an existing record and return the updated record.

        Raises ``NotFoundError`` if the record does not exist,
        ``WriteConflictError`` or ``StoreUnavailableError`` if the write fails.
        """

    @abstractmethod
    async def append(self, collection: Collection, record: dict[str, Any]) -> str:
        """Insert a new record and return its key."""


class Store(StoreWriter):
    @property
    @abstractmethod
    def supports_atomic_batch(self) -> bool:
        """Whether ``batch()`` commits all of its writes or none of them."""

    @abstractmethod
    async def query(
        self,
        collection: Collection,
        predicate: Predicate,
        order_by: OrderBy = OrderBy(),
        limit: int = 25,
        cursor: str | None = None,
    ) -> Page: ...

    @abstractmethod
    async def get(self, collection: Collection, id: str) -> dict[str, Any] | None: ...

    @abstractmethod
    def batch(self) -> AbstractAsyncContextManager[StoreWriter]:
        """Group writes; committed together on exit when ``supports_atomic_batch``."""

    @abstractmethod
    def subscribe(
        self,
        collection: Collection,
        predicate: PredicateProvider,
        order_by: OrderBy = OrderBy(),
        limit: int = 25,
    ) -> LiveQuery[dict[str, Any]]:
        """Live variant of ``query``. The predicate is resolved again on every delivery."""
