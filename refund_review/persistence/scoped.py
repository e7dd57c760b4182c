"""Store access bound to one reviewer's scope.

Every query is narrowed by the reviewer's resolved predicate before it
reaches the store, and single-record reads and writes are checked against
the same predicate. Live queries resolve the predicate again on every
delivery. Only collections carrying ``warehouse_id`` and ``region_id`` can
be viewed this way.
"""

from typing import Any

from refund_review.core.errors import NotFoundError
from refund_review.domain import scope
from refund_review.domain.models.reviewer import Reviewer
from refund_review.domain.predicates import Predicate
from refund_review.persistence.base import Collection, OrderBy, Page
from refund_review.persistence.store import Store
from refund_review.realtime.live_query import LiveQuery

SCOPED_COLLECTIONS = frozenset({Collection.TRANSACTIONS, Collection.NOTIFICATIONS})


class ScopedView:
    def __init__(self, store: Store, reviewer: Reviewer):
        self._store = store
        self.reviewer = reviewer

    @property
    def predicate(self) -> Predicate:
        return scope.resolve(self.reviewer)

    def _check_collection(self, collection: Collection) -> None:
        if collection not in SCOPED_COLLECTIONS:
            raise ValueError(f"Collection '{collection.value}' has no scope fields")

    async def query(
        self,
        collection: Collection,
        predicate: Predicate | None = None,
        order_by: OrderBy = OrderBy(),
        limit: int = 25,
        cursor: str | None = None,
    ) -> Page:
        self._check_collection(collection)
        narrowed = self.predicate & (predicate or Predicate.everything())
        return await self._store.query(collection, narrowed, order_by, limit, cursor)

    async def get(self, collection: Collection, id: str) -> dict[str, Any]:
        """Return the record, or raise ``NotFoundError`` / ``ScopeViolationError``."""
        self._check_collection(collection)
        record = await self._store.get(collection, id)
        if record is None:
            raise NotFoundError(
                f"{collection.value.rstrip('s').capitalize()} not found",
                details={"id": id},
            )
        scope.ensure_visible(self.reviewer, record, record_id=id)
        return record

    async def write(self, collection: Collection, id: str, patch: dict[str, Any]) -> dict[str, Any]:
        current = await self.get(collection, id)
        # A patch may not move a record out of the writer's own scope.
        scope.ensure_visible(self.reviewer, {**current, **patch}, record_id=id)
        return await self._store.write(collection, id, patch)

    def subscribe(
        self,
        collection: Collection,
        predicate: Predicate | None = None,
        order_by: OrderBy = OrderBy(),
        limit: int = 25,
    ) -> LiveQuery[dict[str, Any]]:
        """Live variant of ``query``. The caller owns the stream and must cancel it."""
        self._check_collection(collection)
        filters = predicate or Predicate.everything()

        async def narrowed() -> Predicate:
            return self.predicate & filters

        return self._store.subscribe(collection, narrowed, order_by, limit)
