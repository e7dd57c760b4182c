"""Reviewer profiles, keyed by identity-provider subject."""

import logging
from datetime import UTC, datetime

from refund_review.domain.models.reviewer import Reviewer
from refund_review.persistence.base import Collection
from refund_review.persistence.store import Store

logger = logging.getLogger(__name__)


class ReviewerDirectory:
    def __init__(self, store: Store):
        self.store = store

    async def get(self, reviewer_id: str) -> Reviewer | None:
        record = await self.store.get(Collection.REVIEWERS, reviewer_id)
        if record is None:
            return None
        return Reviewer.model_validate(record)

    async def save(self, reviewer: Reviewer) -> Reviewer:
        """Create or replace a reviewer profile. Used by seeding and administration."""
        now = datetime.now(UTC)
        record = reviewer.model_dump(mode="json", exclude={"created_at", "updated_at"})
        record["role"] = reviewer.role.value

        existing = await self.store.get(Collection.REVIEWERS, reviewer.id)
        if existing is None:
            record["created_at"] = reviewer.created_at or now
            await self.store.append(Collection.REVIEWERS, record)
            logger.info("Reviewer created", extra={"reviewer_id": reviewer.id})
        else:
            record.pop("id")
            record["updated_at"] = now
            await self.store.write(Collection.REVIEWERS, reviewer.id, record)
            logger.info("Reviewer updated", extra={"reviewer_id": reviewer.id})

        return await self.get(reviewer.id)
