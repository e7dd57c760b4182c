"""Notification model."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from refund_review.domain.models.transaction import Priority


class NotificationType(str, Enum):
    HIGH_RISK = "HIGH_RISK"
    PENDING_REVIEW = "PENDING_REVIEW"
    ESCALATION = "ESCALATION"


class Notification(BaseModel):
    """A notification as delivered to one reviewer.

    ``read_at`` is per reviewer: it is filled from that reviewer's read
    marker and is absent for everyone else.
    """

    id: str
    created_at: datetime
    message: str
    type: NotificationType
    priority: Priority
    transaction_id: str | None = None
    warehouse_id: str | None = None
    region_id: str | None = None
    read_at: datetime | None = None

    @property
    def is_unread(self) -> bool:
        return self.read_at is None
