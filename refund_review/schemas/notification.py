"""Notification and principal response schemas."""

from pydantic import BaseModel

from refund_review.domain.models.notification import Notification
from refund_review.domain.models.reviewer import Reviewer


class NotificationFeedResponse(BaseModel):
    items: list[Notification]
    unread_count: int


class CapabilitiesResponse(BaseModel):
    can_view_analytics: bool
    can_edit_transactions: bool
    can_escalate: bool
    can_override: bool
    scope: str


class MeResponse(BaseModel):
    reviewer: Reviewer
    capabilities: CapabilitiesResponse
