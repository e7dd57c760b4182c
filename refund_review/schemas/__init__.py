"""Schemas package for request/response models."""

from refund_review.schemas.notification import (
    CapabilitiesResponse,
    MeResponse,
    NotificationFeedResponse,
)
from refund_review.schemas.transaction import (
    AuditEntryResponse,
    AuditTrailResponse,
    DecisionRequest,
    EscalateRequest,
    FeedbackRequest,
    NoteRequest,
    OverrideRequest,
    TransactionIngest,
    TransactionListResponse,
)

__all__ = [
    "AuditEntryResponse",
    "AuditTrailResponse",
    "CapabilitiesResponse",
    "DecisionRequest",
    "EscalateRequest",
    "FeedbackRequest",
    "MeResponse",
    "NoteRequest",
    "NotificationFeedResponse",
    "OverrideRequest",
    "TransactionIngest",
    "TransactionListResponse",
]
