"""Transaction request/response schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from refund_review.domain.models.audit import AuditAction
from refund_review.domain.models.transaction import (
    HumanDecision,
    ModelExplanation,
    ModelRecommendation,
    Priority,
    ReviewerFeedback,
    Transaction,
    TransactionFlag,
)


class TransactionIngest(BaseModel):
    """Schema for a flagged refund arriving from the scoring pipeline."""

    model_config = ConfigDict(protected_namespaces=())

    id: str | None = Field(None, max_length=64, description="Transaction ID (generated if absent)")
    created_at: datetime | None = Field(None, description="Flag time (defaults to now)")
    warehouse_id: str = Field(..., min_length=1, max_length=64)
    region_id: str = Field(..., min_length=1, max_length=64)
    refund_amount: Decimal = Field(..., ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    risk_score: float = Field(..., description="Model risk score; clamped to [0, 1]")
    priority: Priority | None = Field(None, description="Derived from risk_score when absent")
    model_recommendation: ModelRecommendation = ModelRecommendation.REVIEW
    model_explanation: ModelExplanation | None = None
    flags: list[TransactionFlag] = Field(default_factory=list)
    transaction_code: str | None = Field(None, max_length=64)
    member_id: str | None = Field(None, max_length=64)
    operator_id: str | None = Field(None, max_length=64)
    customer_id: str | None = Field(None, max_length=64)
    order_id: str | None = Field(None, max_length=64)


class DecisionRequest(BaseModel):
    decision: HumanDecision
    notes: str = Field(default="", max_length=5000)
    risk_score: float | None = Field(None, description="Optional adjusted risk score")


class FeedbackRequest(ReviewerFeedback):
    reviewer_feedback: str = Field(default="", max_length=5000)


class EscalateRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)
    notes: str = Field(default="", max_length=5000)


class OverrideRequest(BaseModel):
    next_decision: HumanDecision
    notes: str = Field(default="", max_length=5000)


class NoteRequest(BaseModel):
    note: str = Field(..., min_length=1, max_length=5000)


class TransactionListResponse(BaseModel):
    items: list[Transaction]
    page_size: int
    has_more: bool
    next_cursor: str | None = None


class TransactionFeedResponse(BaseModel):
    """One live snapshot of the transaction list."""

    items: list[Transaction]


class AuditEntryResponse(BaseModel):
    seq: int | None = None
    transaction_id: str
    created_at: datetime
    actor_id: str
    actor_email: str | None = None
    action: AuditAction
    payload: dict


class AuditTrailResponse(BaseModel):
    transaction_id: str
    items: list[AuditEntryResponse]
    has_more: bool = False
    next_cursor: str | None = None
