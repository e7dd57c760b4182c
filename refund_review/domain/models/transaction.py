"""Transaction models and enums.

Field names are the contract with the store and with anyone querying it
directly; do not rename them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class TransactionStatus(str, Enum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    ESCALATED = "escalated"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ModelRecommendation(str, Enum):
    FRAUD = "fraud"
    VALID = "valid"
    REVIEW = "review"


class HumanDecision(str, Enum):
    FRAUD = "fraud"
    VALID = "valid"
    ESCALATED = "escalated"


class SuspicionVerdict(str, Enum):
    YES = "yes"
    NO = "no"
    UNSURE = "unsure"


class TransactionFlag(str, Enum):
    MODEL_HIGH_RISK = "model-high-risk"
    REPEAT_REFUNDER = "repeat-refunder"
    AMOUNT_OUTLIER = "amount-outlier"


HIGH_RISK_PRIORITIES = frozenset({Priority.HIGH, Priority.CRITICAL})


class ModelExplanation(BaseModel):
    summary: str | None = None
    reasons: list[str] = Field(default_factory=list)


class ReviewerFeedback(BaseModel):
    transaction_reviewed: bool = False
    letter_sent: bool = False
    suspicious: SuspicionVerdict = SuspicionVerdict.NO
    reviewer_feedback: str = ""


class HumanDecisionRecord(BaseModel):
    decision: HumanDecision
    decided_at: datetime
    decided_by_id: str
    decided_by_email: str | None = None
    notes: str = ""


class EscalationRecord(BaseModel):
    escalated_at: datetime
    escalated_by_id: str
    escalated_by_email: str | None = None
    reason: str
    letter: str


class NoteRecord(BaseModel):
    at: datetime
    by_id: str
    by_email: str | None = None
    note: str


class Transaction(BaseModel):
    """Authoritative snapshot of one flagged refund."""

    model_config = ConfigDict(protected_namespaces=())

    id: str
    created_at: datetime
    updated_at: datetime | None = None

    warehouse_id: str
    region_id: str

    refund_amount: Decimal
    currency: str = "USD"

    risk_score: float = Field(ge=0.0, le=1.0)
    priority: Priority
    model_recommendation: ModelRecommendation
    model_explanation: ModelExplanation | None = None
    flags: list[TransactionFlag] = Field(default_factory=list)

    # Display identifiers
    transaction_code: str | None = None
    member_id: str | None = None
    operator_id: str | None = None
    customer_id: str | None = None
    order_id: str | None = None

    status: TransactionStatus = TransactionStatus.PENDING
    feedback: ReviewerFeedback | None = None
    human_decision: HumanDecisionRecord | None = None
    escalation: EscalationRecord | None = None
    last_note: NoteRecord | None = None

    @property
    def display_code(self) -> str:
        return self.transaction_code or self.id
