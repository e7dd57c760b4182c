"""Domain models."""

from refund_review.domain.models.audit import AuditAction, AuditEntry
from refund_review.domain.models.notification import Notification, NotificationType
from refund_review.domain.models.reviewer import Reviewer, Role
from refund_review.domain.models.transaction import (
    HIGH_RISK_PRIORITIES,
    EscalationRecord,
    HumanDecision,
    HumanDecisionRecord,
    ModelExplanation,
    ModelRecommendation,
    NoteRecord,
    Priority,
    ReviewerFeedback,
    SuspicionVerdict,
    Transaction,
    TransactionFlag,
    TransactionStatus,
)

__all__ = [
    "HIGH_RISK_PRIORITIES",
    "AuditAction",
    "AuditEntry",
    "EscalationRecord",
    "HumanDecision",
    "HumanDecisionRecord",
    "ModelExplanation",
    "ModelRecommendation",
    "NoteRecord",
    "Notification",
    "NotificationType",
    "Priority",
    "Reviewer",
    "ReviewerFeedback",
    "Role",
    "SuspicionVerdict",
    "Transaction",
    "TransactionFlag",
    "TransactionStatus",
]
