"""
Review state machine for refund transactions.

All status changes go through ``apply_operation``: it takes the current
snapshot, the requested operation and the acting reviewer, and returns the
new snapshot, the field patch to persist and the audit entry content.

Status rules:
- pending -> reviewed    (decision fraud/valid, override, or feedback marked reviewed)
- pending -> escalated   (escalate, or decision escalated)
- reviewed -> reviewed   (re-decision, override)
- reviewed -> escalated  (escalate, or decision escalated)
- escalated is a floor for feedback and notes; only an explicit human
  decision or override moves it back to reviewed

Every (status, operation) pair has a defined outcome; nothing is rejected
on status grounds. Inputs that are malformed (empty note, escalated
override) raise ``ValidationError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel

from refund_review.core.errors import ValidationError
from refund_review.domain.escalation import generate_escalation_letter
from refund_review.domain.models.audit import AuditAction
from refund_review.domain.models.reviewer import Reviewer
from refund_review.domain.models.transaction import (
    EscalationRecord,
    HumanDecision,
    HumanDecisionRecord,
    NoteRecord,
    ReviewerFeedback,
    Transaction,
    TransactionStatus,
)
from refund_review.domain.risk import clamp01


@dataclass(frozen=True)
class SetDecision:
    decision: HumanDecision
    notes: str = ""
    risk_score: float | None = None


@dataclass(frozen=True)
class SubmitFeedback:
    feedback: ReviewerFeedback


@dataclass(frozen=True)
class Escalate:
    reason: str
    notes: str = ""


@dataclass(frozen=True)
class OverrideDecision:
    next_decision: HumanDecision
    notes: str = ""


@dataclass(frozen=True)
class AddNote:
    note: str


ReviewOperation = SetDecision | SubmitFeedback | Escalate | OverrideDecision | AddNote


@dataclass(frozen=True)
class Transition:
    snapshot: Transaction
    patch: dict[str, Any]
    action: AuditAction
    audit_payload: dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> TransactionStatus:
        return self.snapshot.status


def derive_status(transaction: Transaction) -> TransactionStatus:
    """Status implied by the latest decision and feedback sub-records."""
    decision = transaction.human_decision
    if decision is not None:
        if decision.decision is HumanDecision.ESCALATED:
            return TransactionStatus.ESCALATED
        return TransactionStatus.REVIEWED
    if transaction.feedback is not None and transaction.feedback.transaction_reviewed:
        return TransactionStatus.REVIEWED
    return TransactionStatus.PENDING


def apply_operation(
    current: Transaction,
    operation: ReviewOperation,
    actor: Reviewer,
    now: datetime,
) -> Transition:
    """Compute the outcome of ``operation`` on ``current``. Pure."""
    if isinstance(operation, SetDecision):
        return _set_decision(current, operation, actor, now)
    if isinstance(operation, SubmitFeedback):
        return _submit_feedback(current, operation, now)
    if isinstance(operation, Escalate):
        return _escalate(current, operation, actor, now)
    if isinstance(operation, OverrideDecision):
        return _override(current, operation, actor, now)
    if isinstance(operation, AddNote):
        return _add_note(current, operation, actor, now)
    raise TypeError(f"Unknown review operation: {type(operation).__name__}")


def _decision_record(
    decision: HumanDecision, actor: Reviewer, now: datetime, notes: str
) -> HumanDecisionRecord:
    return HumanDecisionRecord(
        decision=decision,
        decided_at=now,
        decided_by_id=actor.id,
        decided_by_email=actor.email,
        notes=notes,
    )


def _set_decision(
    current: Transaction, op: SetDecision, actor: Reviewer, now: datetime
) -> Transition:
    if op.decision is HumanDecision.ESCALATED:
        status = TransactionStatus.ESCALATED
        action = AuditAction.ESCALATED
    else:
        status = TransactionStatus.REVIEWED
        action = AuditAction.DECISION_SET

    changes: dict[str, Any] = {
        "status": status,
        "updated_at": now,
        "human_decision": _decision_record(op.decision, actor, now, op.notes),
    }
    if op.risk_score is not None:
        changes["risk_score"] = clamp01(op.risk_score)

    return _transition(
        current,
        changes,
        action,
        {"decision": op.decision.value, "notes": op.notes, "previous_status": current.status.value},
    )


def _submit_feedback(current: Transaction, op: SubmitFeedback, now: datetime) -> Transition:
    changes: dict[str, Any] = {"updated_at": now, "feedback": op.feedback}

    # Promote to reviewed; never out of escalated.
    status_after = current.status
    if op.feedback.transaction_reviewed and current.status is not TransactionStatus.ESCALATED:
        status_after = TransactionStatus.REVIEWED
        changes["status"] = status_after

    payload = op.feedback.model_dump(mode="json")
    payload["status_after"] = status_after.value
    return _transition(current, changes, AuditAction.FEEDBACK_UPDATED, payload)


def _escalate(current: Transaction, op: Escalate, actor: Reviewer, now: datetime) -> Transition:
    reason = op.reason.strip()
    if not reason:
        raise ValidationError("Escalation reason is required", details={"reason": op.reason})

    letter = generate_escalation_letter(current, reason)
    changes: dict[str, Any] = {
        "status": TransactionStatus.ESCALATED,
        "updated_at": now,
        "human_decision": _decision_record(HumanDecision.ESCALATED, actor, now, op.notes),
        "escalation": EscalationRecord(
            escalated_at=now,
            escalated_by_id=actor.id,
            escalated_by_email=actor.email,
            reason=reason,
            letter=letter,
        ),
    }
    return _transition(
        current,
        changes,
        AuditAction.ESCALATED,
        {"reason": reason, "letter": letter, "notes": op.notes},
    )


def _override(
    current: Transaction, op: OverrideDecision, actor: Reviewer, now: datetime
) -> Transition:
    if op.next_decision is HumanDecision.ESCALATED:
        raise ValidationError(
            "Override decision must be fraud or valid; use escalate instead",
            details={"next_decision": op.next_decision.value},
        )

    previous = current.human_decision.decision.value if current.human_decision else None
    changes: dict[str, Any] = {
        "status": TransactionStatus.REVIEWED,
        "updated_at": now,
        "human_decision": _decision_record(op.next_decision, actor, now, op.notes),
    }
    return _transition(
        current,
        changes,
        AuditAction.OVERRIDDEN,
        {
            "previous_decision": previous,
            "next_decision": op.next_decision.value,
            "notes": op.notes,
        },
    )


def _add_note(current: Transaction, op: AddNote, actor: Reviewer, now: datetime) -> Transition:
    note = op.note.strip()
    if not note:
        raise ValidationError("Note content cannot be empty", details={"note": op.note})

    changes: dict[str, Any] = {
        "updated_at": now,
        "last_note": NoteRecord(at=now, by_id=actor.id, by_email=actor.email, note=note),
    }
    return _transition(current, changes, AuditAction.NOTE_ADDED, {"note": note})


def _transition(
    current: Transaction,
    changes: dict[str, Any],
    action: AuditAction,
    payload: dict[str, Any],
) -> Transition:
    return Transition(
        snapshot=current.model_copy(update=changes),
        patch={key: to_record_value(value) for key, value in changes.items()},
        action=action,
        audit_payload=payload,
    )


def to_record_value(value: Any) -> Any:
    """Convert a model field value to its stored representation."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    return value
