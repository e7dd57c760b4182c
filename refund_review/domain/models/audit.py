"""Audit entry model.

Entries are append-only: once written, never edited or deleted.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AuditAction(str, Enum):
    DECISION_SET = "DECISION_SET"
    NOTE_ADDED = "NOTE_ADDED"
    ESCALATED = "ESCALATED"
    OVERRIDDEN = "OVERRIDDEN"
    FEEDBACK_UPDATED = "FEEDBACK_UPDATED"


class AuditEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    seq: int | None = None
    transaction_id: str
    created_at: datetime
    actor_id: str
    actor_email: str | None = None
    action: AuditAction
    payload: dict[str, Any] = Field(default_factory=dict)
