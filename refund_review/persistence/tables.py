"""Table definitions.

Column names are the persisted field names of the domain models.
Sub-records (feedback, decision, escalation, note) are JSON columns.
"""

from datetime import UTC, datetime

from sqlalchemy import JSON, Column, DateTime, Float, Integer, Numeric, String, Text
from sqlalchemy.types import TypeDecorator

from refund_review.core.database import Base


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every dialect.

    SQLite drops tzinfo; values are normalised to UTC on the way in and
    re-tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class ReviewerRow(Base):
    __tablename__ = "reviewers"

    id = Column(String(128), primary_key=True)
    email = Column(String(320), nullable=True)
    display_name = Column(String(256), nullable=True)
    role = Column(String(32), nullable=False)
    assigned_warehouse_id = Column(String(64), nullable=True)
    assigned_region_id = Column(String(64), nullable=True)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=True)


class TransactionRow(Base):
    __tablename__ = "transactions"

    id = Column(String(64), primary_key=True)
    created_at = Column(UTCDateTime, nullable=False, index=True)
    updated_at = Column(UTCDateTime, nullable=True)

    warehouse_id = Column(String(64), nullable=False, index=True)
    region_id = Column(String(64), nullable=False, index=True)

    refund_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    risk_score = Column(Float, nullable=False)
    priority = Column(String(16), nullable=False, index=True)
    model_recommendation = Column(String(16), nullable=False)
    model_explanation = Column(JSON, nullable=True)
    flags = Column(JSON, nullable=False, default=list)

    transaction_code = Column(String(64), nullable=True)
    member_id = Column(String(64), nullable=True)
    operator_id = Column(String(64), nullable=True)
    customer_id = Column(String(64), nullable=True)
    order_id = Column(String(64), nullable=True)

    status = Column(String(16), nullable=False, index=True, default="pending")
    feedback = Column(JSON, nullable=True)
    human_decision = Column(JSON, nullable=True)
    escalation = Column(JSON, nullable=True)
    last_note = Column(JSON, nullable=True)


class AuditEntryRow(Base):
    """Append-only. ``seq`` breaks ties between entries with equal ``created_at``."""

    __tablename__ = "audit_entries"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(String(64), nullable=False, index=True)
    created_at = Column(UTCDateTime, nullable=False, index=True)
    actor_id = Column(String(128), nullable=False)
    actor_email = Column(String(320), nullable=True)
    action = Column(String(32), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)


class NotificationRow(Base):
    __tablename__ = "notifications"

    id = Column(String(64), primary_key=True)
    created_at = Column(UTCDateTime, nullable=False, index=True)
    message = Column(Text, nullable=False)
    type = Column(String(32), nullable=False)
    priority = Column(String(16), nullable=False)
    transaction_id = Column(String(64), nullable=True, index=True)
    warehouse_id = Column(String(64), nullable=True, index=True)
    region_id = Column(String(64), nullable=True, index=True)


class NotificationReadRow(Base):
    """Read marker for one (notification, reviewer) pair."""

    __tablename__ = "notification_reads"

    id = Column(String(200), primary_key=True)
    notification_id = Column(String(64), nullable=False, index=True)
    reviewer_id = Column(String(128), nullable=False, index=True)
    read_at = Column(UTCDateTime, nullable=False)


def read_marker_id(notification_id: str, reviewer_id: str) -> str:
    return f"{notification_id}:{reviewer_id}"
