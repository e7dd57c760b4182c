"""Base classes for the persistence layer."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class Collection(str, Enum):
    REVIEWERS = "reviewers"
    TRANSACTIONS = "transactions"
    AUDIT_ENTRIES = "audit_entries"
    NOTIFICATIONS = "notifications"
    NOTIFICATION_READS = "notification_reads"


@dataclass(frozen=True)
class OrderBy:
    field: str = "created_at"
    descending: bool = True


@dataclass
class Page:
    records: list[dict[str, Any]]
    next_cursor: str | None = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


@dataclass
class BaseCursor:
    """Cursor for keyset pagination on (timestamp, key)."""

    timestamp: datetime
    id: str

    def encode(self) -> str:
        """Encode cursor to base64 string."""
        data = f"{self.timestamp.isoformat()}|{self.id}"
        return base64.urlsafe_b64encode(data.encode()).decode()

    @classmethod
    def decode(cls, cursor: str) -> BaseCursor | None:
        """Decode cursor from base64 string. Returns None for invalid cursors."""
        try:
            data = base64.urlsafe_b64decode(cursor.encode()).decode()
            parts = data.split("|", 1)
            if len(parts) != 2 or not parts[1]:
                return None
            return cls(timestamp=datetime.fromisoformat(parts[0]), id=parts[1])
        except (ValueError, binascii.Error, UnicodeDecodeError):
            return None
