"""Message record, status lifecycle, and change-feed event schemas."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class MessageStatus(str, Enum):
    SENDING = "sending"
    SENT = "sent"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


# Position of each status along its lifecycle path. `error` is terminal.
STATUS_RANK: dict[MessageStatus, int] = {
    MessageStatus.SENDING: 0,
    MessageStatus.PROCESSING: 0,
    MessageStatus.SENT: 1,
    MessageStatus.COMPLETED: 1,
    MessageStatus.ERROR: 2,
}


def is_status_regression(current: MessageStatus, incoming: MessageStatus) -> bool:
    """Return True when moving from `current` to `incoming` would go backward."""

    return STATUS_RANK[incoming] < STATUS_RANK[current]


class MessageRecord(BaseModel):
    """Full message row as stored by the persistence layer."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    role: MessageRole
    content: str
    status: MessageStatus
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def with_status(self, status: MessageStatus) -> MessageRecord:
        """Return a copy of this record carrying `status`."""

        return self.model_copy(update={"status": status})


class ChangeKind(str, Enum):
    CREATE = "CREATE"
    MUTATE = "MUTATE"


class ChangeEvent(BaseModel):
    """One change-feed notification; `record` is always a full row."""

    kind: ChangeKind
    record: dict[str, Any] = Field(default_factory=dict)
