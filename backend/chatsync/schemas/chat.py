"""Schemas for the conversation view and exchange endpoints."""

from enum import Enum

from pydantic import BaseModel, Field

from chatsync.schemas.message import MessageRecord


class ConnectivityState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"


class SendMessageRequest(BaseModel):
    """Request payload for starting one exchange."""

    content: str = Field(min_length=1)


class ConversationState(BaseModel):
    """What the UI renders: ordered messages plus connection and gating flags."""

    messages: list[MessageRecord] = Field(default_factory=list)
    connectivity: ConnectivityState
    processing: bool


class ExchangeResult(BaseModel):
    """Final records of one completed exchange."""

    user_message: MessageRecord
    assistant_message: MessageRecord


class CancelResult(BaseModel):
    cancelled: bool
