"""ORM models package exports."""

from chatsync.models.message import ChatMessage

__all__ = ["ChatMessage"]
