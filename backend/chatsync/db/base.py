"""SQLAlchemy metadata registry import for Alembic."""

from chatsync.models import ChatMessage
from chatsync.models.base import Base

__all__ = ["Base", "ChatMessage"]
