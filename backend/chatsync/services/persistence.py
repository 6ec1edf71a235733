"""Persistence gateway: durable message writes, queries, and the change feed."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Coroutine
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from chatsync.models.message import ChatMessage
from chatsync.schemas.message import ChangeKind, MessageRecord, MessageRole, MessageStatus
from chatsync.services.change_broker import ChangeBroker, ChangeSubscription

logger = logging.getLogger(__name__)


class MessageWriteError(RuntimeError):
    """Raised when a create or status-update write does not go through."""


class FeedConnectionError(RuntimeError):
    """Raised when the change feed or the full-load query is unavailable."""


class PersistenceGateway(ABC):
    """Contract of the durable store backing the conversation."""

    @abstractmethod
    async def create_message(self, role: MessageRole, content: str, status: MessageStatus) -> MessageRecord:
        """Insert a message; the store assigns `id` and `created_at`."""

    @abstractmethod
    async def update_message_status(self, message_id: int, status: MessageStatus) -> None:
        """Overwrite the status of an existing message (last write wins)."""

    @abstractmethod
    async def query_all_messages(self) -> list[MessageRecord]:
        """Return every message ordered by ascending `created_at`."""

    @abstractmethod
    async def subscribe_to_changes(self) -> ChangeSubscription:
        """Open a change-feed subscription; callers must `close()` it."""

    async def flush(self) -> None:
        """Wait for writes still running after their caller was cancelled."""


class SqlMessageGateway(PersistenceGateway):
    """SQLAlchemy-backed gateway that announces committed rows on a broker.

    A write and its announcement run as one shielded task: a caller that is
    cancelled mid-write still gets the committed row onto the feed.
    """

    def __init__(self, session_factory: sessionmaker[Session], broker: ChangeBroker | None = None) -> None:
        self._session_factory = session_factory
        self.broker = broker or ChangeBroker()
        self._pending_writes: set[asyncio.Task[MessageRecord]] = set()

    async def create_message(self, role: MessageRole, content: str, status: MessageStatus) -> MessageRecord:
        return await self._write(self._create_and_announce(MessageRole(role), content, MessageStatus(status)))

    async def update_message_status(self, message_id: int, status: MessageStatus) -> None:
        await self._write(self._update_and_announce(message_id, MessageStatus(status)))

    async def flush(self) -> None:
        if self._pending_writes:
            await asyncio.gather(*self._pending_writes, return_exceptions=True)

    async def query_all_messages(self) -> list[MessageRecord]:
        try:
            return await asyncio.to_thread(self._select_all)
        except SQLAlchemyError as exc:
            logger.exception("chat.gateway_query_failed")
            raise FeedConnectionError("could not load messages") from exc

    async def subscribe_to_changes(self) -> ChangeSubscription:
        return self.broker.subscribe()

    async def _write(self, unit: Coroutine[Any, Any, MessageRecord]) -> MessageRecord:
        task = asyncio.ensure_future(unit)
        self._pending_writes.add(task)
        task.add_done_callback(self._forget_write)
        return await asyncio.shield(task)

    def _forget_write(self, task: asyncio.Task[MessageRecord]) -> None:
        self._pending_writes.discard(task)
        if not task.cancelled():
            # Failures are already logged; retrieve them for callers that went away.
            task.exception()

    async def _create_and_announce(self, role: MessageRole, content: str, status: MessageStatus) -> MessageRecord:
        try:
            record = await asyncio.to_thread(self._insert, role, content, status)
        except SQLAlchemyError as exc:
            logger.exception("chat.gateway_create_failed role=%s status=%s", role.value, status.value)
            raise MessageWriteError(f"could not create {role.value} message") from exc
        self.broker.publish(ChangeKind.CREATE, record.model_dump(mode="json"))
        return record

    async def _update_and_announce(self, message_id: int, status: MessageStatus) -> MessageRecord:
        try:
            record = await asyncio.to_thread(self._set_status, message_id, status)
        except SQLAlchemyError as exc:
            logger.exception("chat.gateway_update_failed message_id=%d status=%s", message_id, status.value)
            raise MessageWriteError(f"could not update message {message_id}") from exc
        if record is None:
            raise MessageWriteError(f"message {message_id} does not exist")
        self.broker.publish(ChangeKind.MUTATE, record.model_dump(mode="json"))
        return record

    def _insert(self, role: MessageRole, content: str, status: MessageStatus) -> MessageRecord:
        with self._session_factory() as db:
            message = ChatMessage(role=role.value, content=content, status=status.value)
            db.add(message)
            db.commit()
            db.refresh(message)
            return MessageRecord.model_validate(message)

    def _set_status(self, message_id: int, status: MessageStatus) -> MessageRecord | None:
        with self._session_factory() as db:
            message = db.get(ChatMessage, message_id)
            if message is None:
                return None
            message.status = status.value
            db.commit()
            db.refresh(message)
            return MessageRecord.model_validate(message)

    def _select_all(self) -> list[MessageRecord]:
        with self._session_factory() as db:
            stmt = select(ChatMessage).order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
            return [MessageRecord.model_validate(row) for row in db.scalars(stmt).all()]
