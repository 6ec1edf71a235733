"""Composition root owning the store, merge, feed listener, and coordinator."""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy import Engine

from chatsync.config import Settings
from chatsync.db.session import build_engine, build_session_factory, create_schema
from chatsync.schemas.chat import ConnectivityState, ConversationState, ExchangeResult
from chatsync.services.feed_listener import ChangeFeedListener
from chatsync.services.lifecycle import DelayStrategy, LifecycleCoordinator, RandomizedDelays, ReplySource
from chatsync.services.message_store import MessageStore
from chatsync.services.persistence import PersistenceGateway, SqlMessageGateway
from chatsync.services.reconciliation import ReconciliationMerge

logger = logging.getLogger(__name__)


class ChatSession:
    """One conversation view with explicit `start()` / `stop()` lifecycle."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        *,
        delays: DelayStrategy | None = None,
        replies: ReplySource | None = None,
        resubscribe_delay: float = 2.0,
        engine: Engine | None = None,
    ) -> None:
        self.gateway = gateway
        self.store = MessageStore()
        self.merger = ReconciliationMerge(self.store)
        self.listener = ChangeFeedListener(gateway, self.merger, resubscribe_delay=resubscribe_delay)
        self.coordinator = LifecycleCoordinator(gateway, self.merger, delays=delays, replies=replies)
        self._engine = engine

    @property
    def connectivity(self) -> ConnectivityState:
        return self.listener.connectivity

    @property
    def processing(self) -> bool:
        return self.coordinator.is_processing

    async def start(self) -> None:
        await self.listener.start()
        logger.info("chat.session_started")

    async def stop(self) -> None:
        await self.coordinator.shutdown()
        await self.gateway.flush()
        await self.listener.drain()
        await self.listener.stop()
        if self._engine is not None:
            self._engine.dispose()
        logger.info("chat.session_stopped messages=%d", len(self.store))

    def submit(self, text: str) -> asyncio.Task[ExchangeResult]:
        return self.coordinator.submit(text)

    async def send_message(self, text: str) -> ExchangeResult:
        return await self.coordinator.send_message(text)

    def state(self) -> ConversationState:
        return ConversationState(
            messages=self.store.snapshot(),
            connectivity=self.connectivity,
            processing=self.processing,
        )


def build_chat_session(settings: Settings, *, delays: DelayStrategy | None = None) -> ChatSession:
    """Wire a SQL-backed session from settings; `delays` overrides the configured timing."""

    engine = build_engine(settings.database_url)
    if settings.auto_create_schema:
        create_schema(engine)
    gateway = SqlMessageGateway(build_session_factory(engine))
    delays = delays or RandomizedDelays(
        ack_seconds=settings.ack_delay_seconds,
        think_min_seconds=settings.think_time_min_seconds,
        think_max_seconds=settings.think_time_max_seconds,
    )
    return ChatSession(
        gateway,
        delays=delays,
        resubscribe_delay=settings.resubscribe_delay_seconds,
        engine=engine,
    )
