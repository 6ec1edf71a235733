"""Exchange lifecycle: user message, acknowledgment, simulated reply, completion."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Protocol

from chatsync.schemas.chat import ExchangeResult
from chatsync.schemas.message import MessageRecord, MessageRole, MessageStatus
from chatsync.services.persistence import MessageWriteError, PersistenceGateway
from chatsync.services.reconciliation import ReconciliationMerge

logger = logging.getLogger(__name__)

DEFAULT_REPLIES: tuple[str, ...] = (
    "I'm here to help! Based on your query, I can provide insights and analysis from your data. "
    "What specific information would you like to explore?",
    "That's a great question! Let me analyze the data and provide you with a comprehensive answer. "
    "The insights show some interesting patterns.",
    "I understand what you're looking for. Based on the available data, here are the key findings "
    "that might help address your question.",
    "Thank you for your question! I've processed the information and here's what I found. "
    "Would you like me to dive deeper into any specific aspect?",
    "Excellent query! The data reveals several important trends. "
    "Let me break down the most relevant insights for you.",
)


class ExchangeRejectedError(RuntimeError):
    """Raised when a send is refused before any write happens."""


class ExchangeFailedError(RuntimeError):
    """Raised when a write inside a running exchange fails."""

    def __init__(self, step: str, message: str) -> None:
        super().__init__(message)
        self.step = step


class DelayStrategy(Protocol):
    """Supplies the artificial pauses inside an exchange, in seconds."""

    def ack_delay(self) -> float:
        """Pause between creating the user message and marking it sent."""

    def think_time(self) -> float:
        """Pause between creating the reply and marking it completed."""


class ReplySource(Protocol):
    def pick(self) -> str:
        """Return non-empty reply text."""


@dataclass(slots=True)
class RandomizedDelays:
    ack_seconds: float = 0.3
    think_min_seconds: float = 1.5
    think_max_seconds: float = 2.5
    rng: random.Random = field(default_factory=random.Random)

    def ack_delay(self) -> float:
        return self.ack_seconds

    def think_time(self) -> float:
        return self.rng.uniform(self.think_min_seconds, self.think_max_seconds)


@dataclass(slots=True)
class FixedDelays:
    ack_seconds: float = 0.0
    think_seconds: float = 0.0

    def ack_delay(self) -> float:
        return self.ack_seconds

    def think_time(self) -> float:
        return self.think_seconds


@dataclass(slots=True)
class CannedReplies:
    texts: tuple[str, ...] = DEFAULT_REPLIES
    rng: random.Random = field(default_factory=random.Random)

    def __post_init__(self) -> None:
        if not self.texts or any(not text.strip() for text in self.texts):
            raise ValueError("canned replies must be non-empty strings")

    def pick(self) -> str:
        return self.rng.choice(self.texts)


class LifecycleCoordinator:
    """Runs one exchange at a time against the persistence gateway.

    Writes happen strictly in order: create user message (`sending`), mark it
    `sent`, create the assistant reply (`processing`), mark it `completed`.
    Each write's result is merged into the store right away; the change feed
    may deliver the same rows before or after.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        merger: ReconciliationMerge,
        *,
        delays: DelayStrategy | None = None,
        replies: ReplySource | None = None,
    ) -> None:
        self._gateway = gateway
        self._merger = merger
        self._delays = delays or RandomizedDelays()
        self._replies = replies or CannedReplies()
        self._current: asyncio.Task[ExchangeResult] | None = None

    @property
    def is_processing(self) -> bool:
        return self._current is not None

    def submit(self, text: str) -> asyncio.Task[ExchangeResult]:
        """Claim the in-flight guard and start an exchange in the background."""

        content = (text or "").strip()
        if not content:
            raise ExchangeRejectedError("Message content cannot be empty.")
        if self._current is not None:
            raise ExchangeRejectedError("A reply is still being processed.")

        task = asyncio.create_task(self._run_exchange(content), name="chat-exchange")
        self._current = task
        task.add_done_callback(self._on_exchange_done)
        return task

    async def send_message(self, text: str) -> ExchangeResult:
        return await self.submit(text)

    def cancel(self) -> bool:
        """Cancel the running exchange, if any."""

        if self._current is None:
            return False
        return self._current.cancel()

    async def shutdown(self) -> None:
        task = self._current
        if task is None:
            return
        task.cancel()
        try:
            await task
        except (asyncio.CancelledError, ExchangeFailedError):
            pass

    async def _run_exchange(self, content: str) -> ExchangeResult:
        task = asyncio.current_task()
        try:
            user_message = await self._create("create_user", MessageRole.USER, content, MessageStatus.SENDING)
            await asyncio.sleep(self._delays.ack_delay())
            user_message = await self._advance("mark_sent", user_message, MessageStatus.SENT)

            reply_text = self._replies.pick()
            assistant_message = await self._create(
                "create_reply",
                MessageRole.ASSISTANT,
                reply_text,
                MessageStatus.PROCESSING,
            )
            await asyncio.sleep(self._delays.think_time())
            assistant_message = await self._advance("mark_completed", assistant_message, MessageStatus.COMPLETED)
        finally:
            self._release(task)

        logger.info(
            "chat.exchange_completed user_id=%d assistant_id=%d",
            user_message.id,
            assistant_message.id,
        )
        return ExchangeResult(user_message=user_message, assistant_message=assistant_message)

    async def _create(self, step: str, role: MessageRole, content: str, status: MessageStatus) -> MessageRecord:
        try:
            record = await self._gateway.create_message(role, content, status)
        except MessageWriteError as exc:
            logger.warning("chat.exchange_failed step=%s reason=%s", step, exc)
            raise ExchangeFailedError(step, f"Could not {step.replace('_', ' ')}: {exc}") from exc
        self._merger.apply(record)
        return record

    async def _advance(self, step: str, record: MessageRecord, status: MessageStatus) -> MessageRecord:
        try:
            await self._gateway.update_message_status(record.id, status)
        except MessageWriteError as exc:
            logger.warning("chat.exchange_failed step=%s message_id=%d reason=%s", step, record.id, exc)
            await self._mark_error(record)
            raise ExchangeFailedError(step, f"Could not {step.replace('_', ' ')}: {exc}") from exc
        updated = record.with_status(status)
        self._merger.apply(updated)
        return updated

    async def _mark_error(self, record: MessageRecord) -> None:
        try:
            await self._gateway.update_message_status(record.id, MessageStatus.ERROR)
        except MessageWriteError:
            logger.exception("chat.mark_error_failed message_id=%d", record.id)
        self._merger.apply(record.with_status(MessageStatus.ERROR))

    def _release(self, task: asyncio.Task | None) -> None:
        if self._current is task:
            self._current = None

    def _on_exchange_done(self, task: asyncio.Task[ExchangeResult]) -> None:
        self._release(task)
        if task.cancelled():
            logger.info("chat.exchange_cancelled")
            return
        exc = task.exception()
        if exc is not None and not isinstance(exc, ExchangeFailedError):
            logger.error("chat.exchange_crashed", exc_info=exc)
