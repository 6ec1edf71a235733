"""Change-feed listener: relays feed events into the reconciliation merge."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from chatsync.schemas.chat import ConnectivityState
from chatsync.schemas.message import ChangeEvent
from chatsync.services.change_broker import ChangeSubscription, SubscriptionClosedError
from chatsync.services.persistence import FeedConnectionError, PersistenceGateway
from chatsync.services.reconciliation import MergeOutcome, ReconciliationMerge

logger = logging.getLogger(__name__)


class ChangeFeedListener:
    """Keeps a feed subscription alive and forwards every event to the merge.

    Each (re)connection subscribes first and then reloads the full message
    list, so notifications missed while disconnected are covered by the
    reload instead of being replayed.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        merger: ReconciliationMerge,
        *,
        resubscribe_delay: float = 2.0,
        on_state_change: Callable[[ConnectivityState], None] | None = None,
    ) -> None:
        self._gateway = gateway
        self._merger = merger
        self._resubscribe_delay = resubscribe_delay
        self._on_state_change = on_state_change
        self._subscription: ChangeSubscription | None = None
        self._task: asyncio.Task[None] | None = None
        self._connected = asyncio.Event()
        self.connectivity = ConnectivityState.CONNECTING
        self.events_relayed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="chat-feed-listener")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._close_subscription()
        self._set_state(ConnectivityState.CONNECTING)

    async def wait_connected(self, timeout: float | None = None) -> None:
        await asyncio.wait_for(self._connected.wait(), timeout=timeout)

    async def drain(self) -> None:
        """Wait until every event already delivered has been merged."""

        if self._subscription is not None:
            await self._subscription.join()

    def handle_event(self, event: ChangeEvent) -> None:
        """Forward one feed event; creations and mutations merge the same way."""

        outcome = self._merger.apply(event.record)
        self.events_relayed += 1
        logger.debug(
            "chat.feed_event kind=%s message_id=%s outcome=%s",
            event.kind.value,
            event.record.get("id"),
            outcome.value,
        )

    async def _run(self) -> None:
        while True:
            try:
                await self._connect()
            except FeedConnectionError as exc:
                logger.warning("chat.feed_connect_failed retry_in=%.2fs reason=%s", self._resubscribe_delay, exc)
                self._close_subscription()
                self._set_state(ConnectivityState.DEGRADED)
                await asyncio.sleep(self._resubscribe_delay)
                continue

            try:
                await self._pump()
            except SubscriptionClosedError:
                logger.warning("chat.feed_lost retry_in=%.2fs", self._resubscribe_delay)
            finally:
                self._close_subscription()
            self._set_state(ConnectivityState.CONNECTING)
            await asyncio.sleep(self._resubscribe_delay)

    async def _connect(self) -> None:
        self._set_state(ConnectivityState.CONNECTING)
        try:
            self._subscription = await self._gateway.subscribe_to_changes()
        except (ConnectionError, OSError) as exc:
            raise FeedConnectionError("change feed subscription failed") from exc
        records = await self._gateway.query_all_messages()
        counts = self._merger.apply_many(records)
        logger.info(
            "chat.feed_resync rows=%d inserted=%d replaced=%d stale=%d",
            len(records),
            counts[MergeOutcome.INSERTED],
            counts[MergeOutcome.REPLACED],
            counts[MergeOutcome.STALE],
        )
        self._set_state(ConnectivityState.CONNECTED)

    async def _pump(self) -> None:
        subscription = self._subscription
        assert subscription is not None
        while True:
            event = await subscription.next_event()
            try:
                self.handle_event(event)
            finally:
                subscription.task_done()

    def _close_subscription(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.close()

    def _set_state(self, state: ConnectivityState) -> None:
        if state is ConnectivityState.CONNECTED:
            self._connected.set()
        else:
            self._connected.clear()
        if state is self.connectivity:
            return
        logger.info("chat.feed_state from=%s to=%s", self.connectivity.value, state.value)
        self.connectivity = state
        if self._on_state_change is not None:
            self._on_state_change(state)
