"""In-process change feed: fan-out of row change events to subscribers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from chatsync.schemas.message import ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)

_CLOSED = object()


class SubscriptionClosedError(ConnectionError):
    """Raised by a subscription whose transport has gone away."""


class ChangeSubscription:
    """One subscriber's queue of pending change events."""

    def __init__(self, broker: ChangeBroker) -> None:
        self._broker = broker
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def deliver(self, event: ChangeEvent) -> bool:
        if self.closed:
            return False
        self._queue.put_nowait(event)
        return True

    async def next_event(self) -> ChangeEvent:
        """Wait for the next event; raises once the subscription is closed."""

        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.task_done()
            raise SubscriptionClosedError("change subscription closed")
        return item

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every delivered event has been marked done."""

        await self._queue.join()

    def disconnect(self) -> None:
        """Drop the transport; the consumer sees `SubscriptionClosedError`."""

        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(_CLOSED)

    def close(self) -> None:
        """Unsubscribe from the broker."""

        self._broker.unsubscribe(self)
        self.disconnect()


class ChangeBroker:
    """Delivers every published event to every live subscription."""

    def __init__(self) -> None:
        self._subscribers: set[ChangeSubscription] = set()

    def subscribe(self) -> ChangeSubscription:
        subscription = ChangeSubscription(self)
        self._subscribers.add(subscription)
        logger.info("chat.feed_subscribe subs=%d", len(self._subscribers))
        return subscription

    def unsubscribe(self, subscription: ChangeSubscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
            logger.info("chat.feed_unsubscribe subs=%d", len(self._subscribers))

    def publish(self, kind: ChangeKind, record: dict[str, Any]) -> int:
        """Fan `record` out to subscribers; returns how many received it."""

        event = ChangeEvent(kind=kind, record=record)
        sent = 0
        for subscription in list(self._subscribers):
            if subscription.deliver(event):
                sent += 1
        return sent

    def disconnect_all(self) -> None:
        """Sever every subscription, as a transport outage would."""

        for subscription in list(self._subscribers):
            self.unsubscribe(subscription)
            subscription.disconnect()

    def stats(self) -> dict[str, int]:
        return {"subscribers": len(self._subscribers)}
