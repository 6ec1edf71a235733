"""Tests for the change-feed listener's relay, resync, and connectivity."""

from __future__ import annotations

import asyncio
import unittest
from collections.abc import Callable

from chatsync.schemas.chat import ConnectivityState
from chatsync.schemas.message import ChangeEvent, ChangeKind, MessageStatus
from chatsync.services.feed_listener import ChangeFeedListener
from chatsync.services.message_store import MessageStore
from chatsync.services.reconciliation import ReconciliationMerge

from fakes import FakeGateway, make_record


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout=timeout)


class ChangeFeedListenerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.gateway = FakeGateway()
        self.store = MessageStore()
        self.states: list[ConnectivityState] = []
        self.observed: list[tuple[ConnectivityState, int, int]] = []
        self.listener = ChangeFeedListener(
            self.gateway,
            ReconciliationMerge(self.store),
            resubscribe_delay=0.01,
            on_state_change=self._record_state,
        )

    async def asyncTearDown(self) -> None:
        await self.listener.stop()

    def _record_state(self, state: ConnectivityState) -> None:
        self.states.append(state)
        self.observed.append((state, len(self.store), self.gateway.broker.stats()["subscribers"]))

    async def test_start_loads_existing_rows_and_connects(self) -> None:
        self.gateway.insert_row(make_record(1, MessageStatus.SENT))
        self.gateway.insert_row(make_record(2, MessageStatus.COMPLETED, role="assistant"))

        self.assertIs(self.listener.connectivity, ConnectivityState.CONNECTING)
        await self.listener.start()
        await self.listener.wait_connected(timeout=1)

        self.assertIs(self.listener.connectivity, ConnectivityState.CONNECTED)
        self.assertEqual([r.id for r in self.store.snapshot()], [1, 2])
        self.assertEqual(self.gateway.calls[:2], [("subscribe",), ("query",)])

    async def test_create_and_mutate_events_are_merged(self) -> None:
        await self.listener.start()
        await self.listener.wait_connected(timeout=1)

        record = await self.gateway.create_message("user", "Hello", MessageStatus.SENDING)
        await self.gateway.update_message_status(record.id, MessageStatus.SENT)
        await self.listener.drain()

        self.assertEqual(len(self.store), 1)
        self.assertEqual(self.store.get(record.id).status, MessageStatus.SENT)
        self.assertEqual(self.listener.events_relayed, 2)

    async def test_malformed_feed_row_does_not_stop_the_relay(self) -> None:
        await self.listener.start()
        await self.listener.wait_connected(timeout=1)

        self.gateway.broker.publish(ChangeKind.CREATE, {"role": "user", "content": "no id"})
        await self.gateway.create_message("user", "Hello", MessageStatus.SENDING)
        await self.listener.drain()

        self.assertEqual(len(self.store), 1)
        self.assertIs(self.listener.connectivity, ConnectivityState.CONNECTED)

    async def test_lost_subscription_resubscribes_and_reloads(self) -> None:
        await self.listener.start()
        await self.listener.wait_connected(timeout=1)

        self.gateway.broker.disconnect_all()
        # Written while disconnected: no subscriber receives these.
        self.gateway.insert_row(make_record(7, MessageStatus.SENT))
        await wait_until(lambda: len(self.states) == 3)

        self.assertEqual(self.store.get(7).status, MessageStatus.SENT)
        self.assertEqual(self.gateway.calls.count(("query",)), 2)
        self.assertEqual(
            self.states,
            [ConnectivityState.CONNECTED, ConnectivityState.CONNECTING, ConnectivityState.CONNECTED],
        )

    async def test_initial_load_failure_is_degraded_then_recovers(self) -> None:
        self.gateway.fail_queries = 1
        self.gateway.insert_row(make_record(1, MessageStatus.SENT))

        await self.listener.start()
        await self.listener.wait_connected(timeout=1)

        self.assertEqual(self.observed[0], (ConnectivityState.DEGRADED, 0, 0))
        self.assertEqual([r.id for r in self.store.snapshot()], [1])

    async def test_subscribe_failure_is_degraded(self) -> None:
        self.gateway.fail_subscribes = 1

        await self.listener.start()
        await self.listener.wait_connected(timeout=1)

        self.assertEqual(
            self.states,
            [ConnectivityState.DEGRADED, ConnectivityState.CONNECTING, ConnectivityState.CONNECTED],
        )
        self.assertEqual(self.gateway.calls.count(("subscribe",)), 2)

    async def test_reload_does_not_regress_newer_local_state(self) -> None:
        self.store.upsert(make_record(1, MessageStatus.SENT))
        self.gateway.insert_row(make_record(1, MessageStatus.SENDING))

        await self.listener.start()
        await self.listener.wait_connected(timeout=1)

        self.assertEqual(self.store.get(1).status, MessageStatus.SENT)

    async def test_stop_unsubscribes(self) -> None:
        await self.listener.start()
        await self.listener.wait_connected(timeout=1)
        self.assertEqual(self.gateway.broker.stats()["subscribers"], 1)

        await self.listener.stop()

        self.assertFalse(self.listener.running)
        self.assertEqual(self.gateway.broker.stats()["subscribers"], 0)
        self.assertIs(self.listener.connectivity, ConnectivityState.CONNECTING)

    async def test_handle_event_relays_both_kinds(self) -> None:
        merger = ReconciliationMerge(self.store)
        listener = ChangeFeedListener(self.gateway, merger)
        row = make_record(3, MessageStatus.SENDING).model_dump(mode="json")

        listener.handle_event(ChangeEvent(kind=ChangeKind.MUTATE, record=row))
        listener.handle_event(ChangeEvent(kind=ChangeKind.CREATE, record=row))

        self.assertEqual(len(self.store), 1)
        self.assertEqual(listener.events_relayed, 2)


if __name__ == "__main__":
    unittest.main()
