"""Tests for merging direct-write results and feed rows into the store."""

from __future__ import annotations

import itertools
import unittest

from chatsync.schemas.message import MessageRole, MessageStatus
from chatsync.services.message_store import MessageStore
from chatsync.services.reconciliation import (
    MalformedRecordError,
    MergeOutcome,
    ReconciliationMerge,
    coerce_record,
)

from fakes import make_record


class ReconciliationMergeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = MessageStore()
        self.merger = ReconciliationMerge(self.store)

    def test_unknown_id_is_inserted_and_known_id_replaced(self) -> None:
        self.assertEqual(self.merger.apply(make_record(1)), MergeOutcome.INSERTED)
        self.assertEqual(self.merger.apply(make_record(1, MessageStatus.SENT)), MergeOutcome.REPLACED)
        self.assertEqual(self.store.get(1).status, MessageStatus.SENT)

    def test_feed_rows_are_accepted_as_json_mappings(self) -> None:
        row = make_record(5, MessageStatus.PROCESSING, role=MessageRole.ASSISTANT).model_dump(mode="json")

        self.assertEqual(self.merger.apply(row), MergeOutcome.INSERTED)
        stored = self.store.get(5)
        self.assertEqual(stored.role, MessageRole.ASSISTANT)
        self.assertIsNotNone(stored.created_at.tzinfo)

    def test_older_status_does_not_overwrite_newer(self) -> None:
        self.merger.apply(make_record(1, MessageStatus.COMPLETED, role=MessageRole.ASSISTANT))
        outcome = self.merger.apply(make_record(1, MessageStatus.PROCESSING, role=MessageRole.ASSISTANT))

        self.assertEqual(outcome, MergeOutcome.STALE)
        self.assertEqual(self.store.get(1).status, MessageStatus.COMPLETED)

    def test_error_is_terminal(self) -> None:
        self.merger.apply(make_record(1, MessageStatus.ERROR))
        self.merger.apply(make_record(1, MessageStatus.SENT))

        self.assertEqual(self.store.get(1).status, MessageStatus.ERROR)

    def test_creation_and_mutation_converge_in_any_order(self) -> None:
        created = make_record(1, MessageStatus.SENDING)
        mutated = make_record(1, MessageStatus.SENT)
        deliveries = [
            [created, mutated],
            [mutated, created],
            [created, created, mutated],
            [created, mutated, created, mutated],
        ]
        for sequence in deliveries + [list(p) for p in itertools.permutations([created, created, mutated])]:
            store = MessageStore()
            merger = ReconciliationMerge(store)
            for record in sequence:
                merger.apply(record)
            with self.subTest(sequence=[r.status.value for r in sequence]):
                self.assertEqual(len(store), 1)
                self.assertEqual(store.get(1).status, MessageStatus.SENT)

    def test_record_without_id_is_dropped(self) -> None:
        self.merger.apply(make_record(1))
        row = make_record(2).model_dump(mode="json")
        row.pop("id")

        with self.assertLogs("chatsync.services.reconciliation", level="WARNING"):
            outcome = self.merger.apply(row)

        self.assertEqual(outcome, MergeOutcome.DROPPED)
        self.assertEqual([r.id for r in self.store.snapshot()], [1])

    def test_invalid_status_is_dropped_without_touching_store(self) -> None:
        self.merger.apply(make_record(1))
        row = make_record(1).model_dump(mode="json")
        row["status"] = "archived"

        self.assertEqual(self.merger.apply(row), MergeOutcome.DROPPED)
        self.assertEqual(self.store.get(1).status, MessageStatus.SENDING)

    def test_coerce_record_rejects_non_mappings(self) -> None:
        with self.assertRaises(MalformedRecordError):
            coerce_record(["not", "a", "row"])  # type: ignore[arg-type]

    def test_apply_many_counts_outcomes(self) -> None:
        self.merger.apply(make_record(1, MessageStatus.SENT))
        counts = self.merger.apply_many(
            [make_record(1, MessageStatus.SENDING), make_record(2), make_record(2, MessageStatus.SENT), {"id": None}]
        )

        self.assertEqual(counts[MergeOutcome.STALE], 1)
        self.assertEqual(counts[MergeOutcome.INSERTED], 1)
        self.assertEqual(counts[MergeOutcome.REPLACED], 1)
        self.assertEqual(counts[MergeOutcome.DROPPED], 1)


if __name__ == "__main__":
    unittest.main()
