"""In-memory ordered view of the conversation."""

from __future__ import annotations

from itertools import count

from chatsync.schemas.message import MessageRecord


class MessageStore:
    """Single source of truth for rendering, keyed by server-assigned id.

    `upsert` is the only mutation. Entries are never removed, and at most one
    entry exists per id. Snapshots are ordered by `created_at`, with ties kept
    in first-insertion order.
    """

    def __init__(self) -> None:
        self._entries: dict[int, MessageRecord] = {}
        self._arrival: dict[int, int] = {}
        self._sequence = count()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._entries

    def get(self, message_id: int) -> MessageRecord | None:
        return self._entries.get(message_id)

    def upsert(self, record: MessageRecord) -> list[MessageRecord]:
        """Insert `record`, or replace the entry that has the same id."""

        if record.id not in self._entries:
            self._arrival[record.id] = next(self._sequence)
        self._entries[record.id] = record
        return self.snapshot()

    def snapshot(self) -> list[MessageRecord]:
        return sorted(
            self._entries.values(),
            key=lambda record: (record.created_at, self._arrival[record.id]),
        )
