"""Merge incoming message records into the conversation store."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import ValidationError

from chatsync.schemas.message import MessageRecord, is_status_regression
from chatsync.services.message_store import MessageStore

logger = logging.getLogger(__name__)


class MalformedRecordError(ValueError):
    """Raised when an incoming payload cannot be read as a message record."""


class MergeOutcome(str, Enum):
    INSERTED = "inserted"
    REPLACED = "replaced"
    STALE = "stale"
    DROPPED = "dropped"


def coerce_record(payload: MessageRecord | Mapping[str, Any]) -> MessageRecord:
    """Validate a feed row or direct-write result into a `MessageRecord`."""

    if isinstance(payload, MessageRecord):
        return payload
    if not isinstance(payload, Mapping):
        raise MalformedRecordError(f"expected a mapping, got {type(payload).__name__}")
    if payload.get("id") is None:
        raise MalformedRecordError("record has no id")
    try:
        return MessageRecord.model_validate(dict(payload))
    except ValidationError as exc:
        raise MalformedRecordError(f"record {payload.get('id')!r} failed validation: {exc}") from exc


class ReconciliationMerge:
    """Apply records from the direct-write path and the change feed alike.

    A record for an unknown id is inserted. A record for a known id replaces
    the stored one wholesale, unless its status sits earlier in the lifecycle
    than the stored status, in which case it is an out-of-order delivery and
    is ignored.
    """

    def __init__(self, store: MessageStore) -> None:
        self.store = store

    def apply(self, payload: MessageRecord | Mapping[str, Any]) -> MergeOutcome:
        try:
            incoming = coerce_record(payload)
        except MalformedRecordError as exc:
            logger.warning("chat.merge_dropped reason=%s", exc)
            return MergeOutcome.DROPPED

        existing = self.store.get(incoming.id)
        if existing is None:
            self.store.upsert(incoming)
            return MergeOutcome.INSERTED

        if is_status_regression(existing.status, incoming.status):
            logger.debug(
                "chat.merge_stale message_id=%d stored=%s incoming=%s",
                incoming.id,
                existing.status.value,
                incoming.status.value,
            )
            return MergeOutcome.STALE

        self.store.upsert(incoming)
        return MergeOutcome.REPLACED

    def apply_many(self, payloads: list[MessageRecord | Mapping[str, Any]]) -> dict[MergeOutcome, int]:
        """Apply a batch (e.g. a full reload) and count outcomes."""

        counts = {outcome: 0 for outcome in MergeOutcome}
        for payload in payloads:
            counts[self.apply(payload)] += 1
        return counts
