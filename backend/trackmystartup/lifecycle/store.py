from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Iterable

from trackmystartup.lifecycle.errors import DuplicateEventError
from trackmystartup.lifecycle.gateway import ChangeEvent, ChangeOperation, record_from_row
from trackmystartup.lifecycle.records import (
    Application,
    IncubationMessage,
    InvestmentOffer,
    Record,
)
from trackmystartup.lifecycle.status_model import (
    DiligenceStatus,
    EntityType,
    OfferStatus,
    terminal_rank,
)

logger = logging.getLogger("trackmystartup.store")

DUPLICATE_WINDOW_SECONDS = 5
LOCAL_ID_PREFIX = "local-"

_DILIGENCE_RANK = {
    DiligenceStatus.none: 0,
    DiligenceStatus.requested: 1,
    DiligenceStatus.rejected: 2,
    DiligenceStatus.approved: 2,
}


def progress_rank(record: Record) -> int:
    """Order records by how far along their lifecycle they are.

    Only consulted when server timestamps cannot decide between two versions.
    """

    if isinstance(record, InvestmentOffer):
        return 100 if record.status == OfferStatus.rejected else int(record.stage)
    if isinstance(record, Application):
        return terminal_rank(record.status) * 10 + _DILIGENCE_RANK.get(record.diligence_status, 0)
    status = getattr(record, "status", None)
    return terminal_rank(status) if status is not None else 0


def newer_wins(current: Record, incoming: Record, incoming_ts: datetime | None = None) -> bool:
    """Last-write-wins by server timestamp; terminal-most status on ties."""

    cur_ts = current.updated_at
    inc_ts = incoming_ts or incoming.updated_at
    if cur_ts is not None and inc_ts is not None and cur_ts != inc_ts:
        return inc_ts > cur_ts
    return progress_rank(incoming) >= progress_rank(current)


def is_duplicate_message(
    existing: IncubationMessage,
    incoming: IncubationMessage,
    *,
    window_seconds: float = DUPLICATE_WINDOW_SECONDS,
) -> bool:
    if existing.id == incoming.id:
        return True
    if existing.message != incoming.message or existing.sender_id != incoming.sender_id:
        return False
    if existing.created_at is None or incoming.created_at is None:
        return False
    return abs(existing.created_at - incoming.created_at) < timedelta(seconds=window_seconds)


class RecordStore:
    """The local reconciled record set.

    Owned by the reconciler and the realtime adapter; projections read
    snapshots through `records()`.
    """

    def __init__(self, *, duplicate_window_seconds: float = DUPLICATE_WINDOW_SECONDS):
        self._records: dict[EntityType, dict[str, Record]] = {}
        self.duplicate_window_seconds = duplicate_window_seconds

    def get(self, entity: EntityType, record_id: str) -> Record | None:
        return self._records.get(entity, {}).get(str(record_id))

    def records(self, entity: EntityType) -> list[Record]:
        return list(self._records.get(entity, {}).values())

    def load(self, entity: EntityType, records: Iterable[Record]) -> None:
        """Replace the whole set for `entity` (manual reload)."""

        self._records[entity] = {r.id: r for r in records}

    def remove(self, entity: EntityType, record_id: str) -> Record | None:
        return self._records.get(entity, {}).pop(str(record_id), None)

    def merge(self, entity: EntityType, incoming: Record, *, timestamp: datetime | None = None) -> Record:
        """Merge `incoming` and return whichever version the set now holds."""

        bucket = self._records.setdefault(entity, {})
        current = bucket.get(incoming.id)
        if current is None:
            bucket[incoming.id] = incoming
            return incoming

        if not newer_wins(current, incoming, timestamp):
            logger.debug(
                "stale_record_ignored",
                extra={"entity": entity.value, "record_id": incoming.id},
            )
            return current

        if isinstance(current, InvestmentOffer) and isinstance(incoming, InvestmentOffer):
            incoming = replace(
                incoming,
                stage=max(current.stage, incoming.stage),
                contact_details_revealed=current.contact_details_revealed
                or incoming.contact_details_revealed,
            )

        bucket[incoming.id] = incoming
        return incoming

    def apply_event(self, event: ChangeEvent) -> Record | None:
        """Apply one realtime change event.

        Raises `DuplicateEventError` when the event repeats something the set
        already holds.
        """

        if event.operation == ChangeOperation.delete:
            return self.remove(event.entity, event.record_id)

        incoming = record_from_row(event.entity, event.payload)

        if isinstance(incoming, IncubationMessage):
            if event.operation == ChangeOperation.insert:
                return self.merge_message(event.entity, incoming)
            # Updates (read receipts) replace the stored copy by id.
            return self.replace_message(event.entity, incoming)

        ts = event.timestamp
        if incoming.updated_at is None and ts is not None:
            incoming = replace(incoming, updated_at=ts)

        current = self.get(event.entity, incoming.id)
        if event.operation == ChangeOperation.insert and current == incoming:
            raise DuplicateEventError(f"{event.entity.value} {incoming.id} already present")
        return self.merge(event.entity, incoming, timestamp=ts)

    def merge_message(self, entity: EntityType, incoming: IncubationMessage) -> IncubationMessage:
        bucket = self._records.setdefault(entity, {})
        for existing in list(bucket.values()):
            if not isinstance(existing, IncubationMessage):
                continue
            if existing.application_id != incoming.application_id:
                continue
            if not is_duplicate_message(
                existing, incoming, window_seconds=self.duplicate_window_seconds
            ):
                continue
            if existing.id.startswith(LOCAL_ID_PREFIX) and existing.id != incoming.id:
                # Server echo of an optimistic insert: adopt the authoritative id.
                del bucket[existing.id]
                bucket[incoming.id] = incoming
                return incoming
            raise DuplicateEventError(f"message {incoming.id} already present")

        bucket[incoming.id] = incoming
        return incoming

    def replace_message(self, entity: EntityType, incoming: IncubationMessage) -> IncubationMessage:
        bucket = self._records.setdefault(entity, {})
        if bucket.get(incoming.id) == incoming:
            raise DuplicateEventError(f"message {incoming.id} unchanged")
        bucket[incoming.id] = incoming
        return incoming

    def mark_read(self, entity: EntityType, message_ids: Iterable[str]) -> list[IncubationMessage]:
        """Flip `is_read` on the given stored messages; returns the ones changed."""

        bucket = self._records.setdefault(entity, {})
        changed = []
        for message_id in message_ids:
            current = bucket.get(str(message_id))
            if not isinstance(current, IncubationMessage) or current.is_read:
                continue
            bucket[current.id] = replace(current, is_read=True)
            changed.append(bucket[current.id])
        return changed
