from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping, Optional

from trackmystartup.lifecycle.errors import DuplicateEventError
from trackmystartup.lifecycle.gateway import ChangeEvent, ChangeFeed
from trackmystartup.lifecycle.records import Record
from trackmystartup.lifecycle.status_model import EntityType
from trackmystartup.lifecycle.store import RecordStore

logger = logging.getLogger("trackmystartup.sync")

Listener = Callable[[ChangeEvent, Optional[Record]], None]


class RealtimeSyncAdapter:
    """Feeds change events for one entity into the record store."""

    def __init__(
        self,
        feed: ChangeFeed,
        store: RecordStore,
        *,
        on_change: Optional[Listener] = None,
    ) -> None:
        self.feed = feed
        self.store = store
        self.on_change = on_change
        self._tasks: list[asyncio.Task] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def handle(self, event: ChangeEvent) -> Optional[Record]:
        """Apply one event; duplicates are dropped."""

        if self._closed:
            return None
        try:
            record = self.store.apply_event(event)
        except DuplicateEventError:
            logger.debug(
                "realtime_duplicate_dropped",
                extra={"entity": event.entity.value, "record_id": event.payload.get("id")},
            )
            return None
        if self.on_change is not None:
            self.on_change(event, record)
        return record

    async def consume(self, entity: EntityType, filter: Optional[Mapping[str, Any]] = None) -> None:
        logger.info("realtime_subscribed", extra={"entity": entity.value, "filter": dict(filter or {})})
        stream = self.feed.subscribe(entity, filter)
        try:
            async for event in stream:
                if self._closed:
                    break
                self.handle(event)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
            logger.info("realtime_unsubscribed", extra={"entity": entity.value})

    def start(self, entity: EntityType, filter: Optional[Mapping[str, Any]] = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self.consume(entity, filter))
        self._tasks.append(task)
        return task

    async def close(self) -> None:
        self._closed = True
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
