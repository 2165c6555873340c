from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Mapping, Optional

from trackmystartup.lifecycle.gateway import ChangeEvent
from trackmystartup.lifecycle.status_model import EntityType

logger = logging.getLogger("trackmystartup.change_feed")


@dataclass
class _Subscription:
    entity: EntityType
    filter: dict[str, Any]
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)

    def matches(self, event: ChangeEvent) -> bool:
        if event.entity != self.entity:
            return False
        return all(str(event.payload.get(k)) == str(v) for k, v in self.filter.items())


class InProcessChangeFeed:
    """Fan-out of committed changes to in-process subscribers.

    Filters are column equality checks, e.g. `{"opportunity_id": "..."}`.
    """

    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: ChangeEvent) -> int:
        delivered = 0
        for sub in list(self._subscriptions):
            if sub.matches(event):
                sub.queue.put_nowait(event)
                delivered += 1
        logger.debug(
            "change_published",
            extra={
                "entity": event.entity.value,
                "operation": event.operation.value,
                "record_id": event.payload.get("id"),
                "delivered": delivered,
            },
        )
        return delivered

    async def subscribe(
        self, entity: EntityType, filter: Optional[Mapping[str, Any]] = None
    ) -> AsyncIterator[ChangeEvent]:
        sub = _Subscription(entity=entity, filter=dict(filter or {}))
        self._subscriptions.append(sub)
        try:
            while True:
                yield await sub.queue.get()
        finally:
            self._subscriptions.remove(sub)
