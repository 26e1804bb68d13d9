"""In-process change feed delivering store mutations to subscribers.

Each subscription owns an asyncio.Queue. Events for a table are delivered in
the order the store publishes them; there is no ordering across tables.
"""

import asyncio
import logging
from itertools import count

from warroom.store.models import ChangeEvent, ChangeType, Row

logger = logging.getLogger(__name__)

_ids = count(1)


class Subscription:
    """A handle on one table's change stream, optionally filtered by column equality."""

    def __init__(self, table: str, filters: dict[str, object] | None = None) -> None:
        self.id = next(_ids)
        self.table = table
        self.filters = dict(filters or {})
        self.queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self.closed = False

    def matches(self, event: ChangeEvent) -> bool:
        if event["table"] != self.table:
            return False
        if not self.filters:
            return True
        row = event.get("new") or event.get("old") or {}
        return all(row.get(column) == value for column, value in self.filters.items())

    async def get(self) -> ChangeEvent:
        return await self.queue.get()

    def __repr__(self) -> str:
        return f"Subscription(id={self.id}, table={self.table!r}, filters={self.filters!r})"


class ChangeFeed:
    """Fan-out of change events to matching subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: dict[int, Subscription] = {}

    def subscribe(self, table: str, filters: dict[str, object] | None = None) -> Subscription:
        sub = Subscription(table, filters)
        self._subscriptions[sub.id] = sub
        logger.debug("Opened %r", sub)
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.closed = True
        if self._subscriptions.pop(subscription.id, None) is not None:
            logger.debug("Closed %r", subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, table: str, event_type: ChangeType, old: Row | None = None, new: Row | None = None) -> None:
        event = ChangeEvent(table=table, event_type=event_type, old=old, new=new)
        for sub in list(self._subscriptions.values()):
            if sub.matches(event):
                sub.queue.put_nowait(event)

    def close(self) -> None:
        for sub in list(self._subscriptions.values()):
            self.unsubscribe(sub)
