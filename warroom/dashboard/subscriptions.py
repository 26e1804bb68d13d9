"""Per-session ownership of realtime channels.

Each dashboard session owns one SubscriptionManager. Opening a channel
subscribes to the store and starts a pump task that hands every change event
to the callback; ``close_all`` cancels the pumps and unsubscribes, so
nothing outlives the session that opened it.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from warroom.observability.metrics import REALTIME_EVENTS
from warroom.store.base import IncidentStore
from warroom.store.changes import Subscription
from warroom.store.models import ChangeEvent

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], Awaitable[None] | None]


class ChannelHandle:
    def __init__(self, subscription: Subscription, task: asyncio.Task[None]) -> None:
        self.subscription = subscription
        self.task = task

    @property
    def table(self) -> str:
        return self.subscription.table


class SubscriptionManager:
    def __init__(self, store: IncidentStore) -> None:
        self._store = store
        self._handles: list[ChannelHandle] = []

    @property
    def open_channels(self) -> int:
        return len(self._handles)

    def open(
        self,
        table: str,
        callback: ChangeCallback,
        filters: dict[str, object] | None = None,
    ) -> ChannelHandle:
        """Subscribe to a table's changes and start delivering them to callback."""
        subscription = self._store.subscribe_changes(table, filters)
        task = asyncio.create_task(self._pump(subscription, callback), name=f"channel-{table}-{subscription.id}")
        handle = ChannelHandle(subscription, task)
        self._handles.append(handle)
        return handle

    async def _pump(self, subscription: Subscription, callback: ChangeCallback) -> None:
        while True:
            event = await subscription.get()
            REALTIME_EVENTS.labels(table=event["table"], event_type=event["event_type"]).inc()
            try:
                result = callback(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                # A bad event must not kill the channel
                logger.exception("Change handler failed for %s %s", event["table"], event["event_type"])

    async def close(self, handle: ChannelHandle) -> None:
        self._store.unsubscribe(handle.subscription)
        handle.task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await handle.task
        if handle in self._handles:
            self._handles.remove(handle)

    async def close_all(self) -> None:
        """Unsubscribe every channel this manager opened."""
        for handle in list(self._handles):
            await self.close(handle)
        logger.debug("All realtime channels closed")
