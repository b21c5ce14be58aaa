"""In-process change feed.

The store publishes one :class:`ChangeEvent` per committed row change; every
subscriber owns its own bounded queue and pulls events from it. Delivery to
a subscriber is in publish order, which the store keeps equal to commit
order.
"""

import asyncio
from typing import Callable, List, Optional

from ..models.events import ALL_EVENTS, ChangeEvent, ChannelStatus
from ..utils.config import get_config
from ..utils.exceptions import StoreFailureError
from ..utils.logger import get_realtime_logger

StatusCallback = Callable[[ChannelStatus, Optional[str]], None]

_CLOSED = object()
_ERROR = object()


class Subscription:
    """One consumer's channel on a table."""

    def __init__(
        self,
        feed: "ChangeFeed",
        table: str,
        event: str = ALL_EVENTS,
        on_status: Optional[StatusCallback] = None,
        queue_size: int = 1000,
    ):
        self.feed = feed
        self.table = table
        self.event = event
        self.on_status = on_status
        self.status: Optional[ChannelStatus] = None
        self.error: Optional[str] = None
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.logger = get_realtime_logger()

    def accepts(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        return self.event == ALL_EVENTS or self.event == event.event_type.value

    @property
    def is_open(self) -> bool:
        return self.status == ChannelStatus.SUBSCRIBED

    def _set_status(self, status: ChannelStatus, reason: Optional[str] = None):
        self.status = status
        self.logger.debug(f"Channel {self.table}:{self.event} -> {status.value}")
        if self.on_status:
            self.on_status(status, reason)

    def _deliver(self, event: ChangeEvent):
        if not self.is_open:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            # A lagging consumer has lost events; it must refetch.
            self.fail("subscriber queue overflow")

    def _push_sentinel(self, sentinel):
        # Make room so the sentinel always lands; pending events are stale anyway.
        while True:
            try:
                self._queue.put_nowait(sentinel)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()

    def fail(self, reason: str):
        """Mark the channel as broken; pending ``get`` calls raise."""
        if self.status in (ChannelStatus.CHANNEL_ERROR, ChannelStatus.CLOSED):
            return
        self.error = reason
        self.feed._remove(self)
        self.logger.warning(f"Channel error on {self.table}: {reason}")
        self._set_status(ChannelStatus.CHANNEL_ERROR, reason)
        self._push_sentinel(_ERROR)

    def close(self):
        """Unsubscribe. Safe to call more than once."""
        if self.status == ChannelStatus.CLOSED:
            return
        self.feed._remove(self)
        self._set_status(ChannelStatus.CLOSED)
        self._push_sentinel(_CLOSED)

    async def get(self) -> Optional[ChangeEvent]:
        """
        Wait for the next event.

        Returns:
            The next event, or ``None`` once the channel is closed.

        Raises:
            StoreFailureError: If the channel errored.
        """
        item = await self._queue.get()
        if item is _CLOSED:
            self._push_sentinel(_CLOSED)
            return None
        if item is _ERROR:
            self._push_sentinel(_ERROR)
            raise StoreFailureError(
                "Change feed channel error",
                details={"table": self.table, "reason": self.error}
            )
        return item

    def pending(self) -> int:
        return self._queue.qsize()

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()


class ChangeFeed:
    """Subscribe-by-table broker fed by the ledger store."""

    def __init__(self, queue_size: Optional[int] = None):
        config = get_config()
        self.queue_size = queue_size or config.realtime.queue_size
        self.logger = get_realtime_logger()
        self._subscriptions: List[Subscription] = []

    def subscribe(
        self,
        table: str,
        event: str = ALL_EVENTS,
        on_status: Optional[StatusCallback] = None,
    ) -> Subscription:
        """Open a channel on ``table`` filtered to ``event`` (INSERT|UPDATE|DELETE|*)."""
        if event not in (ALL_EVENTS, "INSERT", "UPDATE", "DELETE"):
            raise ValueError(f"Unknown event filter: {event}")

        subscription = Subscription(
            self, table, event=event, on_status=on_status, queue_size=self.queue_size
        )
        self._subscriptions.append(subscription)
        subscription._set_status(ChannelStatus.SUBSCRIBED)
        self.logger.info(f"Subscribed to {table} ({event}); {len(self._subscriptions)} open channel(s)")
        return subscription

    def publish(self, event: ChangeEvent):
        """Fan an event out to every matching open channel."""
        for subscription in list(self._subscriptions):
            if subscription.accepts(event):
                subscription._deliver(event)

    def disconnect(self, reason: str = "transport disconnected"):
        """Break every open channel, as a dropped connection would."""
        for subscription in list(self._subscriptions):
            subscription.fail(reason)
        self._subscriptions.clear()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _remove(self, subscription: Subscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
