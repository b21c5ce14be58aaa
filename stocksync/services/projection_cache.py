"""Realtime projection of product rows for one view.

Lifecycle::

    CONNECTING -> SUBSCRIBED -> (RECEIVING)* -> ERROR | CLOSED

The cache subscribes before its full fetch, so events committed while the
fetch is in flight are queued and applied afterwards. Applying an event
twice is harmless: every event overwrites the row with its own payload.
After a channel error the rows are kept but flagged stale until a
reconnect has completed a fresh fetch.
"""

import asyncio
from enum import Enum
from typing import Callable, List, Optional

from ..feed.change_feed import ChangeFeed, Subscription
from ..models.events import ChangeEvent, ChangeType, ChannelStatus
from ..models.filters import ProductFilter
from ..models.product import Product
from ..store.base import LedgerStore
from ..utils.config import get_config
from ..utils.exceptions import StoreFailureError
from ..utils.logger import get_realtime_logger

Listener = Callable[["ProjectionCache", Optional[ChangeEvent]], None]


class ProjectionState(str, Enum):
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    SUBSCRIBED = "SUBSCRIBED"
    RECEIVING = "RECEIVING"
    ERROR = "ERROR"
    CLOSED = "CLOSED"


class ProjectionCache:
    """Filtered, live mirror of the products table."""

    def __init__(
        self,
        store: LedgerStore,
        feed: ChangeFeed,
        product_filter: Optional[ProductFilter] = None,
        table: Optional[str] = None,
    ):
        self.store = store
        self.feed = feed
        self.product_filter = product_filter or ProductFilter()
        self.table = table or get_config().realtime.products_table
        self.logger = get_realtime_logger()

        self.state = ProjectionState.IDLE
        self.stale = False
        self.error: Optional[str] = None
        self._rows: List[Product] = []
        self._subscription: Optional[Subscription] = None
        self._consumer: Optional[asyncio.Task] = None
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """
        Subscribe, load the full view and start applying events.

        Raises:
            StoreFailureError: If the initial fetch fails; the cache is
                left in ``ERROR`` state
        """
        self.state = ProjectionState.CONNECTING
        self._subscription = self.feed.subscribe(self.table, on_status=self._on_status)

        try:
            await self._fetch()
        except StoreFailureError as e:
            self._degrade(e.message)
            self._subscription.close()
            raise

        if self.state == ProjectionState.ERROR:
            # The channel broke while fetching; rows are already stale.
            return

        self.state = ProjectionState.SUBSCRIBED
        self._consumer = asyncio.create_task(self._consume(self._subscription))
        self.logger.info(
            f"Projection on {self.table} live with {len(self._rows)} row(s) "
            f"(filter: {self.product_filter.to_dict()})"
        )

    async def reconnect(self):
        """Drop the current channel, then subscribe and refetch from scratch."""
        self.logger.info(f"Reconnecting projection on {self.table}")
        await self._teardown()
        await self.start()

    async def refetch(self):
        """Manual refresh. A broken channel is re-established first."""
        if self.state in (ProjectionState.ERROR, ProjectionState.IDLE) or self._subscription is None \
                or not self._subscription.is_open:
            await self.reconnect()
            return
        await self._fetch()

    async def close(self):
        """Unsubscribe and stop the consumer. Safe to call more than once."""
        await self._teardown()
        self.state = ProjectionState.CLOSED

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def rows(self) -> List[Product]:
        return list(self._rows)

    def get(self, product_id: str) -> Optional[Product]:
        for product in self._rows:
            if product.id == product_id:
                return product
        return None

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, product_id: str) -> bool:
        return self.get(product_id) is not None

    @property
    def is_live(self) -> bool:
        return self.state in (ProjectionState.SUBSCRIBED, ProjectionState.RECEIVING) and not self.stale

    def add_listener(self, listener: Listener):
        self._listeners.append(listener)

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "stale": self.stale,
            "error": self.error,
            "rows": len(self._rows),
        }

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def apply(self, event: ChangeEvent) -> bool:
        """
        Reconcile one change event into the local rows.

        Returns:
            True if the visible rows changed
        """
        row_id = event.row_id
        if row_id is None:
            self.logger.warning(f"Ignoring {event.event_type.value} without row id")
            return False

        rows = list(self._rows)
        index = next((i for i, p in enumerate(rows) if p.id == row_id), None)
        changed = False

        if event.event_type == ChangeType.DELETE:
            if index is not None:
                del rows[index]
                changed = True
        else:
            try:
                product = Product.from_dict(event.new)
            except (KeyError, ValueError) as e:
                self.logger.warning(f"Ignoring malformed {event.event_type.value} for {row_id}: {e}")
                return False

            if self.product_filter.matches(product):
                if index is not None:
                    rows[index] = product
                else:
                    rows.insert(0, product)
                changed = True
            elif index is not None:
                del rows[index]
                changed = True

        # Re-run the filter over every row so displayed state never drifts.
        self._rows = [p for p in rows if self.product_filter.matches(p)]
        if self.state == ProjectionState.SUBSCRIBED:
            self.state = ProjectionState.RECEIVING

        if changed:
            self._notify(event)
        return changed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _fetch(self):
        rows = await self.store.list_products(self.product_filter)
        self._rows = [p for p in rows if self.product_filter.matches(p)]
        if self.state != ProjectionState.ERROR:
            self.stale = False
            self.error = None
        self._notify(None)

    async def _consume(self, subscription: Subscription):
        try:
            while True:
                event = await subscription.get()
                if event is None:
                    break
                self.apply(event)
        except StoreFailureError as e:
            self._degrade(e.details.get("reason") or e.message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"Projection consumer crashed: {str(e)}", exc_info=True)
            self._degrade(str(e))

    def _on_status(self, status: ChannelStatus, reason: Optional[str]):
        if status == ChannelStatus.CHANNEL_ERROR:
            self._degrade(reason or "channel error")

    def _degrade(self, reason: str):
        if self.state == ProjectionState.CLOSED:
            return
        if self.state != ProjectionState.ERROR:
            self.logger.warning(f"Projection on {self.table} degraded: {reason}")
        self.state = ProjectionState.ERROR
        self.stale = True
        self.error = reason
        self._notify(None)

    async def _teardown(self):
        if self._subscription is not None:
            self._subscription.close()
        if self._consumer is not None and not self._consumer.done():
            try:
                await asyncio.wait_for(self._consumer, timeout=1.0)
            except asyncio.TimeoutError:
                self._consumer.cancel()
        self._subscription = None
        self._consumer = None

    def _notify(self, event: Optional[ChangeEvent]):
        for listener in list(self._listeners):
            listener(self, event)
