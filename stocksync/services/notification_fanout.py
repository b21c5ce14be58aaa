"""Turns change events into user-facing stock alerts."""

import asyncio
from typing import Callable, List, Optional

from ..feed.change_feed import ChangeFeed, Subscription
from ..models.events import ChangeEvent, ChangeType
from ..models.notification import (
    ACTIVITY,
    LOW_STOCK,
    OUT_OF_STOCK,
    STOCK_UPDATED,
    Notification,
)
from ..models.product import parse_timestamp
from ..utils.config import get_config
from ..utils.exceptions import StoreFailureError
from ..utils.logger import get_realtime_logger


class NotificationFanout:
    """Keeps the most recent alerts for one viewer. Read state is local only."""

    def __init__(self, max_recent: Optional[int] = None):
        config = get_config()
        self.max_recent = max_recent or config.notifications.max_recent
        self.products_table = config.realtime.products_table
        self.activity_table = config.realtime.activity_table
        self.logger = get_realtime_logger()
        self._notifications: List[Notification] = []
        self._listeners: List[Callable[[Notification], None]] = []
        self._subscriptions: List[Subscription] = []
        self._tasks: List[asyncio.Task] = []

    # ------------------------------------------------------------------
    # Event evaluation
    # ------------------------------------------------------------------

    def handle_event(self, event: ChangeEvent) -> List[Notification]:
        """Derive notifications from one event and add them to the list."""
        if event.table == self.products_table and event.event_type == ChangeType.UPDATE:
            created = self._stock_alerts(event)
        elif event.table == self.activity_table and event.event_type == ChangeType.INSERT:
            created = self._activity_notice(event)
        else:
            created = []

        for notification in created:
            self._push(notification)
        return created

    def _stock_alerts(self, event: ChangeEvent) -> List[Notification]:
        old_quantity = event.old.get("quantity")
        new_quantity = event.new.get("quantity")
        if old_quantity is None or new_quantity is None:
            return []

        old_quantity, new_quantity = int(old_quantity), int(new_quantity)
        if old_quantity == new_quantity:
            return []

        product_id = str(event.new.get("id"))
        name = event.new.get("name") or product_id
        threshold = int(event.new.get("threshold") or 0)
        timestamp = parse_timestamp(event.new.get("updated_at")) or event.commit_timestamp
        delta = new_quantity - old_quantity

        alerts = [Notification(
            title="Stock Updated",
            description=f"{name} quantity changed by {delta:+d} (now {new_quantity})",
            kind=STOCK_UPDATED,
            product_id=product_id,
            source_timestamp=timestamp,
        )]

        if new_quantity == 0:
            alerts.append(Notification(
                title="Out of Stock",
                description=f"{name} is out of stock",
                kind=OUT_OF_STOCK,
                product_id=product_id,
                source_timestamp=timestamp,
            ))
        elif new_quantity <= threshold:
            alerts.append(Notification(
                title="Low Stock Alert",
                description=f"{name} is below threshold ({new_quantity} remaining)",
                kind=LOW_STOCK,
                product_id=product_id,
                source_timestamp=timestamp,
            ))

        return alerts

    def _activity_notice(self, event: ChangeEvent) -> List[Notification]:
        row = event.new
        action = row.get("action", "update")
        item_type = row.get("item_type", "item")
        return [Notification(
            title=f"{action.capitalize()} {item_type}",
            description=f"{row.get('item_name', '?')} was {action}d by {row.get('user_name', 'someone')}",
            kind=ACTIVITY,
            product_id=row.get("item_id"),
            source_timestamp=parse_timestamp(row.get("created_at")) or event.commit_timestamp,
        )]

    # ------------------------------------------------------------------
    # Local state
    # ------------------------------------------------------------------

    def _push(self, notification: Notification):
        self._notifications = [notification] + self._notifications[: self.max_recent - 1]
        for listener in list(self._listeners):
            listener(notification)

    @property
    def notifications(self) -> List[Notification]:
        return list(self._notifications)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._notifications if not n.read)

    def mark_read(self, notification_id: str) -> bool:
        for notification in self._notifications:
            if notification.id == notification_id:
                notification.read = True
                return True
        return False

    def mark_all_read(self):
        for notification in self._notifications:
            notification.read = True

    def clear_all(self):
        self._notifications = []

    def add_listener(self, listener: Callable[[Notification], None]):
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Feed consumption
    # ------------------------------------------------------------------

    async def run(self, subscription: Subscription):
        """Consume a subscription until it is closed or errors."""
        try:
            async for event in subscription:
                self.handle_event(event)
        except StoreFailureError as e:
            self.logger.warning(f"Notification channel on {subscription.table} lost: {e.message}")

    async def start(self, feed: ChangeFeed):
        """Subscribe to product updates and activity inserts."""
        for table, event in ((self.products_table, "UPDATE"), (self.activity_table, "INSERT")):
            subscription = feed.subscribe(table, event=event)
            self._subscriptions.append(subscription)
            self._tasks.append(asyncio.create_task(self.run(subscription)))

    async def close(self):
        for subscription in self._subscriptions:
            subscription.close()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._subscriptions = []
        self._tasks = []
