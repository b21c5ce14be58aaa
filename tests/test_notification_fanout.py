"""Tests for notification fanout."""

import pytest

from stocksync.models.events import ChangeEvent, ChangeType
from stocksync.models.notification import ACTIVITY, LOW_STOCK, OUT_OF_STOCK, STOCK_UPDATED
from stocksync.services.mutation_service import StockMutationService
from stocksync.services.notification_fanout import NotificationFanout

from conftest import drain, make_product


def product_update(old_quantity, new_quantity, threshold=5, product_id="p-1", name="Widget"):
    old = make_product(product_id, quantity=old_quantity, threshold=threshold, name=name).to_dict()
    new = make_product(product_id, quantity=new_quantity, threshold=threshold, name=name).to_dict()
    return ChangeEvent(table="products", event_type=ChangeType.UPDATE, new=new, old=old)


@pytest.fixture
def fanout():
    return NotificationFanout()


class TestStockAlerts:

    def test_out_of_stock_excludes_low_stock(self, fanout):
        created = fanout.handle_event(product_update(6, 0))

        assert [n.kind for n in created] == [STOCK_UPDATED, OUT_OF_STOCK]
        assert created[0].description == "Widget quantity changed by -6 (now 0)"
        assert created[1].title == "Out of Stock"

    def test_low_stock(self, fanout):
        created = fanout.handle_event(product_update(8, 5, threshold=5))

        assert [n.kind for n in created] == [STOCK_UPDATED, LOW_STOCK]
        assert created[1].title == "Low Stock Alert"
        assert created[1].description == "Widget is below threshold (5 remaining)"

    def test_above_threshold(self, fanout):
        created = fanout.handle_event(product_update(8, 12))

        assert [n.kind for n in created] == [STOCK_UPDATED]
        assert "+4" in created[0].description

    def test_unchanged_quantity_is_silent(self, fanout):
        assert fanout.handle_event(product_update(3, 3)) == []
        assert fanout.notifications == []

    def test_update_without_old_row_is_silent(self, fanout):
        event = ChangeEvent(
            table="products", event_type=ChangeType.UPDATE, new=make_product(quantity=0).to_dict()
        )

        assert fanout.handle_event(event) == []

    def test_other_tables_are_ignored(self, fanout):
        event = ChangeEvent(table="barcode_scans", event_type=ChangeType.INSERT, new={"id": "s-1"})

        assert fanout.handle_event(event) == []


class TestActivityNotices:

    def test_activity_insert(self, fanout):
        row = {
            "id": "a-1",
            "action": "update",
            "item_type": "product",
            "item_id": "p-1",
            "item_name": "Widget",
            "user_name": "alice@example.com",
            "created_at": "2024-01-15T10:00:00+00:00",
        }

        created = fanout.handle_event(ChangeEvent(table="activities", event_type=ChangeType.INSERT, new=row))

        assert len(created) == 1
        assert created[0].kind == ACTIVITY
        assert created[0].title == "Update product"
        assert created[0].description == "Widget was updated by alice@example.com"


class TestLocalState:

    def test_newest_first_and_bounded(self, fanout):
        for quantity in range(20, 40):
            fanout.handle_event(product_update(quantity, quantity + 1))

        notifications = fanout.notifications
        assert len(notifications) == 10
        assert notifications[0].description.endswith("(now 40)")

    def test_mark_read(self, fanout):
        fanout.handle_event(product_update(6, 0))
        target = fanout.notifications[0]

        assert fanout.unread_count == 2
        assert fanout.mark_read(target.id) is True
        assert fanout.unread_count == 1
        assert fanout.mark_read("missing") is False

    def test_mark_all_read_and_clear(self, fanout):
        fanout.handle_event(product_update(6, 2))

        fanout.mark_all_read()
        assert fanout.unread_count == 0

        fanout.clear_all()
        assert fanout.notifications == []

    def test_listener(self, fanout):
        received = []
        fanout.add_listener(received.append)

        fanout.handle_event(product_update(6, 2))

        assert [n.kind for n in received] == [STOCK_UPDATED, LOW_STOCK]


class TestFeedConsumption:

    async def test_alerts_from_live_mutation(self, fanout, feed, ctx, widget):
        await fanout.start(feed)
        try:
            await StockMutationService().adjust_quantity(ctx, widget.id, 10, "remove")
            await drain(feed)
        finally:
            await fanout.close()

        kinds = [n.kind for n in fanout.notifications]
        assert kinds.count(OUT_OF_STOCK) == 1
        assert kinds.count(STOCK_UPDATED) == 1
        assert kinds.count(ACTIVITY) == 1
        assert LOW_STOCK not in kinds
        assert feed.subscriber_count == 0

    async def test_channel_loss_stops_quietly(self, fanout, feed):
        await fanout.start(feed)

        feed.disconnect()
        await fanout.close()

        assert fanout.notifications == []
