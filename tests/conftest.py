"""Pytest configuration and fixtures."""

import asyncio

import pytest

from stocksync.feed.change_feed import ChangeFeed
from stocksync.models.product import Product
from stocksync.services.context import Actor, RequestContext
from stocksync.store.memory_store import InMemoryLedgerStore
from stocksync.utils.exceptions import StoreFailureError


class FlakyStore(InMemoryLedgerStore):
    """In-memory store whose individual operations can be made to fail."""

    def __init__(self, feed=None):
        super().__init__(feed)
        self.failing = set()
        self.calls = []

    def _check(self, name):
        self.calls.append(name)
        if name in self.failing:
            raise StoreFailureError(f"{name} failed: connection dropped")

    async def get_product(self, product_id):
        self._check("get_product")
        return await super().get_product(product_id)

    async def find_product_by_barcode(self, barcode):
        self._check("find_product_by_barcode")
        return await super().find_product_by_barcode(barcode)

    async def list_products(self, product_filter=None):
        self._check("list_products")
        return await super().list_products(product_filter)

    async def compare_and_set_quantity(self, product_id, expected_quantity, new_quantity, updated_at):
        self._check("compare_and_set_quantity")
        return await super().compare_and_set_quantity(product_id, expected_quantity, new_quantity, updated_at)

    async def insert_movement(self, movement):
        self._check("insert_movement")
        return await super().insert_movement(movement)

    async def insert_scan_event(self, scan_event):
        self._check("insert_scan_event")
        return await super().insert_scan_event(scan_event)


def make_product(product_id="p-1", quantity=10, threshold=5, **kwargs) -> Product:
    defaults = {
        "name": f"Product {product_id}",
        "sku": f"SKU-{product_id}",
    }
    defaults.update(kwargs)
    return Product(id=product_id, quantity=quantity, threshold=threshold, **defaults)


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def store(feed):
    return FlakyStore(feed)


@pytest.fixture
def staff_actor():
    return Actor(id="user-1", display_name="alice@example.com", role="staff")


@pytest.fixture
def ctx(store, staff_actor):
    return RequestContext(store=store, actor=staff_actor)


@pytest.fixture
def anonymous_ctx(store):
    return RequestContext(store=store, actor=None)


@pytest.fixture
def viewer_ctx(store):
    return RequestContext(store=store, actor=Actor(id="user-2", display_name="viewer", role="viewer"))


@pytest.fixture
async def widget(store):
    """A product with ten units on hand and a reorder point of five."""
    return await store.add_product(make_product("p-1", quantity=10, threshold=5, barcode="4006381333931"))


@pytest.fixture
def sample_order():
    """Create a sample order payload."""
    return {
        "id": "ORD-1001",
        "items": [
            {"product_id": "p-1", "quantity": 2},
            {"barcode": "9780201379624", "quantity": 1},
            {"quantity": 4},
        ],
    }


async def drain(feed, rounds=10000):
    """Yield to the event loop until every channel on ``feed`` is empty."""
    for _ in range(rounds):
        if not any(s.pending() for s in feed._subscriptions):
            return
        await asyncio.sleep(0)
    raise AssertionError("change feed did not drain")
