"""Tests for order fulfillment."""

import pytest

from stocksync.services.fulfillment_service import FulfillmentService

from conftest import make_product


@pytest.fixture
def service():
    return FulfillmentService()


class TestFulfillOrder:
    """Tests for fulfill_order."""

    async def test_mixed_order(self, service, ctx, store, widget, sample_order):
        await store.add_product(make_product("book", quantity=3, barcode="9780201379624"))

        result = await service.fulfill_order(ctx, sample_order)

        assert result.order_id == "ORD-1001"
        assert result.total_items == 3
        assert result.processed_count == 2
        assert result.skipped_count == 1
        assert result.success
        assert (await store.get_product("p-1")).quantity == 8
        assert (await store.get_product("book")).quantity == 2
        assert result.to_dict()["new_quantities"] == {"p-1": 8, "book": 2}

    async def test_unknown_barcode_is_reported(self, service, ctx, widget, sample_order):
        result = await service.fulfill_order(ctx, sample_order)

        assert not result.success
        assert result.processed_count == 1
        assert result.failed_count == 1
        assert result.errors[0].reference == "9780201379624"
        assert result.errors[0].error_type == "not_found"

    async def test_line_items_key_and_invalid_quantity(self, service, ctx, widget):
        order = {"order_number": 1042, "line_items": [
            {"product_id": "p-1", "quantity": 0},
            {"product_id": "p-1", "quantity": "2"},
            {"product_id": "p-1", "quantity": 1},
        ]}

        result = await service.fulfill_order(ctx, order)

        assert result.order_id == "1042"
        assert result.skipped_count == 2
        assert result.processed_count == 1

    async def test_over_fulfillment_clamps(self, service, ctx, store, widget):
        result = await service.fulfill_order(ctx, {"id": "ORD-2", "items": [{"product_id": "p-1", "quantity": 25}]})

        assert result.success
        assert result.adjustments[0].clamped
        assert (await store.get_product("p-1")).quantity == 0

    async def test_store_failure_per_item(self, service, ctx, store, widget):
        store.failing.add("compare_and_set_quantity")

        result = await service.fulfill_order(ctx, {"id": "ORD-3", "items": [{"product_id": "p-1", "quantity": 1}]})

        assert result.failed_count == 1
        assert result.errors[0].error_type == "store_failure"

    async def test_forbidden_actor_fails_every_item(self, service, viewer_ctx, widget):
        result = await service.fulfill_order(viewer_ctx, {"items": [
            {"product_id": "p-1", "quantity": 1},
            {"product_id": "p-1", "quantity": 2},
        ]})

        assert result.failed_count == 2
        assert {e.error_type for e in result.errors} == {"forbidden"}
