"""Tests for the HTTP API."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from stocksync.api_server import create_app
from stocksync.auth.session import SessionAuthenticator
from stocksync.feed.change_feed import ChangeFeed
from stocksync.services.context import Actor

from conftest import FlakyStore, make_product

SECRET = "test_secret"


@pytest.fixture
def api_store():
    store = FlakyStore()
    asyncio.run(store.add_product(make_product(
        "wh-1", quantity=45, threshold=20, name="Wireless Headphones", sku="WH-001", barcode="123456789"
    )))
    asyncio.run(store.add_product(make_product("kb-1", quantity=3, threshold=5, name="Keyboard", sku="KB-1")))
    return store


@pytest.fixture
def client(api_store):
    app = create_app(store=api_store, feed=ChangeFeed(), authenticator=SessionAuthenticator(secret=SECRET))
    with TestClient(app) as test_client:
        yield test_client


def auth_headers(role="staff"):
    token = SessionAuthenticator(secret=SECRET).issue_token(
        Actor(id="user-1", display_name="alice@example.com", role=role)
    )
    return {"Authorization": f"Bearer {token}"}


class TestServiceEndpoints:

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_health(self, client):
        response = client.get("/health")

        assert response.json()["status"] == "healthy"
        assert response.json()["realtime_channels"] == 0


class TestAuthentication:

    def test_missing_token(self, client):
        response = client.get("/api/inventory")

        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    def test_forged_token(self, client):
        token = SessionAuthenticator(secret="wrong").issue_token(Actor(id="u", display_name="u"))

        response = client.get("/api/inventory", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_viewer_cannot_scan(self, client, api_store):
        response = client.post(
            "/api/inventory",
            json={"action": "scan", "productId": "wh-1", "quantity": 1, "operation": "remove"},
            headers=auth_headers("viewer"),
        )

        assert response.status_code == 403
        assert response.json()["error"] == "Insufficient permissions"
        assert asyncio.run(api_store.get_product("wh-1")).quantity == 45


class TestInventoryLookup:

    def test_barcode_found(self, client):
        response = client.get("/api/inventory", params={"barcode": "123456789"}, headers=auth_headers())

        assert response.status_code == 200
        assert response.json()["product"]["id"] == "wh-1"

    def test_barcode_not_found(self, client, api_store):
        response = client.get("/api/inventory", params={"barcode": "000"}, headers=auth_headers())

        assert response.status_code == 404
        assert response.json() == {"error": "Product not found", "notFound": True, "barcode": "000"}
        assert asyncio.run(api_store.list_scan_events())[0].barcode == "000"

    def test_list_low_stock(self, client):
        response = client.get("/api/inventory", params={"lowStock": "true"}, headers=auth_headers())

        products = response.json()["products"]
        assert [p["id"] for p in products] == ["kb-1"]
        assert products[0]["stock_status"] == "low_stock"

    def test_list_search(self, client):
        response = client.get("/api/inventory", params={"search": "WIRELESS"}, headers=auth_headers())

        assert [p["id"] for p in response.json()["products"]] == ["wh-1"]

    def test_invalid_stock_status(self, client):
        response = client.get("/api/inventory", params={"stockStatus": "plenty"}, headers=auth_headers())

        assert response.status_code == 400

    def test_store_failure(self, client, api_store):
        api_store.failing.add("list_products")

        response = client.get("/api/inventory", headers=auth_headers())

        assert response.status_code == 500


class TestInventoryActions:

    def test_scan_with_quantity(self, client, api_store):
        response = client.post(
            "/api/inventory",
            json={
                "action": "scan",
                "barcode": "123456789",
                "productId": "wh-1",
                "quantity": 30,
                "operation": "remove",
            },
            headers=auth_headers(),
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "newQuantity": 15}
        movements = asyncio.run(api_store.list_movements("wh-1"))
        assert movements[0].operation == "scan"
        assert movements[0].barcode == "123456789"

    def test_scan_lookup_only(self, client):
        response = client.post(
            "/api/inventory", json={"action": "scan", "barcode": "555"}, headers=auth_headers()
        )

        assert response.json() == {"success": True, "notFound": True}

    def test_invalid_action(self, client):
        response = client.post("/api/inventory", json={"action": "teleport"}, headers=auth_headers())

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid action"

    def test_invalid_operation(self, client):
        response = client.post(
            "/api/inventory",
            json={"action": "scan", "productId": "wh-1", "quantity": 2, "operation": "steal"},
            headers=auth_headers(),
        )

        assert response.status_code == 400

    def test_adjust(self, client):
        response = client.post(
            "/api/inventory/kb-1/adjust", json={"quantity": 10, "operation": "remove"}, headers=auth_headers()
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "newQuantity": 0,
            "previousQuantity": 3,
            "appliedDelta": -3,
            "auditRecorded": True,
        }

    def test_adjust_rejects_zero(self, client):
        response = client.post(
            "/api/inventory/kb-1/adjust", json={"quantity": 0, "operation": "add"}, headers=auth_headers()
        )

        assert response.status_code == 400

    def test_adjust_missing_product(self, client):
        response = client.post(
            "/api/inventory/nope/adjust", json={"quantity": 1, "operation": "add"}, headers=auth_headers()
        )

        assert response.status_code == 404

    def test_malformed_body(self, client):
        response = client.post("/api/inventory/kb-1/adjust", json={"operation": "add"}, headers=auth_headers())

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    def test_set_quantity(self, client):
        response = client.put("/api/inventory/kb-1/quantity", json={"quantity": 12}, headers=auth_headers())

        assert response.json()["newQuantity"] == 12
        assert response.json()["appliedDelta"] == 9

    def test_recent_scans_and_movements(self, client):
        client.get("/api/inventory", params={"barcode": "123456789"}, headers=auth_headers())
        client.post(
            "/api/inventory/wh-1/adjust", json={"quantity": 5, "operation": "add"}, headers=auth_headers()
        )

        scans = client.get("/api/inventory/scans/recent", headers=auth_headers()).json()["scans"]
        movements = client.get("/api/inventory/wh-1/movements", headers=auth_headers()).json()["movements"]

        assert scans[0]["barcode"] == "123456789"
        assert movements[0]["details"]["quantity_change"] == 5


class TestOrders:

    def test_fulfill(self, client):
        response = client.post(
            "/api/orders/fulfill",
            json={"id": "ORD-1", "items": [{"product_id": "wh-1", "quantity": 5}, {"barcode": "123456789", "quantity": 1}]},
            headers=auth_headers(),
        )

        assert response.status_code == 200
        assert response.json()["new_quantities"] == {"wh-1": 39}

    def test_partial_failure(self, client):
        response = client.post(
            "/api/orders/fulfill",
            json={"id": "ORD-2", "items": [{"product_id": "missing", "quantity": 1}]},
            headers=auth_headers(),
        )

        assert response.status_code == 207
        assert response.json()["failed_count"] == 1
