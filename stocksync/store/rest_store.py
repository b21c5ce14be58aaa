"""Ledger store backed by a PostgREST-compatible HTTP API."""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    wait_none,
    retry_if_exception_type
)

from .base import LedgerStore
from ..models.activity import ScanEvent, StockMovement
from ..models.filters import ProductFilter
from ..models.product import Product
from ..utils.config import get_config
from ..utils.exceptions import NotFoundError, StoreFailureError, WriteConflictError
from ..utils.logger import get_api_logger

RETURN_REPRESENTATION = {"Prefer": "return=representation"}
RETURN_MINIMAL = {"Prefer": "return=minimal"}

# Raised before any byte reached the server, so a write is safe to re-send.
NOT_SENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)
RETRYABLE_ERRORS = (httpx.TimeoutException, httpx.NetworkError)

T = TypeVar("T")


class RestLedgerStore(LedgerStore):
    """Async HTTP client with retry logic for the products/activity tables."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the store client.

        Args:
            base_url: REST endpoint; defaults to ``STOCKSYNC_STORE_URL``
            api_key: API key; defaults to ``STOCKSYNC_STORE_API_KEY``
            transport: Optional httpx transport (used by tests)
        """
        self.config = get_config()
        self.logger = get_api_logger()
        self.base_url = (base_url or self.config.env.store_url).rstrip("/")
        self.products_table = self.config.realtime.products_table
        self.activity_table = self.config.realtime.activity_table
        self.scans_table = self.config.realtime.scans_table

        headers = {
            "Content-Type": "application/json",
            "User-Agent": "StockSync/1.0"
        }
        api_key = api_key or self.config.env.store_api_key
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"

        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.config.api.timeout,
            follow_redirects=True,
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Low-level request helper
    # ------------------------------------------------------------------

    async def _request(self, method: str, url: str, idempotent: bool = True, **kwargs) -> httpx.Response:
        """
        Make an HTTP request with retry on timeouts and network errors.

        Writes (``idempotent=False``) are only re-sent when the request never
        left the client; a write whose response was lost is reported with
        ``details["may_have_committed"]`` set.

        Raises:
            StoreFailureError: On transport failure or a non-2xx response
        """
        retry_on = RETRYABLE_ERRORS if idempotent else NOT_SENT_ERRORS

        @retry(
            stop=stop_after_attempt(self.config.api.max_retries),
            wait=wait_exponential(multiplier=self.config.api.retry_delay) if self.config.api.exponential_backoff else wait_none(),
            retry=retry_if_exception_type(retry_on),
            reraise=True
        )
        async def _send():
            self.logger.debug(f"{method} {url}")
            response = await self.client.request(method, url, **kwargs)
            self.logger.debug(f"Response: {response.status_code}")
            return response

        try:
            response = await _send()
        except httpx.HTTPError as e:
            raise StoreFailureError(
                f"Ledger store unreachable: {str(e)}",
                details={
                    "error": str(e),
                    "method": method,
                    "url": url,
                    "may_have_committed": not idempotent and not isinstance(e, NOT_SENT_ERRORS),
                }
            )

        if response.status_code >= 400:
            raise StoreFailureError(
                f"Ledger store request failed (HTTP {response.status_code})",
                details={"method": method, "url": url, "response": response.text}
            )
        return response

    def _decode(self, response: httpx.Response) -> List[Dict[str, Any]]:
        try:
            rows = response.json()
        except ValueError as e:
            raise StoreFailureError(
                "Ledger store returned an unreadable body",
                details={"error": str(e), "content_type": response.headers.get("content-type")}
            )
        if not isinstance(rows, list):
            raise StoreFailureError("Ledger store returned an unexpected body", details={"body": rows})
        return rows

    def _parse(self, rows: List[Dict[str, Any]], factory: Callable[[Dict[str, Any]], T]) -> List[T]:
        try:
            return [factory(row) for row in rows]
        except (KeyError, ValueError, TypeError) as e:
            raise StoreFailureError(f"Malformed row from ledger store: {str(e)}", details={"error": str(e)})

    async def _select(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        response = await self._request("GET", f"/{table}", params=params)
        return self._decode(response)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    async def get_product(self, product_id: str) -> Optional[Product]:
        rows = await self._select(self.products_table, {"id": f"eq.{product_id}", "select": "*"})
        products = self._parse(rows[:1], Product.from_dict)
        return products[0] if products else None

    async def find_product_by_barcode(self, barcode: str) -> Optional[Product]:
        rows = await self._select(
            self.products_table,
            {"barcode": f"eq.{barcode}", "select": "*,category:categories(id,name),supplier:suppliers(id,name)"}
        )
        products = self._parse(rows[:1], Product.from_dict)
        return products[0] if products else None

    async def list_products(self, product_filter: Optional[ProductFilter] = None) -> List[Product]:
        params: Dict[str, Any] = {"select": "*", "order": "updated_at.desc"}
        if product_filter:
            if product_filter.search:
                term = product_filter.search.strip()
                params["or"] = f"(name.ilike.*{term}*,sku.ilike.*{term}*,barcode.ilike.*{term}*)"
            if product_filter.category_id:
                params["category_id"] = f"eq.{product_filter.category_id}"
            if product_filter.supplier_id:
                params["supplier_id"] = f"eq.{product_filter.supplier_id}"

        rows = await self._select(self.products_table, params)
        products = self._parse(rows, Product.from_dict)

        # Stock status compares two columns, so it is evaluated here.
        if product_filter:
            products = [p for p in products if product_filter.matches(p)]
        return products

    async def compare_and_set_quantity(
        self,
        product_id: str,
        expected_quantity: int,
        new_quantity: int,
        updated_at: datetime,
    ) -> Product:
        try:
            response = await self._request(
                "PATCH",
                f"/{self.products_table}",
                idempotent=False,
                params={"id": f"eq.{product_id}", "quantity": f"eq.{expected_quantity}"},
                json={"quantity": new_quantity, "updated_at": updated_at.isoformat()},
                headers=RETURN_REPRESENTATION,
            )
        except StoreFailureError as e:
            if not e.details.get("may_have_committed"):
                raise
            return await self._confirm_write(product_id, new_quantity, updated_at, e)

        products = self._parse(self._decode(response)[:1], Product.from_dict)
        if products:
            return products[0]

        # Nothing matched: either the row is gone or the quantity moved.
        current = await self.get_product(product_id)
        if current is None:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
        raise WriteConflictError(
            f"Quantity of {product_id} changed concurrently",
            details={"expected": expected_quantity, "actual": current.quantity}
        )

    async def _confirm_write(
        self,
        product_id: str,
        new_quantity: int,
        updated_at: datetime,
        failure: StoreFailureError,
    ) -> Product:
        """Re-read after a lost PATCH response; our own timestamp marks our write."""
        current = await self.get_product(product_id)
        if current is not None and current.quantity == new_quantity and current.updated_at == updated_at:
            self.logger.warning(f"PATCH on {product_id} lost its response but committed; continuing")
            return current
        raise failure

    # ------------------------------------------------------------------
    # Activity log
    # ------------------------------------------------------------------

    async def insert_movement(self, movement: StockMovement) -> StockMovement:
        await self._request(
            "POST", f"/{self.activity_table}", idempotent=False, json=movement.to_dict(), headers=RETURN_MINIMAL
        )
        return movement

    async def insert_scan_event(self, scan_event: ScanEvent) -> ScanEvent:
        await self._request(
            "POST", f"/{self.scans_table}", idempotent=False, json=scan_event.to_dict(), headers=RETURN_MINIMAL
        )
        return scan_event

    async def list_scan_events(self, limit: int = 5) -> List[ScanEvent]:
        rows = await self._select(self.scans_table, {"select": "*", "order": "created_at.desc", "limit": limit})
        return self._parse(rows, ScanEvent.from_dict)

    async def list_movements(self, product_id: Optional[str] = None, limit: int = 50) -> List[StockMovement]:
        params: Dict[str, Any] = {"select": "*", "order": "created_at.desc", "limit": limit}
        if product_id:
            params["item_id"] = f"eq.{product_id}"
        rows = await self._select(self.activity_table, params)
        return sorted(self._parse(rows, StockMovement.from_dict), key=lambda m: m.created_at)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
