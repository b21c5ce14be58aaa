"""In-process ledger store.

Used by the development server and the test-suite. Each committed write is
published to the attached :class:`ChangeFeed` in commit order, which gives
subscribers the per-row ordering the projection cache relies on.
"""

from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

from .base import LedgerStore
from ..feed.change_feed import ChangeFeed
from ..models.activity import ScanEvent, StockMovement
from ..models.events import ChangeEvent, ChangeType
from ..models.filters import ProductFilter
from ..models.product import Product, utcnow
from ..utils.config import get_config
from ..utils.exceptions import InvalidArgumentError, NotFoundError, WriteConflictError


def _copy(product: Product) -> Product:
    return replace(product, metadata=dict(product.metadata))


class InMemoryLedgerStore(LedgerStore):
    """Dictionary-backed store that emits change events."""

    def __init__(self, feed: Optional[ChangeFeed] = None):
        config = get_config()
        self.feed = feed
        self.products_table = config.realtime.products_table
        self.activity_table = config.realtime.activity_table
        self.scans_table = config.realtime.scans_table
        self._products: Dict[str, Product] = {}
        self._movements: List[StockMovement] = []
        self._scans: List[ScanEvent] = []
        self._sequence = 0

    # ------------------------------------------------------------------
    # Change publication
    # ------------------------------------------------------------------

    def _commit(self, table: str, event_type: ChangeType, new: dict = None, old: dict = None):
        self._sequence += 1
        if self.feed is None:
            return
        self.feed.publish(ChangeEvent(
            table=table,
            event_type=event_type,
            new=new or {},
            old=old or {},
            sequence=self._sequence,
        ))

    # ------------------------------------------------------------------
    # Direct product edits (inventory manager CRUD)
    # ------------------------------------------------------------------

    async def add_product(self, product: Product) -> Product:
        if product.id in self._products:
            raise InvalidArgumentError(f"Product {product.id} already exists")
        for existing in self._products.values():
            if existing.sku == product.sku:
                raise InvalidArgumentError(f"SKU {product.sku} already in use")
            if product.barcode and existing.barcode == product.barcode:
                raise InvalidArgumentError(f"Barcode {product.barcode} already in use")

        self._products[product.id] = _copy(product)
        self._commit(self.products_table, ChangeType.INSERT, new=product.to_dict())
        return _copy(product)

    async def update_product(self, product: Product) -> Product:
        """Overwrite every field of an existing product."""
        current = self._products.get(product.id)
        if current is None:
            raise NotFoundError(f"Product {product.id} not found", details={"product_id": product.id})

        updated = replace(product, updated_at=utcnow(), metadata=dict(product.metadata))
        self._products[product.id] = updated
        self._commit(self.products_table, ChangeType.UPDATE, new=updated.to_dict(), old=current.to_dict())
        return _copy(updated)

    async def delete_product(self, product_id: str):
        current = self._products.pop(product_id, None)
        if current is None:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
        self._commit(self.products_table, ChangeType.DELETE, old=current.to_dict())

    # ------------------------------------------------------------------
    # LedgerStore
    # ------------------------------------------------------------------

    async def get_product(self, product_id: str) -> Optional[Product]:
        product = self._products.get(product_id)
        return _copy(product) if product else None

    async def find_product_by_barcode(self, barcode: str) -> Optional[Product]:
        for product in self._products.values():
            if product.barcode == barcode:
                return _copy(product)
        return None

    async def list_products(self, product_filter: Optional[ProductFilter] = None) -> List[Product]:
        rows = [
            _copy(product) for product in self._products.values()
            if product_filter is None or product_filter.matches(product)
        ]
        rows.sort(key=lambda p: p.updated_at, reverse=True)
        return rows

    async def compare_and_set_quantity(
        self,
        product_id: str,
        expected_quantity: int,
        new_quantity: int,
        updated_at: datetime,
    ) -> Product:
        current = self._products.get(product_id)
        if current is None:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})

        if current.quantity != expected_quantity:
            raise WriteConflictError(
                f"Quantity of {product_id} changed concurrently",
                details={"expected": expected_quantity, "actual": current.quantity}
            )

        updated = current.with_quantity(new_quantity, updated_at)
        self._products[product_id] = updated
        self._commit(self.products_table, ChangeType.UPDATE, new=updated.to_dict(), old=current.to_dict())
        return _copy(updated)

    async def insert_movement(self, movement: StockMovement) -> StockMovement:
        self._movements.append(movement)
        self._commit(self.activity_table, ChangeType.INSERT, new=movement.to_dict())
        return movement

    async def insert_scan_event(self, scan_event: ScanEvent) -> ScanEvent:
        self._scans.append(scan_event)
        self._commit(self.scans_table, ChangeType.INSERT, new=scan_event.to_dict())
        return scan_event

    async def list_scan_events(self, limit: int = 5) -> List[ScanEvent]:
        return list(reversed(self._scans))[:limit]

    async def list_movements(self, product_id: Optional[str] = None, limit: int = 50) -> List[StockMovement]:
        rows = [m for m in self._movements if product_id is None or m.subject_id == product_id]
        rows.sort(key=lambda m: m.created_at)
        return rows[-limit:]
