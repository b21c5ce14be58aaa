"""Stock ledger store interface."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from ..models.activity import ScanEvent, StockMovement
from ..models.filters import ProductFilter
from ..models.product import Product


class LedgerStore(ABC):
    """
    Durable storage of products and the append-only activity log.

    Every method may raise :class:`~stocksync.utils.exceptions.StoreFailureError`
    when the backing store cannot be reached or rejects the request.
    """

    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[Product]:
        """Point read by id; ``None`` when absent."""

    @abstractmethod
    async def find_product_by_barcode(self, barcode: str) -> Optional[Product]:
        """Exact match on ``Product.barcode``; ``None`` when absent."""

    @abstractmethod
    async def list_products(self, product_filter: Optional[ProductFilter] = None) -> List[Product]:
        """Filtered scan, most recently updated first."""

    @abstractmethod
    async def compare_and_set_quantity(
        self,
        product_id: str,
        expected_quantity: int,
        new_quantity: int,
        updated_at: datetime,
    ) -> Product:
        """
        Write ``new_quantity`` only if the stored quantity still equals
        ``expected_quantity``.

        Raises:
            NotFoundError: If the product disappeared.
            WriteConflictError: If another writer committed first.
        """

    @abstractmethod
    async def insert_movement(self, movement: StockMovement) -> StockMovement:
        """Append one activity row."""

    @abstractmethod
    async def insert_scan_event(self, scan_event: ScanEvent) -> ScanEvent:
        """Append one barcode scan row."""

    @abstractmethod
    async def list_scan_events(self, limit: int = 5) -> List[ScanEvent]:
        """Latest scans, newest first."""

    @abstractmethod
    async def list_movements(self, product_id: Optional[str] = None, limit: int = 50) -> List[StockMovement]:
        """Activity rows ordered by timestamp, oldest first, for audit replay."""

    async def close(self):
        """Release transport resources."""
