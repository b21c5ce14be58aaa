"""Product data model and stock status derivation."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any


class StockStatus(str, Enum):
    """Derived stock level of a product."""

    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


def derive_stock_status(quantity: int, threshold: int) -> StockStatus:
    """Map ``(quantity, threshold)`` to a stock status.

    The threshold is inclusive: a product sitting exactly at its reorder
    point is low stock.
    """
    if quantity <= 0:
        return StockStatus.OUT_OF_STOCK
    if quantity <= threshold:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp coming from a store row."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Product:
    """Represents a product row in the stock ledger."""

    id: str
    name: str
    sku: str
    quantity: int
    threshold: int = 0
    barcode: Optional[str] = None
    category_id: Optional[str] = None
    supplier_id: Optional[str] = None
    price: float = 0.0
    cost: Optional[float] = None
    unit: str = "pcs"
    updated_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate and normalize data."""
        if not self.sku:
            raise ValueError("SKU cannot be empty")

        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError("Quantity must be an integer")

        if self.quantity < 0:
            raise ValueError("Quantity cannot be negative")

        if isinstance(self.threshold, bool) or not isinstance(self.threshold, int) or self.threshold < 0:
            raise ValueError("Threshold must be a non-negative integer")

        if self.barcode is not None and not self.barcode.strip():
            self.barcode = None

        if self.updated_at is None:
            self.updated_at = utcnow()

    @property
    def stock_status(self) -> StockStatus:
        return derive_stock_status(self.quantity, self.threshold)

    def with_quantity(self, quantity: int, updated_at: Optional[datetime] = None) -> "Product":
        """Return a copy carrying a new quantity and timestamp."""
        return replace(self, quantity=quantity, updated_at=updated_at or utcnow(), metadata=dict(self.metadata))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the store's row representation."""
        return {
            "id": self.id,
            "name": self.name,
            "sku": self.sku,
            "barcode": self.barcode,
            "category_id": self.category_id,
            "supplier_id": self.supplier_id,
            "price": self.price,
            "cost": self.cost,
            "quantity": self.quantity,
            "threshold": self.threshold,
            "unit": self.unit,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Product":
        """Create instance from a store row.

        Embedded relations (``category``, ``supplier``) are kept in
        ``metadata`` so they survive a round trip through the projection.
        """
        metadata = {key: data[key] for key in ("category", "supplier") if data.get(key) is not None}

        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            sku=data["sku"],
            quantity=int(data["quantity"]),
            threshold=int(data.get("threshold") or 0),
            barcode=data.get("barcode"),
            category_id=data.get("category_id"),
            supplier_id=data.get("supplier_id"),
            price=float(data.get("price") or 0.0),
            cost=float(data["cost"]) if data.get("cost") is not None else None,
            unit=data.get("unit") or "pcs",
            updated_at=parse_timestamp(data.get("updated_at")),
            metadata=metadata,
        )
