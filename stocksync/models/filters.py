"""View filter applied to product rows."""

from dataclasses import dataclass
from typing import Optional, Dict, Any

from .product import Product, StockStatus


@dataclass(frozen=True)
class ProductFilter:
    """Predicate over ``(search, category, supplier, stock status)``.

    ``matches`` has no side effects and is re-run against every row on every
    reconciliation step.
    """

    search: Optional[str] = None
    category_id: Optional[str] = None
    supplier_id: Optional[str] = None
    stock_status: Optional[StockStatus] = None

    def __post_init__(self):
        if isinstance(self.stock_status, str) and not isinstance(self.stock_status, StockStatus):
            object.__setattr__(self, "stock_status", StockStatus(self.stock_status.replace("-", "_")))
        if self.search is not None and not self.search.strip():
            object.__setattr__(self, "search", None)

    def matches(self, product: Product) -> bool:
        if self.search:
            needle = self.search.strip().lower()
            haystack = (product.name, product.sku, product.barcode or "")
            if not any(needle in value.lower() for value in haystack):
                return False

        if self.category_id and product.category_id != self.category_id:
            return False

        if self.supplier_id and product.supplier_id != self.supplier_id:
            return False

        if self.stock_status and product.stock_status != self.stock_status:
            return False

        return True

    @property
    def is_empty(self) -> bool:
        return not (self.search or self.category_id or self.supplier_id or self.stock_status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "search": self.search,
            "category": self.category_id,
            "supplier": self.supplier_id,
            "stock_status": self.stock_status.value if self.stock_status else None,
        }
