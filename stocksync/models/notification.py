"""Client-local notification model."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any

from .activity import new_id
from .product import utcnow

STOCK_UPDATED = "stock_updated"
LOW_STOCK = "low_stock"
OUT_OF_STOCK = "out_of_stock"
ACTIVITY = "activity"


@dataclass
class Notification:
    """A user-facing alert derived from the change stream."""

    title: str
    description: str
    kind: str
    product_id: Optional[str] = None
    read: bool = False
    id: str = field(default_factory=new_id)
    source_timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "kind": self.kind,
            "product_id": self.product_id,
            "read": self.read,
            "source_timestamp": self.source_timestamp.isoformat(),
        }
