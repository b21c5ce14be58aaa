"""Audit records: stock movements, barcode scan events and raw captures."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any

from .product import parse_timestamp, utcnow

OPERATIONS = ("add", "remove", "scan", "manual")
ACTIONS = ("create", "update", "delete")


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class StockMovement:
    """Append-only audit entry for one applied quantity change."""

    subject_id: str
    subject_name: str
    actor_id: str
    actor_name: str
    quantity_delta: int
    operation: str
    resulting_quantity: int
    barcode: Optional[str] = None
    action: str = "update"
    subject_type: str = "product"
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if self.operation not in OPERATIONS:
            raise ValueError(f"Unknown operation: {self.operation}")
        if self.action not in ACTIONS:
            raise ValueError(f"Unknown action: {self.action}")
        if self.resulting_quantity < 0:
            raise ValueError("Resulting quantity cannot be negative")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to an ``activities`` row."""
        return {
            "id": self.id,
            "action": self.action,
            "item_type": self.subject_type,
            "item_id": self.subject_id,
            "item_name": self.subject_name,
            "user_id": self.actor_id,
            "user_name": self.actor_name,
            "details": {
                "quantity_change": self.quantity_delta,
                "operation": self.operation,
                "barcode": self.barcode,
                "new_quantity": self.resulting_quantity,
            },
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StockMovement":
        details = data.get("details") or {}
        return cls(
            id=str(data["id"]),
            action=data.get("action", "update"),
            subject_type=data.get("item_type", "product"),
            subject_id=str(data["item_id"]),
            subject_name=data.get("item_name", ""),
            actor_id=str(data.get("user_id", "")),
            actor_name=data.get("user_name", ""),
            quantity_delta=int(details.get("quantity_change", 0)),
            operation=details.get("operation", "manual"),
            barcode=details.get("barcode"),
            resulting_quantity=int(details.get("new_quantity", 0)),
            created_at=parse_timestamp(data.get("created_at")) or utcnow(),
        )


@dataclass(frozen=True)
class ScanEvent:
    """Record of a barcode lookup attempt, found or not."""

    barcode: str
    actor_id: str
    product_id: Optional[str] = None
    operation: str = "scan"
    quantity_change: Optional[int] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def found(self) -> bool:
        return self.product_id is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a ``barcode_scans`` row."""
        return {
            "id": self.id,
            "barcode": self.barcode,
            "product_id": self.product_id,
            "user_id": self.actor_id,
            "operation": self.operation,
            "quantity_change": self.quantity_change,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanEvent":
        return cls(
            id=str(data["id"]),
            barcode=data["barcode"],
            product_id=data.get("product_id"),
            actor_id=str(data.get("user_id", "")),
            operation=data.get("operation") or "scan",
            quantity_change=data.get("quantity_change"),
            created_at=parse_timestamp(data.get("created_at")) or utcnow(),
        )


@dataclass(frozen=True)
class ScanCapture:
    """A decoded symbol handed over by a camera or manual entry."""

    symbol: str
    format: str = "MANUAL"
    confidence: Optional[float] = None
    stream_id: str = "default"
    captured_at: float = 0.0
