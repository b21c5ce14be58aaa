"""Result data models returned by the service layer."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, List, Dict, Any, Optional, TypeVar

from .activity import StockMovement
from .product import Product, utcnow
from ..utils.exceptions import BaseAppException

T = TypeVar("T")


@dataclass
class OperationError:
    """Represents a typed failure of a service operation."""

    kind: str
    message: str
    status_code: int = 500
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def from_exception(cls, exc: BaseAppException) -> "OperationError":
        return cls(
            kind=exc.kind,
            message=exc.message,
            status_code=exc.status_code,
            details=exc.details or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "kind": self.kind,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat()
        }


@dataclass
class OperationResult(Generic[T]):
    """Either a success payload or an :class:`OperationError`."""

    success: bool
    value: Optional[T] = None
    error: Optional[OperationError] = None

    @classmethod
    def ok(cls, value: T) -> "OperationResult[T]":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, exc: BaseAppException) -> "OperationResult[T]":
        return cls(success=False, error=OperationError.from_exception(exc))

    @property
    def error_kind(self) -> Optional[str]:
        return self.error.kind if self.error else None

    def unwrap(self) -> T:
        """Return the payload or raise a ``ValueError`` describing the failure."""
        if not self.success:
            raise ValueError(f"{self.error.kind}: {self.error.message}")
        return self.value


@dataclass
class Adjustment:
    """Payload of a successful quantity mutation."""

    product_id: str
    previous_quantity: int
    new_quantity: int
    requested_delta: int
    movement: Optional[StockMovement] = None
    audit_recorded: bool = True

    @property
    def applied_delta(self) -> int:
        return self.new_quantity - self.previous_quantity

    @property
    def clamped(self) -> bool:
        return self.applied_delta != self.requested_delta

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "newQuantity": self.new_quantity,
            "previousQuantity": self.previous_quantity,
            "appliedDelta": self.applied_delta,
            "auditRecorded": self.audit_recorded,
        }


@dataclass
class BarcodeLookup:
    """Payload of a barcode resolution; ``not_found`` is a normal outcome."""

    symbol: str
    product: Optional[Product] = None

    @property
    def not_found(self) -> bool:
        return self.product is None


@dataclass
class LineItemError:
    """Represents a failed order line item."""

    reference: str
    error_type: str
    message: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reference": self.reference,
            "error_type": self.error_type,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class FulfillmentResult:
    """Represents the result of fulfilling an order against stock."""

    order_id: Optional[str] = None
    processed_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    total_items: int = 0
    errors: List[LineItemError] = field(default_factory=list)
    adjustments: List[Adjustment] = field(default_factory=list)
    duration: float = 0.0  # seconds
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def __post_init__(self):
        if self.start_time is None:
            self.start_time = utcnow()

    @property
    def success(self) -> bool:
        return self.failed_count == 0

    def add_error(self, reference: str, error_type: str, message: str, details: Optional[Dict[str, Any]] = None):
        """Add an error to the result."""
        self.errors.append(LineItemError(
            reference=reference,
            error_type=error_type,
            message=message,
            details=details
        ))
        self.failed_count += 1

    def finalize(self):
        """Finalize the result with end time and duration."""
        self.end_time = utcnow()
        if self.start_time:
            self.duration = (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "success": self.success,
            "order_id": self.order_id,
            "processed_count": self.processed_count,
            "failed_count": self.failed_count,
            "skipped_count": self.skipped_count,
            "total_items": self.total_items,
            "duration": round(self.duration, 2),
            "errors": [error.to_dict() for error in self.errors],
            "new_quantities": {adj.product_id: adj.new_quantity for adj in self.adjustments},
        }

    def get_summary(self) -> str:
        """Get a human-readable summary."""
        summary_lines = [
            f"Order {self.order_id or '?'} fulfilled in {self.duration:.2f}s",
            f"Line items: {self.total_items}",
            f"Processed: {self.processed_count}",
            f"Failed: {self.failed_count}",
            f"Skipped: {self.skipped_count}",
        ]

        if self.errors:
            summary_lines.append(f"\nErrors ({len(self.errors)}):")
            for error in self.errors[:5]:
                summary_lines.append(f"  - {error.reference}: {error.message}")
            if len(self.errors) > 5:
                summary_lines.append(f"  ... and {len(self.errors) - 5} more errors")

        return "\n".join(summary_lines)
