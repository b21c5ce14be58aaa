"""Stock mutation service: the only writer of ``Product.quantity``.

Flow per call:
  1. Check the actor and its role, then validate the arguments.
  2. Read the current quantity.
  3. Compute ``max(0, current + delta)``; over-removal clamps to zero.
  4. Conditionally write the new quantity (retried on a concurrent write).
  5. Append one stock movement carrying the applied delta.
"""

from typing import Callable, Optional, Tuple

from .context import Actor, RequestContext
from ..models.activity import ScanEvent, StockMovement
from ..models.product import Product, utcnow
from ..models.result import Adjustment, OperationResult
from ..utils.config import get_config
from ..utils.exceptions import (
    BaseAppException,
    InvalidArgumentError,
    NotFoundError,
    StoreFailureError,
    WriteConflictError,
)
from ..utils.logger import get_mutation_logger, get_error_logger

OPERATIONS = ("add", "remove")

# (current quantity) -> (requested delta, new quantity)
QuantityRule = Callable[[int], Tuple[int, int]]


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def compute_new_quantity(current: int, delta: int) -> int:
    """Apply ``delta`` to ``current``, clamping at zero."""
    return max(0, current + delta)


class StockMutationService:
    """Atomic, audited quantity changes."""

    def __init__(self):
        self.config = get_config()
        self.logger = get_mutation_logger()
        self.error_logger = get_error_logger()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def adjust_quantity(
        self,
        ctx: RequestContext,
        product_id: str,
        magnitude: int,
        operation: str,
        barcode: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> OperationResult[Adjustment]:
        """
        Add or remove ``magnitude`` units.

        Args:
            ctx: Request context carrying the actor and store
            product_id: Product to change
            magnitude: Positive number of units
            operation: ``add`` or ``remove``
            barcode: Scanned symbol that triggered the change, if any
            tag: Operation tag for the audit record; defaults to ``operation``

        Returns:
            OperationResult wrapping an :class:`Adjustment`
        """
        try:
            actor = ctx.require_role(self.config.mutation.allowed_roles)

            if operation not in OPERATIONS:
                raise InvalidArgumentError(
                    f"Invalid operation: {operation}",
                    details={"allowed": list(OPERATIONS)}
                )
            if not _is_int(magnitude) or magnitude <= 0:
                raise InvalidArgumentError(
                    "Quantity must be a positive integer",
                    details={"quantity": magnitude}
                )

            delta = magnitude if operation == "add" else -magnitude

            def rule(current: int) -> Tuple[int, int]:
                return delta, compute_new_quantity(current, delta)

            adjustment = await self._mutate(ctx, actor, product_id, rule, tag or operation, barcode)
            return OperationResult.ok(adjustment)

        except BaseAppException as e:
            self._log_failure("adjust_quantity", product_id, e)
            return OperationResult.fail(e)

    async def set_quantity(
        self,
        ctx: RequestContext,
        product_id: str,
        quantity: int,
    ) -> OperationResult[Adjustment]:
        """Set an absolute quantity from a manual edit."""
        try:
            actor = ctx.require_role(self.config.mutation.allowed_roles)

            if not _is_int(quantity) or quantity < 0:
                raise InvalidArgumentError(
                    "Quantity must be a non-negative integer",
                    details={"quantity": quantity}
                )

            def rule(current: int) -> Tuple[int, int]:
                return quantity - current, quantity

            adjustment = await self._mutate(ctx, actor, product_id, rule, "manual", None)
            return OperationResult.ok(adjustment)

        except BaseAppException as e:
            self._log_failure("set_quantity", product_id, e)
            return OperationResult.fail(e)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _read(self, ctx: RequestContext, product_id: str) -> Product:
        product = await ctx.store.get_product(product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
        return product

    async def _mutate(
        self,
        ctx: RequestContext,
        actor: Actor,
        product_id: str,
        rule: QuantityRule,
        tag: str,
        barcode: Optional[str],
    ) -> Adjustment:
        attempts = self.config.mutation.max_conflict_retries + 1

        for attempt in range(1, attempts + 1):
            product = await self._read(ctx, product_id)
            requested_delta, new_quantity = rule(product.quantity)

            if tag == "manual" and new_quantity == product.quantity:
                self.logger.info(f"[{product_id}] quantity unchanged at {new_quantity}; nothing to record")
                return Adjustment(
                    product_id=product_id,
                    previous_quantity=product.quantity,
                    new_quantity=new_quantity,
                    requested_delta=0,
                    audit_recorded=False,
                )

            try:
                await ctx.store.compare_and_set_quantity(
                    product_id,
                    expected_quantity=product.quantity,
                    new_quantity=new_quantity,
                    updated_at=utcnow(),
                )
                break
            except WriteConflictError:
                self.logger.warning(
                    f"[{product_id}] concurrent write detected (attempt {attempt}/{attempts}); re-reading"
                )
                if attempt == attempts:
                    raise

        adjustment = Adjustment(
            product_id=product_id,
            previous_quantity=product.quantity,
            new_quantity=new_quantity,
            requested_delta=requested_delta,
        )

        if adjustment.clamped:
            self.logger.info(
                f"[{product_id}] requested {requested_delta:+d} clamped to {adjustment.applied_delta:+d}"
            )

        movement = StockMovement(
            subject_id=product_id,
            subject_name=product.name,
            actor_id=actor.id,
            actor_name=actor.display_name,
            quantity_delta=adjustment.applied_delta,
            operation=tag,
            barcode=barcode,
            resulting_quantity=new_quantity,
        )

        try:
            adjustment.movement = await ctx.store.insert_movement(movement)
        except StoreFailureError as e:
            # The quantity write has committed and is not rolled back.
            adjustment.audit_recorded = False
            self.error_logger.error(
                f"Audit write failed after quantity change on {product_id} "
                f"({product.quantity} -> {new_quantity}): {e.message}",
                exc_info=True,
            )

        if barcode:
            await self._record_scan(ctx, actor, barcode, product_id, requested_delta)

        self.logger.info(
            f"[{product_id}] {product.name}: {product.quantity} -> {new_quantity} "
            f"({adjustment.applied_delta:+d}, {tag}) by {actor.display_name}"
        )
        return adjustment

    async def _record_scan(self, ctx: RequestContext, actor: Actor, barcode: str, product_id: str, delta: int):
        try:
            await ctx.store.insert_scan_event(ScanEvent(
                barcode=barcode,
                product_id=product_id,
                actor_id=actor.id,
                operation="add" if delta > 0 else "remove",
                quantity_change=delta,
            ))
        except StoreFailureError as e:
            self.error_logger.error(f"Failed to record scan of {barcode}: {e.message}")

    def _log_failure(self, operation: str, product_id: str, error: BaseAppException):
        if isinstance(error, StoreFailureError):
            self.error_logger.error(
                f"{operation} failed for {product_id}: {error.message}",
                extra={"details": error.details},
                exc_info=True,
            )
        else:
            self.logger.info(f"{operation} rejected for {product_id}: {error.kind} ({error.message})")
