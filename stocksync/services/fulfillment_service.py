"""Order fulfillment -> stock decrements.

Flow per line item:
  1. Resolve the product (by id, or by barcode when no id is given).
  2. Remove the ordered quantity through the stock mutation service.
"""

from typing import Any, Dict, Optional

from .context import RequestContext
from .mutation_service import StockMutationService
from ..models.result import FulfillmentResult
from ..utils.exceptions import BaseAppException, NotFoundError
from ..utils.logger import get_mutation_logger, get_error_logger


class FulfillmentService:
    """Apply a fulfilled order's line items to stock."""

    def __init__(self, mutations: Optional[StockMutationService] = None):
        self.logger = get_mutation_logger()
        self.error_logger = get_error_logger()
        self.mutations = mutations or StockMutationService()

    async def fulfill_order(self, ctx: RequestContext, order: Dict[str, Any]) -> FulfillmentResult:
        """
        Decrement stock for every line item of ``order``.

        Line items look like ``{"product_id": ..., "barcode": ..., "quantity": n}``.
        Items without a product reference or with a non-positive quantity are
        skipped; failures are collected per item and never abort the order.
        """
        order_id = order.get("id") or order.get("order_number")
        result = FulfillmentResult(order_id=str(order_id) if order_id is not None else None)

        line_items = order.get("items") or order.get("line_items") or []
        result.total_items = len(line_items)
        self.logger.info(f"Fulfilling order {order_id} with {len(line_items)} line item(s)")

        for item in line_items:
            product_id = item.get("product_id")
            barcode = item.get("barcode")
            quantity = item.get("quantity", 0)
            reference = product_id or barcode or "?"

            if not product_id and not barcode:
                self.logger.warning(f"Line item without product reference in order {order_id}; skipping")
                result.skipped_count += 1
                continue

            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
                self.logger.warning(f"Skipping {reference}: invalid quantity {quantity} in order {order_id}")
                result.skipped_count += 1
                continue

            try:
                if not product_id:
                    product = await ctx.store.find_product_by_barcode(barcode)
                    if product is None:
                        raise NotFoundError(f"No product with barcode {barcode}", details={"barcode": barcode})
                    product_id = product.id

                outcome = await self.mutations.adjust_quantity(ctx, product_id, quantity, "remove")
            except BaseAppException as e:
                result.add_error(reference, e.kind, e.message, e.details or None)
                continue

            if outcome.success:
                result.processed_count += 1
                result.adjustments.append(outcome.value)
            else:
                result.add_error(reference, outcome.error.kind, outcome.error.message, outcome.error.details)

        result.finalize()

        if result.success:
            self.logger.info(f"Order {order_id} fulfilled: {result.processed_count} item(s) updated")
        else:
            self.error_logger.error(f"Order {order_id} fulfilled with {result.failed_count} error(s)")
        return result
