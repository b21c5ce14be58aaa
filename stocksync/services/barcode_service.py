"""Barcode resolution: decoded symbol -> product, with every attempt recorded."""

import time
from typing import Callable, Dict, List, Optional, Tuple

from .context import RequestContext
from .mutation_service import StockMutationService
from ..models.activity import ScanCapture, ScanEvent
from ..models.product import Product
from ..models.result import Adjustment, BarcodeLookup, OperationResult
from ..utils.config import get_config
from ..utils.exceptions import (
    BaseAppException,
    InvalidArgumentError,
    StoreFailureError,
)
from ..utils.logger import get_scan_logger, get_error_logger

MANUAL_FORMAT = "manual"


class BarcodeResolutionService:
    """Exact-match lookup of ``Product.barcode``."""

    def __init__(self):
        self.config = get_config()
        self.logger = get_scan_logger()
        self.error_logger = get_error_logger()

    async def resolve_barcode(self, ctx: RequestContext, symbol: str) -> OperationResult[BarcodeLookup]:
        """
        Resolve a symbol to a product.

        A missing product is a successful lookup with ``not_found`` set; only
        auth, argument and store problems produce a failed result.
        """
        try:
            actor = ctx.require_actor()
        except BaseAppException as e:
            self.logger.info(f"Rejected barcode lookup: {e.message}")
            return OperationResult.fail(e)

        symbol = (symbol or "").strip()
        if not symbol:
            return OperationResult.fail(InvalidArgumentError("Barcode cannot be empty"))

        product: Optional[Product] = None
        failure: Optional[StoreFailureError] = None
        try:
            product = await ctx.store.find_product_by_barcode(symbol)
        except StoreFailureError as e:
            failure = e

        await self._record(ctx, ScanEvent(
            barcode=symbol,
            product_id=product.id if product else None,
            actor_id=actor.id,
        ))

        if failure is not None:
            self.error_logger.error(f"Barcode lookup for {symbol} failed: {failure.message}")
            return OperationResult.fail(failure)

        if product is None:
            self.logger.info(f"No product with barcode {symbol} (scanned by {actor.display_name})")
        else:
            self.logger.info(f"Barcode {symbol} -> {product.name} [{product.id}]")

        return OperationResult.ok(BarcodeLookup(symbol=symbol, product=product))

    async def recent_scans(self, ctx: RequestContext, limit: Optional[int] = None) -> OperationResult[List[ScanEvent]]:
        """Latest scan events, newest first."""
        try:
            ctx.require_actor()
            scans = await ctx.store.list_scan_events(limit or self.config.scanner.recent_scans_limit)
            return OperationResult.ok(scans)
        except BaseAppException as e:
            return OperationResult.fail(e)

    async def _record(self, ctx: RequestContext, scan_event: ScanEvent):
        try:
            await ctx.store.insert_scan_event(scan_event)
        except StoreFailureError as e:
            self.error_logger.error(f"Failed to record scan of {scan_event.barcode}: {e.message}")


class ScanDebouncer:
    """Drops a symbol re-read by the same capture stream inside the window.

    This only rate-limits a continuous camera feed; the resolve path itself
    never deduplicates.
    """

    def __init__(self, window_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.window = window_seconds if window_seconds is not None else get_config().scanner.debounce_seconds
        self.clock = clock
        self._last: Dict[str, Tuple[str, float]] = {}

    def should_process(self, capture: ScanCapture) -> bool:
        now = capture.captured_at or self.clock()
        last = self._last.get(capture.stream_id)
        if last is not None:
            last_symbol, last_seen = last
            if last_symbol == capture.symbol and now - last_seen < self.window:
                return False
        self._last[capture.stream_id] = (capture.symbol, now)
        return True

    def reset(self, stream_id: Optional[str] = None):
        if stream_id is None:
            self._last.clear()
        else:
            self._last.pop(stream_id, None)


class ScanSession:
    """One capture stream: debounced lookups followed by quantity changes."""

    def __init__(
        self,
        ctx: RequestContext,
        resolver: Optional[BarcodeResolutionService] = None,
        mutations: Optional[StockMutationService] = None,
        debouncer: Optional[ScanDebouncer] = None,
    ):
        self.ctx = ctx
        self.config = get_config()
        self.logger = get_scan_logger()
        self.resolver = resolver or BarcodeResolutionService()
        self.mutations = mutations or StockMutationService()
        self.debouncer = debouncer or ScanDebouncer()
        self.allowed_formats = {f.lower() for f in self.config.scanner.formats} | {MANUAL_FORMAT}
        self.last_lookup: Optional[BarcodeLookup] = None

    async def handle_capture(self, capture: ScanCapture) -> Optional[OperationResult[BarcodeLookup]]:
        """
        Resolve a captured symbol.

        Returns:
            ``None`` when the capture was debounced, else the lookup result
        """
        if capture.format.lower() not in self.allowed_formats:
            self.logger.debug(f"Ignoring unsupported barcode format {capture.format}")
            return OperationResult.fail(InvalidArgumentError(
                f"Unsupported barcode format: {capture.format}",
                details={"allowed": sorted(self.allowed_formats)}
            ))

        if not self.debouncer.should_process(capture):
            self.logger.debug(f"Debounced repeat read of {capture.symbol} on {capture.stream_id}")
            return None

        result = await self.resolver.resolve_barcode(self.ctx, capture.symbol)
        if result.success:
            self.last_lookup = result.value
        return result

    async def apply(self, magnitude: int, operation: str) -> OperationResult[Adjustment]:
        """Apply a quantity change to the last resolved product."""
        if self.last_lookup is None or self.last_lookup.not_found:
            return OperationResult.fail(InvalidArgumentError("No resolved product to update"))

        return await self.mutations.adjust_quantity(
            self.ctx,
            self.last_lookup.product.id,
            magnitude,
            operation,
            barcode=self.last_lookup.symbol,
            tag="scan",
        )
