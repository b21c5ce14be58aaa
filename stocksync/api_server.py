"""FastAPI surface for stock adjustment and barcode lookup.

Every request carries the actor implicitly through its session token; the
core services receive it in an explicit :class:`RequestContext`.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .auth.session import SessionAuthenticator
from .feed.change_feed import ChangeFeed
from .models.filters import ProductFilter
from .models.result import OperationResult
from .services.barcode_service import BarcodeResolutionService
from .services.context import RequestContext
from .services.fulfillment_service import FulfillmentService
from .services.mutation_service import StockMutationService
from .store.base import LedgerStore
from .store.memory_store import InMemoryLedgerStore
from .store.rest_store import RestLedgerStore
from .utils.config import get_config
from .utils.exceptions import BaseAppException, ConfigurationError, SessionTokenError
from .utils.logger import get_api_logger

config = get_config()
logger = get_api_logger()


# ------------------------------------------------------------------
# Request bodies
# ------------------------------------------------------------------

class InventoryAction(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: str
    barcode: Optional[str] = None
    product_id: Optional[str] = Field(default=None, alias="productId")
    quantity: Optional[int] = None
    operation: Optional[str] = None


class AdjustRequest(BaseModel):
    quantity: int
    operation: str
    barcode: Optional[str] = None


class SetQuantityRequest(BaseModel):
    quantity: int


class OrderLine(BaseModel):
    product_id: Optional[str] = None
    barcode: Optional[str] = None
    quantity: int


class OrderRequest(BaseModel):
    id: Optional[str] = None
    items: List[OrderLine]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def build_store(feed: ChangeFeed) -> LedgerStore:
    """Create the configured ledger store backend."""
    backend = config.env.store_backend.lower()
    if backend == "memory":
        return InMemoryLedgerStore(feed)
    if backend == "rest":
        return RestLedgerStore()
    raise ConfigurationError(f"Unknown store backend: {backend}", details={"backend": backend})


def error_response(result: OperationResult) -> JSONResponse:
    return JSONResponse(
        status_code=result.error.status_code,
        content={"error": result.error.message, "status_code": result.error.status_code}
    )


def create_app(
    store: Optional[LedgerStore] = None,
    feed: Optional[ChangeFeed] = None,
    authenticator: Optional[SessionAuthenticator] = None,
) -> FastAPI:
    """Build the application; collaborators can be injected for tests."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info("StockSync API Starting")
        logger.info("=" * 60)
        logger.info(f"Environment:          {config.env.environment}")
        logger.info(f"Port:                 {config.env.port}")
        logger.info(f"Store backend:        {type(app.state.store).__name__}")
        logger.info("=" * 60)

        yield

        await app.state.store.close()
        logger.info("StockSync API shut down.")

    app = FastAPI(
        title="StockSync API",
        description="Stock mutation and barcode resolution endpoints",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.feed = feed or ChangeFeed()
    app.state.store = store or build_store(app.state.feed)
    app.state.authenticator = authenticator or SessionAuthenticator()
    app.state.mutations = StockMutationService()
    app.state.resolver = BarcodeResolutionService()
    app.state.fulfillment = FulfillmentService(app.state.mutations)

    def get_context(request: Request) -> RequestContext:
        try:
            actor = app.state.authenticator.authenticate(request.headers.get("Authorization"))
        except SessionTokenError as e:
            raise HTTPException(status_code=401, detail=e.message)
        return RequestContext(store=app.state.store, actor=actor)

    # --------------------------------------------------------------
    # Service endpoints
    # --------------------------------------------------------------

    @app.get("/")
    async def root():
        return {
            "service": "StockSync API",
            "version": "1.0.0",
            "status": "running"
        }

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": config.env.environment,
            "realtime_channels": app.state.feed.subscriber_count,
        }

    # --------------------------------------------------------------
    # Inventory
    # --------------------------------------------------------------

    @app.get("/api/inventory")
    async def get_inventory(
        barcode: Optional[str] = None,
        search: Optional[str] = None,
        category: Optional[str] = None,
        supplier: Optional[str] = None,
        stock_status: Optional[str] = Query(default=None, alias="stockStatus"),
        low_stock: bool = Query(default=False, alias="lowStock"),
        ctx: RequestContext = Depends(get_context),
    ):
        """Barcode lookup when ``barcode`` is given, else a filtered product list."""
        if barcode is not None:
            result = await app.state.resolver.resolve_barcode(ctx, barcode)
            if not result.success:
                return error_response(result)
            if result.value.not_found:
                return JSONResponse(
                    status_code=404,
                    content={"error": "Product not found", "notFound": True, "barcode": result.value.symbol}
                )
            return {"product": result.value.product.to_dict()}

        if low_stock and not stock_status:
            stock_status = "low_stock"
        try:
            product_filter = ProductFilter(
                search=search, category_id=category, supplier_id=supplier, stock_status=stock_status
            )
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid stock status: {stock_status}")

        products = await ctx.store.list_products(product_filter)
        return {
            "products": [
                {**p.to_dict(), "stock_status": p.stock_status.value} for p in products
            ]
        }

    @app.post("/api/inventory")
    async def inventory_action(payload: InventoryAction, ctx: RequestContext = Depends(get_context)):
        """Scan action: record the scan and apply an optional quantity change."""
        ctx.require_role(config.mutation.allowed_roles)

        if payload.action != "scan":
            raise HTTPException(status_code=400, detail="Invalid action")

        if payload.product_id and payload.quantity:
            result = await app.state.mutations.adjust_quantity(
                ctx,
                payload.product_id,
                payload.quantity,
                payload.operation or "",
                barcode=payload.barcode,
                tag="scan",
            )
            if not result.success:
                return error_response(result)
            return {"success": True, "newQuantity": result.value.new_quantity}

        if payload.barcode:
            result = await app.state.resolver.resolve_barcode(ctx, payload.barcode)
            if not result.success:
                return error_response(result)
            return {"success": True, "notFound": result.value.not_found}

        raise HTTPException(status_code=400, detail="Scan requires a barcode or a product and quantity")

    @app.post("/api/inventory/{product_id}/adjust")
    async def adjust(product_id: str, payload: AdjustRequest, ctx: RequestContext = Depends(get_context)):
        result = await app.state.mutations.adjust_quantity(
            ctx, product_id, payload.quantity, payload.operation, barcode=payload.barcode
        )
        if not result.success:
            return error_response(result)
        return result.value.to_dict()

    @app.put("/api/inventory/{product_id}/quantity")
    async def set_quantity(product_id: str, payload: SetQuantityRequest, ctx: RequestContext = Depends(get_context)):
        result = await app.state.mutations.set_quantity(ctx, product_id, payload.quantity)
        if not result.success:
            return error_response(result)
        return result.value.to_dict()

    @app.get("/api/inventory/scans/recent")
    async def recent_scans(
        limit: int = Query(default=5, ge=1, le=100),
        ctx: RequestContext = Depends(get_context),
    ):
        result = await app.state.resolver.recent_scans(ctx, limit)
        if not result.success:
            return error_response(result)
        return {"scans": [scan.to_dict() for scan in result.value]}

    @app.get("/api/inventory/{product_id}/movements")
    async def movements(
        product_id: str,
        limit: int = Query(default=50, ge=1, le=500),
        ctx: RequestContext = Depends(get_context),
    ):
        rows = await ctx.store.list_movements(product_id, limit)
        return {"movements": [m.to_dict() for m in rows]}

    # --------------------------------------------------------------
    # Orders
    # --------------------------------------------------------------

    @app.post("/api/orders/fulfill")
    async def fulfill_order(payload: OrderRequest, ctx: RequestContext = Depends(get_context)):
        ctx.require_role(config.mutation.allowed_roles)
        order: Dict[str, Any] = {"id": payload.id, "items": [line.model_dump() for line in payload.items]}
        result = await app.state.fulfillment.fulfill_order(ctx, order)
        return JSONResponse(status_code=200 if result.success else 207, content=result.to_dict())

    # --------------------------------------------------------------
    # Exception handlers
    # --------------------------------------------------------------

    @app.exception_handler(BaseAppException)
    async def app_exception_handler(request: Request, exc: BaseAppException):
        logger.warning(f"{exc.kind}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "status_code": exc.status_code}
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        logger.warning(f"HTTP {exc.status_code}: {exc.detail}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "status_code": exc.status_code}
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Invalid request body: {exc.errors()}")
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "status_code": 400, "details": jsonable_errors(exc)}
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": str(exc) if not config.is_production else "An error occurred"
            }
        )

    return app


def jsonable_errors(exc: RequestValidationError) -> List[Dict[str, Any]]:
    return [{"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()]


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "stocksync.api_server:app",
        host="0.0.0.0",
        port=config.env.port,
        reload=not config.is_production
    )
