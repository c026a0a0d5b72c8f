"""
FastAPI Application Entry Point

Canteen Orders - inventory-aware cart and order API.

Endpoints:
    - GET  /api/menu: Available food items
    - GET  /api/cart/{user_id}: Cart with live prices and stock
    - POST /api/cart: Add to cart (stock ceiling enforced)
    - PUT  /api/cart/{cart_item_id}: Change a cart line's quantity
    - DELETE /api/cart/{cart_item_id}: Remove a cart line
    - POST /api/orders: Place an order from the cart
    - PUT  /api/orders/{order_id}/status: Move an order through its workflow
    - GET  /api/orders/current/{user_id}, /api/orders/history/{user_id}
    - GET  /api/admin/orders, /api/admin/revenue/today
    - GET  /health: System health check
"""

import asyncio
import sys
import logging
from datetime import datetime, timezone
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Query, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from canteen.core.config import get_settings, setup_logging
from canteen.core.exceptions import CanteenError, InvalidStatus, NotFound
from canteen.database import get_db, init_db, engine
from canteen.models import OrderStatus
from canteen.schemas import (
    CartCountResponse,
    CartItemCreate,
    CartItemUpdate,
    CartLineResponse,
    CartMutationResponse,
    CartResponse,
    BillResponse,
    CurrentOrderResponse,
    ErrorResponse,
    FoodItemResponse,
    HealthResponse,
    MenuResponse,
    OrderCreate,
    OrderCreateResponse,
    OrderDetailResponse,
    OrderListResponse,
    OrderResponse,
    OrderStatusResponse,
    OrderStatusUpdate,
    RevenueResponse,
)
from canteen.services.cart import get_cart_service
from canteen.services.catalog import get_catalog
from canteen.services.ledger import OrderSummary, build_bill, get_order_ledger, to_money
from canteen.services.placement import get_placement_service
from canteen.services.status import get_status_service

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()
    logger.info("✅ Database initialized")

    logger.info(f"✅ Catalog: {get_catalog().provider_name}")
    logger.info(
        f"✅ Retry budgets: placement={settings.placement_max_retries}, "
        f"status={settings.status_max_retries}, "
        f"cart={settings.cart_max_retries}"
    )

    problems = settings.validate_production_config()
    if problems:
        logger.warning(f"⚠️ Production config problems: {problems}")

    logger.info("✅ Application ready!")

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Restaurant ordering engine: carts with a stock ceiling, atomic order "
        "placement against finite inventory, and an order status workflow "
        "that restocks on cancellation."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def order_detail(summary: OrderSummary) -> OrderDetailResponse:
    """Wrap an order with its bill."""
    return OrderDetailResponse(
        order=OrderResponse.model_validate(summary),
        bill=BillResponse.model_validate(build_bill(summary)),
    )


def parse_status_filter(status: Optional[str]) -> Optional[OrderStatus]:
    if not status:
        return None
    try:
        return OrderStatus.parse(status)
    except ValueError as e:
        raise InvalidStatus(str(e))


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍽️ Welcome to {settings.restaurant_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "menu": "/api/menu",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db)
) -> HealthResponse:
    """Verify the database is reachable."""
    db_status = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except (OperationalError, InterfaceError) as e:
        db_status = f"unhealthy: {e.orig}"
        logger.error(f"Database health check failed: {e}")

    return HealthResponse(
        status="operational" if db_status == "healthy" else "degraded",
        database=db_status,
        environment=settings.env_mode.value,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# CATALOG ENDPOINTS (read-only)
# =============================================================================

@app.get("/api/menu", response_model=MenuResponse, tags=["Catalog"])
async def get_menu(db: AsyncSession = Depends(get_db)) -> MenuResponse:
    """List food items currently offered."""
    items = await get_catalog().list_available(db)
    return MenuResponse(items=[FoodItemResponse.model_validate(i) for i in items])


@app.get(
    "/api/food-items/{food_item_id}",
    response_model=FoodItemResponse,
    responses=ERROR_RESPONSES,
    tags=["Catalog"],
)
async def get_food_item(
    food_item_id: int,
    db: AsyncSession = Depends(get_db),
) -> FoodItemResponse:
    item = await get_catalog().get_item(db, food_item_id)
    if item is None:
        raise NotFound(f"Food item #{food_item_id} not found")
    return FoodItemResponse.model_validate(item)


# =============================================================================
# CART ENDPOINTS
# =============================================================================

@app.get("/api/cart/{user_id}", response_model=CartResponse, tags=["Cart"])
async def get_cart(user_id: str, db: AsyncSession = Depends(get_db)) -> CartResponse:
    """Cart lines joined with live price, stock and availability."""
    lines = await get_cart_service().list_cart(db, user_id)
    return CartResponse(
        user_id=user_id,
        items=[CartLineResponse.model_validate(line) for line in lines],
        item_count=len(lines),
        subtotal=to_money(sum((line.line_total for line in lines), 0)),
    )


@app.get("/api/cart/{user_id}/count", response_model=CartCountResponse, tags=["Cart"])
async def get_cart_count(user_id: str, db: AsyncSession = Depends(get_db)) -> CartCountResponse:
    return CartCountResponse(count=await get_cart_service().count(db, user_id))


@app.post(
    "/api/cart",
    response_model=CartMutationResponse,
    responses=ERROR_RESPONSES,
    tags=["Cart"],
    summary="Add to Cart",
)
async def add_to_cart(
    payload: CartItemCreate,
    db: AsyncSession = Depends(get_db),
) -> CartMutationResponse:
    """
    Add a food item to a user's cart.

    Rejected when the cart would hold more units than are in stock.
    Nothing is reserved: stock is checked again when the order is placed.
    """
    line = await get_cart_service().add_item(
        db, payload.user_id, payload.food_item_id, payload.quantity
    )
    return CartMutationResponse(
        message="Item added to cart",
        item=CartLineResponse.model_validate(line),
    )


@app.put(
    "/api/cart/{cart_item_id}",
    response_model=CartMutationResponse,
    responses=ERROR_RESPONSES,
    tags=["Cart"],
)
async def update_cart_item(
    cart_item_id: int,
    payload: CartItemUpdate,
    db: AsyncSession = Depends(get_db),
) -> CartMutationResponse:
    """Replace a cart line's quantity; 0 or less removes the line."""
    line = await get_cart_service().set_quantity(db, cart_item_id, payload.quantity)
    if line is None:
        return CartMutationResponse(message="Item removed from cart")
    return CartMutationResponse(
        message="Cart updated",
        item=CartLineResponse.model_validate(line),
    )


@app.delete("/api/cart/{cart_item_id}", response_model=CartMutationResponse, tags=["Cart"])
async def remove_cart_item(
    cart_item_id: int,
    db: AsyncSession = Depends(get_db),
) -> CartMutationResponse:
    """Remove a cart line. Removing an already removed line succeeds."""
    removed = await get_cart_service().remove_item(db, cart_item_id)
    return CartMutationResponse(
        message="Item removed from cart" if removed else "Item was not in cart"
    )


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderCreateResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Place Order",
)
async def place_order(
    payload: OrderCreate,
    db: AsyncSession = Depends(get_db),
) -> OrderCreateResponse:
    """
    Turn the user's cart into an order.

    Stock for every line is taken in the same transaction that writes
    the order and empties the cart; if any line is short nothing is
    written and the response names the short items.
    """
    logger.info(f"Placing order for user {payload.user_id}")
    summary = await get_placement_service().place_order(db, payload.user_id)
    detail = order_detail(summary)
    return OrderCreateResponse(
        message="Order placed successfully",
        order=detail.order,
        bill=detail.bill,
    )


@app.get(
    "/api/orders/current/{user_id}",
    response_model=CurrentOrderResponse,
    tags=["Orders"],
)
async def get_current_order(
    user_id: str,
    db: AsyncSession = Depends(get_db),
) -> CurrentOrderResponse:
    """Latest order that is still pending, processing or ready."""
    summary = await get_order_ledger().get_current_order(db, user_id)
    return CurrentOrderResponse(
        order=OrderResponse.model_validate(summary) if summary else None
    )


@app.get(
    "/api/orders/history/{user_id}",
    response_model=OrderListResponse,
    tags=["Orders"],
)
async def get_order_history(
    user_id: str,
    db: AsyncSession = Depends(get_db),
) -> OrderListResponse:
    """All of a user's orders with totals, newest first."""
    orders = await get_order_ledger().list_user_orders(db, user_id)
    return OrderListResponse(
        total=len(orders),
        orders=[OrderResponse.model_validate(o) for o in orders],
    )


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderDetailResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
) -> OrderDetailResponse:
    """Get a specific order with its bill."""
    return order_detail(await get_order_ledger().get_order(db, order_id))


async def _set_status(db: AsyncSession, order_id: int, status: str) -> OrderStatusResponse:
    change = await get_status_service().set_status(db, order_id, status)
    cancelled = change.changed and change.status == OrderStatus.CANCELLED

    if cancelled:
        logger.info(f"Order #{order_id} cancelled; customer should be notified")

    if change.changed:
        message = f"Order status updated to {change.status.value}"
    else:
        message = f"Order is already {change.status.value}"

    return OrderStatusResponse(
        message=message,
        order_id=order_id,
        previous_status=change.previous_status,
        status=change.status,
        changed=change.changed,
        stock_adjustments=change.stock_deltas,
        notify_user=cancelled,
    )


@app.put(
    "/api/orders/{order_id}/status",
    response_model=OrderStatusResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Update Order Status",
)
async def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    db: AsyncSession = Depends(get_db),
) -> OrderStatusResponse:
    """
    Move an order through its workflow.

    Cancelling returns the ordered units to stock; reopening a cancelled
    order takes them again and fails if they are no longer there.
    Repeating a request that already took effect changes nothing.
    """
    return await _set_status(db, order_id, payload.status)


# =============================================================================
# ADMIN ENDPOINTS
# =============================================================================

@app.get(
    "/api/admin/orders",
    response_model=OrderListResponse,
    responses=ERROR_RESPONSES,
    tags=["Admin"],
    summary="List Orders",
)
async def list_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    status: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> OrderListResponse:
    """Paginated list of all orders, optionally filtered by status."""
    status_filter = parse_status_filter(status)
    ledger = get_order_ledger()

    total = await ledger.count_orders(db, status_filter)
    orders = await ledger.list_orders(db, status_filter, skip=skip, limit=limit)

    return OrderListResponse(
        total=total,
        orders=[OrderResponse.model_validate(o) for o in orders],
    )


@app.get(
    "/api/admin/orders/{order_id}",
    response_model=OrderDetailResponse,
    responses=ERROR_RESPONSES,
    tags=["Admin"],
)
async def admin_get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
) -> OrderDetailResponse:
    return order_detail(await get_order_ledger().get_order(db, order_id))


@app.put(
    "/api/admin/orders/{order_id}/status",
    response_model=OrderStatusResponse,
    responses=ERROR_RESPONSES,
    tags=["Admin"],
)
async def admin_update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    db: AsyncSession = Depends(get_db),
) -> OrderStatusResponse:
    return await _set_status(db, order_id, payload.status)


@app.get("/api/admin/revenue/today", response_model=RevenueResponse, tags=["Admin"])
async def revenue_today(db: AsyncSession = Depends(get_db)) -> RevenueResponse:
    """Sum of today's (UTC) order subtotals, cancelled orders excluded."""
    today = datetime.now(timezone.utc).date()
    revenue = await get_order_ledger().revenue_for_day(db, today)
    return RevenueResponse(day=today, revenue=revenue, currency=settings.currency)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(CanteenError)
async def canteen_error_handler(request: Request, exc: CanteenError) -> JSONResponse:
    """Translate domain errors into ErrorResponse bodies."""
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.error}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(OperationalError)
@app.exception_handler(InterfaceError)
async def store_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    """The store is down or unreachable: infrastructure, not a domain error."""
    logger.error(f"Database unavailable during {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={
            "success": False,
            "error": "store_unavailable",
            "detail": str(exc) if settings.debug else "The order store is temporarily unavailable",
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


