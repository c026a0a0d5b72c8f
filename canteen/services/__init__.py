"""
                        Services Module

Business logic of the ordering engine. Each service is a plain class
whose async methods take the caller's AsyncSession; a cached getter
returns the shared instance used by the API layer.

Services:
    - catalog: read food items, conditional stock writes
    - cart: per-user cart with a stock ceiling on admission
    - placement: atomic cart -> order conversion
    - status: order status machine with compensating stock writes
    - ledger: read accessors, bills and revenue
"""

from canteen.services.cart import CartLine, CartService, get_cart_service
from canteen.services.catalog import BaseCatalog, FoodItemSnapshot, get_catalog
from canteen.services.ledger import Bill, OrderLedger, OrderLine, OrderSummary, build_bill, get_order_ledger
from canteen.services.placement import OrderPlacementService, get_placement_service
from canteen.services.status import (
    OrderStatusService,
    StatusChange,
    check_transition,
    get_status_service,
    stock_deltas,
)

__all__ = [
    "BaseCatalog",
    "Bill",
    "CartLine",
    "CartService",
    "FoodItemSnapshot",
    "OrderLedger",
    "OrderLine",
    "OrderPlacementService",
    "OrderStatusService",
    "OrderSummary",
    "StatusChange",
    "build_bill",
    "check_transition",
    "get_cart_service",
    "get_catalog",
    "get_order_ledger",
    "get_placement_service",
    "get_status_service",
    "stock_deltas",
]
