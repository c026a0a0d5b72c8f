"""
Pydantic Schemas for Request/Response Validation

Money fields are Decimal end to end; in JSON they are rendered as
strings ("200.00") so no precision is lost on the way out.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal

from canteen.core.config import get_settings
from canteen.models import OrderStatus


# =============================================================================
# CATALOG
# =============================================================================

class FoodItemResponse(BaseModel):
    """Catalog entry as seen by the ordering engine."""
    id: int
    name: str
    description: Optional[str] = None
    price: Decimal
    stock_quantity: int
    availability: bool

    class Config:
        from_attributes = True


class MenuResponse(BaseModel):
    success: bool = True
    items: List[FoodItemResponse]


# =============================================================================
# CART
# =============================================================================

def _cap_quantity(v: int) -> int:
    limit = get_settings().max_cart_quantity
    if v > limit:
        raise ValueError(f"Quantity cannot exceed {limit}")
    return v


class CartItemCreate(BaseModel):
    """Request schema for adding a food item to a cart."""
    user_id: str = Field(..., min_length=1, max_length=64, examples=["42"])
    food_item_id: int = Field(..., ge=1, examples=[7])
    quantity: int = Field(..., ge=1, examples=[2])

    @field_validator("user_id", mode="before")
    @classmethod
    def coerce_user_id(cls, v):
        # Identity hands out numeric ids; keep them opaque strings here
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("quantity")
    @classmethod
    def cap_quantity(cls, v: int) -> int:
        return _cap_quantity(v)


class CartItemUpdate(BaseModel):
    """Replace a cart line's quantity; anything below 1 removes the line."""
    quantity: int = Field(..., examples=[3])

    @field_validator("quantity")
    @classmethod
    def cap_quantity(cls, v: int) -> int:
        return _cap_quantity(v)


class CartLineResponse(BaseModel):
    cart_item_id: int
    user_id: str
    food_item_id: int
    name: str
    price: Decimal
    quantity: int
    stock_quantity: int
    availability: bool
    line_total: Decimal
    is_orderable: bool

    class Config:
        from_attributes = True


class CartResponse(BaseModel):
    success: bool = True
    user_id: str
    items: List[CartLineResponse]
    item_count: int
    subtotal: Decimal


class CartCountResponse(BaseModel):
    success: bool = True
    count: int


class CartMutationResponse(BaseModel):
    success: bool = True
    message: str
    item: Optional[CartLineResponse] = None


# =============================================================================
# ORDERS
# =============================================================================

class OrderCreate(BaseModel):
    """Request schema for placing an order from a cart."""
    user_id: str = Field(..., min_length=1, max_length=64, examples=["42"])

    @field_validator("user_id", mode="before")
    @classmethod
    def coerce_user_id(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class OrderLineResponse(BaseModel):
    id: int
    food_item_id: int
    name: Optional[str]
    quantity: int
    price_at_order: Decimal
    line_total: Decimal

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """Response schema for a single order."""
    id: int
    user_id: str
    status: OrderStatus
    created_at: Optional[datetime]
    items: List[OrderLineResponse]
    item_count: int
    subtotal: Decimal

    class Config:
        from_attributes = True


class BillResponse(BaseModel):
    subtotal: Decimal
    tax: Decimal
    delivery_fee: Decimal
    total: Decimal
    currency: str

    class Config:
        from_attributes = True


class OrderCreateResponse(BaseModel):
    """Response after successfully placing an order."""
    success: bool = True
    message: str
    order: OrderResponse
    bill: BillResponse


class OrderDetailResponse(BaseModel):
    success: bool = True
    order: OrderResponse
    bill: BillResponse


class CurrentOrderResponse(BaseModel):
    success: bool = True
    order: Optional[OrderResponse] = None


class OrderListResponse(BaseModel):
    """Response for listing multiple orders."""
    success: bool = True
    total: int
    orders: List[OrderResponse]


class OrderStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1, max_length=20, examples=["Cancelled"])


class OrderStatusResponse(BaseModel):
    success: bool = True
    message: str
    order_id: int
    previous_status: OrderStatus
    status: OrderStatus
    changed: bool
    stock_adjustments: dict[int, int] = Field(default_factory=dict)
    notify_user: bool = False


class RevenueResponse(BaseModel):
    success: bool = True
    day: date
    revenue: Decimal
    currency: str


# =============================================================================
# ERRORS & HEALTH
# =============================================================================

class StockShortageResponse(BaseModel):
    food_item_id: int
    name: Optional[str]
    requested: int
    available: int


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None
    items: Optional[List[StockShortageResponse]] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    environment: str
    timestamp: datetime
