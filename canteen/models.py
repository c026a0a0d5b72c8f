"""
SQLAlchemy Database Models

Tables owned (or read) by the ordering engine:
- FoodItem: catalog snapshot the engine reads and whose stock it adjusts
- CartItem: per-user wish list, keyed by (user_id, food_item_id)
- Order / OrderItem: the append-only ledger of committed orders
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from canteen.database import Base
import enum


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: "str | OrderStatus") -> "OrderStatus":
        """
        Resolve a status from user input, ignoring case and surrounding
        whitespace ("Cancelled", "CANCELLED" and "cancelled" are the same).

        Raises:
            ValueError: If the value is not a known status
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Invalid status: {value!r}")
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid = [s.value for s in cls]
            raise ValueError(f"Invalid status {value!r}. Options: {valid}")

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


# Statuses a customer still waits on
ACTIVE_STATUSES = (OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.READY)


class FoodItem(Base):
    """
    Catalog entry as seen by the ordering engine.

    Name, price and availability belong to the catalog; the engine
    only ever changes ``stock_quantity``, and only through conditional
    updates.
    """
    __tablename__ = "food_items"
    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_food_items_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_food_items_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    stock_quantity = Column(Integer, nullable=False, default=0)
    availability = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<FoodItem #{self.id} - {self.name} - stock {self.stock_quantity}>"


class CartItem(Base):
    """One line of a user's cart. Ephemeral, no history."""
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("user_id", "food_item_id", name="uq_cart_items_user_food_item"),
        CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    food_item_id = Column(
        Integer,
        ForeignKey("food_items.id", ondelete="CASCADE"),
        nullable=False,
    )
    quantity = Column(Integer, nullable=False)
    added_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<CartItem #{self.id} - user {self.user_id} - item {self.food_item_id} x{self.quantity}>"


class Order(Base):
    """
    A committed order.

    Created once by order placement; ``status`` is the only column that
    changes afterwards.
    """
    __tablename__ = "orders"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    items = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItem.id",
    )

    def __repr__(self):
        return f"<Order #{self.id} - user {self.user_id} - {self.status.value}>"


class OrderItem(Base):
    """Immutable order line carrying the price frozen at placement time."""
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        CheckConstraint("price_at_order >= 0", name="ck_order_items_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    food_item_id = Column(Integer, ForeignKey("food_items.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    price_at_order = Column(Numeric(10, 2), nullable=False)

    order = relationship("Order", back_populates="items")

    @property
    def line_total(self):
        return self.quantity * self.price_at_order

    def __repr__(self):
        return f"<OrderItem #{self.id} - order {self.order_id} - item {self.food_item_id} x{self.quantity}>"
