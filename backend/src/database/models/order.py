"""
Order, order item and order note models.

An order's items snapshot the catalog price at creation time and are never
updated afterwards. Notes form an append-only log of attributed,
timestamped entries, one per status change or admin annotation.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import Base, BaseModel, utc_now
from src.database.models.product import Product
from src.services.orders.enums import OrderStatus, PaymentStatus


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Order(BaseModel):
    """
    Customer order.

    Attributes:
        id: Unique order identifier (UUID)
        customer_id: Chat platform user id of the customer
        customer_username: Optional chat handle
        customer_name: Name used for delivery
        delivery_address: Free-form delivery address
        phone_number: Optional contact number
        total_amount: Sum of item totals at creation time
        status: Fulfillment status
        payment_status: Payment state
        location_token: Location verification proof used at creation
        inventory_token: Inventory reservation proof, unique per order
        payment_token: Payment transaction proof, unique per order
    """

    __tablename__ = "orders"

    customer_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="Chat platform user identifier",
    )

    customer_username: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    customer_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    delivery_address: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    phone_number: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
    )

    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Order total",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(
            OrderStatus,
            name="order_status",
            native_enum=False,
            create_constraint=True,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=OrderStatus.PLACED,
        index=True,
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(
            PaymentStatus,
            name="order_payment_status",
            native_enum=False,
            create_constraint=True,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )

    location_token: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    inventory_token: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        unique=True,
        comment="Inventory reservation token consumed by this order",
    )

    payment_token: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        unique=True,
        comment="Payment transaction token consumed by this order",
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    notes: Mapped[list["OrderNote"]] = relationship(
        "OrderNote",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderNote.id",
    )

    __table_args__ = (
        Index("ix_orders_status_created", "status", "created_at"),
        Index("ix_orders_customer_created", "customer_id", "created_at"),
        CheckConstraint("total_amount > 0", name="ck_orders_total_amount_positive"),
        {"comment": "Customer orders"},
    )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def formatted_total(self) -> str:
        return f"${self.total_amount:,.2f}"

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)


class OrderItem(Base):
    """
    Order line item with a price snapshot.

    Attributes:
        order_id: Owning order
        product_id: Ordered product
        quantity: Units ordered, positive
        unit_price: Catalog price at order time
        total_price: quantity * unit_price
    """

    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    product_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    product: Mapped[Product] = relationship("Product", lazy="selectin")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_order_items_unit_price_non_negative"),
        CheckConstraint("total_price >= 0", name="ck_order_items_total_price_non_negative"),
        {"comment": "Order line items with price snapshots"},
    )

    @property
    def product_name(self) -> str:
        return self.product.name if self.product is not None else f"Product #{self.product_id}"


class OrderNote(Base):
    """
    Append-only order log entry.

    Status changes record ``from_status``/``to_status``; plain admin
    annotations leave both empty.
    """

    __tablename__ = "order_notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    author: Mapped[str] = mapped_column(String(255), nullable=False)

    body: Mapped[str] = mapped_column(Text, nullable=False)

    from_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    to_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )

    order: Mapped["Order"] = relationship("Order", back_populates="notes")

    @property
    def is_status_change(self) -> bool:
        return self.to_status is not None

    def render(self) -> str:
        """Single-line form: ``[timestamp] author: body``."""
        return f"[{self.created_at.isoformat()}] {self.author}: {self.body}"
