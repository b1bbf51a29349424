"""
Product model for the delivery catalog.

Products are never deleted; they are deactivated. Stock is only changed by
order creation and by the admin stock-set operation, both under a row lock.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, TimestampMixin


class Product(Base, TimestampMixin):
    """
    Catalog product.

    Attributes:
        id: Integer product identifier
        name: Display name used in notifications
        description: Optional long description
        price: Current unit price
        stock: Units on hand, never negative
        image_url: Optional product image
        is_active: Inactive products cannot be ordered
    """

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
        comment="Product identifier",
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Product name",
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Product description",
    )

    price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Current unit price",
    )

    stock: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
        comment="Units in stock",
    )

    image_url: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="1",
        comment="Whether the product can be ordered",
    )

    __table_args__ = (
        Index("ix_products_active_name", "is_active", "name"),
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        {"comment": "Catalog products with price and stock"},
    )

    @property
    def formatted_price(self) -> str:
        return f"${self.price:,.2f}"
