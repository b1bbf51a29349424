"""
Database models package.

Models are imported here so they register with ``Base.metadata`` for
schema creation and alembic autogeneration.
"""

from src.database.base import Base, BaseModel, TimestampMixin, UUIDMixin
from src.database.models.product import Product
from src.database.models.order import Order, OrderItem, OrderNote
from src.database.models.payment import PaymentTransaction

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "Product",
    "Order",
    "OrderItem",
    "OrderNote",
    "PaymentTransaction",
]
