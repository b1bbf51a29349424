"""
Order data access.

Reads load items (with their products) and notes eagerly so returned orders
are safe to use after the session commits.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.database.models.order import Order, OrderNote
from src.services.orders.enums import OrderStatus, PaymentStatus

logger = get_logger(__name__)


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class OrderNotFoundError(OrderRepositoryError):
    """Raised when order is not found."""

    def __init__(self, order_id: Any):
        super().__init__(f"Order {order_id} not found", order_id=str(order_id))
        self.order_id = order_id


class OrderCreationError(OrderRepositoryError):
    """Raised when order creation fails in the database."""

    pass


@dataclass
class OrderFilters:
    status: Optional[OrderStatus] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    customer_name: Optional[str] = None

    def conditions(self) -> list:
        conditions = []
        if self.status is not None:
            conditions.append(Order.status == self.status)
        if self.date_from is not None:
            conditions.append(Order.created_at >= self.date_from)
        if self.date_to is not None:
            conditions.append(Order.created_at <= self.date_to)
        if self.customer_name:
            conditions.append(Order.customer_name.ilike(f"%{self.customer_name}%"))
        return conditions


class OrderRepository:
    """
    Repository for order data access operations.

    Attributes:
        session: Async database session
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_order(self, order: Order) -> Order:
        """Persist a new order with its items and notes."""
        self.session.add(order)
        await self.session.flush()
        logger.debug("Order row inserted", order_id=str(order.id), items=len(order.items))
        return order

    async def find_token_owner(
        self,
        inventory_token: Optional[str],
        payment_token: Optional[str],
    ) -> Optional[tuple[str, uuid.UUID]]:
        """
        Find an order that already consumed either token.

        Returns:
            ``("inventory" | "payment", order_id)`` or None
        """
        clauses = []
        if inventory_token:
            clauses.append(Order.inventory_token == inventory_token)
        if payment_token:
            clauses.append(Order.payment_token == payment_token)
        if not clauses:
            return None

        result = await self.session.execute(
            select(Order.id, Order.inventory_token, Order.payment_token)
            .where(or_(*clauses))
            .limit(1)
        )
        row = result.first()
        if row is None:
            return None
        kind = "inventory" if inventory_token and row.inventory_token == inventory_token else "payment"
        return kind, row.id

    async def get_order_by_id(
        self,
        order_id: uuid.UUID,
        for_update: bool = False,
    ) -> Optional[Order]:
        """
        Get order by ID with items and notes.

        Args:
            order_id: Order identifier
            for_update: Lock the order row for the current transaction

        Raises:
            OrderRepositoryError: If query fails
        """
        stmt = select(Order).where(Order.id == order_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)

        try:
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to fetch order", order_id=str(order_id), error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch order",
                order_id=str(order_id),
                error=str(e),
            ) from e

    async def get_customer_orders(
        self,
        customer_id: str,
        limit: int = 10,
    ) -> Sequence[Order]:
        """Most recent orders for a customer, newest first."""
        try:
            result = await self.session.execute(
                select(Order)
                .where(Order.customer_id == customer_id)
                .order_by(Order.created_at.desc())
                .limit(limit)
            )
            return result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("Failed to fetch customer orders", customer_id=customer_id, error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch customer orders",
                customer_id=customer_id,
                error=str(e),
            ) from e

    async def list_orders(
        self,
        filters: OrderFilters,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[Sequence[Order], int]:
        """
        Filtered, paginated order listing.

        Returns:
            Tuple of (orders, total_count)
        """
        conditions = filters.conditions()
        where = and_(*conditions) if conditions else None

        stmt = select(Order).order_by(Order.created_at.desc()).offset(offset).limit(limit)
        count_stmt = select(func.count()).select_from(Order)
        if where is not None:
            stmt = stmt.where(where)
            count_stmt = count_stmt.where(where)

        try:
            orders = (await self.session.execute(stmt)).scalars().all()
            total = (await self.session.execute(count_stmt)).scalar_one()
        except SQLAlchemyError as e:
            logger.error("Failed to list orders", error=str(e))
            raise OrderRepositoryError("Failed to list orders", error=str(e)) from e

        return orders, total

    async def add_note(
        self,
        order: Order,
        author: str,
        body: str,
        from_status: Optional[OrderStatus] = None,
        to_status: Optional[OrderStatus] = None,
    ) -> OrderNote:
        """Append an entry to the order's note log."""
        note = OrderNote(
            order_id=order.id,
            author=author,
            body=body,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value if to_status else None,
        )
        order.notes.append(note)
        await self.session.flush()
        return note

    async def set_payment_status(self, order: Order, payment_status: PaymentStatus) -> Order:
        order.payment_status = payment_status
        await self.session.flush()
        return order

    async def get_status_breakdown(
        self,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> dict[str, dict[str, Any]]:
        """Order count and value per fulfillment status."""
        return await self._breakdown(Order.status, date_from, date_to)

    async def get_payment_breakdown(
        self,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> dict[str, dict[str, Any]]:
        """Order count and value per payment status."""
        return await self._breakdown(Order.payment_status, date_from, date_to)

    async def _breakdown(self, column, date_from, date_to) -> dict[str, dict[str, Any]]:
        filters = OrderFilters(date_from=date_from, date_to=date_to)
        stmt = select(
            column,
            func.count(Order.id),
            func.coalesce(func.sum(Order.total_amount), 0),
        ).group_by(column)
        conditions = filters.conditions()
        if conditions:
            stmt = stmt.where(and_(*conditions))

        try:
            rows = (await self.session.execute(stmt)).all()
        except SQLAlchemyError as e:
            logger.error("Failed to aggregate orders", error=str(e))
            raise OrderRepositoryError("Failed to aggregate orders", error=str(e)) from e

        return {
            status.value: {
                "count": count,
                "total_value": Decimal(str(total)).quantize(Decimal("0.01")),
            }
            for status, count, total in rows
        }

