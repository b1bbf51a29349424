"""
Administrative order operations.

Read-side views for the admin dashboard plus thin wrappers that route
status changes through ``OrderStateMachine`` with the admin recorded as the
note author.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.database.base import utc_now
from src.database.connection import read_transaction
from src.database.models.order import Order
from src.services.catalog.repository import CatalogRepository
from src.services.notifications.dispatcher import (
    NotificationDispatcher,
    NotificationServiceError,
)
from src.services.notifications.templates import (
    TemplateRenderError,
    format_delivery_reminder,
)
from src.services.orders.enums import OrderStatus
from src.services.orders.repository import (
    OrderFilters,
    OrderNotFoundError,
    OrderRepository,
)
from src.services.orders.state_machine import (
    BulkUpdateResult,
    NotificationOutcome,
    OrderStateMachine,
    TransitionResult,
)

logger = get_logger(__name__)

CENT = Decimal("0.01")
MAX_PAGE_SIZE = 200


@dataclass
class OrderDetails:
    order: Order
    valid_next_statuses: list[OrderStatus]

    @property
    def can_update(self) -> bool:
        return bool(self.valid_next_statuses)


@dataclass
class OrderPage:
    orders: Sequence[Order]
    total: int
    limit: int
    offset: int


@dataclass
class OrderStatistics:
    status_breakdown: dict[str, dict[str, Any]]
    payment_breakdown: dict[str, dict[str, Any]]
    total_orders: int
    total_revenue: Decimal
    average_order_value: Decimal
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


@dataclass
class DashboardSummary:
    total_orders: int
    open_orders: int
    revenue: Decimal
    active_products: int
    generated_at: datetime = field(default_factory=utc_now)


class AdminOrderService:
    """
    Order management for administrators.

    Attributes:
        session: Async database session
        repository: Order repository
        state_machine: Transition engine used for every status change
    """

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.session = session
        self.repository = OrderRepository(session)
        self.catalog = CatalogRepository(session)
        self.state_machine = OrderStateMachine(session, dispatcher=dispatcher)

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        customer_search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> OrderPage:
        """
        Filtered order listing, newest first.

        Args:
            status: Only orders in this status
            date_from: Created at or after
            date_to: Created at or before
            customer_search: Case-insensitive substring of the customer name
            limit: Page size, capped at 200
            offset: Rows to skip
        """
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(0, offset)
        filters = OrderFilters(
            status=OrderStatus(status) if status else None,
            date_from=date_from,
            date_to=date_to,
            customer_name=(customer_search or "").strip() or None,
        )
        async with read_transaction(self.session):
            orders, total = await self.repository.list_orders(filters, limit=limit, offset=offset)

        logger.info(
            "Admin order list retrieved",
            order_count=len(orders),
            total=total,
            status=filters.status.value if filters.status else None,
        )
        return OrderPage(orders=orders, total=total, limit=limit, offset=offset)

    async def get_order_details(self, order_id: uuid.UUID) -> OrderDetails:
        """
        Raises:
            OrderNotFoundError: If the order does not exist
        """
        async with read_transaction(self.session):
            order = await self.repository.get_order_by_id(order_id)
        if order is None:
            logger.warning("Order not found", order_id=str(order_id))
            raise OrderNotFoundError(order_id)

        return OrderDetails(
            order=order,
            valid_next_statuses=self.state_machine.get_allowed_transitions(order),
        )

    async def update_status(
        self,
        order_id: uuid.UUID,
        new_status: OrderStatus,
        admin_id: str,
        notes: Optional[str] = None,
        custom_message: Optional[str] = None,
    ) -> TransitionResult:
        return await self.state_machine.update_status(
            order_id,
            new_status,
            notes=notes,
            actor=f"Admin {admin_id}",
            custom_message=custom_message,
        )

    async def bulk_update_status(
        self,
        order_ids: Iterable[uuid.UUID],
        new_status: OrderStatus,
        admin_id: str,
        notes: Optional[str] = None,
    ) -> BulkUpdateResult:
        return await self.state_machine.bulk_update_status(
            order_ids,
            new_status,
            notes=notes,
            actor=f"Admin {admin_id}",
        )

    async def add_note(self, order_id: uuid.UUID, admin_id: str, body: str):
        return await self.state_machine.add_note(order_id, body, actor=f"Admin {admin_id}")

    async def get_statistics(
        self,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> OrderStatistics:
        """Per-status and per-payment-status counts with revenue totals."""
        async with read_transaction(self.session):
            status_breakdown = await self.repository.get_status_breakdown(date_from, date_to)
            payment_breakdown = await self.repository.get_payment_breakdown(date_from, date_to)

        total_orders = sum(entry["count"] for entry in status_breakdown.values())
        total_revenue = sum(
            (entry["total_value"] for entry in status_breakdown.values()),
            Decimal("0.00"),
        ).quantize(CENT)
        average = (total_revenue / total_orders).quantize(CENT) if total_orders else Decimal("0.00")

        logger.info(
            "Order statistics retrieved",
            total_orders=total_orders,
            status_groups=len(status_breakdown),
        )
        return OrderStatistics(
            status_breakdown=status_breakdown,
            payment_breakdown=payment_breakdown,
            total_orders=total_orders,
            total_revenue=total_revenue,
            average_order_value=average,
            date_from=date_from,
            date_to=date_to,
        )

    async def dashboard_summary(self) -> DashboardSummary:
        async with read_transaction(self.session):
            breakdown = await self.repository.get_status_breakdown()
            active_products = await self.catalog.count_active()
        total_orders = sum(entry["count"] for entry in breakdown.values())
        open_orders = sum(
            entry["count"]
            for status, entry in breakdown.items()
            if not OrderStatus(status).is_terminal
        )
        revenue = sum(
            (entry["total_value"] for entry in breakdown.values()),
            Decimal("0.00"),
        ).quantize(CENT)

        return DashboardSummary(
            total_orders=total_orders,
            open_orders=open_orders,
            revenue=revenue,
            active_products=active_products,
        )

    async def send_delivery_reminder(
        self,
        order_id: uuid.UUID,
        reminder_type: str = "delivery_approaching",
        estimated_minutes: Optional[int] = None,
    ) -> NotificationOutcome:
        """
        Send a delivery reminder for an order without changing its status.

        Raises:
            OrderNotFoundError: If the order does not exist
            ValueError: For an unknown reminder type
        """
        async with read_transaction(self.session):
            order = await self.repository.get_order_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)

        recipient = str(order.customer_id)
        try:
            message = format_delivery_reminder(order, reminder_type, estimated_minutes)
            await self.state_machine.dispatcher.dispatch(message)
        except (NotificationServiceError, TemplateRenderError) as e:
            logger.warning(
                "Delivery reminder failed",
                order_id=str(order_id),
                reminder_type=reminder_type,
                error=str(e),
            )
            return NotificationOutcome(sent=False, recipient=recipient, error=str(e))

        logger.info("Delivery reminder sent", order_id=str(order_id), reminder_type=reminder_type)
        return NotificationOutcome(sent=True, recipient=message.recipient)
