"""
Order service: the order creation transaction and order lookups.

``create_order`` runs in two phases. Stateless checks come first (tokens,
line items, declared total) and touch nothing. Then a single transaction
locks the product rows, reconciles prices against the catalog, verifies the
declared total, inserts the order with its items and decrements stock with
a guarded conditional update. Any failure rolls the whole transaction back;
nothing is retried here.
"""

import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from src.core.config import Settings, get_settings
from src.core.logging import get_logger, log_performance
from src.database.connection import read_transaction
from src.database.models.order import Order, OrderItem, OrderNote
from src.database.models.product import Product
from src.services.catalog.repository import CatalogRepository
from src.services.orders.enums import (
    OrderStatus,
    PaymentStatus,
    PaymentTransactionStatus,
)
from src.services.orders.repository import (
    OrderCreationError,
    OrderNotFoundError,
    OrderRepository,
)
from src.services.payments.service import (
    PaymentNotFoundError,
    PaymentService,
    PaymentServiceError,
)
from src.services.preconditions.validator import (
    PreconditionError,
    PreconditionValidator,
    TokenFailure,
    TokenKind,
)

logger = get_logger(__name__)

CENT = Decimal("0.01")
CUSTOMER_AUTHOR = "customer"


class OrderServiceError(Exception):
    """Base exception for order service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class OrderValidationError(OrderServiceError):
    """Raised when the submitted order is malformed."""

    pass


class BusinessRuleError(OrderServiceError):
    """Raised when the catalog state rejects the order (stock, price, total)."""

    pass


class ConsistencyError(OrderServiceError):
    """Raised when a guarded stock update does not affect exactly one row."""

    pass


@dataclass(frozen=True)
class OrderLine:
    """One requested line item as submitted by the caller."""

    product_id: int
    quantity: int
    unit_price: Decimal


def _money(value: Any) -> Decimal:
    return Decimal(str(value))


def _format_money(value: Decimal) -> str:
    return f"${value.quantize(CENT)}"


class OrderService:
    """
    Order creation engine and order queries.

    Attributes:
        session: Async database session; the service owns its transactions
        repository: Order repository
        catalog: Product repository used for locking and stock updates
        payments: Payment records linked to new orders
        validator: Precondition token validator
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: Optional[Settings] = None,
        validator: Optional[PreconditionValidator] = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.repository = OrderRepository(session)
        self.catalog = CatalogRepository(session)
        self.payments = PaymentService(session, self.settings)
        self.validator = validator or PreconditionValidator.from_settings(self.settings)

    # ------------------------------------------------------------------
    # Stateless checks
    # ------------------------------------------------------------------

    def validate_lines(self, items: Sequence[Any]) -> list[OrderLine]:
        """
        Check line items before any database work.

        Raises:
            OrderValidationError: For an empty order or a bad line
        """
        if not items:
            raise OrderValidationError("Order must contain at least one item")

        lines = []
        for item in items:
            product_id = getattr(item, "product_id", None)
            quantity = getattr(item, "quantity", None)
            unit_price = getattr(item, "unit_price", None)

            if not isinstance(product_id, int) or isinstance(product_id, bool) or product_id <= 0:
                raise OrderValidationError(
                    f"Invalid product ID: {product_id}. Product ID must be a positive integer.",
                    product_id=product_id,
                )
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
                raise OrderValidationError(
                    f"Invalid quantity: {quantity}. Quantity must be a positive integer.",
                    product_id=product_id,
                    quantity=quantity,
                )
            try:
                price = _money(unit_price)
            except (InvalidOperation, TypeError, ValueError):
                price = None
            if price is None or not price.is_finite() or price <= 0:
                raise OrderValidationError(
                    f"Invalid unit price: {unit_price}. Unit price must be positive.",
                    product_id=product_id,
                    unit_price=str(unit_price),
                )
            lines.append(OrderLine(product_id=product_id, quantity=quantity, unit_price=price))

        return lines

    def validate_total(self, declared_total: Any) -> Decimal:
        """
        Raises:
            OrderValidationError: If the total is not positive or above the ceiling
        """
        try:
            total = _money(declared_total)
        except (InvalidOperation, TypeError, ValueError):
            total = None
        if total is None or not total.is_finite() or total <= 0:
            raise OrderValidationError(
                f"Invalid total amount: {declared_total}. Total amount must be positive.",
                declared_total=str(declared_total),
            )

        ceiling = self.settings.order_total_ceiling
        if total > ceiling:
            raise OrderValidationError(
                f"Total amount too large: {total}. Maximum allowed is ${ceiling:,.0f}.",
                declared_total=str(total),
                ceiling=str(ceiling),
            )
        return total

    # ------------------------------------------------------------------
    # Order creation
    # ------------------------------------------------------------------

    async def create_order(
        self,
        customer_id: str,
        customer_name: str,
        delivery_address: str,
        items: Sequence[Any],
        declared_total: Any,
        location_token: Optional[str],
        inventory_token: Optional[str],
        payment_token: Optional[str],
        phone_number: Optional[str] = None,
        notes: Optional[str] = None,
        customer_username: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Order:
        """
        Create an order atomically.

        Args:
            customer_id: Chat platform user id
            customer_name: Delivery name
            delivery_address: Delivery address
            items: Objects with ``product_id``, ``quantity`` and ``unit_price``
            declared_total: Total the caller expects to pay
            location_token: ``LOC`` token from address verification
            inventory_token: ``INV`` token from inventory reservation
            payment_token: ``TXN`` token from payment
            phone_number: Optional contact number
            notes: Optional customer note, stored as the first log entry
            customer_username: Optional chat handle
            now: Reference time for token freshness

        Returns:
            The persisted order with items

        Raises:
            PreconditionError: Missing, invalid, expired or reused token
            OrderValidationError: Malformed items or total
            BusinessRuleError: Unknown or inactive product, insufficient
                stock, total mismatch
            ConsistencyError: Guarded stock update affected != 1 row
            OrderCreationError: Database failure
        """
        self.validator.require_all(location_token, inventory_token, payment_token, now)
        lines = self.validate_lines(items)
        declared = self.validate_total(declared_total)

        with log_performance(logger, "create_order", customer_id=customer_id, lines=len(lines)):
            try:
                order = await self._place_order(
                    customer_id=customer_id,
                    customer_name=customer_name,
                    customer_username=customer_username,
                    delivery_address=delivery_address,
                    phone_number=phone_number,
                    notes=notes,
                    lines=lines,
                    declared=declared,
                    location_token=location_token.strip(),
                    inventory_token=inventory_token.strip(),
                    payment_token=payment_token.strip(),
                )
                await self.session.commit()
            except (OrderServiceError, PreconditionError, PaymentServiceError):
                await self.session.rollback()
                raise
            except IntegrityError as e:
                await self.session.rollback()
                violated = str(e.orig)
                if "inventory_token" in violated or "payment_token" in violated:
                    kind = (
                        TokenKind.INVENTORY if "inventory_token" in violated else TokenKind.PAYMENT
                    )
                    raise PreconditionError(
                        f"This {kind.label} token has already been used for another order. "
                        f"Repeat the {kind.label} step.",
                        code=TokenFailure.ALREADY_USED,
                        kind=kind,
                    ) from e
                logger.error("Order insert violated a constraint", error=str(e))
                raise OrderCreationError(
                    "Order creation failed due to data integrity violation",
                    error=str(e),
                ) from e
            except SQLAlchemyError as e:
                await self.session.rollback()
                logger.error("Order creation failed - database error", error=str(e))
                raise OrderCreationError(
                    "Order creation failed due to database error",
                    error=str(e),
                ) from e

        logger.info(
            "Order created",
            order_id=str(order.id),
            customer_id=customer_id,
            total_amount=str(order.total_amount),
            item_count=len(order.items),
        )
        return order

    async def _place_order(
        self,
        *,
        customer_id: str,
        customer_name: str,
        customer_username: Optional[str],
        delivery_address: str,
        phone_number: Optional[str],
        notes: Optional[str],
        lines: list[OrderLine],
        declared: Decimal,
        location_token: str,
        inventory_token: str,
        payment_token: str,
    ) -> Order:
        if self.settings.enforce_single_use_tokens:
            await self._ensure_tokens_unused(inventory_token, payment_token)

        requested: "OrderedDict[int, int]" = OrderedDict()
        for line in lines:
            requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

        products = await self.catalog.lock_products(requested.keys())
        for product_id in sorted(requested):
            self._check_product(product_id, products.get(product_id), requested[product_id])

        tolerance = self.settings.amount_tolerance
        order_items = []
        calculated = Decimal("0.00")

        for line in lines:
            product = products[line.product_id]
            db_price = _money(product.price).quantize(CENT)
            if abs(line.unit_price - db_price) > tolerance:
                logger.warning(
                    "Price mismatch detected, using database price",
                    product_id=product.id,
                    provided_price=str(line.unit_price),
                    database_price=str(db_price),
                )
            line_total = (db_price * line.quantity).quantize(CENT)
            calculated += line_total
            order_items.append(
                OrderItem(
                    product_id=product.id,
                    product=product,
                    quantity=line.quantity,
                    unit_price=db_price,
                    total_price=line_total,
                )
            )

        if abs(calculated - declared) > tolerance:
            raise BusinessRuleError(
                f"Total amount mismatch. Calculated: {_format_money(calculated)}, "
                f"Provided: {_format_money(declared)}",
                calculated=str(calculated),
                provided=str(declared),
            )

        order = Order(
            id=uuid.uuid4(),
            customer_id=customer_id,
            customer_username=customer_username,
            customer_name=customer_name,
            delivery_address=delivery_address,
            phone_number=phone_number,
            total_amount=calculated,
            status=OrderStatus.PLACED,
            payment_status=PaymentStatus.PENDING,
            location_token=location_token,
            inventory_token=inventory_token,
            payment_token=payment_token,
            items=order_items,
            notes=[],
        )
        if notes and notes.strip():
            order.notes.append(OrderNote(author=CUSTOMER_AUTHOR, body=notes.strip()))

        await self.repository.add_order(order)

        for product_id, quantity in requested.items():
            affected = await self.catalog.decrement_stock(product_id, quantity)
            if affected != 1:
                self._raise_consistency_error(product_id, quantity, affected)
            product = products[product_id]
            set_committed_value(product, "stock", product.stock - quantity)

        await self.payments.link_to_order(payment_token, order.id)
        return order

    async def _ensure_tokens_unused(self, inventory_token: str, payment_token: str) -> None:
        owner = await self.repository.find_token_owner(inventory_token, payment_token)
        if owner is None:
            return

        kind_name, order_id = owner
        kind = TokenKind.INVENTORY if kind_name == "inventory" else TokenKind.PAYMENT
        logger.warning(
            "Precondition token reuse rejected",
            kind=kind.value,
            existing_order_id=str(order_id),
        )
        raise PreconditionError(
            f"This {kind.label} token has already been used for another order. "
            f"Repeat the {kind.label} step.",
            code=TokenFailure.ALREADY_USED,
            kind=kind,
            existing_order_id=str(order_id),
        )

    @staticmethod
    def _check_product(product_id: int, product: Optional[Product], quantity: int) -> None:
        if product is None:
            raise BusinessRuleError(
                f"Product with ID {product_id} not found",
                product_id=product_id,
            )
        if not product.is_active:
            raise BusinessRuleError(
                f"Product '{product.name}' is not available",
                product_id=product_id,
            )
        if product.stock < quantity:
            raise BusinessRuleError(
                f"Insufficient stock for '{product.name}'. "
                f"Available: {product.stock}, Requested: {quantity}",
                product_id=product_id,
                available=product.stock,
                requested=quantity,
            )

    @staticmethod
    def _raise_consistency_error(product_id: int, quantity: int, affected: int) -> None:
        if affected == 0:
            message = (
                f"CRITICAL: Failed to update stock for product ID {product_id} - "
                "insufficient inventory or product not found. This would have "
                "caused inventory inconsistency."
            )
        else:
            message = (
                f"CRITICAL: Multiple products updated for ID {product_id}. "
                "This indicates a database integrity issue."
            )
        logger.critical(
            "Stock update consistency failure",
            product_id=product_id,
            quantity=quantity,
            rows_affected=affected,
        )
        raise ConsistencyError(
            message,
            product_id=product_id,
            quantity=quantity,
            rows_affected=affected,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_order(self, order_id: uuid.UUID) -> Order:
        """
        Raises:
            OrderNotFoundError: If the order does not exist
        """
        async with read_transaction(self.session):
            order = await self.repository.get_order_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def get_latest_order(self, customer_id: str) -> Order:
        """
        Raises:
            OrderNotFoundError: If the customer has no orders
        """
        async with read_transaction(self.session):
            orders = await self.repository.get_customer_orders(customer_id, limit=1)
        if not orders:
            raise OrderNotFoundError(f"for customer {customer_id}")
        return orders[0]

    async def get_customer_orders(self, customer_id: str, limit: int = 10) -> Sequence[Order]:
        async with read_transaction(self.session):
            return await self.repository.get_customer_orders(customer_id, limit=limit)

    async def confirm_payment(self, order_id: uuid.UUID) -> Order:
        """
        Sync the order's payment status from its payment transaction.

        Verified transactions mark the order ``completed``; failed or refunded
        ones mark it ``failed``; pending ones leave it unchanged.

        Raises:
            OrderNotFoundError: If the order does not exist
            PaymentNotFoundError: If the order has no payment record
            PaymentIntegrityError: If the payment record was tampered with
        """
        order = await self.repository.get_order_by_id(order_id, for_update=True)
        if order is None:
            await self.session.rollback()
            raise OrderNotFoundError(order_id)
        if not order.payment_token:
            await self.session.rollback()
            raise PaymentNotFoundError(
                f"Order {order_id} has no payment transaction",
                order_id=str(order_id),
            )

        try:
            record = await self.payments.load_transaction(order.payment_token)
        except PaymentServiceError:
            await self.session.rollback()
            raise

        mapping = {
            PaymentTransactionStatus.VERIFIED: PaymentStatus.COMPLETED,
            PaymentTransactionStatus.FAILED: PaymentStatus.FAILED,
            PaymentTransactionStatus.REFUNDED: PaymentStatus.FAILED,
        }
        new_status = mapping.get(record.status)
        if new_status is not None and new_status != order.payment_status:
            await self.repository.set_payment_status(order, new_status)
            logger.info(
                "Order payment status updated",
                order_id=str(order_id),
                payment_status=new_status.value,
                transaction_id=record.transaction_id,
            )
        await self.session.commit()
        return order
