"""
Catalog service: product listing, stock checks, inventory reservation
tokens and admin stock management.

A reservation here is advisory. It confirms that requested quantities are
available right now and issues an ``INV`` token; the order engine re-checks
stock authoritatively under row locks when the order is created.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.database.connection import read_transaction
from src.database.models.product import Product
from src.services.catalog.repository import (
    CatalogRepository,
    CatalogRepositoryError,
    ProductNotFoundError,
)
from src.services.preconditions.validator import TokenKind, issue_token

logger = get_logger(__name__)


class CatalogServiceError(Exception):
    """Base exception for catalog service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class CatalogValidationError(CatalogServiceError):
    """Raised for invalid stock or reservation requests."""

    pass


@dataclass
class StockLevel:
    product_id: int
    name: str
    price: Decimal
    stock: int
    is_active: bool

    @property
    def in_stock(self) -> bool:
        return self.is_active and self.stock > 0


@dataclass
class ReservationLine:
    product_id: int
    requested: int
    available: int
    name: Optional[str] = None
    unit_price: Optional[Decimal] = None
    problem: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        if self.unit_price is None:
            return Decimal("0.00")
        return self.unit_price * self.requested


@dataclass
class InventoryReservation:
    """Result of an inventory reservation attempt."""

    reserved: bool
    lines: list[ReservationLine] = field(default_factory=list)
    token: Optional[str] = None

    @property
    def total(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal("0.00"))

    @property
    def problems(self) -> list[str]:
        return [line.problem for line in self.lines if line.problem]


class CatalogService:
    """
    Product catalog operations.

    Attributes:
        session: Async database session
        repository: Product repository
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repository = CatalogRepository(session)

    async def list_products(self, active_only: bool = True) -> Sequence[Product]:
        async with read_transaction(self.session):
            return await self.repository.list_products(active_only=active_only)

    async def get_product(self, product_id: int) -> Product:
        """
        Raises:
            ProductNotFoundError: If the product does not exist
        """
        async with read_transaction(self.session):
            product = await self.repository.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    async def check_stock(self, product_ids: Iterable[int]) -> list[StockLevel]:
        """Current stock for the requested products that exist."""
        async with read_transaction(self.session):
            products = await self.repository.get_products(product_ids)
        return [
            StockLevel(
                product_id=product.id,
                name=product.name,
                price=product.price,
                stock=product.stock if product.is_active else 0,
                is_active=product.is_active,
            )
            for product in products.values()
        ]

    async def reserve_inventory(
        self, items: Sequence[tuple[int, int]]
    ) -> InventoryReservation:
        """
        Confirm that ``(product_id, quantity)`` pairs are available.

        Quantities for repeated product ids are combined. A token is issued
        only when every line can be satisfied.

        Raises:
            CatalogValidationError: If the request is empty or has
                non-positive quantities
        """
        if not items:
            raise CatalogValidationError("At least one item is required")

        requested: "OrderedDict[int, int]" = OrderedDict()
        for product_id, quantity in items:
            if product_id <= 0 or quantity <= 0:
                raise CatalogValidationError(
                    "Product id and quantity must be positive",
                    product_id=product_id,
                    quantity=quantity,
                )
            requested[product_id] = requested.get(product_id, 0) + quantity

        async with read_transaction(self.session):
            products = await self.repository.get_products(requested.keys())
        lines = []

        for product_id, quantity in requested.items():
            product = products.get(product_id)
            if product is None:
                lines.append(
                    ReservationLine(
                        product_id=product_id,
                        requested=quantity,
                        available=0,
                        problem=f"Product with ID {product_id} not found",
                    )
                )
                continue

            line = ReservationLine(
                product_id=product_id,
                requested=quantity,
                available=product.stock if product.is_active else 0,
                name=product.name,
                unit_price=product.price,
            )
            if not product.is_active:
                line.problem = f"Product '{product.name}' is not available"
            elif product.stock < quantity:
                line.problem = (
                    f"Insufficient stock for '{product.name}'. "
                    f"Available: {product.stock}, Requested: {quantity}"
                )
            lines.append(line)

        reservation = InventoryReservation(
            reserved=all(line.problem is None for line in lines),
            lines=lines,
        )
        if reservation.reserved:
            reservation.token = issue_token(TokenKind.INVENTORY)

        logger.info(
            "Inventory reservation checked",
            reserved=reservation.reserved,
            product_count=len(lines),
            problems=len(reservation.problems),
        )
        return reservation

    async def set_stock(self, product_id: int, stock: int) -> Product:
        """
        Admin stock-set, serialized with order creation via the row lock.

        Raises:
            CatalogValidationError: If ``stock`` is negative
            ProductNotFoundError: If the product does not exist
        """
        if stock < 0:
            raise CatalogValidationError("Stock cannot be negative", stock=stock)

        try:
            product = await self.repository.set_stock(product_id, stock)
            await self.session.commit()
        except ProductNotFoundError:
            await self.session.rollback()
            raise
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Stock update failed", product_id=product_id, error=str(e))
            raise CatalogRepositoryError(
                "Stock update failed", product_id=product_id, error=str(e)
            ) from e

        return product

    async def set_product_active(self, product_id: int, is_active: bool) -> Product:
        try:
            product = await self.repository.set_active(product_id, is_active)
            await self.session.commit()
        except ProductNotFoundError:
            await self.session.rollback()
            raise
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise CatalogRepositoryError(
                "Product update failed", product_id=product_id, error=str(e)
            ) from e

        logger.info("Product availability changed", product_id=product_id, is_active=is_active)
        return product
