"""
Product data access.

All stock writes go through this repository. Both the order engine and the
admin stock-set path lock product rows with ``SELECT ... FOR UPDATE`` so the
two serialize on the same row lock.
"""

from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.database.models.product import Product

logger = get_logger(__name__)


class CatalogRepositoryError(Exception):
    """Base exception for catalog data access errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class ProductNotFoundError(CatalogRepositoryError):
    """Raised when a product id does not exist."""

    def __init__(self, product_id: int):
        super().__init__(f"Product with ID {product_id} not found", product_id=product_id)
        self.product_id = product_id


class CatalogRepository:
    """Repository for product reads and stock writes."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_products(self, active_only: bool = True) -> Sequence[Product]:
        stmt = select(Product).order_by(Product.name)
        if active_only:
            stmt = stmt.where(Product.is_active.is_(True))

        try:
            result = await self.session.execute(stmt)
            return result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("Failed to list products", error=str(e))
            raise CatalogRepositoryError("Failed to list products", error=str(e)) from e

    async def get_product(self, product_id: int) -> Optional[Product]:
        try:
            return await self.session.get(Product, product_id)
        except SQLAlchemyError as e:
            logger.error("Failed to fetch product", product_id=product_id, error=str(e))
            raise CatalogRepositoryError(
                "Failed to fetch product", product_id=product_id, error=str(e)
            ) from e

    async def get_products(self, product_ids: Iterable[int]) -> dict[int, Product]:
        """Fetch products by id without locking."""
        ids = sorted(set(product_ids))
        if not ids:
            return {}

        try:
            result = await self.session.execute(
                select(Product)
                .where(Product.id.in_(ids))
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            logger.error("Failed to fetch products", product_ids=ids, error=str(e))
            raise CatalogRepositoryError(
                "Failed to fetch products", product_ids=ids, error=str(e)
            ) from e

        return {product.id: product for product in result.scalars().all()}

    async def lock_products(self, product_ids: Iterable[int]) -> dict[int, Product]:
        """
        Lock product rows for the rest of the current transaction.

        Rows are locked in ascending id order so two transactions touching
        the same products cannot deadlock. Attributes are refreshed from the
        locked rows even if the objects were already loaded.

        Returns:
            Mapping of product id to locked product; missing ids are absent
        """
        ids = sorted(set(product_ids))
        if not ids:
            return {}

        stmt = (
            select(Product)
            .where(Product.id.in_(ids))
            .order_by(Product.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )

        result = await self.session.execute(stmt)
        products = {product.id: product for product in result.scalars().all()}

        logger.debug("Product rows locked", product_ids=ids, found=len(products))
        return products

    async def decrement_stock(self, product_id: int, quantity: int) -> int:
        """
        Decrement stock only if enough remains.

        Returns:
            Number of rows affected; anything other than 1 means the guard
            ``stock >= quantity`` failed or the id is not unique
        """
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def set_stock(self, product_id: int, stock: int) -> Product:
        """
        Set the stock level under the product row lock.

        Raises:
            ProductNotFoundError: If the product does not exist
        """
        locked = await self.lock_products([product_id])
        product = locked.get(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)

        previous = product.stock
        product.stock = stock
        await self.session.flush()

        logger.info(
            "Product stock set",
            product_id=product_id,
            previous_stock=previous,
            new_stock=stock,
        )
        return product

    async def set_active(self, product_id: int, is_active: bool) -> Product:
        locked = await self.lock_products([product_id])
        product = locked.get(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)

        product.is_active = is_active
        await self.session.flush()
        return product

    async def count_active(self) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(Product).where(Product.is_active.is_(True))
        )
        return result.scalar_one()
