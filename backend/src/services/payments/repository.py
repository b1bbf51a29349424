"""
Payment transaction data access.
"""

from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.database.models.payment import PaymentTransaction

logger = get_logger(__name__)


class PaymentRepositoryError(Exception):
    """Base exception for payment repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class PaymentRepository:
    """
    Repository for payment transaction records.

    Attributes:
        session: Async database session for executing queries
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, record: PaymentTransaction) -> PaymentTransaction:
        try:
            self.session.add(record)
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to store payment transaction",
                transaction_id=record.transaction_id,
                error=str(e),
            )
            raise PaymentRepositoryError(
                "Failed to store payment transaction",
                transaction_id=record.transaction_id,
                error=str(e),
            ) from e
        return record

    async def get(
        self,
        transaction_id: str,
        for_update: bool = False,
    ) -> Optional[PaymentTransaction]:
        try:
            return await self.session.get(
                PaymentTransaction,
                transaction_id,
                with_for_update=for_update,
                populate_existing=for_update,
            )
        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch payment transaction",
                transaction_id=transaction_id,
                error=str(e),
            )
            raise PaymentRepositoryError(
                "Failed to fetch payment transaction",
                transaction_id=transaction_id,
                error=str(e),
            ) from e
