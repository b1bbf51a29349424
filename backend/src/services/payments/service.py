"""
Payment transaction records for the chat platform's star currency.

Invoices create a pending record identified by a ``TXN`` token. The record
carries an HMAC-SHA256 integrity hash over its identifying fields; the hash
is re-signed on every legitimate state change and checked on every read, so
a record edited directly in the database is detected.
"""

import hashlib
import hmac
import math
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.core.logging import get_logger
from src.database.base import utc_now
from src.database.connection import read_transaction
from src.database.models.payment import PaymentTransaction
from src.services.orders.enums import PaymentTransactionStatus
from src.services.payments.repository import PaymentRepository, PaymentRepositoryError
from src.services.preconditions.validator import TokenKind, issue_token

logger = get_logger(__name__)

PAYMENT_METHOD = "telegram_stars"
MIN_EXTERNAL_PAYMENT_ID_LENGTH = 11
CENT = Decimal("0.01")


class PaymentServiceError(Exception):
    """Base exception for payment service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class PaymentValidationError(PaymentServiceError):
    """Raised for invalid amounts or references."""

    pass


class PaymentNotFoundError(PaymentServiceError):
    """Raised when a transaction id is unknown."""

    pass


class PaymentStateError(PaymentServiceError):
    """Raised when an operation is not allowed in the record's current state."""

    pass


class PaymentIntegrityError(PaymentServiceError):
    """Raised when a stored record no longer matches its integrity hash."""

    pass


def _canonical_time(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="microseconds")


def _canonical_amount(value: Any) -> str:
    return str(Decimal(str(value)).quantize(CENT))


class PaymentService:
    """
    Invoice, verification and refund operations on payment records.

    Attributes:
        session: Async database session
        repository: Payment transaction repository
    """

    def __init__(self, session: AsyncSession, settings: Optional[Settings] = None):
        self.session = session
        self.settings = settings or get_settings()
        self.repository = PaymentRepository(session)

    def to_stars(self, amount_usd: Decimal) -> int:
        return math.ceil(Decimal(str(amount_usd)) * self.settings.stars_per_usd)

    def compute_hash(self, record: PaymentTransaction) -> str:
        """HMAC over the fields that identify the payment and its state."""
        message = "|".join(
            [
                record.transaction_id,
                str(record.order_id) if record.order_id else "",
                record.payment_id,
                _canonical_amount(record.amount_usd),
                _canonical_time(record.issued_at),
                PaymentTransactionStatus(record.status).value,
            ]
        )
        return hmac.new(
            self.settings.payment_signing_key.encode(),
            message.encode(),
            hashlib.sha256,
        ).hexdigest()

    def verify_integrity(self, record: PaymentTransaction) -> None:
        """
        Raises:
            PaymentIntegrityError: If the stored hash does not match
        """
        if not hmac.compare_digest(record.integrity_hash, self.compute_hash(record)):
            logger.critical(
                "Payment transaction failed integrity check",
                transaction_id=record.transaction_id,
            )
            raise PaymentIntegrityError(
                f"Payment transaction {record.transaction_id} failed integrity verification",
                transaction_id=record.transaction_id,
            )

    async def create_invoice(
        self,
        order_reference: str,
        amount_usd: Decimal,
        customer_name: str,
        customer_id: str,
        description: Optional[str] = None,
    ) -> PaymentTransaction:
        """
        Create a pending payment record and its ``TXN`` token.

        Raises:
            PaymentValidationError: If the amount is not positive
        """
        amount = Decimal(str(amount_usd)).quantize(CENT)
        if amount <= 0:
            raise PaymentValidationError("Payment amount must be positive", amount=str(amount))

        transaction_id = issue_token(TokenKind.PAYMENT)
        record = PaymentTransaction(
            transaction_id=transaction_id,
            order_reference=order_reference,
            payment_id=f"PENDING_{transaction_id}",
            amount_usd=amount,
            amount_stars=self.to_stars(amount),
            exchange_rate=self.settings.stars_per_usd,
            payment_method=PAYMENT_METHOD,
            status=PaymentTransactionStatus.PENDING,
            issued_at=utc_now(),
            extra_data={
                "customer_name": customer_name,
                "customer_id": customer_id,
                "invoice_payload": f"{order_reference}:{transaction_id}",
                "description": description,
            },
        )
        record.integrity_hash = self.compute_hash(record)

        await self.repository.add(record)
        await self.session.commit()

        logger.info(
            "Payment invoice created",
            transaction_id=transaction_id,
            amount_usd=str(amount),
            amount_stars=record.amount_stars,
        )
        return record

    async def get_transaction(self, transaction_id: str) -> PaymentTransaction:
        """
        Read a record as its own unit of work.

        Raises:
            PaymentNotFoundError: If the transaction does not exist
            PaymentIntegrityError: If the record was tampered with
        """
        async with read_transaction(self.session):
            return await self.load_transaction(transaction_id)

    async def load_transaction(
        self,
        transaction_id: str,
        for_update: bool = False,
    ) -> PaymentTransaction:
        """
        Load a record and check its integrity hash inside the caller's
        transaction.

        Raises:
            PaymentNotFoundError: If the transaction does not exist
            PaymentIntegrityError: If the record was tampered with
        """
        record = await self.repository.get(transaction_id, for_update=for_update)
        if record is None:
            raise PaymentNotFoundError(
                f"Payment transaction {transaction_id} not found",
                transaction_id=transaction_id,
            )
        self.verify_integrity(record)
        return record

    async def _load_for_change(self, transaction_id: str) -> PaymentTransaction:
        try:
            return await self.load_transaction(transaction_id, for_update=True)
        except (PaymentServiceError, PaymentRepositoryError):
            await self.session.rollback()
            raise

    async def link_to_order(self, transaction_id: str, order_id: uuid.UUID) -> bool:
        """
        Attach an unlinked record to the order placed with its token and
        re-sign it.

        Runs inside the order transaction and does not commit. Returns False
        when no record exists for the token or it already belongs to an
        order.

        Raises:
            PaymentIntegrityError: If the stored record was tampered with
        """
        record = await self.repository.get(transaction_id, for_update=True)
        if record is None:
            return False
        self.verify_integrity(record)
        if record.order_id is not None:
            logger.warning(
                "Payment transaction already linked to an order",
                transaction_id=transaction_id,
                linked_order_id=str(record.order_id),
            )
            return False

        record.order_id = order_id
        record.integrity_hash = self.compute_hash(record)
        await self.session.flush()
        return True

    async def verify_payment(
        self,
        transaction_id: str,
        payment_id: str,
        amount_usd: Decimal,
    ) -> PaymentTransaction:
        """
        Record the outcome of a payment reported by the platform.

        The record becomes ``verified`` when the external payment id looks
        genuine and the paid amount matches the invoice, ``failed`` otherwise.

        Raises:
            PaymentStateError: If the transaction is no longer pending
        """
        record = await self._load_for_change(transaction_id)
        current_status = PaymentTransactionStatus(record.status)
        if current_status != PaymentTransactionStatus.PENDING:
            await self.session.rollback()
            raise PaymentStateError(
                f"Payment transaction {transaction_id} is already {current_status.value}",
                transaction_id=transaction_id,
                status=current_status.value,
            )

        paid = Decimal(str(amount_usd)).quantize(CENT)
        id_ok = bool(payment_id) and len(payment_id.strip()) >= MIN_EXTERNAL_PAYMENT_ID_LENGTH
        amount_ok = paid > 0 and abs(paid - record.amount_usd) <= self.settings.amount_tolerance

        if id_ok and amount_ok:
            record.payment_id = payment_id.strip()
            record.status = PaymentTransactionStatus.VERIFIED
        else:
            record.status = PaymentTransactionStatus.FAILED
            record.extra_data = {
                **record.extra_data,
                "failure_reason": (
                    "invalid payment id" if not id_ok else
                    f"amount mismatch: paid {paid}, invoiced {record.amount_usd}"
                ),
            }
        record.integrity_hash = self.compute_hash(record)
        await self.session.commit()

        logger.info(
            "Payment verification recorded",
            transaction_id=transaction_id,
            status=record.status.value,
        )
        return record

    async def process_refund(self, transaction_id: str, reason: str) -> PaymentTransaction:
        """
        Refund a verified payment.

        Raises:
            PaymentStateError: If the payment is not verified
        """
        record = await self._load_for_change(transaction_id)
        current_status = PaymentTransactionStatus(record.status)
        if current_status != PaymentTransactionStatus.VERIFIED:
            await self.session.rollback()
            raise PaymentStateError(
                "Only verified payments can be refunded",
                transaction_id=transaction_id,
                status=current_status.value,
            )

        record.status = PaymentTransactionStatus.REFUNDED
        record.refund_reason = reason
        record.integrity_hash = self.compute_hash(record)
        await self.session.commit()

        logger.info(
            "Payment refunded",
            transaction_id=transaction_id,
            amount_stars=record.amount_stars,
        )
        return record
