"""
Payment transaction record.

Each record carries an integrity hash over its identifying fields which is
recomputed whenever the record is read back (see PaymentService).
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, TimestampMixin
from src.services.orders.enums import PaymentTransactionStatus


class PaymentTransaction(Base, TimestampMixin):
    """
    Canonical record of a payment event.

    Attributes:
        transaction_id: ``TXN_`` token identifying the transaction
        order_reference: Caller supplied order reference used in the invoice
        order_id: Order created with this transaction, once known
        payment_id: External payment id, ``PENDING_<txn>`` until paid
        amount_usd: Invoiced amount in USD
        amount_stars: Invoiced amount in platform stars
        exchange_rate: Stars per USD used for the conversion
        payment_method: Payment rail
        status: pending, verified, failed or refunded
        issued_at: Invoice creation time, part of the integrity hash
        integrity_hash: HMAC over the identifying fields
        refund_reason: Reason given when refunded
        extra_data: Customer and invoice metadata
    """

    __tablename__ = "payment_transactions"

    transaction_id: Mapped[str] = mapped_column(String(32), primary_key=True)

    order_reference: Mapped[str] = mapped_column(String(64), nullable=False)

    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    payment_id: Mapped[str] = mapped_column(String(255), nullable=False)

    amount_usd: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    amount_stars: Mapped[int] = mapped_column(Integer, nullable=False)

    exchange_rate: Mapped[int] = mapped_column(Integer, nullable=False)

    payment_method: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="telegram_stars",
    )

    status: Mapped[PaymentTransactionStatus] = mapped_column(
        SQLEnum(
            PaymentTransactionStatus,
            name="payment_transaction_status",
            native_enum=False,
            create_constraint=True,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
        default=PaymentTransactionStatus.PENDING,
        index=True,
    )

    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    integrity_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    refund_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    extra_data: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSON,
        nullable=False,
        default=dict,
    )

    __table_args__ = (
        CheckConstraint("amount_usd > 0", name="ck_payment_transactions_amount_positive"),
        CheckConstraint("amount_stars > 0", name="ck_payment_transactions_stars_positive"),
        {"comment": "Payment transaction records with integrity hashes"},
    )
