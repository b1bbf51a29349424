"""
Payment transaction schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.services.orders.enums import PaymentTransactionStatus


class InvoiceCreateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    order_reference: str = Field(..., min_length=1, max_length=64)
    amount_usd: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    customer_name: str = Field(..., min_length=1, max_length=255)
    customer_id: str = Field(..., min_length=1, max_length=64)
    description: Optional[str] = Field(None, max_length=500)


class PaymentVerifyRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    payment_id: str = Field(..., description="Charge id reported by the platform")
    amount_usd: Decimal = Field(..., description="Amount actually paid")


class RefundRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class PaymentTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    transaction_id: str
    order_reference: str
    order_id: Optional[UUID] = None
    payment_id: str
    amount_usd: Decimal
    amount_stars: int
    exchange_rate: int
    payment_method: str
    status: PaymentTransactionStatus
    issued_at: datetime
    refund_reason: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="extra_data")


class InvoiceResponse(BaseModel):
    """Invoice to present to the customer; ``payload`` is echoed back on payment."""

    transaction_id: str
    amount_usd: Decimal
    amount_stars: int
    currency: str = "XTR"
    payload: str
    title: str
    description: str
