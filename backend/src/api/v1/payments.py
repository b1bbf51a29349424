"""
Payment endpoints for the platform's star currency.

An invoice returns a ``TXN`` transaction id that becomes the payment token
at order creation. Refunds are admin-only.
"""

from fastapi import APIRouter, status

from src.api.deps import AppSettings, CurrentAdmin, DatabaseSession
from src.core.logging import get_logger
from src.schemas.payments import (
    InvoiceCreateRequest,
    InvoiceResponse,
    PaymentTransactionResponse,
    PaymentVerifyRequest,
    RefundRequest,
)
from src.services.payments.service import PaymentService

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])

INVOICE_TITLE = "Discreet Delivery Order"
STARS_CURRENCY = "XTR"


@router.post(
    "/invoices",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a payment invoice",
)
async def create_invoice(
    request: InvoiceCreateRequest,
    db: DatabaseSession,
    settings: AppSettings,
) -> InvoiceResponse:
    service = PaymentService(db, settings)
    record = await service.create_invoice(
        order_reference=request.order_reference,
        amount_usd=request.amount_usd,
        customer_name=request.customer_name,
        customer_id=request.customer_id,
        description=request.description,
    )
    return InvoiceResponse(
        transaction_id=record.transaction_id,
        amount_usd=record.amount_usd,
        amount_stars=record.amount_stars,
        currency=STARS_CURRENCY,
        payload=record.extra_data["invoice_payload"],
        title=INVOICE_TITLE,
        description=request.description or f"Order for {request.customer_name}",
    )


@router.get(
    "/{transaction_id}",
    response_model=PaymentTransactionResponse,
    summary="Get a payment transaction",
)
async def get_transaction(
    transaction_id: str,
    db: DatabaseSession,
    settings: AppSettings,
) -> PaymentTransactionResponse:
    service = PaymentService(db, settings)
    return PaymentTransactionResponse.model_validate(await service.get_transaction(transaction_id))


@router.post(
    "/{transaction_id}/verify",
    response_model=PaymentTransactionResponse,
    summary="Record a completed payment",
)
async def verify_payment(
    transaction_id: str,
    request: PaymentVerifyRequest,
    db: DatabaseSession,
    settings: AppSettings,
) -> PaymentTransactionResponse:
    service = PaymentService(db, settings)
    record = await service.verify_payment(transaction_id, request.payment_id, request.amount_usd)
    return PaymentTransactionResponse.model_validate(record)


@router.post(
    "/{transaction_id}/refund",
    response_model=PaymentTransactionResponse,
    summary="Refund a verified payment",
)
async def refund_payment(
    transaction_id: str,
    request: RefundRequest,
    admin: CurrentAdmin,
    db: DatabaseSession,
    settings: AppSettings,
) -> PaymentTransactionResponse:
    service = PaymentService(db, settings)
    record = await service.process_refund(transaction_id, request.reason)
    logger.info("Refund issued by admin", transaction_id=transaction_id, admin=admin.username)
    return PaymentTransactionResponse.model_validate(record)
