"""
Customer order endpoints.

Order placement runs the full precondition and stock transaction in
``OrderService``; error translation happens in ``src.api.errors``.
"""

from uuid import UUID

from fastapi import APIRouter, Query, Request, status

from src.api.deps import AppSettings, DatabaseSession
from src.api.limiter import ORDER_CREATE_LIMIT, limiter
from src.core.logging import get_logger
from src.schemas.orders import OrderCreateRequest, OrderResponse
from src.services.orders.service import OrderService

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
    description=(
        "Creates an order atomically. Requires fresh location (LOC), "
        "inventory (INV) and payment (TXN) tokens."
    ),
)
@limiter.limit(ORDER_CREATE_LIMIT)
async def create_order(
    request: Request,
    order_request: OrderCreateRequest,
    db: DatabaseSession,
    settings: AppSettings,
) -> OrderResponse:
    logger.info(
        "Creating order",
        customer_id=order_request.customer_id,
        delivery_address=order_request.delivery_address,
        item_count=len(order_request.items),
    )
    service = OrderService(db, settings)
    order = await service.create_order(
        customer_id=order_request.customer_id,
        customer_name=order_request.customer_name,
        customer_username=order_request.customer_username,
        delivery_address=order_request.delivery_address,
        phone_number=order_request.phone_number,
        items=order_request.items,
        declared_total=order_request.total_amount,
        location_token=order_request.location_token,
        inventory_token=order_request.inventory_token,
        payment_token=order_request.payment_token,
        notes=order_request.notes,
    )
    return OrderResponse.model_validate(order)


@router.get("/{order_id}", response_model=OrderResponse, summary="Get order")
async def get_order(order_id: UUID, db: DatabaseSession, settings: AppSettings) -> OrderResponse:
    service = OrderService(db, settings)
    return OrderResponse.model_validate(await service.get_order(order_id))


@router.get(
    "/customer/{customer_id}",
    response_model=list[OrderResponse],
    summary="Recent orders for a customer",
)
async def get_customer_orders(
    customer_id: str,
    db: DatabaseSession,
    settings: AppSettings,
    limit: int = Query(10, ge=1, le=50),
) -> list[OrderResponse]:
    service = OrderService(db, settings)
    orders = await service.get_customer_orders(customer_id, limit=limit)
    return [OrderResponse.model_validate(order) for order in orders]


@router.get(
    "/customer/{customer_id}/latest",
    response_model=OrderResponse,
    summary="Most recent order for a customer",
)
async def get_latest_order(customer_id: str, db: DatabaseSession, settings: AppSettings) -> OrderResponse:
    service = OrderService(db, settings)
    return OrderResponse.model_validate(await service.get_latest_order(customer_id))


@router.post(
    "/{order_id}/confirm-payment",
    response_model=OrderResponse,
    summary="Sync payment status from the payment record",
)
async def confirm_payment(order_id: UUID, db: DatabaseSession, settings: AppSettings) -> OrderResponse:
    service = OrderService(db, settings)
    return OrderResponse.model_validate(await service.confirm_payment(order_id))
