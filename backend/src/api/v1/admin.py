"""
Admin dashboard endpoints.

Every route requires a valid admin bearer session; the admin's username is
recorded as the author of any note a status change produces.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query

from src.api.deps import CurrentAdmin, DatabaseSession, Dispatcher
from src.core.logging import get_logger
from src.schemas.orders import (
    BulkStatusUpdateRequest,
    BulkUpdateResponse,
    DashboardSummaryResponse,
    NoteCreateRequest,
    NotificationOutcomeResponse,
    OrderDetailsResponse,
    OrderListResponse,
    OrderNoteResponse,
    OrderResponse,
    OrderStatisticsResponse,
    OrderSummaryResponse,
    ReminderRequest,
    StatusUpdateRequest,
    StatusUpdateResponse,
)
from src.schemas.products import (
    ProductActivationRequest,
    ProductResponse,
    StockUpdateRequest,
)
from src.services.admin.service import AdminOrderService
from src.services.catalog.service import CatalogService
from src.services.orders.enums import OrderStatus

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/orders", response_model=OrderListResponse, summary="List orders")
async def list_orders(
    admin: CurrentAdmin,
    db: DatabaseSession,
    dispatcher: Dispatcher,
    status: Optional[OrderStatus] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    customer_search: Optional[str] = Query(None, max_length=255),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> OrderListResponse:
    service = AdminOrderService(db, dispatcher)
    page = await service.list_orders(
        status=status,
        date_from=date_from,
        date_to=date_to,
        customer_search=customer_search,
        limit=limit,
        offset=offset,
    )
    return OrderListResponse(
        orders=[OrderSummaryResponse.model_validate(order) for order in page.orders],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/orders/{order_id}", response_model=OrderDetailsResponse, summary="Order details")
async def get_order_details(
    order_id: UUID,
    admin: CurrentAdmin,
    db: DatabaseSession,
    dispatcher: Dispatcher,
) -> OrderDetailsResponse:
    details = await AdminOrderService(db, dispatcher).get_order_details(order_id)
    return OrderDetailsResponse(
        order=OrderResponse.model_validate(details.order),
        valid_next_statuses=details.valid_next_statuses,
        can_update=details.can_update,
    )


@router.patch(
    "/orders/{order_id}/status",
    response_model=StatusUpdateResponse,
    summary="Change order status",
    description=(
        "Applies one transition and notifies the customer. A notification "
        "failure is reported in the response and does not undo the change."
    ),
)
async def update_order_status(
    order_id: UUID,
    request: StatusUpdateRequest,
    admin: CurrentAdmin,
    db: DatabaseSession,
    dispatcher: Dispatcher,
) -> StatusUpdateResponse:
    result = await AdminOrderService(db, dispatcher).update_status(
        order_id,
        request.status,
        admin_id=admin.username,
        notes=request.notes,
        custom_message=request.custom_message,
    )
    return StatusUpdateResponse(
        order=OrderResponse.model_validate(result.order),
        previous_status=result.previous_status,
        new_status=result.new_status,
        transition=result.transition,
        notification=NotificationOutcomeResponse.model_validate(result.notification),
    )


@router.post(
    "/orders/bulk-status",
    response_model=BulkUpdateResponse,
    summary="Change status for many orders",
)
async def bulk_update_order_status(
    request: BulkStatusUpdateRequest,
    admin: CurrentAdmin,
    db: DatabaseSession,
    dispatcher: Dispatcher,
) -> BulkUpdateResponse:
    result = await AdminOrderService(db, dispatcher).bulk_update_status(
        request.order_ids,
        request.status,
        admin_id=admin.username,
        notes=request.notes,
    )
    return BulkUpdateResponse.model_validate(result)


@router.post(
    "/orders/{order_id}/notes",
    response_model=OrderNoteResponse,
    status_code=201,
    summary="Annotate an order",
)
async def add_order_note(
    order_id: UUID,
    request: NoteCreateRequest,
    admin: CurrentAdmin,
    db: DatabaseSession,
    dispatcher: Dispatcher,
) -> OrderNoteResponse:
    note = await AdminOrderService(db, dispatcher).add_note(order_id, admin.username, request.body)
    return OrderNoteResponse.model_validate(note)


@router.post(
    "/orders/{order_id}/reminders",
    response_model=NotificationOutcomeResponse,
    summary="Send a delivery reminder",
)
async def send_reminder(
    order_id: UUID,
    request: ReminderRequest,
    admin: CurrentAdmin,
    db: DatabaseSession,
    dispatcher: Dispatcher,
) -> NotificationOutcomeResponse:
    outcome = await AdminOrderService(db, dispatcher).send_delivery_reminder(
        order_id,
        request.reminder_type,
        request.estimated_minutes,
    )
    return NotificationOutcomeResponse.model_validate(outcome)


@router.get("/statistics", response_model=OrderStatisticsResponse, summary="Order statistics")
async def get_statistics(
    admin: CurrentAdmin,
    db: DatabaseSession,
    dispatcher: Dispatcher,
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
) -> OrderStatisticsResponse:
    stats = await AdminOrderService(db, dispatcher).get_statistics(date_from, date_to)
    return OrderStatisticsResponse.model_validate(stats)


@router.get("/dashboard", response_model=DashboardSummaryResponse, summary="Dashboard summary")
async def get_dashboard(
    admin: CurrentAdmin,
    db: DatabaseSession,
    dispatcher: Dispatcher,
) -> DashboardSummaryResponse:
    summary = await AdminOrderService(db, dispatcher).dashboard_summary()
    return DashboardSummaryResponse.model_validate(summary)


@router.put(
    "/products/{product_id}/stock",
    response_model=ProductResponse,
    summary="Set product stock",
)
async def set_product_stock(
    product_id: int,
    request: StockUpdateRequest,
    admin: CurrentAdmin,
    db: DatabaseSession,
) -> ProductResponse:
    product = await CatalogService(db).set_stock(product_id, request.stock)
    logger.info("Stock set by admin", product_id=product_id, stock=request.stock, admin=admin.username)
    return ProductResponse.model_validate(product)


@router.patch(
    "/products/{product_id}/active",
    response_model=ProductResponse,
    summary="Show or hide a product",
)
async def set_product_active(
    product_id: int,
    request: ProductActivationRequest,
    admin: CurrentAdmin,
    db: DatabaseSession,
) -> ProductResponse:
    product = await CatalogService(db).set_product_active(product_id, request.is_active)
    return ProductResponse.model_validate(product)
