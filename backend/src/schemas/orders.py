"""
Order Pydantic schemas for API request/response validation.

Request models only enforce wire types. Business validation of line items,
totals and precondition tokens happens in ``OrderService`` so that its
check order is the same for every caller.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.services.orders.enums import OrderStatus, PaymentStatus


class OrderItemRequest(BaseModel):
    product_id: int = Field(..., description="Product identifier")
    quantity: int = Field(..., description="Quantity ordered")
    unit_price: Decimal = Field(..., description="Unit price the customer saw")


class OrderCreateRequest(BaseModel):
    """Order placement request with its three precondition tokens."""

    model_config = ConfigDict(str_strip_whitespace=True)

    customer_id: str = Field(..., min_length=1, max_length=64)
    customer_username: Optional[str] = Field(None, max_length=255)
    customer_name: str = Field(..., min_length=1, max_length=255)
    delivery_address: str = Field(..., min_length=1, max_length=1000)
    phone_number: Optional[str] = Field(None, max_length=32)
    items: list[OrderItemRequest] = Field(default_factory=list)
    total_amount: Decimal = Field(..., description="Declared order total")
    location_token: Optional[str] = Field(None, description="LOC token")
    inventory_token: Optional[str] = Field(None, description="INV token")
    payment_token: Optional[str] = Field(None, description="TXN token")
    notes: Optional[str] = Field(None, max_length=2000)


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class OrderNoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    author: str
    body: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    created_at: datetime


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: str
    customer_username: Optional[str] = None
    customer_name: str
    delivery_address: str
    phone_number: Optional[str] = None
    total_amount: Decimal
    status: OrderStatus
    payment_status: PaymentStatus
    items: list[OrderItemResponse]
    notes: list[OrderNoteResponse]
    created_at: datetime
    updated_at: datetime


class OrderSummaryResponse(BaseModel):
    """Row in the admin order list."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: str
    customer_username: Optional[str] = None
    customer_name: str
    delivery_address: str
    phone_number: Optional[str] = None
    total_amount: Decimal
    status: OrderStatus
    payment_status: PaymentStatus
    item_count: int
    total_items: int
    created_at: datetime
    updated_at: datetime


class OrderListResponse(BaseModel):
    orders: list[OrderSummaryResponse]
    total: int
    limit: int
    offset: int


class OrderDetailsResponse(BaseModel):
    order: OrderResponse
    valid_next_statuses: list[OrderStatus]
    can_update: bool


class StatusUpdateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    status: OrderStatus
    notes: Optional[str] = Field(None, max_length=2000)
    custom_message: Optional[str] = Field(
        None,
        max_length=1000,
        description="Extra text appended to the customer notification",
    )


class BulkStatusUpdateRequest(BaseModel):
    order_ids: list[UUID] = Field(..., min_length=1, max_length=200)
    status: OrderStatus
    notes: Optional[str] = Field(None, max_length=2000)


class NoteCreateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    body: str = Field(..., min_length=1, max_length=2000)


class NotificationOutcomeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sent: bool
    recipient: Optional[str] = None
    error: Optional[str] = None


class StatusUpdateResponse(BaseModel):
    order: OrderResponse
    previous_status: OrderStatus
    new_status: OrderStatus
    transition: str
    notification: NotificationOutcomeResponse


class BulkUpdateItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: UUID
    success: bool
    previous_status: Optional[OrderStatus] = None
    new_status: Optional[OrderStatus] = None
    error: Optional[str] = None
    notification: Optional[NotificationOutcomeResponse] = None


class BulkUpdateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    results: list[BulkUpdateItemResponse]
    total: int
    success_count: int
    failure_count: int


class BreakdownEntry(BaseModel):
    count: int
    total_value: Decimal


class OrderStatisticsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status_breakdown: dict[str, BreakdownEntry]
    payment_breakdown: dict[str, BreakdownEntry]
    total_orders: int
    total_revenue: Decimal
    average_order_value: Decimal
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


class DashboardSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_orders: int
    open_orders: int
    revenue: Decimal
    active_products: int
    generated_at: datetime


class ReminderRequest(BaseModel):
    reminder_type: Literal["delivery_approaching", "delivery_delayed", "driver_contact"] = (
        "delivery_approaching"
    )
    estimated_minutes: Optional[int] = Field(None, ge=1, le=600)
