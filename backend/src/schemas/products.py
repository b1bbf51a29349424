"""
Product catalog and inventory reservation schemas.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ProductResponse(BaseModel):
    """Product as shown to customers."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    price: Decimal
    stock: int
    image_url: Optional[str] = None
    is_active: bool


class StockLevelResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    name: str
    price: Decimal
    stock: int
    is_active: bool
    in_stock: bool


class StockCheckRequest(BaseModel):
    product_ids: list[int] = Field(..., min_length=1, max_length=100)


class ReservationItem(BaseModel):
    product_id: int = Field(..., description="Product identifier")
    quantity: int = Field(..., description="Requested quantity")


class ReservationRequest(BaseModel):
    items: list[ReservationItem] = Field(..., min_length=1)


class ReservationLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    requested: int
    available: int
    name: Optional[str] = None
    unit_price: Optional[Decimal] = None
    line_total: Decimal
    problem: Optional[str] = None


class ReservationResponse(BaseModel):
    """
    Reservation outcome.

    ``inventory_token`` is set only when every line could be satisfied.
    """

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    reserved: bool
    inventory_token: Optional[str] = Field(None, validation_alias="token")
    total: Decimal
    lines: list[ReservationLineResponse]
    problems: list[str]


class StockUpdateRequest(BaseModel):
    stock: int = Field(..., ge=0, description="New absolute stock level")


class ProductActivationRequest(BaseModel):
    is_active: bool
