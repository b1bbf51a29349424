"""
Product catalog endpoints: browsing, stock checks and inventory reservation.
"""

from fastapi import APIRouter, Query, status

from src.api.deps import DatabaseSession
from src.core.logging import get_logger
from src.schemas.products import (
    ProductResponse,
    ReservationRequest,
    ReservationResponse,
    StockCheckRequest,
    StockLevelResponse,
)
from src.services.catalog.service import CatalogService

logger = get_logger(__name__)

router = APIRouter(prefix="/products", tags=["Products"])


@router.get("", response_model=list[ProductResponse], summary="List products")
async def list_products(
    db: DatabaseSession,
    include_inactive: bool = Query(False, description="Include products hidden from customers"),
) -> list[ProductResponse]:
    service = CatalogService(db)
    products = await service.list_products(active_only=not include_inactive)
    return [ProductResponse.model_validate(product) for product in products]


@router.get("/{product_id}", response_model=ProductResponse, summary="Get product")
async def get_product(product_id: int, db: DatabaseSession) -> ProductResponse:
    service = CatalogService(db)
    return ProductResponse.model_validate(await service.get_product(product_id))


@router.post(
    "/stock-check",
    response_model=list[StockLevelResponse],
    summary="Current stock for a set of products",
)
async def check_stock(request: StockCheckRequest, db: DatabaseSession) -> list[StockLevelResponse]:
    service = CatalogService(db)
    levels = await service.check_stock(request.product_ids)
    return [StockLevelResponse.model_validate(level) for level in levels]


@router.post(
    "/reservations",
    response_model=ReservationResponse,
    status_code=status.HTTP_200_OK,
    summary="Check availability and issue an inventory token",
    description=(
        "Checks every requested line against current stock. When all lines "
        "can be satisfied an INV token is returned for use at order creation."
    ),
)
async def reserve_inventory(request: ReservationRequest, db: DatabaseSession) -> ReservationResponse:
    service = CatalogService(db)
    reservation = await service.reserve_inventory(
        [(item.product_id, item.quantity) for item in request.items]
    )
    logger.info(
        "Inventory reservation requested",
        lines=len(request.items),
        reserved=reservation.reserved,
    )
    return ReservationResponse.model_validate(reservation)
