"""
Delivery area verification endpoint.
"""

from fastapi import APIRouter

from src.api.deps import AppSettings
from src.schemas.location import LocationVerifyRequest, LocationVerifyResponse
from src.services.location.service import LocationService

router = APIRouter(prefix="/location", tags=["Location"])


@router.post(
    "/verify",
    response_model=LocationVerifyResponse,
    summary="Verify a delivery address",
    description="Returns a LOC token when the address is inside the delivery area.",
)
async def verify_location(
    request: LocationVerifyRequest,
    settings: AppSettings,
) -> LocationVerifyResponse:
    service = LocationService(settings)
    result = service.verify_address(request.address, zip_code=request.zip_code, city=request.city)
    return LocationVerifyResponse.model_validate(result)
