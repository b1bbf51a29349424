"""
Delivery address verification schemas.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from src.services.location.service import DeliveryZone


class LocationVerifyRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    address: str = Field(..., min_length=1, max_length=500)
    zip_code: Optional[str] = Field(None, max_length=10)
    city: Optional[str] = Field(None, max_length=100)


class LocationVerifyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    verified: bool
    location_token: Optional[str] = Field(None, validation_alias="token")
    zone: Optional[DeliveryZone] = None
    matched_by: Optional[str] = None
    matched_area: Optional[str] = None
    estimated_delivery: Optional[str] = None
    reason: Optional[str] = None
    suggested_areas: list[str] = Field(default_factory=list)
