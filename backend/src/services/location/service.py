"""
Delivery address verification.

Checks an address against the configured service area (ZIP codes first,
then city names, then keywords in the free-form address), assigns a
delivery zone and issues a ``LOC`` precondition token for serviceable
addresses. Only text matching is performed; no geocoding.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from src.core.config import Settings, get_settings
from src.core.logging import get_logger
from src.services.preconditions.validator import TokenKind, issue_token

logger = get_logger(__name__)

ZIP_PATTERN = re.compile(r"\b(\d{5})(?:-\d{4})?\b")

SUGGESTED_AREAS = [
    "Palm Springs",
    "Cathedral City",
    "Palm Desert",
    "La Quinta",
    "Indio",
    "Coachella",
]


class DeliveryZone(str, Enum):
    CORE = "core"
    EXTENDED = "extended"
    STANDARD = "standard"

    @property
    def estimated_delivery(self) -> str:
        return _ESTIMATES[self]


_ESTIMATES = {
    DeliveryZone.CORE: "30-45 minutes",
    DeliveryZone.EXTENDED: "45-60 minutes",
    DeliveryZone.STANDARD: "60-90 minutes",
}


@dataclass
class LocationVerification:
    """Outcome of an address check."""

    verified: bool
    zone: Optional[DeliveryZone] = None
    matched_by: Optional[str] = None
    matched_area: Optional[str] = None
    token: Optional[str] = None
    reason: Optional[str] = None

    @property
    def estimated_delivery(self) -> Optional[str]:
        return self.zone.estimated_delivery if self.zone else None

    @property
    def suggested_areas(self) -> list[str]:
        return [] if self.verified else list(SUGGESTED_AREAS)


class LocationService:
    """Matches addresses against the configured delivery coverage."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def verify_address(
        self,
        address: str,
        zip_code: Optional[str] = None,
        city: Optional[str] = None,
    ) -> LocationVerification:
        """
        Verify that an address lies in the delivery area.

        Args:
            address: Full delivery address
            zip_code: ZIP code supplied separately, if any
            city: City supplied separately, if any
        """
        normalized = address.lower().strip()

        candidates = []
        if zip_code:
            candidates.append(zip_code.strip()[:5])
        candidates.extend(ZIP_PATTERN.findall(normalized))

        for candidate in candidates:
            if candidate in self.settings.delivery_zip_codes:
                return self._verified(self._zone_for_zip(candidate), "zip_code", candidate)

        if city:
            area = self._match_area(city.lower().strip())
            if area:
                return self._verified(self._zone_for_area(area), "city_name", area)

        area = self._match_area(normalized)
        if area:
            return self._verified(self._zone_for_area(area), "address_keywords", area)

        logger.info("Address outside delivery area", address=address, zip_candidates=candidates)
        return LocationVerification(
            verified=False,
            reason="Location is outside our Palm Springs/Coachella Valley delivery area",
        )

    def _verified(
        self, zone: DeliveryZone, matched_by: str, matched_area: str
    ) -> LocationVerification:
        logger.info(
            "Address verified",
            zone=zone.value,
            matched_by=matched_by,
            matched_area=matched_area,
        )
        return LocationVerification(
            verified=True,
            zone=zone,
            matched_by=matched_by,
            matched_area=matched_area,
            token=issue_token(TokenKind.LOCATION),
        )

    def _match_area(self, text: str) -> Optional[str]:
        matches = [area for area in self.settings.delivery_areas if area in text]
        if not matches:
            return None
        return max(matches, key=len)

    def _zone_for_zip(self, zip_code: str) -> DeliveryZone:
        if zip_code in self.settings.core_zone_zip_codes:
            return DeliveryZone.CORE
        if zip_code in self.settings.extended_zone_zip_codes:
            return DeliveryZone.EXTENDED
        return DeliveryZone.STANDARD

    def _zone_for_area(self, area: str) -> DeliveryZone:
        if any(core in area for core in self.settings.core_zone_areas):
            return DeliveryZone.CORE
        if any(extended in area for extended in self.settings.extended_zone_areas):
            return DeliveryZone.EXTENDED
        return DeliveryZone.STANDARD
