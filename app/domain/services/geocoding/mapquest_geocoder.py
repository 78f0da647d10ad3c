"""
MapQuest Geocoding API provider.

GET /geocoding/v1/address?key=...&location=<address>&maxResults=1
"""
from __future__ import annotations

from typing import Any, Optional

from app.core.circuit_breaker import CircuitBreaker
from app.core.config import settings
from app.core.exceptions import GeocodingUnavailableError
from app.domain.geo import GeoPoint
from app.domain.services.geocoding.base_geocoder import HttpGeocoder

# Parts of a MapQuest location joined into a display address, most specific first
_ADDRESS_FIELDS = ("street", "adminArea5", "adminArea3", "postalCode", "adminArea1")


class MapQuestGeocoder(HttpGeocoder):
    default_base_url = "https://www.mapquestapi.com"

    def __init__(
        self,
        circuit_breaker: Optional[CircuitBreaker] = None,
        *,
        api_key: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(circuit_breaker, **kwargs)
        self._api_key = api_key or settings.GEOCODER_API_KEY

    @property
    def provider_name(self) -> str:
        return "mapquest"

    def _build_request(self, address: str) -> tuple[str, dict[str, Any]]:
        return "/geocoding/v1/address", {
            "key": self._api_key,
            "location": address,
            "maxResults": 1,
        }

    def _parse(self, address: str, payload: Any) -> Optional[GeoPoint]:
        info = payload.get("info") or {}
        status_code = info.get("statuscode", 0)
        if status_code != 0:
            # MapQuest reports key and quota problems in the body with HTTP 200
            raise GeocodingUnavailableError(
                f"mapquest returned statuscode {status_code}",
                details={"provider": "mapquest", "messages": info.get("messages", [])},
            )

        results = payload.get("results") or []
        locations = results[0].get("locations") if results else None
        if not locations:
            return None

        location = locations[0]
        lat_lng = location["latLng"]
        formatted = ", ".join(
            location[field] for field in _ADDRESS_FIELDS if location.get(field)
        )
        return GeoPoint(
            longitude=float(lat_lng["lng"]),
            latitude=float(lat_lng["lat"]),
            address=formatted or address,
        )
