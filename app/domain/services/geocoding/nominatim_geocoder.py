"""
Nominatim (OpenStreetMap) geocoder.

GET /search?q=<address>&format=jsonv2&limit=1 returns a JSON list; each hit
carries ``lat``/``lon`` as strings and a ``display_name``.
"""
from __future__ import annotations

from typing import Any, Optional

from app.domain.geo import GeoPoint
from app.domain.services.geocoding.base_geocoder import HttpGeocoder


class NominatimGeocoder(HttpGeocoder):
    default_base_url = "https://nominatim.openstreetmap.org"

    @property
    def provider_name(self) -> str:
        return "nominatim"

    def _build_request(self, address: str) -> tuple[str, dict[str, Any]]:
        return "/search", {"q": address, "format": "jsonv2", "limit": 1}

    def _parse(self, address: str, payload: Any) -> Optional[GeoPoint]:
        if not payload:
            return None
        hit = payload[0]
        return GeoPoint(
            longitude=float(hit["lon"]),
            latitude=float(hit["lat"]),
            address=hit.get("display_name") or address,
        )
