"""
Geocoder Factory - builds the configured geocoding provider once per process.
"""
from __future__ import annotations

import threading

from app.core.circuit_breaker import get_geocoder_circuit_breaker
from app.core.config import settings
from app.core.logging import get_logger
from app.domain.services.geocoding.base_geocoder import BaseGeocoder

logger = get_logger(__name__)

_geocoder: BaseGeocoder | None = None
_lock = threading.Lock()


def _create_geocoder(provider_type: str) -> BaseGeocoder:
    if provider_type == "nominatim":
        from app.domain.services.geocoding.nominatim_geocoder import NominatimGeocoder

        return NominatimGeocoder(circuit_breaker=get_geocoder_circuit_breaker("nominatim"))

    if provider_type == "mapquest":
        from app.domain.services.geocoding.mapquest_geocoder import MapQuestGeocoder

        return MapQuestGeocoder(circuit_breaker=get_geocoder_circuit_breaker("mapquest"))

    raise ValueError(f"Unknown geocoder provider: {provider_type}")


def get_geocoder() -> BaseGeocoder:
    """The process-wide geocoder selected by GEOCODER_PROVIDER."""
    global _geocoder
    if _geocoder is None:
        with _lock:
            if _geocoder is None:
                _geocoder = _create_geocoder(settings.GEOCODER_PROVIDER)
                logger.info(
                    "Geocoder initialized",
                    extra_data={"provider": _geocoder.provider_name},
                )
    return _geocoder


def reset_geocoder() -> None:
    """Drop the cached provider (tests only)."""
    global _geocoder
    with _lock:
        _geocoder = None
