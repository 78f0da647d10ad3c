"""
Geocoding Provider Abstraction Layer

Switch between Nominatim and MapQuest without touching the services.
"""
from app.domain.services.geocoding.base_geocoder import BaseGeocoder
from app.domain.services.geocoding.geocoder_factory import get_geocoder, reset_geocoder

__all__ = [
    "BaseGeocoder",
    "get_geocoder",
    "reset_geocoder",
]
