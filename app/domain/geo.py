"""
GeoPoint value object and great-circle distance.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from app.core.exceptions import InvalidCoordinateError

EARTH_RADIUS_KM = 6371.0
EARTH_RADIUS_M = EARTH_RADIUS_KM * 1000.0

# Coordinates closer than this are the same point
DISTANCE_TOLERANCE_KM = 1e-9


def _validate_coordinate(name: str, value: float, limit: float) -> float:
    if isinstance(value, bool):
        raise InvalidCoordinateError(name, value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidCoordinateError(name, value) from None
    if not math.isfinite(number) or not -limit <= number <= limit:
        raise InvalidCoordinateError(name, value)
    return number


@dataclass(frozen=True)
class GeoPoint:
    """A validated (longitude, latitude) pair with an optional display address."""

    longitude: float
    latitude: float
    address: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "longitude", _validate_coordinate("longitude", self.longitude, 180.0))
        object.__setattr__(self, "latitude", _validate_coordinate("latitude", self.latitude, 90.0))

    @property
    def coordinates(self) -> tuple[float, float]:
        """(longitude, latitude), GeoJSON order"""
        return self.longitude, self.latitude

    def same_position(self, other: GeoPoint) -> bool:
        """True when both points denote the same place, ignoring the address text."""
        return distance_km(self, other) <= DISTANCE_TOLERANCE_KM


def distance_km(a: GeoPoint, b: GeoPoint) -> float:
    """Haversine distance in kilometres."""
    phi1, phi2 = math.radians(a.latitude), math.radians(b.latitude)
    d_phi = math.radians(b.latitude - a.latitude)
    d_lambda = math.radians(b.longitude - a.longitude)

    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    # Rounding can push h a hair past 1 for antipodal points
    h = min(1.0, max(0.0, h))
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def distance_m(a: GeoPoint, b: GeoPoint) -> float:
    return distance_km(a, b) * 1000.0


@dataclass(frozen=True)
class BoundingBox:
    min_longitude: float
    min_latitude: float
    max_longitude: float
    max_latitude: float

    @property
    def crosses_antimeridian(self) -> bool:
        return self.min_longitude > self.max_longitude


def bounding_box(center: GeoPoint, radius_meters: float) -> BoundingBox:
    """
    Smallest lat/lon box containing every point within ``radius_meters`` of ``center``.

    Used as an index-friendly SQL prefilter before the exact haversine check.
    Near the poles the box widens to the full longitude range; across the
    antimeridian ``min_longitude`` is greater than ``max_longitude``.
    """
    angular = radius_meters / EARTH_RADIUS_M
    lat = math.radians(center.latitude)
    lon = math.radians(center.longitude)

    min_lat = lat - angular
    max_lat = lat + angular

    ratio = math.sin(min(angular, math.pi / 2)) / math.cos(lat) if abs(lat) < math.pi / 2 else 1.0
    if min_lat <= -math.pi / 2 or max_lat >= math.pi / 2 or ratio >= 1.0:
        return BoundingBox(
            min_longitude=-180.0,
            min_latitude=max(math.degrees(min_lat), -90.0),
            max_longitude=180.0,
            max_latitude=min(math.degrees(max_lat), 90.0),
        )

    delta_lon = math.asin(ratio)
    min_lon = math.degrees(lon - delta_lon)
    max_lon = math.degrees(lon + delta_lon)
    if min_lon < -180.0:
        min_lon += 360.0
    if max_lon > 180.0:
        max_lon -= 360.0

    return BoundingBox(
        min_longitude=min_lon,
        min_latitude=math.degrees(min_lat),
        max_longitude=max_lon,
        max_latitude=math.degrees(max_lat),
    )
