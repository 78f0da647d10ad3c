"""
Delivery pricing.

price = base + distance_km * per_km + weight * per_kg + volume * per_volume_unit

The volume term only applies when length, width and height are all known.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from app.core.config import settings
from app.core.exceptions import InvalidPackageError, ValidationException


@dataclass(frozen=True)
class PackageDimensions:
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None

    @property
    def volume(self) -> Optional[float]:
        if self.length is None or self.width is None or self.height is None:
            return None
        return self.length * self.width * self.height


@dataclass(frozen=True)
class Tariff:
    base: float = 5.0
    per_km: float = 1.5
    per_kg: float = 0.2
    per_volume_unit: float = 0.0001

    @classmethod
    def from_settings(cls) -> "Tariff":
        return cls(
            base=settings.PRICING_BASE,
            per_km=settings.PRICING_PER_KM,
            per_kg=settings.PRICING_PER_KG,
            per_volume_unit=settings.PRICING_PER_VOLUME_UNIT,
        )


def _as_decimal(value: float) -> Decimal:
    return Decimal(repr(float(value)))


def _is_non_negative(value: float) -> bool:
    if isinstance(value, bool):
        return False
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(number) and number >= 0


def validate_package(weight: float, dimensions: Optional[PackageDimensions] = None) -> None:
    """Reject negative or non-finite weight and dimensions."""
    if not _is_non_negative(weight):
        raise InvalidPackageError("weight", weight)
    if dimensions is not None:
        for field in ("length", "width", "height"):
            value = getattr(dimensions, field)
            if value is not None and not _is_non_negative(value):
                raise InvalidPackageError(field, value)


def quote(
    distance_km: float,
    weight: float,
    dimensions: Optional[PackageDimensions] = None,
    tariff: Optional[Tariff] = None,
) -> Decimal:
    """
    Price for a package moved ``distance_km``.

    The sum is exact in decimal arithmetic and left unrounded.

    Raises:
        ValidationException: distance is negative or not finite
        InvalidPackageError: weight or a dimension is negative or not finite
    """
    tariff = tariff or Tariff.from_settings()

    if not _is_non_negative(distance_km):
        raise ValidationException(
            f"Invalid distance: {distance_km!r}",
            field="distance_km",
            details={"value": str(distance_km)},
        )
    validate_package(weight, dimensions)

    volume = Decimal(0)
    if dimensions is not None and dimensions.volume is not None:
        volume = (
            _as_decimal(dimensions.length)
            * _as_decimal(dimensions.width)
            * _as_decimal(dimensions.height)
        )

    return (
        _as_decimal(tariff.base)
        + _as_decimal(distance_km) * _as_decimal(tariff.per_km)
        + _as_decimal(weight) * _as_decimal(tariff.per_kg)
        + volume * _as_decimal(tariff.per_volume_unit)
    )
