"""
Geocoder interface - address text in, GeoPoint out.

Services depend on BaseGeocoder only; the concrete provider is picked by
GEOCODER_PROVIDER in the factory.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from app.core.circuit_breaker import CircuitBreaker, get_geocoder_circuit_breaker
from app.core.config import settings
from app.core.exceptions import (
    AddressNotFoundError,
    GeocodingUnavailableError,
    InvalidCoordinateError,
    ServiceTimeoutError,
    ValidationException,
)
from app.core.logging import get_logger, log_async_operation
from app.domain.geo import GeoPoint

logger = get_logger(__name__)


class BaseGeocoder(ABC):
    """Uniform interface over geocoding providers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier (matches GEOCODER_PROVIDER)."""

    @abstractmethod
    async def geocode(self, address: str) -> GeoPoint:
        """
        Resolve a free-text address.

        Raises:
            AddressNotFoundError: the provider has no match.
            GeocodingUnavailableError: timeout, transport error, 5xx or open breaker.
        """


class HttpGeocoder(BaseGeocoder):
    """
    Shared plumbing for JSON-over-HTTP providers.

    Subclasses supply the request (``_build_request``) and the parsing of a
    successful body (``_parse``). Each call runs under the provider's
    circuit breaker.
    """

    default_base_url: str = ""

    def __init__(
        self,
        circuit_breaker: Optional[CircuitBreaker] = None,
        *,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._circuit_breaker = circuit_breaker or get_geocoder_circuit_breaker(self.provider_name)
        self._base_url = (base_url or settings.GEOCODER_BASE_URL or self.default_base_url).rstrip("/")
        self._timeout = timeout_seconds or settings.GEOCODER_TIMEOUT_SECONDS
        self._transport = transport

    @abstractmethod
    def _build_request(self, address: str) -> tuple[str, dict[str, Any]]:
        """(path, query params) for one lookup"""

    @abstractmethod
    def _parse(self, address: str, payload: Any) -> Optional[GeoPoint]:
        """First match in ``payload``, or None when there is none"""

    async def geocode(self, address: str) -> GeoPoint:
        if not address or not address.strip():
            raise ValidationException("Address must not be empty", field="address")
        address = address.strip()

        async def _lookup() -> GeoPoint:
            return await self._lookup(address)

        return await self._circuit_breaker.execute(_lookup)

    @log_async_operation("geocode")
    async def _lookup(self, address: str) -> GeoPoint:
        path, params = self._build_request(address)

        async with httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
            headers={"User-Agent": settings.GEOCODER_USER_AGENT},
        ) as client:
            try:
                response = await client.get(path, params=params)
            except httpx.TimeoutException:
                logger.warning(
                    "Geocoder timeout",
                    extra_data={"provider": self.provider_name, "timeout_seconds": self._timeout},
                )
                raise ServiceTimeoutError(self.provider_name, self._timeout)
            except httpx.RequestError as exc:
                logger.warning(
                    "Geocoder network error",
                    extra_data={"provider": self.provider_name, "error": str(exc)},
                )
                raise GeocodingUnavailableError(
                    f"{self.provider_name} network error: {exc}",
                    details={"provider": self.provider_name, "network_error": True},
                )

        if response.status_code != 200:
            raise GeocodingUnavailableError.from_response(self.provider_name, response)

        try:
            point = self._parse(address, response.json())
        except (KeyError, IndexError, TypeError, ValueError, InvalidCoordinateError) as exc:
            raise GeocodingUnavailableError(
                f"{self.provider_name} returned a malformed response",
                details={"provider": self.provider_name, "error": str(exc)},
            )

        if point is None:
            logger.info(
                "Address not found",
                extra_data={"provider": self.provider_name, "address": address},
            )
            raise AddressNotFoundError(address)

        return point
