"""
Custom Exception Hierarchy

Every error the dispatch engine raises carries a stable code, an HTTP status
and a human-readable message, and is serialised by the API exception handler.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    ALREADY_EXISTS = "ERR_1003"
    UNAUTHORIZED = "ERR_1004"
    FORBIDDEN = "ERR_1005"
    INVALID_COORDINATE = "ERR_1007"
    INVALID_PACKAGE = "ERR_1008"

    # Delivery errors (2xxx)
    DELIVERY_NOT_FOUND = "ERR_2001"
    DELIVERY_INVALID_TRANSITION = "ERR_2005"
    TRACKING_ID_EXHAUSTED = "ERR_2006"

    # Courier / user errors (3xxx)
    COURIER_NOT_FOUND = "ERR_3001"
    COURIER_UNAVAILABLE = "ERR_3002"
    COURIER_ALREADY_EXISTS = "ERR_3003"
    USER_NOT_FOUND = "ERR_3004"

    # External service errors (5xxx)
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"
    ADDRESS_NOT_FOUND = "ERR_5005"

    # Storage errors (7xxx)
    STORAGE_CONFLICT = "ERR_7001"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class InvalidCoordinateError(ValidationException):
    """Raised for a latitude/longitude outside its range or not finite"""

    def __init__(self, field: str, value: Any):
        super().__init__(
            message=f"Invalid {field}: {value!r}",
            field=field,
            details={"value": str(value)},
            error_code=ErrorCode.INVALID_COORDINATE
        )


class InvalidPackageError(ValidationException):
    """Raised for a negative or non-finite package weight or dimension"""

    def __init__(self, field: str, value: Any):
        super().__init__(
            message=f"Invalid package {field}: {value!r}",
            field=field,
            details={"value": str(value)},
            error_code=ErrorCode.INVALID_PACKAGE
        )


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class DeliveryNotFoundError(NotFoundException):
    """Raised when delivery is not found"""

    def __init__(self, delivery_id: int | str):
        super().__init__("Delivery", delivery_id, ErrorCode.DELIVERY_NOT_FOUND)


class CourierNotFoundError(NotFoundException):
    """Raised when courier is not found"""

    def __init__(self, courier_id: int):
        super().__init__("Courier", courier_id, ErrorCode.COURIER_NOT_FOUND)


class UserNotFoundError(NotFoundException):
    """Raised when user is not found"""

    def __init__(self, user_id: int):
        super().__init__("User", user_id, ErrorCode.USER_NOT_FOUND)


class UnauthorizedError(AppException):
    """Raised when the request carries no valid credentials"""

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(
            message=message,
            error_code=ErrorCode.UNAUTHORIZED,
            status_code=401
        )


class ForbiddenError(AppException):
    """Raised on an ownership or role violation"""

    def __init__(self, actor_id: int, action: str, resource: str | None = None):
        message = f"User {actor_id} is not authorized to {action}"
        if resource:
            message = f"{message} {resource}"
        super().__init__(
            message=message,
            error_code=ErrorCode.FORBIDDEN,
            status_code=403,
            details={"actor_id": actor_id, "action": action}
        )


class InvalidTransitionError(AppException):
    """Raised when a delivery (or courier) status change is not allowed"""

    def __init__(
        self,
        current_status: str,
        target_status: str,
        delivery_id: int | None = None,
        reason: str | None = None
    ):
        message = f"Invalid transition from '{current_status}' to '{target_status}'"
        if reason:
            message = f"{message}: {reason}"
        details: dict[str, Any] = {
            "current_status": current_status,
            "target_status": target_status,
        }
        if delivery_id is not None:
            details["delivery_id"] = delivery_id
        super().__init__(
            message=message,
            error_code=ErrorCode.DELIVERY_INVALID_TRANSITION,
            status_code=409,
            details=details
        )


class CourierUnavailableError(AppException):
    """Raised when a courier is not in 'available' status"""

    def __init__(self, courier_id: int, current_status: str | None = None):
        super().__init__(
            message=f"Courier {courier_id} is not available for delivery",
            error_code=ErrorCode.COURIER_UNAVAILABLE,
            status_code=409,
            details={"courier_id": courier_id, "current_status": current_status}
        )


class CourierAlreadyExistsError(AppException):
    """Raised when a user registers as a courier twice"""

    def __init__(self, user_id: int):
        super().__init__(
            message=f"User {user_id} is already a courier",
            error_code=ErrorCode.COURIER_ALREADY_EXISTS,
            status_code=409,
            details={"user_id": user_id}
        )


class TrackingIdExhaustedError(AppException):
    """Raised when every generated tracking code collided"""

    def __init__(self, attempts: int):
        super().__init__(
            message=f"Could not allocate a unique tracking code after {attempts} attempts",
            error_code=ErrorCode.TRACKING_ID_EXHAUSTED,
            status_code=503,
            details={"attempts": attempts}
        )


class StorageConflictError(AppException):
    """Raised when a concurrent write kept the store from committing"""

    def __init__(self, operation: str, attempts: int | None = None, reason: str | None = None):
        details: dict[str, Any] = {"operation": operation}
        if attempts is not None:
            details["attempts"] = attempts
        if reason:
            details["reason"] = reason
        super().__init__(
            message=f"Storage conflict during {operation}",
            error_code=ErrorCode.STORAGE_CONFLICT,
            status_code=409,
            details=details
        )


class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        status_code: int = 503,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )
        self.details["service"] = service_name


class GeocodingUnavailableError(ExternalServiceException):
    """Raised when the geocoding provider fails, times out or is circuit-broken"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            service_name="geocoder",
            message=f"Geocoding unavailable: {message}",
            error_code=error_code,
            details=details
        )

    @classmethod
    def from_response(
        cls,
        provider: str,
        response: Any,
        *,
        max_response_chars: int = 500
    ) -> "GeocodingUnavailableError":
        """Build the error from a failed HTTP response (e.g. httpx.Response)."""
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=f"{provider} returned status {status_code}",
            details={
                "provider": provider,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class ServiceTimeoutError(GeocodingUnavailableError):
    """Raised when the geocoding call exceeds its timeout"""

    def __init__(self, provider: str, timeout_seconds: float):
        super().__init__(
            message=f"{provider} request timed out after {timeout_seconds}s",
            error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
            details={"provider": provider, "timeout_seconds": timeout_seconds}
        )


class CircuitBreakerOpenError(GeocodingUnavailableError):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            details={"retry_after_seconds": retry_after_seconds, "breaker": service_name}
        )


class AddressNotFoundError(ExternalServiceException):
    """Raised when the provider has no match for an address"""

    def __init__(self, address: str):
        super().__init__(
            service_name="geocoder",
            message=f"Address could not be geocoded: {address}",
            error_code=ErrorCode.ADDRESS_NOT_FOUND,
            status_code=422,
            details={"address": address}
        )
