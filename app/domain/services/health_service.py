"""
Health service - dependency checks (database, geocoder circuit breaker).

Two levels:
- liveness: the process is up (no dependency checks)
- readiness: the database answers and the geocoder breaker is not open
"""
from typing import Any

from sqlalchemy import text

from app.core.circuit_breaker import get_geocoder_circuit_breaker
from app.core.config import settings
from app.core.logging import get_logger
from app.db.database import AsyncSessionLocal

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# Sanitised errors; no infrastructure details leak to callers
_ERROR_DB = "error: db_unavailable"
_ERROR_GEOCODER = "error: geocoder_circuit_open"


async def _check_db() -> str:
    """Run a trivial query against the database."""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("Database health check failed", extra_data={"error": str(e)})
        return _ERROR_DB


def _check_geocoder() -> str:
    """An open breaker means recent geocoding calls kept failing."""
    breaker = get_geocoder_circuit_breaker(settings.GEOCODER_PROVIDER)
    if breaker.is_open:
        logger.warning(
            "Geocoder circuit breaker is open",
            extra_data={
                "provider": settings.GEOCODER_PROVIDER,
                "retry_after_seconds": breaker.get_retry_after(),
            },
        )
        return _ERROR_GEOCODER
    return _CHECK_OK


async def check_readiness() -> dict[str, Any]:
    """
    Readiness check across dependencies.

    Returns the overall status ("healthy" or "degraded") plus one entry per
    dependency: "ok" or "error: ...".
    """
    checks = {
        "db": await _check_db(),
        "geocoder": _check_geocoder(),
    }

    all_ok = all(v == _CHECK_OK for v in checks.values())
    overall_status = _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED

    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    return {"status": overall_status, **checks}
