"""
Bearer JWT handling

Session issuance lives outside this service; tokens only have to carry the
caller's user id and role. ``Actor`` is what every domain operation receives.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt as pyjwt
from pydantic import BaseModel

from app.core.config import settings
from app.core.logging import get_logger
from app.db.models.user import UserRole

logger = get_logger(__name__)


class TokenPayload(BaseModel):
    """JWT claims"""
    user_id: int
    role: UserRole
    exp: int  # Unix timestamp


class Actor(BaseModel):
    """The authenticated caller of a domain operation"""
    id: int
    role: UserRole

    model_config = {"frozen": True}

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_courier(self) -> bool:
        return self.role == UserRole.COURIER


def create_access_token(user_id: int, role: UserRole | str) -> str:
    """Issue a signed access token"""
    if not settings.JWT_SECRET_KEY:
        raise ValueError("JWT_SECRET_KEY is not configured; cannot issue tokens")
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "user_id": user_id,
        "role": UserRole(role).value,
        "exp": int(expire.timestamp()),
    }
    return pyjwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Optional[TokenPayload]:
    """Decode a token; None when invalid, expired or malformed"""
    if not settings.JWT_SECRET_KEY:
        logger.error("JWT_SECRET_KEY is empty; tokens cannot be verified")
        return None
    try:
        payload = pyjwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        return TokenPayload(**payload)
    except pyjwt.InvalidTokenError:
        logger.warning("JWT token invalid or expired")
        return None
    except (KeyError, ValueError, TypeError) as e:
        logger.warning("JWT payload malformed", extra_data={"error": str(e)})
        return None
