"""
FastAPI dependency for authenticating API requests

Usage:
    @router.get("/deliveries/")
    async def list_deliveries(
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db),
    ):
        ...
"""
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Actor, verify_token
from app.core.exceptions import UnauthorizedError
from app.core.logging import get_logger
from app.db.database import get_db
from app.db.models.user import User

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """
    Resolve the bearer token into an Actor.

    The role comes from the database rather than the token, so registering
    or deleting a courier takes effect without re-issuing tokens.
    Raises UnauthorizedError (401) for a missing, invalid or expired token
    and for unknown or inactive users.
    """
    if credentials is None:
        raise UnauthorizedError("Missing bearer token")

    token_data = verify_token(credentials.credentials)
    if not token_data:
        raise UnauthorizedError()

    result = await db.execute(select(User).where(User.id == token_data.user_id))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        logger.warning(
            "API access denied: user missing or inactive",
            extra_data={
                "user_id": token_data.user_id,
                "user_found": user is not None,
            },
        )
        raise UnauthorizedError("User is not active")

    return Actor(id=user.id, role=user.role)
