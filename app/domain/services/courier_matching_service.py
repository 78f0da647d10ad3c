"""
Courier Matching Service - available couriers near a delivery's pickup point
"""
import math
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Actor
from app.core.config import settings
from app.core.exceptions import DeliveryNotFoundError, ValidationException
from app.core.logging import get_logger
from app.db.models.courier import Courier, CourierStatus
from app.db.models.delivery import Delivery
from app.db.repositories.courier_repository import CourierRepository
from app.state_machine.delivery_lifecycle import ensure_owner_or_admin

logger = get_logger(__name__)


@dataclass(frozen=True)
class CourierMatch:
    courier: Courier
    distance_meters: float


class CourierMatchingService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.couriers = CourierRepository(db)

    async def find_nearby(
        self,
        actor: Actor,
        delivery_id: int,
        radius_meters: Optional[float] = None,
    ) -> List[CourierMatch]:
        """
        Available couriers within ``radius_meters`` of the pickup, nearest first.

        Raises:
            DeliveryNotFoundError: no such delivery
            ForbiddenError: actor is neither the owner nor an admin
            ValidationException: radius is not finite, not positive or exceeds the cap
        """
        if radius_meters is None:
            radius_meters = settings.MATCHING_DEFAULT_RADIUS_METERS
        if (
            not math.isfinite(radius_meters)
            or radius_meters <= 0
            or radius_meters > settings.MATCHING_MAX_RADIUS_METERS
        ):
            raise ValidationException(
                f"radius_meters must be in (0, {settings.MATCHING_MAX_RADIUS_METERS}]",
                field="radius_meters",
                details={"value": str(radius_meters)},
            )

        result = await self.db.execute(select(Delivery).where(Delivery.id == delivery_id))
        delivery = result.scalar_one_or_none()
        if not delivery:
            raise DeliveryNotFoundError(delivery_id)
        ensure_owner_or_admin(actor, delivery, "match couriers for")

        matches = await self.couriers.find_within_radius(
            delivery.pickup, radius_meters, status=CourierStatus.AVAILABLE
        )

        logger.info(
            "Nearby couriers matched",
            extra_data={
                "delivery_id": delivery_id,
                "radius_meters": radius_meters,
                "matches": len(matches),
            },
        )
        return [CourierMatch(courier=courier, distance_meters=meters) for courier, meters in matches]
