"""
Courier Service - courier profiles, their vehicles and locations

Registering a courier turns the user into a courier; deleting one removes
every delivery it carried and turns the user back into a plain user.
"""
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Actor
from app.core.exceptions import (
    CourierAlreadyExistsError,
    CourierNotFoundError,
    ForbiddenError,
    InvalidTransitionError,
    StorageConflictError,
    UserNotFoundError,
    ValidationException,
)
from app.core.logging import get_logger
from app.db.models.courier import Courier, CourierStatus
from app.db.models.user import User, UserRole
from app.db.models.vehicle import Vehicle
from app.db.repositories.courier_repository import CourierRepository
from app.domain.geo import GeoPoint
from app.domain.services.geocoding import BaseGeocoder, get_geocoder

logger = get_logger(__name__)

# Statuses a courier or admin may set by hand; on-delivery belongs to assignment
MANUAL_COURIER_STATUSES = frozenset({CourierStatus.AVAILABLE, CourierStatus.UNAVAILABLE})


class CourierService:
    """Service for managing couriers"""

    def __init__(self, db: AsyncSession, geocoder: Optional[BaseGeocoder] = None):
        self.db = db
        self._geocoder = geocoder
        self.couriers = CourierRepository(db)

    @property
    def geocoder(self) -> BaseGeocoder:
        if self._geocoder is None:
            self._geocoder = get_geocoder()
        return self._geocoder

    async def register_courier(
        self,
        actor: Actor,
        vehicle_data: dict[str, Any],
        location: Optional[GeoPoint] = None,
    ) -> Courier:
        """
        Make the calling user a courier with the given vehicle.

        Admins keep their admin role; everyone else becomes ``courier``.
        """
        user = await self._get_user(actor.id)

        if await self.couriers.get_by_user(user.id):
            raise CourierAlreadyExistsError(user.id)

        vehicle = Vehicle(**vehicle_data)
        self.db.add(vehicle)
        courier = Courier(
            user_id=user.id,
            vehicle=vehicle,
            status=CourierStatus.AVAILABLE,
            delivery_count=0,
        )
        if location is not None:
            courier.set_location(location)
        self.db.add(courier)

        if user.role != UserRole.ADMIN:
            user.role = UserRole.COURIER

        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            reason = str(exc.orig)
            if "license_plate" in reason:
                raise StorageConflictError(
                    "register courier",
                    reason=f"license plate {vehicle_data.get('license_plate')} is already registered",
                )
            if "user_id" in reason:
                raise CourierAlreadyExistsError(user.id)
            raise StorageConflictError("register courier", reason=reason)

        await self.db.refresh(courier)
        logger.info(
            "Courier registered",
            extra_data={"courier_id": courier.id, "user_id": user.id, "vehicle_id": vehicle.id},
        )
        return courier

    async def get_courier(self, actor: Actor, courier_id: int) -> Courier:
        courier = await self._get_courier(courier_id)
        self._ensure_self_or_admin(actor, courier, "view")
        return courier

    async def list_couriers(self, actor: Actor, status: Optional[CourierStatus] = None) -> List[Courier]:
        if not actor.is_admin:
            raise ForbiddenError(actor.id, "list", "couriers")

        query = select(Courier).order_by(Courier.id)
        if status is not None:
            query = query.where(Courier.status == status)
        result = await self.db.execute(query)
        return list(result.scalars().unique().all())

    async def update_courier(
        self,
        actor: Actor,
        courier_id: int,
        status: Optional[CourierStatus] = None,
        rating: Optional[float] = None,
        is_verified: Optional[bool] = None,
    ) -> Courier:
        """
        Change availability, rating or verification.

        The courier itself may only toggle availability; rating and
        verification are admin-only.
        """
        courier = await self._get_courier(courier_id, for_update=True)
        self._ensure_self_or_admin(actor, courier, "update")

        if (rating is not None or is_verified is not None) and not actor.is_admin:
            raise ForbiddenError(actor.id, "change rating or verification of", f"courier {courier_id}")

        if status is not None and status != courier.status:
            if status not in MANUAL_COURIER_STATUSES:
                raise ValidationException(
                    "Courier status can only be set to available or unavailable",
                    field="status",
                    details={"value": status.value},
                )
            if courier.status == CourierStatus.ON_DELIVERY:
                raise InvalidTransitionError(
                    courier.status.value,
                    status.value,
                    reason="courier is on a delivery",
                )
            courier.status = status

        if rating is not None:
            if not 1 <= rating <= 5:
                raise ValidationException(
                    "Rating must be between 1 and 5", field="rating", details={"value": rating}
                )
            courier.rating = rating

        if is_verified is not None:
            courier.is_verified = is_verified

        await self.db.commit()
        await self.db.refresh(courier)

        logger.info(
            "Courier updated",
            extra_data={
                "courier_id": courier.id,
                "actor_id": actor.id,
                "status": courier.status.value,
            },
        )
        return courier

    async def update_location(
        self,
        actor: Actor,
        courier_id: int,
        point: Optional[GeoPoint] = None,
        address: Optional[str] = None,
    ) -> Courier:
        """
        Replace the courier's current location.

        Explicit coordinates win; otherwise ``address`` is geocoded.
        """
        if point is None and not address:
            raise ValidationException("Either coordinates or an address is required", field="location")

        courier = await self._get_courier(courier_id, for_update=True)
        self._ensure_self_or_admin(actor, courier, "update location of")

        if point is None:
            geocoded = await self.geocoder.geocode(address)
            # Keep the caller's wording of the address
            point = GeoPoint(geocoded.longitude, geocoded.latitude, address)

        courier.set_location(point)
        await self.db.commit()
        await self.db.refresh(courier)

        logger.info(
            "Courier location updated",
            extra_data={"courier_id": courier.id, "actor_id": actor.id},
        )
        return courier

    async def delete_courier(self, actor: Actor, courier_id: int) -> int:
        """
        Delete a courier and every delivery assigned to it.

        The linked user goes back to the ``user`` role. Returns the number of
        deliveries removed.
        """
        courier = await self._get_courier(courier_id, for_update=True)
        self._ensure_self_or_admin(actor, courier, "delete")

        user_id = courier.user_id
        vehicle_id = courier.vehicle_id

        removed = await self.couriers.delete_courier_cascade(courier_id)

        vehicle = await self.db.get(Vehicle, vehicle_id)
        if vehicle is not None:
            await self.db.delete(vehicle)

        user = await self.db.get(User, user_id)
        if user is not None and user.role == UserRole.COURIER:
            user.role = UserRole.USER

        await self.db.commit()

        logger.info(
            "Courier deleted",
            extra_data={
                "courier_id": courier_id,
                "user_id": user_id,
                "actor_id": actor.id,
                "deliveries_removed": removed,
            },
        )
        return removed

    async def get_stats(self, actor: Actor) -> List[dict]:
        """Per-status count, average rating and average completed deliveries (admin)"""
        if not actor.is_admin:
            raise ForbiddenError(actor.id, "view", "courier statistics")
        return await self.couriers.status_stats()

    def _ensure_self_or_admin(self, actor: Actor, courier: Courier, action: str) -> None:
        if not actor.is_admin and courier.user_id != actor.id:
            raise ForbiddenError(actor.id, action, f"courier {courier.id}")

    async def _get_courier(self, courier_id: int, *, for_update: bool = False) -> Courier:
        courier = await self.couriers.get(courier_id, for_update=for_update)
        if not courier:
            raise CourierNotFoundError(courier_id)
        return courier

    async def _get_user(self, user_id: int) -> User:
        result = await self.db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if not user:
            raise UserNotFoundError(user_id)
        return user
