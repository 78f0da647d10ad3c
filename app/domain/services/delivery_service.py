"""
Delivery Service - Handles delivery creation and management

Creation geocodes both ends, prices the trip once and persists the request
under a fresh tracking code. Status changes and their courier side effects
commit together.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Actor
from app.core.config import settings
from app.core.exceptions import (
    CourierNotFoundError,
    DeliveryNotFoundError,
    ForbiddenError,
    InvalidTransitionError,
    StorageConflictError,
    TrackingIdExhaustedError,
    UserNotFoundError,
)
from app.core.logging import get_logger
from app.db.models.courier import Courier, CourierStatus
from app.db.models.delivery import Delivery, DeliveryStatus
from app.db.models.user import User
from app.db.repositories.courier_repository import CourierRepository
from app.domain.geo import GeoPoint, distance_km
from app.domain.pricing import PackageDimensions, quote, validate_package
from app.domain.services.geocoding import BaseGeocoder, get_geocoder
from app.domain.tracking import generate_tracking_code, is_tracking_code
from app.state_machine.delivery_lifecycle import (
    authorize_details_update,
    authorize_status_update,
    ensure_owner_or_admin,
    is_owner_or_admin,
)

logger = get_logger(__name__)


def _is_tracking_code_conflict(exc: IntegrityError) -> bool:
    return "tracking_code" in str(exc.orig)


class DeliveryService:
    """Service for managing deliveries"""

    def __init__(self, db: AsyncSession, geocoder: Optional[BaseGeocoder] = None):
        self.db = db
        self._geocoder = geocoder
        self.couriers = CourierRepository(db)

    @property
    def geocoder(self) -> BaseGeocoder:
        if self._geocoder is None:
            self._geocoder = get_geocoder()
        return self._geocoder

    async def create_delivery(
        self,
        actor: Actor,
        pickup_address: str,
        dropoff_address: str,
        package_weight: float,
        dimensions: Optional[PackageDimensions] = None,
        package_description: Optional[str] = None,
    ) -> Delivery:
        """
        Create a delivery request in status ``requested``.

        Nothing is written unless both addresses geocode and the package is
        valid. A tracking-code collision is retried with a new code.
        """
        validate_package(package_weight, dimensions)
        await self._get_user(actor.id)

        pickup = await self.geocoder.geocode(pickup_address)
        dropoff = await self.geocoder.geocode(dropoff_address)

        distance = distance_km(pickup, dropoff)
        price = quote(distance, package_weight, dimensions)
        dimensions = dimensions or PackageDimensions()

        max_attempts = settings.TRACKING_CODE_MAX_ATTEMPTS
        for attempt in range(1, max_attempts + 1):
            delivery = Delivery(
                tracking_code=generate_tracking_code(),
                user_id=actor.id,
                package_weight=package_weight,
                package_length=dimensions.length,
                package_width=dimensions.width,
                package_height=dimensions.height,
                package_description=package_description,
                distance_km=distance,
                price=price,
                status=DeliveryStatus.REQUESTED,
            )
            delivery.pickup = pickup
            delivery.dropoff = dropoff
            self.db.add(delivery)

            try:
                await self.db.commit()
            except IntegrityError as exc:
                await self.db.rollback()
                if not _is_tracking_code_conflict(exc):
                    raise StorageConflictError("create delivery", reason=str(exc.orig))
                logger.warning(
                    "Tracking code collision, retrying",
                    extra_data={"attempt": attempt, "max_attempts": max_attempts},
                )
                continue

            await self.db.refresh(delivery)
            logger.info(
                "Delivery created",
                extra_data={
                    "delivery_id": delivery.id,
                    "tracking_code": delivery.tracking_code,
                    "user_id": actor.id,
                    "distance_km": round(distance, 3),
                    "price": str(price),
                },
            )
            return delivery

        logger.error(
            "Tracking code attempts exhausted",
            extra_data={"attempts": max_attempts, "user_id": actor.id},
        )
        raise TrackingIdExhaustedError(max_attempts)

    async def get_delivery(self, actor: Actor, delivery_id: int) -> Delivery:
        """Owner, admin or the assigned courier may read a delivery"""
        delivery = await self._get_delivery(delivery_id)
        if is_owner_or_admin(actor, delivery):
            return delivery
        if await self._courier_user_id(delivery) == actor.id:
            return delivery
        raise ForbiddenError(actor.id, "view", f"delivery {delivery.id}")

    async def get_by_tracking_code(self, tracking_code: str) -> Delivery:
        code = tracking_code.strip().upper()
        if not is_tracking_code(code):
            raise DeliveryNotFoundError(tracking_code)
        result = await self.db.execute(select(Delivery).where(Delivery.tracking_code == code))
        delivery = result.scalar_one_or_none()
        if not delivery:
            raise DeliveryNotFoundError(tracking_code)
        return delivery

    async def list_deliveries(self, actor: Actor) -> List[Delivery]:
        """Admins see everything; others see what they requested or carry"""
        query = select(Delivery).order_by(Delivery.created_at.desc(), Delivery.id.desc())
        if not actor.is_admin:
            carried = select(Courier.id).where(Courier.user_id == actor.id).scalar_subquery()
            query = query.where(
                or_(Delivery.user_id == actor.id, Delivery.courier_id == carried)
            )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_courier_deliveries(self, actor: Actor, courier_id: int) -> List[Delivery]:
        courier = await self._get_courier(courier_id)
        if not actor.is_admin and courier.user_id != actor.id:
            raise ForbiddenError(actor.id, "list deliveries of", f"courier {courier_id}")

        result = await self.db.execute(
            select(Delivery)
            .where(Delivery.courier_id == courier_id)
            .order_by(Delivery.created_at.desc(), Delivery.id.desc())
        )
        return list(result.scalars().all())

    async def update_details(
        self,
        actor: Actor,
        delivery_id: int,
        pickup: Optional[GeoPoint] = None,
        dropoff: Optional[GeoPoint] = None,
        package_weight: Optional[float] = None,
        dimensions: Optional[PackageDimensions] = None,
        package_description: Optional[str] = None,
    ) -> Delivery:
        """
        Edit anything but the status.

        Locations are replaced wholesale. Distance and price keep the values
        computed at creation.
        """
        delivery = await self._get_delivery(delivery_id, for_update=True)
        authorize_details_update(actor, delivery)

        weight = package_weight if package_weight is not None else delivery.package_weight
        merged = delivery.dimensions
        if dimensions is not None:
            merged = PackageDimensions(
                length=dimensions.length if dimensions.length is not None else merged.length,
                width=dimensions.width if dimensions.width is not None else merged.width,
                height=dimensions.height if dimensions.height is not None else merged.height,
            )
        validate_package(weight, merged)

        if pickup is not None:
            delivery.pickup = pickup
        if dropoff is not None:
            delivery.dropoff = dropoff
        delivery.package_weight = weight
        delivery.package_length = merged.length
        delivery.package_width = merged.width
        delivery.package_height = merged.height
        if package_description is not None:
            delivery.package_description = package_description

        await self.db.commit()
        await self.db.refresh(delivery)

        logger.info(
            "Delivery details updated",
            extra_data={"delivery_id": delivery.id, "actor_id": actor.id},
        )
        return delivery

    async def update_status(
        self,
        actor: Actor,
        delivery_id: int,
        new_status: DeliveryStatus,
    ) -> Delivery:
        """
        Move a delivery along its lifecycle.

        Delivering frees the courier and counts the delivery; cancelling frees
        an on-delivery courier. Both happen in the same commit.
        """
        delivery = await self._get_delivery(delivery_id, for_update=True)
        courier = await self.couriers.get(delivery.courier_id) if delivery.courier_id else None

        try:
            authorize_status_update(
                actor,
                delivery,
                new_status,
                courier_user_id=courier.user_id if courier else None,
            )
        except (ForbiddenError, InvalidTransitionError):
            logger.warning(
                "Status change rejected",
                extra_data={
                    "delivery_id": delivery.id,
                    "actor_id": actor.id,
                    "from_status": delivery.status.value,
                    "to_status": new_status.value,
                },
            )
            raise

        previous = delivery.status
        now = datetime.utcnow()
        delivery.status = new_status

        if new_status == DeliveryStatus.DELIVERED:
            delivery.delivered_at = now
            if courier:
                await self.couriers.compare_and_set_status(
                    courier.id,
                    CourierStatus.ON_DELIVERY,
                    CourierStatus.AVAILABLE,
                    completed_delivery=True,
                )
        elif new_status == DeliveryStatus.CANCELLED and courier:
            await self.couriers.compare_and_set_status(
                courier.id, CourierStatus.ON_DELIVERY, CourierStatus.AVAILABLE
            )

        await self.db.commit()
        await self.db.refresh(delivery)

        logger.info(
            "Delivery status changed",
            extra_data={
                "delivery_id": delivery.id,
                "actor_id": actor.id,
                "from_status": previous.value,
                "to_status": new_status.value,
                "courier_id": delivery.courier_id,
            },
        )
        return delivery

    async def delete_delivery(self, actor: Actor, delivery_id: int) -> None:
        """Remove a delivery; an on-delivery courier goes back to available"""
        delivery = await self._get_delivery(delivery_id, for_update=True)
        ensure_owner_or_admin(actor, delivery, "delete")

        if delivery.courier_id and delivery.status not in (
            DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED
        ):
            await self.couriers.compare_and_set_status(
                delivery.courier_id, CourierStatus.ON_DELIVERY, CourierStatus.AVAILABLE
            )

        await self.db.delete(delivery)
        await self.db.commit()

        logger.info(
            "Delivery deleted",
            extra_data={"delivery_id": delivery_id, "actor_id": actor.id},
        )

    async def _get_delivery(self, delivery_id: int, *, for_update: bool = False) -> Delivery:
        query = select(Delivery).where(Delivery.id == delivery_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        delivery = result.scalar_one_or_none()
        if not delivery:
            raise DeliveryNotFoundError(delivery_id)
        return delivery

    async def _get_courier(self, courier_id: int) -> Courier:
        courier = await self.couriers.get(courier_id)
        if not courier:
            raise CourierNotFoundError(courier_id)
        return courier

    async def _get_user(self, user_id: int) -> User:
        result = await self.db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if not user:
            raise UserNotFoundError(user_id)
        return user

    async def _courier_user_id(self, delivery: Delivery) -> Optional[int]:
        if not delivery.courier_id:
            return None
        courier = await self.couriers.get(delivery.courier_id)
        return courier.user_id if courier else None
