"""
Assignment Service - binds a courier to a delivery

Implements the following atomic operation:
1. Load delivery, check actor owns it (or is admin)
2. Load courier, check it is available
3. Check the delivery is still requested
4. Conditional UPDATE courier: available -> on-delivery
5. Conditional UPDATE delivery: requested -> accepted, set courier and accepted_at
6. Commit both, or roll back both

A lost race on step 4 or 5 surfaces as CourierUnavailable / InvalidTransition.
Storage errors are retried, then reported as StorageConflict.
"""
import asyncio
from datetime import datetime

from sqlalchemy import and_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Actor
from app.core.config import settings
from app.core.exceptions import (
    AppException,
    CourierNotFoundError,
    CourierUnavailableError,
    DeliveryNotFoundError,
    InvalidTransitionError,
    StorageConflictError,
)
from app.core.logging import get_logger
from app.db.models.courier import CourierStatus
from app.db.models.delivery import Delivery, DeliveryStatus
from app.db.repositories.courier_repository import CourierRepository
from app.state_machine.delivery_lifecycle import ensure_assignable, ensure_owner_or_admin

logger = get_logger(__name__)


class AssignmentService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.couriers = CourierRepository(db)

    async def assign(self, actor: Actor, delivery_id: int, courier_id: int) -> Delivery:
        max_retries = settings.ASSIGNMENT_MAX_RETRIES
        last_error: Exception | None = None

        for attempt in range(1, max_retries + 1):
            try:
                return await self._assign_once(actor, delivery_id, courier_id)
            except AppException:
                await self.db.rollback()
                raise
            except SQLAlchemyError as exc:
                await self.db.rollback()
                last_error = exc
                logger.warning(
                    "Assignment write failed, retrying",
                    extra_data={
                        "delivery_id": delivery_id,
                        "courier_id": courier_id,
                        "attempt": attempt,
                        "max_retries": max_retries,
                        "error_type": type(exc).__name__,
                    },
                )
                if attempt < max_retries:
                    await asyncio.sleep(settings.ASSIGNMENT_RETRY_BACKOFF_SECONDS * attempt)

        logger.error(
            "Assignment failed after retries",
            extra_data={"delivery_id": delivery_id, "courier_id": courier_id, "attempts": max_retries},
        )
        raise StorageConflictError(
            "assign courier",
            attempts=max_retries,
            reason=str(last_error) if last_error else None,
        )

    async def _assign_once(self, actor: Actor, delivery_id: int, courier_id: int) -> Delivery:
        # 1. Delivery exists, actor may touch it
        result = await self.db.execute(select(Delivery).where(Delivery.id == delivery_id))
        delivery = result.scalar_one_or_none()
        if not delivery:
            raise DeliveryNotFoundError(delivery_id)
        ensure_owner_or_admin(actor, delivery, "assign a courier to")

        # 2. Courier exists and is free
        courier = await self.couriers.get(courier_id)
        if not courier:
            raise CourierNotFoundError(courier_id)
        if courier.status != CourierStatus.AVAILABLE:
            raise CourierUnavailableError(courier_id, courier.status.value)

        # 3. Delivery still waiting for a courier
        ensure_assignable(delivery)

        # 4. Reserve the courier
        reserved = await self.couriers.compare_and_set_status(
            courier_id, CourierStatus.AVAILABLE, CourierStatus.ON_DELIVERY
        )
        if not reserved:
            logger.warning(
                "Courier taken by a concurrent assignment",
                extra_data={"delivery_id": delivery_id, "courier_id": courier_id},
            )
            raise CourierUnavailableError(courier_id)

        # 5. Accept the delivery
        accepted = await self.db.execute(
            update(Delivery)
            .where(and_(Delivery.id == delivery_id, Delivery.status == DeliveryStatus.REQUESTED))
            .values(
                courier_id=courier_id,
                status=DeliveryStatus.ACCEPTED,
                accepted_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session="evaluate")
        )
        if accepted.rowcount != 1:
            logger.warning(
                "Delivery accepted by a concurrent assignment",
                extra_data={"delivery_id": delivery_id, "courier_id": courier_id},
            )
            raise InvalidTransitionError(
                DeliveryStatus.REQUESTED.value,
                DeliveryStatus.ACCEPTED.value,
                delivery_id=delivery_id,
                reason="delivery was assigned concurrently",
            )

        # 6. Commit both writes together
        await self.db.commit()
        await self.db.refresh(delivery)

        logger.info(
            "Courier assigned",
            extra_data={
                "delivery_id": delivery_id,
                "courier_id": courier_id,
                "actor_id": actor.id,
            },
        )
        return delivery
