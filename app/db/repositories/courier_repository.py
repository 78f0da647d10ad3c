"""
Courier Repository - storage primitives the dispatch services build on

None of these methods commit; callers own the transaction.
"""
from typing import List, Optional, Tuple

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.courier import Courier, CourierStatus
from app.db.models.delivery import Delivery
from app.domain.geo import GeoPoint, bounding_box, distance_m


class CourierRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, courier_id: int, *, for_update: bool = False) -> Optional[Courier]:
        query = select(Courier).where(Courier.id == courier_id)
        if for_update:
            query = query.with_for_update(of=Courier)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_user(self, user_id: int) -> Optional[Courier]:
        result = await self.db.execute(
            select(Courier).where(Courier.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def find_within_radius(
        self,
        point: GeoPoint,
        meters: float,
        status: Optional[CourierStatus] = CourierStatus.AVAILABLE,
    ) -> List[Tuple[Courier, float]]:
        """
        Couriers located within ``meters`` great-circle distance of ``point``.

        A bounding box narrows the rows in SQL; the haversine check decides.
        Returns (courier, distance in meters) pairs, nearest first.
        """
        box = bounding_box(point, meters)

        if box.crosses_antimeridian:
            longitude_clause = or_(
                Courier.longitude >= box.min_longitude,
                Courier.longitude <= box.max_longitude,
            )
        else:
            longitude_clause = Courier.longitude.between(box.min_longitude, box.max_longitude)

        query = select(Courier).where(
            Courier.latitude.is_not(None),
            Courier.longitude.is_not(None),
            Courier.latitude.between(box.min_latitude, box.max_latitude),
            longitude_clause,
        )
        if status is not None:
            query = query.where(Courier.status == status)

        result = await self.db.execute(query)

        matches = []
        for courier in result.scalars().all():
            meters_away = distance_m(point, courier.location)
            if meters_away <= meters:
                matches.append((courier, meters_away))

        matches.sort(key=lambda pair: (pair[1], pair[0].id))
        return matches

    async def compare_and_set_status(
        self,
        courier_id: int,
        expected: CourierStatus,
        new_status: CourierStatus,
        *,
        completed_delivery: bool = False,
    ) -> bool:
        """
        Move a courier from ``expected`` to ``new_status`` in one conditional UPDATE.

        Returns False when the courier was not in ``expected`` (someone else won).
        """
        values: dict = {"status": new_status}
        if completed_delivery:
            values["delivery_count"] = Courier.delivery_count + 1

        result = await self.db.execute(
            update(Courier)
            .where(and_(Courier.id == courier_id, Courier.status == expected))
            .values(**values)
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount == 1

    async def delete_courier_cascade(self, courier_id: int) -> int:
        """
        Delete a courier together with every delivery that references it.

        Returns the number of deliveries removed.
        """
        deleted = await self.db.execute(
            delete(Delivery)
            .where(Delivery.courier_id == courier_id)
            .execution_options(synchronize_session="evaluate")
        )
        await self.db.execute(
            delete(Courier)
            .where(Courier.id == courier_id)
            .execution_options(synchronize_session="evaluate")
        )
        return deleted.rowcount or 0

    async def status_stats(self) -> List[dict]:
        """Per-status courier count, average rating and average completed deliveries"""
        result = await self.db.execute(
            select(
                Courier.status,
                func.count(Courier.id),
                func.avg(Courier.rating),
                func.avg(Courier.delivery_count),
            )
            .group_by(Courier.status)
            .order_by(Courier.status)
        )
        return [
            {
                "status": status,
                "count": count,
                "avg_rating": float(avg_rating) if avg_rating is not None else None,
                "avg_deliveries": float(avg_deliveries) if avg_deliveries is not None else 0.0,
            }
            for status, count, avg_rating, avg_deliveries in result.all()
        ]
