"""
Tests for CourierService: registration, updates, location, deletion and stats
"""
import pytest

from app.core.auth import Actor
from app.core.exceptions import (
    AddressNotFoundError,
    CourierAlreadyExistsError,
    CourierNotFoundError,
    ForbiddenError,
    InvalidTransitionError,
    StorageConflictError,
    ValidationException,
)
from app.db.models.courier import Courier, CourierStatus
from app.db.models.delivery import Delivery, DeliveryStatus
from app.db.models.user import User, UserRole
from app.db.models.vehicle import Vehicle, VehicleType
from app.domain.geo import GeoPoint
from app.domain.services.courier_service import CourierService

from tests.conftest import HAIFA, JAFFA, TEL_AVIV, actor_for


def _vehicle_data(plate: str = "12-345-67") -> dict:
    return {
        "vehicle_type": VehicleType.CAR,
        "make": "Toyota",
        "model": "Corolla",
        "year": 2020,
        "license_plate": plate,
    }


def _courier_actor(courier: Courier) -> Actor:
    return Actor(id=courier.user_id, role=UserRole.COURIER)


class TestRegisterCourier:

    @pytest.mark.unit
    async def test_user_becomes_courier(self, db_session, sample_user):
        service = CourierService(db_session)

        courier = await service.register_courier(actor_for(sample_user), _vehicle_data(), location=TEL_AVIV)

        await db_session.refresh(sample_user)
        assert courier.user_id == sample_user.id
        assert courier.status == CourierStatus.AVAILABLE
        assert courier.delivery_count == 0
        assert courier.is_verified is False
        assert courier.location.same_position(TEL_AVIV)
        assert courier.vehicle.license_plate == "12-345-67"
        assert sample_user.role == UserRole.COURIER

    @pytest.mark.unit
    async def test_admin_keeps_admin_role(self, db_session, admin_user):
        service = CourierService(db_session)

        await service.register_courier(actor_for(admin_user), _vehicle_data())

        await db_session.refresh(admin_user)
        assert admin_user.role == UserRole.ADMIN

    @pytest.mark.unit
    async def test_registering_twice(self, db_session, sample_user):
        service = CourierService(db_session)
        actor = actor_for(sample_user)
        await service.register_courier(actor, _vehicle_data("AA-1"))

        with pytest.raises(CourierAlreadyExistsError) as exc_info:
            await service.register_courier(actor, _vehicle_data("AA-2"))
        assert exc_info.value.status_code == 409

    @pytest.mark.unit
    async def test_duplicate_license_plate(self, db_session, user_factory):
        first = await user_factory(name="First")
        second = await user_factory(name="Second")
        second_actor = actor_for(second)
        service = CourierService(db_session)
        await service.register_courier(actor_for(first), _vehicle_data("SAME-1"))

        with pytest.raises(StorageConflictError) as exc_info:
            await service.register_courier(second_actor, _vehicle_data("SAME-1"))

        assert "SAME-1" in exc_info.value.details["reason"]
        await db_session.refresh(second)
        assert second.role == UserRole.USER


class TestReadCouriers:

    @pytest.mark.unit
    async def test_self_and_admin_read(self, db_session, admin_user, sample_courier):
        service = CourierService(db_session)

        assert (await service.get_courier(_courier_actor(sample_courier), sample_courier.id)).id == sample_courier.id
        assert (await service.get_courier(actor_for(admin_user), sample_courier.id)).id == sample_courier.id

    @pytest.mark.unit
    async def test_stranger_forbidden(self, db_session, sample_user, sample_courier):
        service = CourierService(db_session)
        with pytest.raises(ForbiddenError):
            await service.get_courier(actor_for(sample_user), sample_courier.id)

    @pytest.mark.unit
    async def test_missing(self, db_session, admin_user):
        service = CourierService(db_session)
        with pytest.raises(CourierNotFoundError):
            await service.get_courier(actor_for(admin_user), 31337)

    @pytest.mark.unit
    async def test_list_is_admin_only_and_filters(self, db_session, admin_user, sample_user, courier_factory):
        available = await courier_factory()
        await courier_factory(status=CourierStatus.UNAVAILABLE)
        service = CourierService(db_session)

        everyone = await service.list_couriers(actor_for(admin_user))
        only_available = await service.list_couriers(actor_for(admin_user), CourierStatus.AVAILABLE)

        assert len(everyone) == 2
        assert [c.id for c in only_available] == [available.id]
        with pytest.raises(ForbiddenError):
            await service.list_couriers(actor_for(sample_user))


class TestUpdateCourier:

    @pytest.mark.unit
    async def test_courier_toggles_availability(self, db_session, sample_courier):
        service = CourierService(db_session)

        updated = await service.update_courier(
            _courier_actor(sample_courier), sample_courier.id, status=CourierStatus.UNAVAILABLE
        )
        assert updated.status == CourierStatus.UNAVAILABLE

        updated = await service.update_courier(
            _courier_actor(sample_courier), sample_courier.id, status=CourierStatus.AVAILABLE
        )
        assert updated.status == CourierStatus.AVAILABLE

    @pytest.mark.unit
    async def test_on_delivery_cannot_be_set_by_hand(self, db_session, sample_courier):
        service = CourierService(db_session)
        with pytest.raises(ValidationException):
            await service.update_courier(
                _courier_actor(sample_courier), sample_courier.id, status=CourierStatus.ON_DELIVERY
            )

    @pytest.mark.unit
    async def test_busy_courier_cannot_go_offline(self, db_session, courier_factory):
        courier = await courier_factory(status=CourierStatus.ON_DELIVERY)
        service = CourierService(db_session)

        with pytest.raises(InvalidTransitionError):
            await service.update_courier(
                _courier_actor(courier), courier.id, status=CourierStatus.UNAVAILABLE
            )

    @pytest.mark.unit
    async def test_rating_and_verification_are_admin_only(self, db_session, admin_user, sample_courier):
        service = CourierService(db_session)

        with pytest.raises(ForbiddenError):
            await service.update_courier(_courier_actor(sample_courier), sample_courier.id, rating=5)

        updated = await service.update_courier(
            actor_for(admin_user), sample_courier.id, rating=4.5, is_verified=True
        )
        assert updated.rating == 4.5
        assert updated.is_verified is True

    @pytest.mark.unit
    @pytest.mark.parametrize("rating", [0, 5.5, -1])
    async def test_rating_range(self, db_session, admin_user, sample_courier, rating):
        service = CourierService(db_session)
        with pytest.raises(ValidationException) as exc_info:
            await service.update_courier(actor_for(admin_user), sample_courier.id, rating=rating)
        assert exc_info.value.details["field"] == "rating"


class TestUpdateLocation:

    @pytest.mark.unit
    async def test_explicit_point(self, db_session, sample_courier, fake_geocoder):
        service = CourierService(db_session, geocoder=fake_geocoder)
        point = GeoPoint(34.80, 32.10, "Corner")

        updated = await service.update_location(_courier_actor(sample_courier), sample_courier.id, point=point)

        assert updated.location.same_position(point)
        assert updated.location_address == "Corner"
        assert updated.location_updated_at is not None
        assert fake_geocoder.calls == []

    @pytest.mark.unit
    async def test_geocoded_address(self, db_session, sample_courier, fake_geocoder):
        service = CourierService(db_session, geocoder=fake_geocoder)

        updated = await service.update_location(
            _courier_actor(sample_courier), sample_courier.id, address=HAIFA.address
        )

        assert updated.location.same_position(HAIFA)
        assert fake_geocoder.calls == [HAIFA.address]

    @pytest.mark.unit
    async def test_unknown_address_keeps_old_location(self, db_session, sample_courier, fake_geocoder):
        service = CourierService(db_session, geocoder=fake_geocoder)

        with pytest.raises(AddressNotFoundError):
            await service.update_location(
                _courier_actor(sample_courier), sample_courier.id, address="Atlantis 1"
            )

        await db_session.refresh(sample_courier)
        assert sample_courier.location.same_position(TEL_AVIV)

    @pytest.mark.unit
    async def test_requires_point_or_address(self, db_session, sample_courier, fake_geocoder):
        service = CourierService(db_session, geocoder=fake_geocoder)
        with pytest.raises(ValidationException):
            await service.update_location(_courier_actor(sample_courier), sample_courier.id)

    @pytest.mark.unit
    async def test_stranger_forbidden(self, db_session, sample_user, sample_courier, fake_geocoder):
        service = CourierService(db_session, geocoder=fake_geocoder)
        with pytest.raises(ForbiddenError):
            await service.update_location(actor_for(sample_user), sample_courier.id, point=JAFFA)


class TestDeleteCourier:

    @pytest.mark.unit
    async def test_cascade_and_role_reset(self, db_session, sample_user, sample_courier, delivery_factory):
        other = await delivery_factory(user_id=sample_user.id)
        await delivery_factory(
            user_id=sample_user.id, status=DeliveryStatus.ACCEPTED, courier_id=sample_courier.id
        )
        await delivery_factory(
            user_id=sample_user.id, status=DeliveryStatus.DELIVERED, courier_id=sample_courier.id
        )
        courier_id = sample_courier.id
        user_id = sample_courier.user_id
        vehicle_id = sample_courier.vehicle_id
        other_id = other.id
        service = CourierService(db_session)

        removed = await service.delete_courier(_courier_actor(sample_courier), courier_id)

        assert removed == 2
        assert await db_session.get(Courier, courier_id) is None
        assert await db_session.get(Vehicle, vehicle_id) is None
        assert await db_session.get(Delivery, other_id) is not None
        user = await db_session.get(User, user_id)
        await db_session.refresh(user)
        assert user.role == UserRole.USER

    @pytest.mark.unit
    async def test_admin_courier_stays_admin(self, db_session, admin_user, courier_factory):
        courier = await courier_factory(user=admin_user)
        service = CourierService(db_session)

        await service.delete_courier(actor_for(admin_user), courier.id)

        await db_session.refresh(admin_user)
        assert admin_user.role == UserRole.ADMIN

    @pytest.mark.unit
    async def test_stranger_forbidden(self, db_session, sample_user, sample_courier):
        service = CourierService(db_session)
        with pytest.raises(ForbiddenError):
            await service.delete_courier(actor_for(sample_user), sample_courier.id)


class TestCourierStats:

    @pytest.mark.unit
    async def test_per_status_aggregates(self, db_session, admin_user, courier_factory):
        await courier_factory(rating=4.0, delivery_count=10)
        await courier_factory(rating=5.0, delivery_count=20)
        await courier_factory(status=CourierStatus.UNAVAILABLE, delivery_count=3)
        service = CourierService(db_session)

        stats = {row["status"]: row for row in await service.get_stats(actor_for(admin_user))}

        assert stats[CourierStatus.AVAILABLE]["count"] == 2
        assert stats[CourierStatus.AVAILABLE]["avg_rating"] == pytest.approx(4.5)
        assert stats[CourierStatus.AVAILABLE]["avg_deliveries"] == pytest.approx(15.0)
        assert stats[CourierStatus.UNAVAILABLE]["count"] == 1
        assert stats[CourierStatus.UNAVAILABLE]["avg_rating"] is None
        assert CourierStatus.ON_DELIVERY not in stats

    @pytest.mark.unit
    async def test_admin_only(self, db_session, sample_user):
        service = CourierService(db_session)
        with pytest.raises(ForbiddenError):
            await service.get_stats(actor_for(sample_user))
