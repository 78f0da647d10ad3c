"""
Tests for AssignmentService.assign
"""
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.core.config import settings
from app.core.exceptions import (
    CourierNotFoundError,
    CourierUnavailableError,
    DeliveryNotFoundError,
    ForbiddenError,
    InvalidTransitionError,
    StorageConflictError,
)
from app.db.models.courier import CourierStatus
from app.db.models.delivery import DeliveryStatus
from app.domain.services.assignment_service import AssignmentService

from tests.conftest import actor_for


class TestAssign:

    @pytest.mark.unit
    async def test_assigns_available_courier(self, db_session, sample_user, sample_courier, sample_delivery):
        service = AssignmentService(db_session)

        delivery = await service.assign(actor_for(sample_user), sample_delivery.id, sample_courier.id)

        await db_session.refresh(sample_courier)
        assert delivery.status == DeliveryStatus.ACCEPTED
        assert delivery.courier_id == sample_courier.id
        assert delivery.accepted_at is not None
        assert sample_courier.status == CourierStatus.ON_DELIVERY

    @pytest.mark.unit
    async def test_admin_assigns_for_anyone(self, db_session, admin_user, sample_courier, sample_delivery):
        service = AssignmentService(db_session)
        delivery = await service.assign(actor_for(admin_user), sample_delivery.id, sample_courier.id)
        assert delivery.courier_id == sample_courier.id

    @pytest.mark.unit
    async def test_missing_delivery(self, db_session, admin_user, sample_courier):
        service = AssignmentService(db_session)
        with pytest.raises(DeliveryNotFoundError):
            await service.assign(actor_for(admin_user), 999, sample_courier.id)

    @pytest.mark.unit
    async def test_stranger_forbidden_before_courier_lookup(
        self, db_session, user_factory, sample_delivery
    ):
        stranger = await user_factory(name="Stranger")
        service = AssignmentService(db_session)

        # Unknown courier id: permission is checked first
        with pytest.raises(ForbiddenError):
            await service.assign(actor_for(stranger), sample_delivery.id, 999)

    @pytest.mark.unit
    async def test_missing_courier(self, db_session, sample_user, sample_delivery):
        service = AssignmentService(db_session)
        with pytest.raises(CourierNotFoundError):
            await service.assign(actor_for(sample_user), sample_delivery.id, 999)

    @pytest.mark.unit
    @pytest.mark.parametrize("status", [CourierStatus.ON_DELIVERY, CourierStatus.UNAVAILABLE])
    async def test_busy_courier(self, db_session, sample_user, courier_factory, sample_delivery, status):
        courier = await courier_factory(status=status)
        service = AssignmentService(db_session)

        with pytest.raises(CourierUnavailableError) as exc_info:
            await service.assign(actor_for(sample_user), sample_delivery.id, courier.id)

        assert exc_info.value.details["current_status"] == status.value
        await db_session.refresh(sample_delivery)
        assert sample_delivery.status == DeliveryStatus.REQUESTED
        assert sample_delivery.courier_id is None

    @pytest.mark.unit
    async def test_courier_checked_before_delivery_status(
        self, db_session, sample_user, courier_factory, delivery_factory
    ):
        busy = await courier_factory(status=CourierStatus.UNAVAILABLE)
        cancelled = await delivery_factory(user_id=sample_user.id, status=DeliveryStatus.CANCELLED)
        service = AssignmentService(db_session)

        with pytest.raises(CourierUnavailableError):
            await service.assign(actor_for(sample_user), cancelled.id, busy.id)

    @pytest.mark.unit
    async def test_delivery_not_requested(self, db_session, sample_user, sample_courier, delivery_factory):
        cancelled = await delivery_factory(user_id=sample_user.id, status=DeliveryStatus.CANCELLED)
        service = AssignmentService(db_session)

        with pytest.raises(InvalidTransitionError):
            await service.assign(actor_for(sample_user), cancelled.id, sample_courier.id)

        await db_session.refresh(sample_courier)
        assert sample_courier.status == CourierStatus.AVAILABLE

    @pytest.mark.unit
    async def test_second_assignment_of_same_courier_fails(
        self, db_session, sample_user, sample_courier, delivery_factory
    ):
        first = await delivery_factory(user_id=sample_user.id)
        second = await delivery_factory(user_id=sample_user.id)
        service = AssignmentService(db_session)

        await service.assign(actor_for(sample_user), first.id, sample_courier.id)
        with pytest.raises(CourierUnavailableError):
            await service.assign(actor_for(sample_user), second.id, sample_courier.id)

        await db_session.refresh(second)
        assert second.status == DeliveryStatus.REQUESTED

    @pytest.mark.unit
    async def test_storage_failures_retried_then_reported(
        self, db_session, sample_user, sample_courier, sample_delivery, monkeypatch
    ):
        actor = actor_for(sample_user)
        delivery_id, courier_id = sample_delivery.id, sample_courier.id
        calls = {"commit": 0}

        async def failing_commit():
            calls["commit"] += 1
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(db_session, "commit", failing_commit)
        service = AssignmentService(db_session)

        with patch.object(settings, "ASSIGNMENT_MAX_RETRIES", 3), \
             patch.object(settings, "ASSIGNMENT_RETRY_BACKOFF_SECONDS", 0):
            with pytest.raises(StorageConflictError) as exc_info:
                await service.assign(actor, delivery_id, courier_id)

        assert calls["commit"] == 3
        assert exc_info.value.details["attempts"] == 3
        monkeypatch.undo()

        # Both writes were rolled back
        await db_session.refresh(sample_delivery)
        await db_session.refresh(sample_courier)
        assert sample_delivery.status == DeliveryStatus.REQUESTED
        assert sample_delivery.courier_id is None
        assert sample_courier.status == CourierStatus.AVAILABLE

    @pytest.mark.unit
    async def test_transient_failure_then_success(
        self, db_session, sample_user, sample_courier, sample_delivery, monkeypatch
    ):
        actor = actor_for(sample_user)
        delivery_id, courier_id = sample_delivery.id, sample_courier.id
        real_commit = db_session.commit
        attempts = {"n": 0}

        async def flaky_commit():
            attempts["n"] += 1
            if attempts["n"] == 1:
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            await real_commit()

        monkeypatch.setattr(db_session, "commit", flaky_commit)
        service = AssignmentService(db_session)

        with patch.object(settings, "ASSIGNMENT_RETRY_BACKOFF_SECONDS", 0):
            delivery = await service.assign(actor, delivery_id, courier_id)

        assert attempts["n"] == 2
        assert delivery.status == DeliveryStatus.ACCEPTED
        assert delivery.courier_id == courier_id
