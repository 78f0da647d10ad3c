"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- A fake geocoder in place of the real providers
- Test data factories (users, vehicles, couriers, deliveries)
- Actor / bearer token helpers
"""
# JWT_SECRET_KEY must be set before importing app; the settings validator requires it when DEBUG=False
import os
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-for-testing-only-do-not-use-in-production")

import itertools
from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import Actor, create_access_token
from app.core.exceptions import AddressNotFoundError
from app.db.database import Base, get_db
from app.db.models.courier import Courier, CourierStatus
from app.db.models.delivery import Delivery, DeliveryStatus
from app.db.models.user import User, UserRole
from app.db.models.vehicle import Vehicle, VehicleType
from app.domain.geo import GeoPoint, distance_km
from app.domain.pricing import quote
from app.domain.services.geocoding import BaseGeocoder, get_geocoder, reset_geocoder
from app.domain.tracking import generate_tracking_code
from app.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed points used across tests
TEL_AVIV = GeoPoint(34.7818, 32.0853, "Herzl 1, Tel Aviv")
JAFFA = GeoPoint(34.7520, 32.0540, "Yefet 10, Jaffa")
RAMAT_GAN = GeoPoint(34.8245, 32.0684, "Bialik 5, Ramat Gan")
JERUSALEM = GeoPoint(35.2137, 31.7683, "Ben Yehuda 50, Jerusalem")
HAIFA = GeoPoint(34.9896, 32.7940, "Herzl 20, Haifa")

KNOWN_ADDRESSES = {point.address: point for point in (TEL_AVIV, JAFFA, RAMAT_GAN, JERUSALEM, HAIFA)}


class FakeGeocoder(BaseGeocoder):
    """In-memory geocoder: known addresses resolve, unknown ones are not found."""

    def __init__(self, addresses: dict[str, GeoPoint] | None = None) -> None:
        self.addresses = dict(addresses if addresses is not None else KNOWN_ADDRESSES)
        self.calls: list[str] = []
        self.fail_with: Exception | None = None

    @property
    def provider_name(self) -> str:
        return "fake"

    async def geocode(self, address: str) -> GeoPoint:
        self.calls.append(address)
        if self.fail_with is not None:
            raise self.fail_with
        point = self.addresses.get(address)
        if point is None:
            raise AddressNotFoundError(address)
        return point


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def fake_geocoder() -> FakeGeocoder:
    return FakeGeocoder()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession, fake_geocoder: FakeGeocoder):
    """Create test client with database and geocoder overrides"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_geocoder] = lambda: fake_geocoder

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Test Data Factories
# ============================================================================

_sequence = itertools.count(1)


@pytest.fixture
def user_factory(db_session: AsyncSession):
    """Factory for creating test users"""
    async def _create_user(
        name: str = "Test User",
        email: str | None = None,
        role: UserRole = UserRole.USER,
        is_active: bool = True,
    ) -> User:
        user = User(
            name=name,
            email=email or f"user{next(_sequence)}@example.com",
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def vehicle_factory(db_session: AsyncSession):
    """Factory for creating test vehicles"""
    async def _create_vehicle(
        vehicle_type: VehicleType = VehicleType.MOTORCYCLE,
        license_plate: str | None = None,
        make: str = "Honda",
        model: str = "PCX",
        year: int = 2022,
    ) -> Vehicle:
        vehicle = Vehicle(
            vehicle_type=vehicle_type,
            make=make,
            model=model,
            year=year,
            license_plate=license_plate or f"PLT-{next(_sequence):05d}",
        )
        db_session.add(vehicle)
        await db_session.commit()
        await db_session.refresh(vehicle)
        return vehicle

    return _create_vehicle


@pytest.fixture
def courier_factory(db_session: AsyncSession, user_factory, vehicle_factory):
    """Factory for creating couriers (creates the user and vehicle when not given)"""
    async def _create_courier(
        user: User | None = None,
        status: CourierStatus = CourierStatus.AVAILABLE,
        location: GeoPoint | None = TEL_AVIV,
        rating: float | None = None,
        delivery_count: int = 0,
    ) -> Courier:
        if user is None:
            user = await user_factory(name="Test Courier", role=UserRole.COURIER)
        vehicle = await vehicle_factory()
        courier = Courier(
            user_id=user.id,
            vehicle_id=vehicle.id,
            status=status,
            rating=rating,
            delivery_count=delivery_count,
        )
        if location is not None:
            courier.set_location(location)
        db_session.add(courier)
        await db_session.commit()
        await db_session.refresh(courier)
        return courier

    return _create_courier


@pytest.fixture
def delivery_factory(db_session: AsyncSession):
    """Factory for creating test deliveries (priced like the service would)"""
    async def _create_delivery(
        user_id: int,
        pickup: GeoPoint = TEL_AVIV,
        dropoff: GeoPoint = JERUSALEM,
        status: DeliveryStatus = DeliveryStatus.REQUESTED,
        courier_id: int | None = None,
        package_weight: float = 2.0,
    ) -> Delivery:
        distance = distance_km(pickup, dropoff)
        delivery = Delivery(
            tracking_code=generate_tracking_code(),
            user_id=user_id,
            courier_id=courier_id,
            package_weight=package_weight,
            distance_km=distance,
            price=quote(distance, package_weight),
            status=status,
        )
        delivery.pickup = pickup
        delivery.dropoff = dropoff
        db_session.add(delivery)
        await db_session.commit()
        await db_session.refresh(delivery)
        return delivery

    return _create_delivery


# ============================================================================
# Sample Test Data
# ============================================================================

@pytest.fixture
async def sample_user(user_factory) -> User:
    return await user_factory(name="Sample Sender")


@pytest.fixture
async def admin_user(user_factory) -> User:
    return await user_factory(name="Admin", role=UserRole.ADMIN)


@pytest.fixture
async def sample_courier(courier_factory) -> Courier:
    return await courier_factory()


@pytest.fixture
async def sample_delivery(delivery_factory, sample_user) -> Delivery:
    return await delivery_factory(user_id=sample_user.id)


def actor_for(user: User) -> Actor:
    """The Actor a service would receive for this user"""
    return Actor(id=user.id, role=user.role)


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


# ============================================================================
# Circuit Breaker / Geocoder Reset
# ============================================================================

@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from app.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


@pytest.fixture(autouse=True)
def reset_cached_geocoder():
    reset_geocoder()
    yield
    reset_geocoder()
