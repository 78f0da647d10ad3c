"""
Fixtures and helpers for end-to-end scenario tests.

Provides:
- Request helpers that drive the HTTP API and assert the status code
- A file-backed database shared by several sessions (for races)
- Fresh-read assertions against the database
"""
from typing import AsyncGenerator

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.db.database import Base
from app.db.models.courier import Courier, CourierStatus
from app.db.models.delivery import Delivery, DeliveryStatus
from app.db.models.user import User


# ============================================================================
# API helpers
# ============================================================================

async def api_call(
    client: AsyncClient,
    method: str,
    url: str,
    headers: dict,
    *,
    expected: int = 200,
    **kwargs,
):
    """Send a request, assert the status code, return the JSON body (None on 204)"""
    response = await client.request(method, url, headers=headers, **kwargs)
    assert response.status_code == expected, (
        f"{method} {url} returned {response.status_code}: {response.text}"
    )
    if response.status_code == 204:
        return None
    return response.json()


async def request_delivery(
    client: AsyncClient,
    headers: dict,
    pickup_address: str,
    dropoff_address: str,
    package_weight: float = 1.0,
) -> dict:
    return await api_call(
        client,
        "POST",
        "/api/deliveries/",
        headers,
        expected=201,
        json={
            "pickup_address": pickup_address,
            "dropoff_address": dropoff_address,
            "package_weight": package_weight,
        },
    )


async def set_delivery_status(client: AsyncClient, headers: dict, delivery_id: int, status: str) -> dict:
    return await api_call(
        client,
        "PUT",
        f"/api/deliveries/{delivery_id}/status",
        headers,
        json={"status": status},
    )


# ============================================================================
# Shared file-backed database
# ============================================================================

@pytest.fixture
async def shared_sessionmaker(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """
    A sessionmaker over an on-disk SQLite database.

    Unlike the in-memory StaticPool engine, every session here gets its own
    connection, so two sessions can run real competing transactions.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}",
        connect_args={"timeout": 10},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


# ============================================================================
# DB assertions
# ============================================================================

async def assert_delivery_status(
    db_session: AsyncSession,
    delivery_id: int,
    expected_status: DeliveryStatus,
) -> Delivery:
    """Fresh read of a delivery, asserting its status"""
    result = await db_session.execute(
        select(Delivery).where(Delivery.id == delivery_id).execution_options(
            populate_existing=True
        )
    )
    delivery = result.scalar_one()
    assert delivery.status == expected_status, (
        f"expected: {expected_status}, actual: {delivery.status}"
    )
    return delivery


async def assert_courier_status(
    db_session: AsyncSession,
    courier_id: int,
    expected_status: CourierStatus,
) -> Courier:
    """Fresh read of a courier, asserting its status"""
    result = await db_session.execute(
        select(Courier).where(Courier.id == courier_id).execution_options(
            populate_existing=True
        )
    )
    courier = result.scalar_one()
    assert courier.status == expected_status, (
        f"expected: {expected_status}, actual: {courier.status}"
    )
    return courier


async def fresh_user(db_session: AsyncSession, user_id: int) -> User:
    result = await db_session.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()
