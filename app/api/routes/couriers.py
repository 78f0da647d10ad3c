"""
Courier API Routes
"""
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_actor
from app.api.routes.deliveries import DeliveryResponse, GeoPointIn, GeoPointOut
from app.core.auth import Actor
from app.core.logging import get_logger
from app.db.database import get_db
from app.db.models.courier import CourierStatus
from app.db.models.vehicle import VehicleType
from app.domain.services.courier_service import CourierService
from app.domain.services.delivery_service import DeliveryService
from app.domain.services.geocoding import BaseGeocoder, get_geocoder

logger = get_logger(__name__)

router = APIRouter()


class VehicleIn(BaseModel):
    vehicle_type: VehicleType
    make: str = Field(..., min_length=1, max_length=50)
    model: str = Field(..., min_length=1, max_length=50)
    year: int = Field(..., ge=1900, le=2100)
    license_plate: str = Field(..., min_length=1, max_length=20)
    color: str | None = Field(None, max_length=30)
    capacity_weight: float | None = Field(None, ge=0)
    capacity_volume: float | None = Field(None, ge=0)
    insurance_provider: str | None = Field(None, max_length=100)
    insurance_policy_number: str | None = Field(None, max_length=50)
    insurance_expiry_date: date | None = None
    registration_number: str | None = Field(None, max_length=50)
    registration_expiry_date: date | None = None

    @field_validator("license_plate")
    @classmethod
    def normalize_plate(cls, v: str) -> str:
        return v.strip().upper()


class VehicleOut(BaseModel):
    id: int
    vehicle_type: VehicleType
    make: str
    model: str
    year: int
    license_plate: str
    color: str | None
    capacity_weight: float | None
    capacity_volume: float | None

    model_config = {"from_attributes": True}


class CourierCreate(BaseModel):
    """Schema for registering the calling user as a courier"""
    vehicle: VehicleIn
    location: GeoPointIn | None = None


class CourierUpdate(BaseModel):
    status: CourierStatus | None = None
    rating: float | None = None
    is_verified: bool | None = None


class LocationUpdate(BaseModel):
    """Either coordinates or an address to geocode"""
    longitude: float | None = None
    latitude: float | None = None
    address: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def check_coordinates_pair(self) -> "LocationUpdate":
        if (self.longitude is None) != (self.latitude is None):
            raise ValueError("longitude and latitude must be given together")
        return self


class CourierResponse(BaseModel):
    id: int
    user_id: int
    status: CourierStatus
    rating: float | None
    delivery_count: int
    is_verified: bool
    location: GeoPointOut | None
    location_updated_at: datetime | None
    vehicle: VehicleOut
    created_at: datetime | None

    model_config = {"from_attributes": True}


class CourierStatsResponse(BaseModel):
    status: CourierStatus
    count: int
    avg_rating: float | None
    avg_deliveries: float


@router.post(
    "/",
    response_model=CourierResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register as a courier",
    description="Registers the calling user as a courier with a vehicle. The user's role becomes courier.",
    responses={
        409: {"description": "Already a courier, or license plate taken"},
    },
    tags=["Couriers"]
)
async def register_courier(
    courier_data: CourierCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> CourierResponse:
    logger.info("Courier registration request", extra_data={"user_id": actor.id})
    service = CourierService(db)
    return await service.register_courier(
        actor,
        courier_data.vehicle.model_dump(),
        location=courier_data.location.to_geo_point() if courier_data.location else None,
    )


@router.get(
    "/",
    response_model=List[CourierResponse],
    summary="List couriers (admin)",
    responses={403: {"description": "Admin only"}},
    tags=["Couriers"]
)
async def list_couriers(
    status_filter: Optional[CourierStatus] = Query(None, alias="status"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> List[CourierResponse]:
    service = CourierService(db)
    return await service.list_couriers(actor, status=status_filter)


@router.get(
    "/stats",
    response_model=List[CourierStatsResponse],
    summary="Courier statistics (admin)",
    description="Per-status courier count, average rating and average completed deliveries.",
    responses={403: {"description": "Admin only"}},
    tags=["Couriers"]
)
async def courier_stats(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> List[CourierStatsResponse]:
    service = CourierService(db)
    return await service.get_stats(actor)


@router.get(
    "/{courier_id}",
    response_model=CourierResponse,
    summary="Get courier by ID",
    responses={
        403: {"description": "Not this courier or an admin"},
        404: {"description": "Courier not found"},
    },
    tags=["Couriers"]
)
async def get_courier(
    courier_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> CourierResponse:
    service = CourierService(db)
    return await service.get_courier(actor, courier_id)


@router.patch(
    "/{courier_id}",
    response_model=CourierResponse,
    summary="Update courier",
    description="The courier toggles availability; admins also set rating and verification.",
    responses={
        400: {"description": "Invalid status or rating"},
        403: {"description": "Not permitted"},
        404: {"description": "Courier not found"},
        409: {"description": "Courier is on a delivery"},
    },
    tags=["Couriers"]
)
async def update_courier(
    courier_id: int,
    update_data: CourierUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> CourierResponse:
    service = CourierService(db)
    return await service.update_courier(
        actor,
        courier_id,
        status=update_data.status,
        rating=update_data.rating,
        is_verified=update_data.is_verified,
    )


@router.put(
    "/{courier_id}/location",
    response_model=CourierResponse,
    summary="Update courier location",
    description="Set the current location from coordinates, or geocode an address.",
    responses={
        400: {"description": "Invalid coordinates or nothing given"},
        403: {"description": "Not this courier or an admin"},
        404: {"description": "Courier not found"},
        422: {"description": "Address could not be geocoded"},
        503: {"description": "Geocoding unavailable"},
    },
    tags=["Couriers"]
)
async def update_courier_location(
    courier_id: int,
    location_data: LocationUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    geocoder: BaseGeocoder = Depends(get_geocoder),
) -> CourierResponse:
    point = None
    if location_data.longitude is not None:
        point = GeoPointIn(
            longitude=location_data.longitude,
            latitude=location_data.latitude,
            address=location_data.address,
        ).to_geo_point()

    service = CourierService(db, geocoder=geocoder)
    return await service.update_location(
        actor, courier_id, point=point, address=location_data.address
    )


@router.delete(
    "/{courier_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete courier",
    description="Deletes the courier, its vehicle and every delivery assigned to it; the user becomes a plain user again.",
    responses={
        403: {"description": "Not this courier or an admin"},
        404: {"description": "Courier not found"},
    },
    tags=["Couriers"]
)
async def delete_courier(
    courier_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> None:
    service = CourierService(db)
    await service.delete_courier(actor, courier_id)


@router.get(
    "/{courier_id}/deliveries",
    response_model=List[DeliveryResponse],
    summary="Deliveries assigned to a courier",
    responses={
        403: {"description": "Not this courier or an admin"},
        404: {"description": "Courier not found"},
    },
    tags=["Couriers"]
)
async def list_courier_deliveries(
    courier_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> List[DeliveryResponse]:
    service = DeliveryService(db)
    return await service.list_courier_deliveries(actor, courier_id)
