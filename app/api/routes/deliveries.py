"""
Delivery API Routes
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_actor
from app.core.auth import Actor
from app.core.logging import get_logger
from app.db.database import get_db
from app.db.models.courier import CourierStatus
from app.db.models.delivery import DeliveryStatus
from app.domain.geo import GeoPoint
from app.domain.pricing import PackageDimensions
from app.domain.services.assignment_service import AssignmentService
from app.domain.services.courier_matching_service import CourierMatchingService
from app.domain.services.delivery_service import DeliveryService
from app.domain.services.geocoding import BaseGeocoder, get_geocoder

logger = get_logger(__name__)

router = APIRouter()


class GeoPointIn(BaseModel):
    """A location given as coordinates (GeoJSON order) plus optional address text"""
    longitude: float
    latitude: float
    address: str | None = None

    def to_geo_point(self) -> GeoPoint:
        return GeoPoint(self.longitude, self.latitude, self.address)


class GeoPointOut(BaseModel):
    longitude: float
    latitude: float
    address: str | None = None

    model_config = {"from_attributes": True}


class PackageDimensionsIn(BaseModel):
    length: float | None = None
    width: float | None = None
    height: float | None = None

    def to_dimensions(self) -> PackageDimensions:
        return PackageDimensions(self.length, self.width, self.height)


class DeliveryCreate(BaseModel):
    """Schema for creating a new delivery"""
    pickup_address: str = Field(..., min_length=1, max_length=500)
    dropoff_address: str = Field(..., min_length=1, max_length=500)
    package_weight: float
    package_dimensions: PackageDimensionsIn | None = None
    package_description: str | None = Field(None, max_length=2000)

    @field_validator("pickup_address", "dropoff_address")
    @classmethod
    def strip_address(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("address must not be blank")
        return v


class DeliveryUpdate(BaseModel):
    """Schema for editing delivery details (never status, distance or price)"""
    pickup: GeoPointIn | None = None
    dropoff: GeoPointIn | None = None
    package_weight: float | None = None
    package_dimensions: PackageDimensionsIn | None = None
    package_description: str | None = Field(None, max_length=2000)


class StatusUpdate(BaseModel):
    status: DeliveryStatus


class AssignCourierRequest(BaseModel):
    courier_id: int


class DeliveryResponse(BaseModel):
    """Response schema for delivery data"""
    id: int
    tracking_code: str
    user_id: int
    courier_id: int | None
    pickup: GeoPointOut
    dropoff: GeoPointOut
    package_weight: float
    package_length: float | None
    package_width: float | None
    package_height: float | None
    package_description: str | None
    distance_km: float
    price: float
    status: DeliveryStatus
    created_at: datetime | None
    accepted_at: datetime | None
    delivered_at: datetime | None

    model_config = {"from_attributes": True}


class TrackingResponse(BaseModel):
    """Public view of a delivery: progress only, no addresses"""
    tracking_code: str
    status: DeliveryStatus
    created_at: datetime | None
    accepted_at: datetime | None
    delivered_at: datetime | None

    model_config = {"from_attributes": True}


class NearbyCourierResponse(BaseModel):
    courier_id: int
    distance_meters: float
    status: CourierStatus
    rating: float | None
    location: GeoPointOut


@router.post(
    "/",
    response_model=DeliveryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new delivery",
    description="Geocodes both addresses, prices the trip and stores the request with a tracking code.",
    responses={
        201: {"description": "Delivery created successfully"},
        400: {"description": "Invalid package or coordinates"},
        422: {"description": "Address could not be geocoded or request body invalid"},
        503: {"description": "Geocoding unavailable or tracking codes exhausted"},
    },
    tags=["Deliveries"]
)
async def create_delivery(
    delivery_data: DeliveryCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    geocoder: BaseGeocoder = Depends(get_geocoder),
) -> DeliveryResponse:
    """
    Create a new delivery request.

    - **pickup_address**: Address to collect the package from
    - **dropoff_address**: Address to deliver the package to
    - **package_weight**: Weight in kg
    - **package_dimensions**: Optional length / width / height
    """
    logger.info("Creating new delivery", extra_data={"user_id": actor.id})
    service = DeliveryService(db, geocoder=geocoder)
    dimensions = (
        delivery_data.package_dimensions.to_dimensions()
        if delivery_data.package_dimensions else None
    )
    return await service.create_delivery(
        actor,
        pickup_address=delivery_data.pickup_address,
        dropoff_address=delivery_data.dropoff_address,
        package_weight=delivery_data.package_weight,
        dimensions=dimensions,
        package_description=delivery_data.package_description,
    )


@router.get(
    "/",
    response_model=List[DeliveryResponse],
    summary="List deliveries",
    description="Admins see every delivery; other users see the ones they requested or carry.",
    tags=["Deliveries"]
)
async def list_deliveries(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> List[DeliveryResponse]:
    service = DeliveryService(db)
    return await service.list_deliveries(actor)


@router.get(
    "/track/{tracking_code}",
    response_model=TrackingResponse,
    summary="Track a delivery",
    description="Public status lookup by tracking code.",
    responses={404: {"description": "Unknown tracking code"}},
    tags=["Deliveries"]
)
async def track_delivery(
    tracking_code: str,
    db: AsyncSession = Depends(get_db),
) -> TrackingResponse:
    service = DeliveryService(db)
    return await service.get_by_tracking_code(tracking_code)


@router.get(
    "/{delivery_id}",
    response_model=DeliveryResponse,
    summary="Get delivery by ID",
    responses={
        200: {"description": "Delivery found"},
        403: {"description": "Not the owner, an admin or the assigned courier"},
        404: {"description": "Delivery not found"}
    },
    tags=["Deliveries"]
)
async def get_delivery(
    delivery_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> DeliveryResponse:
    service = DeliveryService(db)
    return await service.get_delivery(actor, delivery_id)


@router.patch(
    "/{delivery_id}",
    response_model=DeliveryResponse,
    summary="Edit delivery details",
    description="Owner or admin edits locations or package details. Distance and price are not recomputed.",
    responses={
        403: {"description": "Courier actor, or not the owner/admin"},
        404: {"description": "Delivery not found"},
        409: {"description": "Delivery already finished"},
    },
    tags=["Deliveries"]
)
async def update_delivery(
    delivery_id: int,
    update_data: DeliveryUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> DeliveryResponse:
    service = DeliveryService(db)
    return await service.update_details(
        actor,
        delivery_id,
        pickup=update_data.pickup.to_geo_point() if update_data.pickup else None,
        dropoff=update_data.dropoff.to_geo_point() if update_data.dropoff else None,
        package_weight=update_data.package_weight,
        dimensions=(
            update_data.package_dimensions.to_dimensions()
            if update_data.package_dimensions else None
        ),
        package_description=update_data.package_description,
    )


@router.put(
    "/{delivery_id}/status",
    response_model=DeliveryResponse,
    summary="Change delivery status",
    description="Owner/admin may cancel; the assigned courier advances picked_up, in_transit, delivered.",
    responses={
        403: {"description": "Actor may not perform this change"},
        404: {"description": "Delivery not found"},
        409: {"description": "Transition not allowed"},
    },
    tags=["Deliveries"]
)
async def update_delivery_status(
    delivery_id: int,
    status_data: StatusUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> DeliveryResponse:
    service = DeliveryService(db)
    return await service.update_status(actor, delivery_id, status_data.status)


@router.delete(
    "/{delivery_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a delivery",
    responses={
        403: {"description": "Not the owner or an admin"},
        404: {"description": "Delivery not found"},
    },
    tags=["Deliveries"]
)
async def delete_delivery(
    delivery_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> None:
    service = DeliveryService(db)
    await service.delete_delivery(actor, delivery_id)


@router.get(
    "/{delivery_id}/nearby-couriers",
    response_model=List[NearbyCourierResponse],
    summary="Find couriers near the pickup",
    description="Available couriers within radius_meters of the pickup point, nearest first.",
    responses={
        400: {"description": "Radius out of range"},
        403: {"description": "Not the owner or an admin"},
        404: {"description": "Delivery not found"},
    },
    tags=["Deliveries"]
)
async def find_nearby_couriers(
    delivery_id: int,
    radius_meters: Optional[float] = Query(None, description="Search radius in meters"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> List[NearbyCourierResponse]:
    service = CourierMatchingService(db)
    matches = await service.find_nearby(actor, delivery_id, radius_meters)
    return [
        NearbyCourierResponse(
            courier_id=match.courier.id,
            distance_meters=round(match.distance_meters, 1),
            status=match.courier.status,
            rating=match.courier.rating,
            location=GeoPointOut.model_validate(match.courier.location),
        )
        for match in matches
    ]


@router.put(
    "/{delivery_id}/assign-courier",
    response_model=DeliveryResponse,
    summary="Assign a courier",
    description="Binds an available courier to a requested delivery. Atomic: both records change or neither.",
    responses={
        403: {"description": "Not the owner or an admin"},
        404: {"description": "Delivery or courier not found"},
        409: {"description": "Courier unavailable, delivery not requested, or storage conflict"},
    },
    tags=["Deliveries"]
)
async def assign_courier(
    delivery_id: int,
    assign_data: AssignCourierRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> DeliveryResponse:
    logger.info(
        "Assign courier request",
        extra_data={"delivery_id": delivery_id, "courier_id": assign_data.courier_id}
    )
    service = AssignmentService(db)
    return await service.assign(actor, delivery_id, assign_data.courier_id)
