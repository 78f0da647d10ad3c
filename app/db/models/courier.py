"""
Courier Model - Users enabled to fulfil deliveries
"""
import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Float, ForeignKey, Index,
    CheckConstraint, Enum as SQLEnum,
)
from sqlalchemy.orm import relationship

from app.db.database import Base
from app.domain.geo import GeoPoint


class CourierStatus(str, enum.Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    ON_DELIVERY = "on-delivery"


class Courier(Base):
    """Courier profile linked one-to-one with a user account"""

    __tablename__ = "couriers"
    __table_args__ = (
        CheckConstraint("rating IS NULL OR (rating >= 1 AND rating <= 5)", name="ck_couriers_rating_range"),
        # Bounding-box prefilter for radius queries
        Index("ix_couriers_status_location", "status", "latitude", "longitude"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)

    status = Column(
        SQLEnum(CourierStatus, name="courier_status", values_callable=lambda x: [e.value for e in x]),
        default=CourierStatus.AVAILABLE,
        nullable=False,
        index=True,
    )
    rating = Column(Float, nullable=True)
    delivery_count = Column(Integer, default=0, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)

    # Current location (GeoJSON order: longitude first)
    longitude = Column(Float, nullable=True)
    latitude = Column(Float, nullable=True)
    location_address = Column(String(500), nullable=True)
    location_updated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", lazy="joined")
    vehicle = relationship("Vehicle", lazy="joined")

    @property
    def location(self) -> Optional[GeoPoint]:
        if self.longitude is None or self.latitude is None:
            return None
        return GeoPoint(self.longitude, self.latitude, self.location_address)

    def set_location(self, point: GeoPoint) -> None:
        """Replace the current location wholesale"""
        self.longitude = point.longitude
        self.latitude = point.latitude
        self.location_address = point.address
        self.location_updated_at = datetime.utcnow()
