"""
Delivery Model - Transport jobs from pickup to drop-off
"""
import enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, DateTime, Float, Numeric, ForeignKey, Text,
    CheckConstraint, Enum as SQLEnum,
)
from sqlalchemy.orm import relationship

from app.db.database import Base
from app.domain.geo import GeoPoint
from app.domain.pricing import PackageDimensions
from app.domain.tracking import generate_tracking_code


class DeliveryStatus(str, enum.Enum):
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Delivery(Base):
    """Delivery record"""

    __tablename__ = "deliveries"
    __table_args__ = (
        CheckConstraint("distance_km >= 0", name="ck_deliveries_distance_non_negative"),
        CheckConstraint("price >= 0", name="ck_deliveries_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    # Public identifier, independent of the internal id
    tracking_code = Column(String(12), unique=True, nullable=False, default=generate_tracking_code, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # Set only by the assignment coordinator
    courier_id = Column(Integer, ForeignKey("couriers.id"), nullable=True, index=True)

    # Pickup
    pickup_longitude = Column(Float, nullable=False)
    pickup_latitude = Column(Float, nullable=False)
    pickup_address = Column(String(500), nullable=True)

    # Drop-off
    dropoff_longitude = Column(Float, nullable=False)
    dropoff_latitude = Column(Float, nullable=False)
    dropoff_address = Column(String(500), nullable=True)

    # Package
    package_weight = Column(Float, nullable=False)
    package_length = Column(Float, nullable=True)
    package_width = Column(Float, nullable=True)
    package_height = Column(Float, nullable=True)
    package_description = Column(Text, nullable=True)

    # Computed once at creation
    distance_km = Column(Float, nullable=False)
    price = Column(Numeric, nullable=False)  # unscaled: the quote is stored unrounded

    status = Column(
        SQLEnum(DeliveryStatus, name="delivery_status", values_callable=lambda x: [e.value for e in x]),
        default=DeliveryStatus.REQUESTED,
        nullable=False,
        index=True,
    )

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    accepted_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)

    user = relationship("User", foreign_keys=[user_id])
    courier = relationship("Courier", foreign_keys=[courier_id])

    @property
    def pickup(self) -> GeoPoint:
        return GeoPoint(self.pickup_longitude, self.pickup_latitude, self.pickup_address)

    @pickup.setter
    def pickup(self, point: GeoPoint) -> None:
        self.pickup_longitude = point.longitude
        self.pickup_latitude = point.latitude
        self.pickup_address = point.address

    @property
    def dropoff(self) -> GeoPoint:
        return GeoPoint(self.dropoff_longitude, self.dropoff_latitude, self.dropoff_address)

    @dropoff.setter
    def dropoff(self, point: GeoPoint) -> None:
        self.dropoff_longitude = point.longitude
        self.dropoff_latitude = point.latitude
        self.dropoff_address = point.address

    @property
    def dimensions(self) -> PackageDimensions:
        return PackageDimensions(self.package_length, self.package_width, self.package_height)
