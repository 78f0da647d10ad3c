"""
Vehicle Model - Courier vehicles (reference data)
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Date, Float, Enum as SQLEnum

from app.db.database import Base


class VehicleType(str, enum.Enum):
    BICYCLE = "bicycle"
    MOTORCYCLE = "motorcycle"
    CAR = "car"
    VAN = "van"
    TRUCK = "truck"


class Vehicle(Base):
    """Vehicle record, owned by exactly one courier"""

    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True)
    vehicle_type = Column(
        SQLEnum(VehicleType, name="vehicle_type", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    make = Column(String(50), nullable=False)
    model = Column(String(50), nullable=False)
    year = Column(Integer, nullable=False)
    license_plate = Column(String(20), unique=True, nullable=False, index=True)
    color = Column(String(30), nullable=True)

    # Capacity
    capacity_weight = Column(Float, nullable=True)  # kg
    capacity_volume = Column(Float, nullable=True)

    # Insurance
    insurance_provider = Column(String(100), nullable=True)
    insurance_policy_number = Column(String(50), nullable=True)
    insurance_expiry_date = Column(Date, nullable=True)

    # Registration
    registration_number = Column(String(50), nullable=True)
    registration_expiry_date = Column(Date, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
