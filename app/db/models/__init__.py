"""
Database Models
"""
from app.db.models.user import User
from app.db.models.vehicle import Vehicle
from app.db.models.courier import Courier
from app.db.models.delivery import Delivery

__all__ = [
    "User",
    "Vehicle",
    "Courier",
    "Delivery",
]
