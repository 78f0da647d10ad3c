"""
Domain Services
"""
from app.domain.services.delivery_service import DeliveryService
from app.domain.services.courier_service import CourierService
from app.domain.services.courier_matching_service import CourierMatchingService
from app.domain.services.assignment_service import AssignmentService

__all__ = [
    "DeliveryService",
    "CourierService",
    "CourierMatchingService",
    "AssignmentService",
]
