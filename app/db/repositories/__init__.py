"""
Storage repositories
"""
from app.db.repositories.courier_repository import CourierRepository

__all__ = ["CourierRepository"]
