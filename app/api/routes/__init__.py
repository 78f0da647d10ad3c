"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.deliveries import router as deliveries_router
from app.api.routes.couriers import router as couriers_router

router = APIRouter()

router.include_router(deliveries_router, prefix="/deliveries", tags=["deliveries"])
router.include_router(couriers_router, prefix="/couriers", tags=["couriers"])
