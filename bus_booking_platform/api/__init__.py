"""API endpoints for the Bus Booking Platform."""

from fastapi import APIRouter
from .buses import router as buses_router
from .payments import router as payments_router
from .tickets import router as tickets_router

# Create main API router
api_router = APIRouter(prefix="/api/v1")

# Include all routers
api_router.include_router(buses_router)
api_router.include_router(tickets_router)
api_router.include_router(payments_router)

__all__ = ["api_router"]
