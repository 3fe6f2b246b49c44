"""API v1 router configuration."""

from fastapi import APIRouter

from app.api.v1.endpoints import (
    appointments,
    categories,
    cron,
    health,
    patients,
    practitioners,
    slots,
)

api_router = APIRouter()

# Include routers
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(practitioners.router, prefix="/practitioners", tags=["Practitioners"])
api_router.include_router(slots.router, prefix="/slots", tags=["Slots"])
api_router.include_router(patients.router, prefix="/patients", tags=["Patients"])
api_router.include_router(categories.router, prefix="/categories", tags=["Categories"])
api_router.include_router(appointments.router, prefix="/appointments", tags=["Appointments"])
api_router.include_router(cron.router, prefix="/internal/cron", tags=["Internal"])
