"""Health check endpoints."""

from fastapi import APIRouter, Request, status
from pydantic import BaseModel

from app.config import settings
from app.core.redis_client import check_redis_connection
from app.database import check_database_connection

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str


class DetailedHealthResponse(HealthResponse):
    """Health including dependencies and the sweep scheduler."""

    database: str
    redis: str
    scheduler: str
    timezone: str


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """Basic health check endpoint."""
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Detailed health check",
)
async def detailed_health_check(request: Request) -> DetailedHealthResponse:
    """
    Detailed health check with database, Redis and scheduler status.

    The notification queues live in Redis, so a Redis outage degrades
    confirmations and reminders but not booking.
    """
    db_healthy = await check_database_connection()
    redis_healthy = await check_redis_connection()

    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        scheduler_state = "disabled"
    else:
        scheduler_state = "running" if scheduler.running else "stopped"

    return DetailedHealthResponse(
        status="healthy" if db_healthy and redis_healthy else "degraded",
        version=settings.app_version,
        environment=settings.environment,
        database="healthy" if db_healthy else "unhealthy",
        redis="healthy" if redis_healthy else "unhealthy",
        scheduler=scheduler_state,
        timezone=settings.app_timezone,
    )


@router.get("/ping", status_code=status.HTTP_200_OK, summary="Simple ping")
async def ping() -> dict[str, str]:
    """Simple ping endpoint."""
    return {"message": "pong"}
