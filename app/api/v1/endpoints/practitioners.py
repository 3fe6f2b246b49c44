"""Practitioner endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies import AppSettings, CurrentClock, DatabaseSession
from app.schemas.appointments import AvailabilityResponse
from app.schemas.practitioners import PractitionerCreate, PractitionerResponse
from app.services.availability_service import AvailabilityService
from app.services.practitioner_service import PractitionerService

router = APIRouter()


@router.post(
    "/",
    response_model=PractitionerResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Onboard practitioner",
)
async def create_practitioner(
    data: PractitionerCreate,
    db: DatabaseSession,
) -> PractitionerResponse:
    """
    Create a practitioner together with their weekly slots.

    Args:
        data: Practitioner data and slot definitions
        db: Database session

    Returns:
        Created practitioner with slots
    """
    return await PractitionerService(db).create_practitioner(data)


@router.get(
    "/{practitioner_id}",
    response_model=PractitionerResponse,
    summary="Get practitioner",
)
async def get_practitioner(practitioner_id: UUID, db: DatabaseSession) -> PractitionerResponse:
    """Get a practitioner with their live slots."""
    return await PractitionerService(db).get_practitioner_detail(practitioner_id)


@router.get(
    "/{practitioner_id}/availability",
    response_model=AvailabilityResponse,
    summary="List available start times",
)
async def list_available(
    practitioner_id: UUID,
    db: DatabaseSession,
    settings: AppSettings,
    clock: CurrentClock,
    date: str | None = Query(None, description="YYYY-MM-DD, defaults to today"),
    category_id: UUID | None = Query(None),
) -> AvailabilityResponse:
    """
    List the free start times of a practitioner for a date.

    Args:
        practitioner_id: Practitioner ID
        db: Database session
        settings: Application settings
        clock: Current time source
        date: Date to inspect
        category_id: Restrict to a category's weekday window

    Returns:
        Available and booked start times
    """
    service = AvailabilityService(db, settings, clock)
    return await service.list_available(practitioner_id, date, category_id)
