"""Appointment endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies import AppSettings, CurrentClock, DatabaseSession, Notifications
from app.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentReprogram,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentStatusUpdate,
)
from app.services.appointment_service import AppointmentService

router = APIRouter()


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Book appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    db: DatabaseSession,
    settings: AppSettings,
    notifications: Notifications,
    clock: CurrentClock,
) -> AppointmentResponse:
    """
    Book an appointment.

    Slot and schedule are resolved from date and hour when omitted.
    Confirmation delivery failures never fail the booking.

    Args:
        data: Appointment creation data
        db: Database session
        settings: Application settings
        notifications: Notification service
        clock: Current time source

    Returns:
        Created appointment
    """
    service = AppointmentService(db, settings, notifications, clock)
    return await service.create_appointment(data)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    summary="List appointments",
)
async def list_appointments(
    db: DatabaseSession,
    settings: AppSettings,
    practitioner_id: UUID | None = Query(None),
    patient_id: UUID | None = Query(None),
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    date: str | None = Query(None),
    from_date: str | None = Query(None),
    to_date: str | None = Query(None),
    include_deleted: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments with filtering.

    Args:
        db: Database session
        settings: Application settings
        practitioner_id: Filter by practitioner
        patient_id: Filter by patient
        status_filter: Filter by status
        date: Exact date
        from_date: Filter by start date
        to_date: Filter by end date
        include_deleted: Include cancelled-and-deleted appointments
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        practitioner_id=practitioner_id,
        patient_id=patient_id,
        status=status_filter,
        date=date,
        from_date=from_date,
        to_date=to_date,
        include_deleted=include_deleted,
        page=page,
        page_size=page_size,
    )
    return await AppointmentService(db, settings).list_appointments(filters)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    summary="Get appointment",
)
async def get_appointment(
    appointment_id: UUID,
    db: DatabaseSession,
    settings: AppSettings,
    include_deleted: bool = Query(False),
) -> AppointmentResponse:
    """Get appointment by ID."""
    service = AppointmentService(db, settings)
    return await service.get_appointment(appointment_id, include_deleted)


@router.post(
    "/{appointment_id}/reprogram",
    response_model=AppointmentResponse,
    summary="Reprogram appointment",
)
async def reprogram_appointment(
    appointment_id: UUID,
    data: AppointmentReprogram,
    db: DatabaseSession,
    settings: AppSettings,
    clock: CurrentClock,
) -> AppointmentResponse:
    """
    Move an appointment to a new date and hour.

    Args:
        appointment_id: Appointment ID
        data: New placement
        db: Database session
        settings: Application settings
        clock: Current time source

    Returns:
        Updated appointment
    """
    service = AppointmentService(db, settings, clock=clock)
    return await service.reprogram_appointment(appointment_id, data)


@router.patch(
    "/{appointment_id}/status",
    response_model=AppointmentResponse,
    summary="Update appointment status",
)
async def update_appointment_status(
    appointment_id: UUID,
    data: AppointmentStatusUpdate,
    db: DatabaseSession,
    settings: AppSettings,
) -> AppointmentResponse:
    """Update appointment status."""
    service = AppointmentService(db, settings)
    return await service.update_status(appointment_id, data.status)


@router.delete(
    "/{appointment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    db: DatabaseSession,
    settings: AppSettings,
    reprogrammed: bool = Query(False),
) -> None:
    """Cancel and soft delete an appointment."""
    await AppointmentService(db, settings).cancel_appointment(appointment_id, reprogrammed)


@router.post(
    "/{appointment_id}/recover",
    response_model=AppointmentResponse,
    summary="Recover appointment",
)
async def recover_appointment(
    appointment_id: UUID,
    db: DatabaseSession,
    settings: AppSettings,
) -> AppointmentResponse:
    """Undo a cancellation when the interval is still free."""
    return await AppointmentService(db, settings).recover_appointment(appointment_id)
