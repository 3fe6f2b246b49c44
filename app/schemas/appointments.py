"""Appointment schemas for request/response validation."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.exceptions import BadRequestException
from app.schemas.categories import CategoryCreate, CategoryResponse
from app.schemas.patients import PatientCreate, PatientResponse
from app.schemas.practitioners import PractitionerSummary
from app.schemas.slots import ScheduleResponse, SlotSummary


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    ABSENT = "ABSENT"
    RESCHEDULED = "RESCHEDULED"
    UNDER_REVIEW = "UNDER_REVIEW"


class ReminderState(str, Enum):
    """Per-channel reminder state. A missing value means not yet attempted."""

    QUEUED = "QUEUED"
    SENT = "SENT"
    FAILED = "FAILED"


@dataclass(frozen=True)
class ExistingPatient:
    """Booking references a stored patient."""

    patient_id: UUID


@dataclass(frozen=True)
class InlinePatient:
    """Booking carries patient data to find or create."""

    data: PatientCreate


PatientRef = ExistingPatient | InlinePatient


class AppointmentCreate(BaseModel):
    """
    Schema for booking an appointment.

    Exactly one of ``patient_id`` or ``patient`` must be given. Date and hour
    are checked strictly by the booking service so malformed values surface
    as 400 errors.
    """

    practitioner_id: UUID
    date: str = Field(..., examples=["2025-01-06"])
    hour: str = Field(..., examples=["09:30"])
    slot_id: UUID | None = None
    schedule_id: UUID | None = None
    patient_id: UUID | None = None
    patient: PatientCreate | None = None
    custom_duration: int | None = Field(None, ge=1, le=480)
    observation: str | None = Field(None, max_length=1000)
    status: AppointmentStatus | None = None
    category_id: UUID | None = None
    category: CategoryCreate | None = None

    def patient_ref(self) -> PatientRef:
        """Resolve the patient reference, rejecting both-or-neither input."""
        if self.patient_id is not None and self.patient is not None:
            raise BadRequestException("Provide either patient_id or patient, not both")
        if self.patient_id is not None:
            return ExistingPatient(self.patient_id)
        if self.patient is not None:
            return InlinePatient(self.patient)
        raise BadRequestException("Either patient_id or patient is required")


class AppointmentReprogram(BaseModel):
    """Schema for moving an appointment to a new date and time."""

    date: str
    hour: str
    slot_id: UUID
    schedule_id: UUID
    observation: str | None = Field(None, max_length=1000)


class AppointmentStatusUpdate(BaseModel):
    """Schema for updating appointment status."""

    status: AppointmentStatus


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    date: str
    hour: str
    status: AppointmentStatus
    observation: str | None = None
    custom_duration: int | None = None
    practitioner_id: UUID
    patient_id: UUID
    slot_id: UUID | None = None
    schedule_id: UUID | None = None
    category_id: UUID | None = None
    email_3h: ReminderState | None = None
    email_24h: ReminderState | None = None
    whatsapp_3h: ReminderState | None = None
    whatsapp_24h: ReminderState | None = None
    reprogrammed: bool = False
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    practitioner: PractitionerSummary | None = None
    patient: PatientResponse | None = None
    slot: SlotSummary | None = None
    schedule: ScheduleResponse | None = None
    category: CategoryResponse | None = None

    model_config = {"from_attributes": True}


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    practitioner_id: UUID | None = None
    patient_id: UUID | None = None
    status: AppointmentStatus | None = None
    date: str | None = None
    from_date: str | None = None
    to_date: str | None = None
    include_deleted: bool = False
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class AvailableTime(BaseModel):
    """A bookable start time."""

    time: str
    slot_id: UUID
    schedule_id: UUID
    is_overtime: bool = False


class AvailabilityResponse(BaseModel):
    """Free and booked start times for one practitioner and date."""

    date: str
    available: list[AvailableTime]
    booked: list[str]
