"""Slot and schedule schemas for request/response validation."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

HOUR_REGEX = r"^\d{2}:\d{2}$"


class Day(str, Enum):
    """Weekday enumeration used by recurring slots."""

    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"


class ScheduleCreate(BaseModel):
    """Opening window for a slot, with optional overtime start."""

    opening_hour: str = Field(..., pattern=HOUR_REGEX, examples=["09:00"])
    close_hour: str = Field(..., pattern=HOUR_REGEX, examples=["17:00"])
    overtime_start_hour: str | None = Field(None, pattern=HOUR_REGEX)


class ScheduleUpdate(BaseModel):
    """
    Schedule entry of a slot update.

    Either references an existing schedule by ``id`` (optionally overriding
    some of its hours) or provides a complete new window.
    """

    id: UUID | None = None
    opening_hour: str | None = Field(None, pattern=HOUR_REGEX)
    close_hour: str | None = Field(None, pattern=HOUR_REGEX)
    overtime_start_hour: str | None = Field(None, pattern=HOUR_REGEX)


class SlotBase(BaseModel):
    """Fields shared by slot definitions."""

    day: Day
    duration: int | None = Field(None, ge=1, le=480)
    unavailable: bool = False
    location_id: UUID | None = None


class SlotSpec(SlotBase):
    """Slot definition nested under a practitioner."""

    schedules: list[ScheduleCreate] = Field(default_factory=list)


class SlotCreate(SlotSpec):
    """Schema for creating a slot."""

    practitioner_id: UUID


class SlotUpdate(BaseModel):
    """Schema for patching a slot. Only provided fields are applied."""

    day: Day | None = None
    practitioner_id: UUID | None = None
    duration: int | None = Field(None, ge=1, le=480)
    unavailable: bool | None = None
    location_id: UUID | None = None
    schedules: list[ScheduleUpdate] | None = None


class ScheduleResponse(BaseModel):
    """Schema for schedule response."""

    id: UUID
    opening_hour: str
    close_hour: str
    overtime_start_hour: str | None = None

    model_config = {"from_attributes": True}


class SlotResponse(BaseModel):
    """Schema for slot response."""

    id: UUID
    practitioner_id: UUID
    day: Day
    duration: int
    unavailable: bool
    location_id: UUID | None = None
    schedules: list[ScheduleResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    model_config = {"from_attributes": True}


class SlotSummary(BaseModel):
    """Slot fields embedded in appointment responses."""

    id: UUID
    day: Day
    duration: int
    unavailable: bool

    model_config = {"from_attributes": True}
