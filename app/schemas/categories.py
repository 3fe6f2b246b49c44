"""Appointment category schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.schemas.slots import HOUR_REGEX, Day


class CategoryCreate(BaseModel):
    """Schema for creating a category."""

    name: str = Field(..., min_length=1, max_length=100)
    color: str | None = Field(None, max_length=20)


class CategoryResponse(BaseModel):
    """Schema for category response."""

    id: UUID
    name: str
    color: str | None = None

    model_config = {"from_attributes": True}


class CategoryAvailabilityCreate(BaseModel):
    """Weekday window during which a category may be booked."""

    day: Day
    start_time: str = Field(..., pattern=HOUR_REGEX)
    end_time: str = Field(..., pattern=HOUR_REGEX)


class CategoryAvailabilityResponse(BaseModel):
    """Schema for category availability response."""

    id: UUID
    category_id: UUID
    day: Day
    start_time: str
    end_time: str
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
