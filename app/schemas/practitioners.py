"""Practitioner schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from app.schemas.slots import SlotResponse, SlotSpec


class PractitionerCreate(BaseModel):
    """Schema for onboarding a practitioner with initial slots."""

    name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=30)
    default_duration: int = Field(default=30, ge=1, le=480)
    slots: list[SlotSpec] = Field(default_factory=list)


class PractitionerSummary(BaseModel):
    """Practitioner fields embedded in other responses."""

    id: UUID
    name: str
    last_name: str
    email: str | None = None
    phone: str | None = None

    model_config = {"from_attributes": True}


class PractitionerResponse(PractitionerSummary):
    """Schema for practitioner response."""

    default_duration: int
    slots: list[SlotResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
