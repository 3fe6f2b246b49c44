"""Database models."""

from app.models.appointment_slots import (
    appointment_slot_schedule_links,
    appointment_slot_schedules,
    appointment_slots,
)
from app.models.appointments import appointments
from app.models.base import metadata
from app.models.categories import appointment_categories, category_availabilities
from app.models.patients import patients
from app.models.practitioners import practitioners

__all__ = [
    "appointment_categories",
    "appointment_slot_schedule_links",
    "appointment_slot_schedules",
    "appointment_slots",
    "appointments",
    "category_availabilities",
    "metadata",
    "patients",
    "practitioners",
]
