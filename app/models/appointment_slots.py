"""Recurring weekly availability: slots, schedules and their links."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Uuid,
    func,
    text,
)

from app.models.base import audit_columns, metadata

WEEKDAY_CHECK = (
    "day IN ('MONDAY', 'TUESDAY', 'WEDNESDAY', 'THURSDAY', 'FRIDAY', 'SATURDAY', 'SUNDAY')"
)

appointment_slots = Table(
    "appointment_slots",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "practitioner_id",
        Uuid,
        ForeignKey("practitioners.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("day", String(10), nullable=False),
    Column("duration", Integer, nullable=False, server_default=text("30")),
    Column("unavailable", Boolean, nullable=False, server_default=text("false")),
    Column("location_id", Uuid, nullable=True),
    *audit_columns(),
    CheckConstraint(WEEKDAY_CHECK, name="day"),
    Index("idx_appointment_slots_practitioner_day", "practitioner_id", "day"),
)

appointment_slot_schedules = Table(
    "appointment_slot_schedules",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("opening_hour", String(5), nullable=False),
    Column("close_hour", String(5), nullable=False),
    Column("overtime_start_hour", String(5), nullable=True),
    Column(
        "created_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    ),
    CheckConstraint("opening_hour < close_hour", name="hours_order"),
)

# Schedules are shared rows keyed by the full hour triple; NULL overtime is
# folded to '' so two overtime-less ranges still collide.
Index(
    "uq_appointment_slot_schedules_hours",
    appointment_slot_schedules.c.opening_hour,
    appointment_slot_schedules.c.close_hour,
    func.coalesce(appointment_slot_schedules.c.overtime_start_hour, ""),
    unique=True,
)

appointment_slot_schedule_links = Table(
    "appointment_slot_schedule_links",
    metadata,
    Column(
        "slot_id",
        Uuid,
        ForeignKey("appointment_slots.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "schedule_id",
        Uuid,
        ForeignKey("appointment_slot_schedules.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)
