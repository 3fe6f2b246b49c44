"""Appointments table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    Uuid,
    text,
)

from app.models.base import audit_columns, metadata

REMINDER_STATES = "('QUEUED', 'SENT', 'FAILED')"
ACTIVE_BOOKING = "deleted_at IS NULL AND status <> 'CANCELLED'"

appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Calendar position, stored as wall-clock strings in the configured timezone
    Column("date", String(10), nullable=False),
    Column("hour", String(5), nullable=False),
    Column("status", String(20), nullable=False, server_default="PENDING"),
    Column("observation", Text, nullable=True),
    Column("custom_duration", Integer, nullable=True),
    # References
    Column(
        "practitioner_id",
        Uuid,
        ForeignKey("practitioners.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("patient_id", Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False),
    Column("slot_id", Uuid, ForeignKey("appointment_slots.id"), nullable=True),
    Column("schedule_id", Uuid, ForeignKey("appointment_slot_schedules.id"), nullable=True),
    Column(
        "category_id",
        Uuid,
        ForeignKey("appointment_categories.id", ondelete="SET NULL"),
        nullable=True,
    ),
    # Per-channel reminder state: NULL, QUEUED, SENT or FAILED
    Column("email_3h", String(10), nullable=True),
    Column("email_24h", String(10), nullable=True),
    Column("whatsapp_3h", String(10), nullable=True),
    Column("whatsapp_24h", String(10), nullable=True),
    Column("reprogrammed", Boolean, nullable=False, server_default=text("false")),
    *audit_columns(),
    CheckConstraint(
        "status IN ('PENDING', 'APPROVED', 'COMPLETED', 'CANCELLED', 'NO_SHOW', "
        "'ABSENT', 'RESCHEDULED', 'UNDER_REVIEW')",
        name="status",
    ),
    CheckConstraint(
        f"(email_3h IS NULL OR email_3h IN {REMINDER_STATES}) AND "
        f"(email_24h IS NULL OR email_24h IN {REMINDER_STATES}) AND "
        f"(whatsapp_3h IS NULL OR whatsapp_3h IN {REMINDER_STATES}) AND "
        f"(whatsapp_24h IS NULL OR whatsapp_24h IN {REMINDER_STATES})",
        name="reminder_states",
    ),
    Index("idx_appointments_practitioner_date", "practitioner_id", "date"),
    Index("idx_appointments_date_status", "date", "status"),
    # Two live bookings can never start at the same minute for one practitioner
    Index(
        "uq_appointments_practitioner_start",
        "practitioner_id",
        "date",
        "hour",
        unique=True,
        postgresql_where=text(ACTIVE_BOOKING),
        sqlite_where=text(ACTIVE_BOOKING),
    ),
)
