"""Appointment categories and their weekday availability windows."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    Uuid,
    text,
)

from app.models.base import metadata

appointment_categories = Table(
    "appointment_categories",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("name", Text, nullable=False),
    Column("color", String(20), nullable=True),
    Column(
        "created_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    ),
    Column("deleted_at", DateTime(timezone=True), nullable=True),
)

category_availabilities = Table(
    "category_availabilities",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "category_id",
        Uuid,
        ForeignKey("appointment_categories.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("day", String(10), nullable=False),
    Column("start_time", String(5), nullable=False),
    Column("end_time", String(5), nullable=False),
    Column(
        "created_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    ),
    Column("deleted_at", DateTime(timezone=True), nullable=True),
    CheckConstraint("start_time < end_time", name="window_order"),
    Index(
        "uq_category_availabilities_category_day",
        "category_id",
        "day",
        unique=True,
        postgresql_where=text("deleted_at IS NULL"),
        sqlite_where=text("deleted_at IS NULL"),
    ),
)
