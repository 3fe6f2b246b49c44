"""Practitioner table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import Column, Integer, String, Table, Text, Uuid, text

from app.models.base import audit_columns, metadata

practitioners = Table(
    "practitioners",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("name", Text, nullable=False),
    Column("last_name", Text, nullable=False),
    Column("email", String(255), nullable=True, unique=True),
    Column("phone", String(30), nullable=True),
    # Fallback when neither the appointment nor its slot sets a duration
    Column("default_duration", Integer, nullable=False, server_default=text("30")),
    *audit_columns(),
)
