"""Patient table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import Column, String, Table, Text, Uuid

from app.models.base import audit_columns, metadata

patients = Table(
    "patients",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Unique identifiers used to deduplicate inline patient data
    Column("dni", String(20), nullable=False, unique=True),
    Column("email", String(255), nullable=True, unique=True),
    Column("name", Text, nullable=False),
    Column("last_name", Text, nullable=False),
    Column("phone", String(30), nullable=True),
    *audit_columns(soft_delete=False),
)
