"""Shared metadata for all scheduling tables."""

from sqlalchemy import Column, DateTime, MetaData, text

# One MetaData so foreign keys resolve across modules
metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_name)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }
)


def audit_columns(soft_delete: bool = True) -> list[Column]:
    """Build created/updated/deleted timestamp columns."""
    columns = [
        Column(
            "created_at",
            DateTime(timezone=True),
            nullable=False,
            server_default=text("CURRENT_TIMESTAMP"),
        ),
        Column(
            "updated_at",
            DateTime(timezone=True),
            nullable=False,
            server_default=text("CURRENT_TIMESTAMP"),
        ),
    ]
    if soft_delete:
        columns.append(Column("deleted_at", DateTime(timezone=True), nullable=True))
    return columns
