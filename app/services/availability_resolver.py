"""Resolve a requested date and hour into a concrete slot and schedule."""

from dataclasses import dataclass
from uuid import UUID

import structlog
from sqlalchemy import and_, false, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.timeutils import parse_hour, weekday_of
from app.models.appointment_slots import (
    appointment_slot_schedule_links,
    appointment_slot_schedules,
    appointment_slots,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ResolvedSlot:
    """Slot and schedule that contain a requested start time."""

    slot_id: UUID
    schedule_id: UUID


class AvailabilityResolver:
    """
    Map (practitioner, date, hour) to the slot/schedule that covers it.

    When several available slots on the same weekday cover the hour, the
    match is chosen by earliest opening hour, then the slot created first
    (ties on creation time fall back to slot id), then schedule id.
    """

    def __init__(self, db: AsyncSession):
        """Initialize resolver with database session."""
        self.db = db

    async def resolve(self, practitioner_id: UUID, date: str, hour: str) -> ResolvedSlot | None:
        """
        Find the slot and schedule covering a start time.

        Args:
            practitioner_id: Practitioner ID
            date: Date as YYYY-MM-DD
            hour: Start time as HH:MM

        Returns:
            Resolved slot/schedule, or None if no schedule covers the hour
        """
        day = weekday_of(date)
        hour = parse_hour(hour).strftime("%H:%M")

        stmt = (
            select(
                appointment_slots.c.id.label("slot_id"),
                appointment_slot_schedules.c.id.label("schedule_id"),
            )
            .select_from(appointment_slots)
            .join(
                appointment_slot_schedule_links,
                appointment_slot_schedule_links.c.slot_id == appointment_slots.c.id,
            )
            .join(
                appointment_slot_schedules,
                appointment_slot_schedules.c.id == appointment_slot_schedule_links.c.schedule_id,
            )
            .where(
                and_(
                    appointment_slots.c.practitioner_id == practitioner_id,
                    appointment_slots.c.day == day.value,
                    appointment_slots.c.unavailable == false(),
                    appointment_slots.c.deleted_at.is_(None),
                    # Zero-padded HH:MM strings compare in time order
                    appointment_slot_schedules.c.opening_hour <= hour,
                    appointment_slot_schedules.c.close_hour > hour,
                )
            )
            .order_by(
                appointment_slot_schedules.c.opening_hour,
                appointment_slots.c.created_at,
                appointment_slots.c.id,
                appointment_slot_schedules.c.id,
            )
            .limit(1)
        )

        result = await self.db.execute(stmt)
        row = result.first()
        if row is None:
            logger.info(
                "slot_not_resolved",
                practitioner_id=str(practitioner_id),
                date=date,
                hour=hour,
            )
            return None

        return ResolvedSlot(slot_id=row.slot_id, schedule_id=row.schedule_id)
