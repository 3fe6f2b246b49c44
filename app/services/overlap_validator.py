"""Booking invariant checks: start in the future, inside hours, no overlap."""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.core.exceptions import BadRequestException
from app.core.timeutils import (
    Clock,
    local_now,
    localize,
    parse_date,
    parse_hour,
    to_minutes,
    utc_now,
    weekday_of,
)
from app.models.appointment_slots import (
    appointment_slot_schedule_links,
    appointment_slot_schedules,
    appointment_slots,
)
from app.models.appointments import appointments
from app.schemas.appointments import AppointmentStatus

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class BookedInterval:
    """Half-open ``[start, end)`` minutes occupied by a live appointment."""

    appointment_id: UUID
    hour: str
    start: int
    end: int

    def overlaps(self, start: int, end: int) -> bool:
        """Touching endpoints do not overlap."""
        return start < self.end and end > self.start


def find_overlap(
    start: int, end: int, intervals: Iterable[BookedInterval]
) -> BookedInterval | None:
    """Return the first booked interval intersecting ``[start, end)``."""
    for interval in intervals:
        if interval.overlaps(start, end):
            return interval
    return None


def effective_duration(
    custom_duration: int | None,
    slot_duration: int | None,
    practitioner_duration: int | None,
    default: int,
) -> int:
    """Explicit override, else the slot's, else the practitioner's, else the default."""
    for value in (custom_duration, slot_duration, practitioner_duration):
        if value is not None and value > 0:
            return value
    return default


class OverlapValidator:
    """Validates candidate appointment intervals for a practitioner."""

    def __init__(self, db: AsyncSession, settings: Settings, clock: Clock = utc_now):
        """Initialize validator with database session, settings and clock."""
        self.db = db
        self.settings = settings
        self.clock = clock

    async def booked_intervals(
        self,
        practitioner: Mapping[str, Any],
        date: str,
        exclude_appointment_id: UUID | None = None,
    ) -> list[BookedInterval]:
        """
        Load occupied intervals of a practitioner on a date.

        Cancelled and soft-deleted appointments are ignored. Each interval
        uses the appointment's own effective duration.

        Args:
            practitioner: Practitioner row
            date: Date as YYYY-MM-DD
            exclude_appointment_id: Appointment to leave out of the scan

        Returns:
            Booked intervals sorted by start
        """
        conditions = [
            appointments.c.practitioner_id == practitioner["id"],
            appointments.c.date == date,
            appointments.c.deleted_at.is_(None),
            appointments.c.status != AppointmentStatus.CANCELLED.value,
        ]
        if exclude_appointment_id is not None:
            conditions.append(appointments.c.id != exclude_appointment_id)

        stmt = (
            select(
                appointments.c.id,
                appointments.c.hour,
                appointments.c.custom_duration,
                appointment_slots.c.duration.label("slot_duration"),
            )
            .select_from(
                appointments.outerjoin(
                    appointment_slots, appointment_slots.c.id == appointments.c.slot_id
                )
            )
            .where(and_(*conditions))
        )
        result = await self.db.execute(stmt)

        intervals = []
        for row in result.mappings().all():
            start = to_minutes(row["hour"])
            duration = effective_duration(
                row["custom_duration"],
                row["slot_duration"],
                practitioner.get("default_duration"),
                self.settings.default_appointment_duration,
            )
            intervals.append(
                BookedInterval(
                    appointment_id=row["id"],
                    hour=row["hour"],
                    start=start,
                    end=start + duration,
                )
            )
        return sorted(intervals, key=lambda i: i.start)

    async def _schedule_windows(self, practitioner_id: UUID, date: str) -> list[tuple[int, int]]:
        stmt = (
            select(
                appointment_slot_schedules.c.opening_hour,
                appointment_slot_schedules.c.close_hour,
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
                    appointment_slots.c.day == weekday_of(date).value,
                    appointment_slots.c.deleted_at.is_(None),
                )
            )
        )
        result = await self.db.execute(stmt)
        return [
            (to_minutes(row.opening_hour), to_minutes(row.close_hour)) for row in result.all()
        ]

    async def _slot_duration(self, slot_id: UUID | None) -> int | None:
        if slot_id is None:
            return None
        result = await self.db.execute(
            select(appointment_slots.c.duration).where(appointment_slots.c.id == slot_id)
        )
        return result.scalar_one_or_none()

    async def validate(
        self,
        practitioner: Mapping[str, Any],
        date: str,
        hour: str,
        duration: int | None = None,
        slot_id: UUID | None = None,
        exclude_appointment_id: UUID | None = None,
    ) -> int:
        """
        Check that a candidate appointment can be booked.

        The interval must start in the future, lie entirely inside one of
        the practitioner's schedule windows for that weekday, and not
        intersect any live appointment. Overtime boundaries are not
        enforced here.

        Args:
            practitioner: Practitioner row
            date: Date as YYYY-MM-DD
            hour: Start time as HH:MM
            duration: Explicit duration override in minutes
            slot_id: Slot whose duration applies when no override is given
            exclude_appointment_id: Appointment being moved, ignored in the scan

        Returns:
            The effective duration in minutes

        Raises:
            BadRequestException: With the reason the interval is rejected
        """
        day = parse_date(date)
        at = parse_hour(hour)

        if localize(day, at, self.settings.tz) <= local_now(self.settings.tz, self.clock):
            raise BadRequestException("Cannot book an appointment in the past")

        minutes = effective_duration(
            duration,
            await self._slot_duration(slot_id),
            practitioner.get("default_duration"),
            self.settings.default_appointment_duration,
        )
        start = at.hour * 60 + at.minute
        end = start + minutes

        windows = await self._schedule_windows(practitioner["id"], date)
        if not windows:
            raise BadRequestException(
                f"Practitioner is not available on {weekday_of(day).value}"
            )
        if not any(opening <= start and end <= close for opening, close in windows):
            raise BadRequestException(
                f"The appointment {hour} ({minutes} min) is outside the practitioner's hours"
            )

        booked = await self.booked_intervals(practitioner, date, exclude_appointment_id)
        conflict = find_overlap(start, end, booked)
        if conflict is not None:
            logger.info(
                "appointment_overlap_rejected",
                practitioner_id=str(practitioner["id"]),
                date=date,
                hour=hour,
                conflicting_appointment_id=str(conflict.appointment_id),
            )
            raise BadRequestException(
                f"The appointment overlaps an existing appointment at {conflict.hour}"
            )

        return minutes
