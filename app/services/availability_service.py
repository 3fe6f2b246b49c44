"""Enumerate bookable start times for a practitioner on a date."""

from uuid import UUID

import structlog
from sqlalchemy import and_, false, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.core.timeutils import (
    Clock,
    format_minutes,
    local_now,
    parse_date,
    to_minutes,
    utc_now,
    weekday_of,
)
from app.models.appointment_slots import (
    appointment_slot_schedule_links,
    appointment_slot_schedules,
    appointment_slots,
)
from app.schemas.appointments import AvailabilityResponse, AvailableTime
from app.services.category_service import CategoryService
from app.services.overlap_validator import OverlapValidator, find_overlap
from app.services.practitioner_service import PractitionerService

logger = structlog.get_logger(__name__)

MINUTES_PER_DAY = 24 * 60


class AvailabilityService:
    """
    Generates the free start times offered to patients.

    Schedules are stepped in increments of their slot's duration. The
    overtime tail of a schedule is never offered, although it stays
    bookable by an explicit request.
    """

    def __init__(self, db: AsyncSession, settings: Settings, clock: Clock = utc_now):
        """Initialize service with database session, settings and clock."""
        self.db = db
        self.settings = settings
        self.clock = clock
        self.validator = OverlapValidator(db, settings, clock)

    async def list_available(
        self,
        practitioner_id: UUID,
        date: str | None = None,
        category_id: UUID | None = None,
    ) -> AvailabilityResponse:
        """
        List free and booked start times.

        Args:
            practitioner_id: Practitioner ID
            date: Date as YYYY-MM-DD, today in the configured timezone if omitted
            category_id: Restrict offers to the category's window for the weekday

        Returns:
            Available entries plus the booked start times of the date

        Raises:
            BadRequestException: If the date is malformed
            NotFoundException: If practitioner or category not found
        """
        now = local_now(self.settings.tz, self.clock)
        date = date or now.date().isoformat()
        day = parse_date(date)
        weekday = weekday_of(day)

        practitioner = await PractitionerService(self.db).get_practitioner(practitioner_id)

        category_window: tuple[int, int] | None = None
        if category_id is not None:
            windows = await CategoryService(self.db).get_category_availability(category_id)
            # A category without windows is unrestricted
            if windows:
                matching = next((w for w in windows if w.day == weekday), None)
                if matching is None:
                    return AvailabilityResponse(date=date, available=[], booked=[])
                category_window = (to_minutes(matching.start_time), to_minutes(matching.end_time))

        stmt = (
            select(
                appointment_slots.c.id.label("slot_id"),
                appointment_slots.c.duration,
                appointment_slot_schedules.c.id.label("schedule_id"),
                appointment_slot_schedules.c.opening_hour,
                appointment_slot_schedules.c.close_hour,
                appointment_slot_schedules.c.overtime_start_hour,
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
                    appointment_slots.c.day == weekday.value,
                    appointment_slots.c.unavailable == false(),
                    appointment_slots.c.deleted_at.is_(None),
                )
            )
            .order_by(
                appointment_slot_schedules.c.opening_hour,
                appointment_slots.c.created_at,
                appointment_slots.c.id,
            )
        )
        result = await self.db.execute(stmt)
        schedules = result.all()

        booked = await self.validator.booked_intervals(practitioner, date)

        # Starts before the cutoff are not strictly in the future
        if day < now.date():
            cutoff = MINUTES_PER_DAY
        elif day == now.date():
            cutoff = now.hour * 60 + now.minute + 1
        else:
            cutoff = 0

        available: list[AvailableTime] = []
        for row in schedules:
            opening = to_minutes(row.opening_hour)
            close = to_minutes(row.close_hour)

            if category_window is not None:
                opening = max(opening, category_window[0])
                close = min(close, category_window[1])
                if opening >= close:
                    continue

            if row.overtime_start_hour:
                close = min(close, to_minutes(row.overtime_start_hour))

            step = max(
                1,
                row.duration
                or practitioner["default_duration"]
                or self.settings.default_appointment_duration,
            )

            start = opening
            while start + step <= close:
                if start >= cutoff and find_overlap(start, start + step, booked) is None:
                    available.append(
                        AvailableTime(
                            time=format_minutes(start),
                            slot_id=row.slot_id,
                            schedule_id=row.schedule_id,
                        )
                    )
                start += step

        logger.debug(
            "availability_listed",
            practitioner_id=str(practitioner_id),
            date=date,
            available=len(available),
            booked=len(booked),
        )
        return AvailabilityResponse(
            date=date,
            available=available,
            booked=[interval.hour for interval in booked],
        )
