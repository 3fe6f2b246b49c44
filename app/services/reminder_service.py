"""Periodic reminder dispatch and absence sweeps."""

from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar
from uuid import UUID

import structlog
from sqlalchemy import and_, or_, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings
from app.core.retry import BackoffPolicy, retry_async
from app.core.timeutils import Clock, format_minutes, local_now, to_minutes, utc_now
from app.models.appointments import appointments
from app.schemas.appointments import AppointmentStatus, ReminderState
from app.services.appointment_service import appointment_detail_query
from app.services.notification_service import NotificationChannel, NotificationService

logger = structlog.get_logger(__name__)

T = TypeVar("T")

REMINDER_HOURS = (24, 3)
REMINDABLE_STATUSES = (AppointmentStatus.PENDING.value, AppointmentStatus.APPROVED.value)


def reminder_field(channel: NotificationChannel, hours_before: int) -> str:
    """Name of the appointment column tracking a channel's reminder state."""
    if hours_before not in REMINDER_HOURS:
        raise ValueError(f"Unsupported reminder offset: {hours_before}h")
    return f"{channel.value}_{hours_before}h"


@dataclass(frozen=True)
class ReminderWindow:
    """Half-open ``[start, end)`` minutes of one calendar date."""

    date: str
    start: int
    end: int

    def contains(self, date: str, hour: str) -> bool:
        """Whether an appointment start falls inside the window."""
        return date == self.date and self.start <= to_minutes(hour) < self.end


def reminder_windows(now: datetime, hours_before: int, width_minutes: int) -> list[ReminderWindow]:
    """
    Target window ``[now + hours_before, now + hours_before + width)``.

    Offsets are elapsed time, so a daylight saving change inside the
    window stretches or shrinks its wall-clock span. A window that
    crosses midnight is split in two, one per date.

    Args:
        now: Current instant in the configured timezone
        hours_before: Reminder offset
        width_minutes: Window width, equal to the sweep interval

    Returns:
        One or two windows
    """
    start = (now.astimezone(UTC) + timedelta(hours=hours_before)).astimezone(now.tzinfo)
    end = (start.astimezone(UTC) + timedelta(minutes=width_minutes)).astimezone(now.tzinfo)
    start_min = start.hour * 60 + start.minute
    end_min = end.hour * 60 + end.minute

    if start.date() == end.date():
        return [ReminderWindow(start.date().isoformat(), start_min, end_min)]

    windows = [ReminderWindow(start.date().isoformat(), start_min, 24 * 60)]
    if end_min > 0:
        windows.append(ReminderWindow(end.date().isoformat(), 0, end_min))
    return windows


@dataclass
class SweepSummary:
    """Counters reported by one reminder sweep."""

    hours_before: int
    candidates: int = 0
    in_window: int = 0
    emails_queued: int = 0
    messages_queued: int = 0
    messages_skipped: int = 0
    failures: int = 0

    def as_dict(self) -> dict[str, int]:
        """Serialize counters."""
        return asdict(self)


class ReminderDispatcher:
    """
    Runs reminder and absence sweeps over appointments.

    Every database operation uses its own session and is retried on
    transient errors. Message reminders are claimed with a conditional
    update so that at most one sweep sends each of them.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        notifications: NotificationService,
        clock: Clock = utc_now,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        """Initialize dispatcher with a session factory and collaborators."""
        self.session_factory = session_factory
        self.settings = settings
        self.notifications = notifications
        self.clock = clock
        self.retry_policy = BackoffPolicy(
            max_attempts=settings.db_retry_attempts,
            base_delay=settings.db_retry_base_delay_ms / 1000,
        )
        self._retry_kwargs: dict[str, Any] = {"sleep": sleep} if sleep else {}

    async def _run_db(self, context: str, operation: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async def attempt() -> T:
            async with self.session_factory() as db:
                return await operation(db)

        return await retry_async(
            attempt, context=context, policy=self.retry_policy, **self._retry_kwargs
        )

    async def claim_reminder(self, appointment_id: UUID, field: str) -> bool:
        """
        Atomically move a reminder from unset or FAILED to QUEUED.

        Args:
            appointment_id: Appointment ID
            field: Reminder column name

        Returns:
            True if this caller won the claim
        """
        column = appointments.c[field]
        stmt = (
            update(appointments)
            .where(
                and_(
                    appointments.c.id == appointment_id,
                    or_(column.is_(None), column == ReminderState.FAILED.value),
                )
            )
            .values({field: ReminderState.QUEUED.value, "updated_at": datetime.now(UTC)})
        )

        async def operation(db: AsyncSession) -> bool:
            result = await db.execute(stmt)
            await db.commit()
            return result.rowcount > 0

        return await self._run_db(f"claim_reminder::{field}", operation)

    async def set_reminder_status(
        self, appointment_id: UUID, field: str, status: ReminderState
    ) -> None:
        """Record the outcome of a reminder attempt."""
        stmt = (
            update(appointments)
            .where(appointments.c.id == appointment_id)
            .values({field: status.value, "updated_at": datetime.now(UTC)})
        )

        async def operation(db: AsyncSession) -> None:
            await db.execute(stmt)
            await db.commit()

        await self._run_db(f"set_reminder_status::{field}", operation)

    async def _load_candidates(self, dates: list[str]) -> list[dict[str, Any]]:
        stmt = (
            appointment_detail_query()
            .where(
                and_(
                    appointments.c.date.in_(dates),
                    appointments.c.status.in_(REMINDABLE_STATUSES),
                    appointments.c.deleted_at.is_(None),
                )
            )
            .order_by(appointments.c.date, appointments.c.hour)
        )

        async def operation(db: AsyncSession) -> list[dict[str, Any]]:
            result = await db.execute(stmt)
            return [dict(row) for row in result.mappings().all()]

        return await self._run_db("reminder_sweep::find_candidates", operation)

    async def _dispatch_email(
        self, appointment: dict[str, Any], hours_before: int, summary: SweepSummary
    ) -> None:
        field = reminder_field(NotificationChannel.EMAIL, hours_before)
        if not appointment.get("patient_email") or appointment.get(field):
            return

        try:
            await self.notifications.send_reminder_email(appointment, hours_before)
            await self.set_reminder_status(appointment["id"], field, ReminderState.SENT)
            summary.emails_queued += 1
        except Exception as e:
            # Flag stays unset so the next sweep retries
            summary.failures += 1
            logger.error(
                "reminder_email_failed",
                appointment_id=str(appointment["id"]),
                hours_before=hours_before,
                error=str(e),
            )

    async def _dispatch_message(
        self, appointment: dict[str, Any], hours_before: int, summary: SweepSummary
    ) -> None:
        field = reminder_field(NotificationChannel.WHATSAPP, hours_before)
        current = appointment.get(field)
        if not appointment.get("patient_phone"):
            return
        if current not in (None, ReminderState.FAILED.value):
            summary.messages_skipped += 1
            return

        appointment_id = appointment["id"]
        try:
            claimed = await self.claim_reminder(appointment_id, field)
        except Exception as e:
            summary.failures += 1
            logger.error(
                "reminder_claim_failed",
                appointment_id=str(appointment_id),
                field=field,
                error=str(e),
            )
            return

        if not claimed:
            summary.messages_skipped += 1
            logger.debug("reminder_already_claimed", appointment_id=str(appointment_id))
            return

        try:
            job_id = await self.notifications.send_reminder_message(appointment, hours_before)
            await self.set_reminder_status(appointment_id, field, ReminderState.SENT)
            summary.messages_queued += 1
            logger.info(
                "reminder_message_queued",
                appointment_id=str(appointment_id),
                hours_before=hours_before,
                job_id=job_id,
            )
        except Exception as e:
            summary.failures += 1
            logger.error(
                "reminder_message_failed",
                appointment_id=str(appointment_id),
                hours_before=hours_before,
                error=str(e),
            )
            try:
                await self.set_reminder_status(appointment_id, field, ReminderState.FAILED)
            except Exception as mark_error:
                # Stays QUEUED; needs manual reset
                logger.error(
                    "reminder_mark_failed_failed",
                    appointment_id=str(appointment_id),
                    error=str(mark_error),
                )

    async def run_reminder_sweep(self, hours_before: int) -> SweepSummary:
        """
        Send reminders for appointments starting ``hours_before`` from now.

        Email is check-then-set. Messages are claimed atomically before
        being queued, and a failed message is marked FAILED so a later
        sweep can claim it again.

        Args:
            hours_before: 24 or 3

        Returns:
            Sweep counters
        """
        if hours_before not in REMINDER_HOURS:
            raise ValueError(f"Unsupported reminder offset: {hours_before}h")

        now = local_now(self.settings.tz, self.clock)
        windows = reminder_windows(now, hours_before, self.settings.reminder_sweep_minutes)
        summary = SweepSummary(hours_before=hours_before)

        candidates = await self._load_candidates([w.date for w in windows])
        summary.candidates = len(candidates)

        for appointment in candidates:
            if not any(w.contains(appointment["date"], appointment["hour"]) for w in windows):
                continue
            summary.in_window += 1

            # Channels are independent
            await self._dispatch_email(appointment, hours_before, summary)
            await self._dispatch_message(appointment, hours_before, summary)

        logger.info(
            "reminder_sweep_completed",
            window_start=f"{windows[0].date} {format_minutes(windows[0].start)}",
            **summary.as_dict(),
        )
        return summary

    async def mark_previous_day_absent(self) -> int:
        """
        Mark yesterday's still-PENDING appointments as ABSENT.

        Returns:
            Number of appointments updated
        """
        yesterday = (local_now(self.settings.tz, self.clock) - timedelta(days=1)).date()
        stmt = (
            update(appointments)
            .where(
                and_(
                    appointments.c.date == yesterday.isoformat(),
                    appointments.c.status == AppointmentStatus.PENDING.value,
                    appointments.c.deleted_at.is_(None),
                )
            )
            .values(status=AppointmentStatus.ABSENT.value, updated_at=datetime.now(UTC))
        )

        async def operation(db: AsyncSession) -> int:
            result = await db.execute(stmt)
            await db.commit()
            return result.rowcount

        updated = await self._run_db("absence_sweep::mark_absent", operation)
        logger.info("absence_sweep_completed", date=yesterday.isoformat(), updated=updated)
        return updated
