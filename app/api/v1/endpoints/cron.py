"""Internal cron triggers for the sweeps."""

from typing import Any

from fastapi import APIRouter, status

from app.dependencies import (
    AppSettings,
    CronSecret,
    CurrentClock,
    Notifications,
    SessionFactory,
)
from app.services.reminder_service import ReminderDispatcher

router = APIRouter(dependencies=[CronSecret])


def _dispatcher(
    session_factory: SessionFactory,
    settings: AppSettings,
    notifications: Notifications,
    clock: CurrentClock,
) -> ReminderDispatcher:
    return ReminderDispatcher(session_factory, settings, notifications, clock)


@router.post(
    "/appointments/absent-daily",
    status_code=status.HTTP_200_OK,
    summary="Mark yesterday's pending appointments absent",
)
async def absent_daily(
    session_factory: SessionFactory,
    settings: AppSettings,
    notifications: Notifications,
    clock: CurrentClock,
) -> dict[str, int]:
    """Run the absence sweep once."""
    dispatcher = _dispatcher(session_factory, settings, notifications, clock)
    return {"updated": await dispatcher.mark_previous_day_absent()}


@router.post(
    "/appointments/reminders-24h",
    status_code=status.HTTP_200_OK,
    summary="Send 24 hour reminders",
)
async def reminders_24h(
    session_factory: SessionFactory,
    settings: AppSettings,
    notifications: Notifications,
    clock: CurrentClock,
) -> dict[str, Any]:
    """Run the 24 hour reminder sweep once."""
    dispatcher = _dispatcher(session_factory, settings, notifications, clock)
    summary = await dispatcher.run_reminder_sweep(24)
    return summary.as_dict()


@router.post(
    "/appointments/reminders-3h",
    status_code=status.HTTP_200_OK,
    summary="Send 3 hour reminders",
)
async def reminders_3h(
    session_factory: SessionFactory,
    settings: AppSettings,
    notifications: Notifications,
    clock: CurrentClock,
) -> dict[str, Any]:
    """Run the 3 hour reminder sweep once."""
    dispatcher = _dispatcher(session_factory, settings, notifications, clock)
    summary = await dispatcher.run_reminder_sweep(3)
    return summary.as_dict()
