"""Background scheduler for reminder and absence sweeps."""

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings
from app.services.reminder_service import ReminderDispatcher

logger = structlog.get_logger(__name__)


async def reminder_job(dispatcher: ReminderDispatcher, hours_before: int) -> None:
    """Run one reminder sweep, logging instead of raising."""
    try:
        await dispatcher.run_reminder_sweep(hours_before)
    except Exception as e:
        logger.error("reminder_job_failed", hours_before=hours_before, error=str(e))


async def absence_job(dispatcher: ReminderDispatcher) -> None:
    """Run the daily absence sweep, logging instead of raising."""
    try:
        await dispatcher.mark_previous_day_absent()
    except Exception as e:
        logger.error("absence_job_failed", error=str(e))


def build_scheduler(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    dispatcher: ReminderDispatcher | None = None,
) -> AsyncIOScheduler:
    """
    Create the scheduler with the three sweep jobs registered.

    Args:
        settings: Application settings
        session_factory: Session factory used by the sweeps
        dispatcher: Dispatcher to run; built from settings when omitted

    Returns:
        Scheduler, not yet started
    """
    if dispatcher is None:
        from app.core.redis_client import get_redis_client
        from app.services.notification_service import (
            NotificationService,
            RedisNotificationTransport,
        )

        transport = RedisNotificationTransport(get_redis_client(), settings)
        dispatcher = ReminderDispatcher(
            session_factory, settings, NotificationService(transport, settings)
        )

    scheduler = AsyncIOScheduler(timezone=settings.app_timezone)
    every = f"*/{settings.reminder_sweep_minutes}"

    for hours_before in (24, 3):
        scheduler.add_job(
            reminder_job,
            CronTrigger(minute=every, timezone=settings.app_timezone),
            args=[dispatcher, hours_before],
            id=f"reminders_{hours_before}h",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    scheduler.add_job(
        absence_job,
        CronTrigger(hour=settings.absence_sweep_hour, minute=0, timezone=settings.app_timezone),
        args=[dispatcher],
        id="absence_daily",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    return scheduler


def start_scheduler(
    settings: Settings, session_factory: async_sessionmaker[AsyncSession]
) -> AsyncIOScheduler:
    """Build and start the scheduler."""
    scheduler = build_scheduler(settings, session_factory)
    scheduler.start()
    logger.info(
        "scheduler_started",
        jobs=[job.id for job in scheduler.get_jobs()],
        timezone=settings.app_timezone,
    )
    return scheduler
