"""FastAPI dependencies."""

import hmac
from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from app.core.exceptions import ForbiddenException
from app.core.redis_client import get_redis_client
from app.core.timeutils import Clock, utc_now
from app.database import AsyncSessionLocal, get_db
from app.services.notification_service import (
    NotificationService,
    NotificationTransport,
    RedisNotificationTransport,
)


def get_clock() -> Clock:
    """Clock used for every 'now' comparison."""
    return utc_now


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work that manages its own sessions."""
    return AsyncSessionLocal


def get_notification_transport(
    settings: Annotated[Settings, Depends(get_settings)],
) -> NotificationTransport:
    """Redis-backed notification transport."""
    return RedisNotificationTransport(get_redis_client(), settings)


def get_notification_service(
    transport: Annotated[NotificationTransport, Depends(get_notification_transport)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> NotificationService:
    """Notification service bound to the configured transport."""
    return NotificationService(transport, settings)


async def verify_cron_secret(
    settings: Annotated[Settings, Depends(get_settings)],
    x_cron_secret: Annotated[str | None, Header()] = None,
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """
    Guard internal cron triggers with a shared secret.

    The secret is accepted from ``X-Cron-Secret`` or a bearer token.
    Every call is rejected while no secret is configured.

    Raises:
        ForbiddenException: If the secret is missing or wrong
    """
    if not settings.cron_secret:
        raise ForbiddenException("Cron triggers are disabled")

    provided = x_cron_secret
    if not provided and authorization and authorization.lower().startswith("bearer "):
        provided = authorization[7:].strip()

    if not provided or not hmac.compare_digest(provided, settings.cron_secret):
        raise ForbiddenException("Invalid cron secret")


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]
CurrentClock = Annotated[Clock, Depends(get_clock)]
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
Notifications = Annotated[NotificationService, Depends(get_notification_service)]
CronSecret = Depends(verify_cron_secret)
