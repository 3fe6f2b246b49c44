"""Date and time helpers for the scheduling domain.

Dates travel as ISO ``YYYY-MM-DD`` strings and times of day as 24-hour
``HH:MM`` strings. Interval arithmetic is done in minutes since midnight.
"""

import re
from collections.abc import Callable
from datetime import UTC, date, datetime, time
from zoneinfo import ZoneInfo

from app.core.exceptions import BadRequestException
from app.schemas.slots import Day

Clock = Callable[[], datetime]

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
HOUR_PATTERN = re.compile(r"^\d{2}:\d{2}$")

_WEEKDAYS = (
    Day.MONDAY,
    Day.TUESDAY,
    Day.WEDNESDAY,
    Day.THURSDAY,
    Day.FRIDAY,
    Day.SATURDAY,
    Day.SUNDAY,
)


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(UTC)


def parse_date(value: str) -> date:
    """Parse a strict ``YYYY-MM-DD`` string."""
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        raise BadRequestException("Invalid date format. Use YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise BadRequestException("Invalid date format. Use YYYY-MM-DD") from e


def parse_hour(value: str) -> time:
    """Parse a strict ``HH:MM`` string."""
    if not isinstance(value, str) or not HOUR_PATTERN.match(value):
        raise BadRequestException("Invalid hour format. Use HH:MM")
    hours, minutes = (int(part) for part in value.split(":"))
    if hours > 23 or minutes > 59:
        raise BadRequestException("Invalid hour format. Use HH:MM")
    return time(hours, minutes)


def to_minutes(value: str) -> int:
    """Convert ``HH:MM`` (or ``HH:MM:SS``) to minutes since midnight."""
    parts = value.split(":")
    return int(parts[0]) * 60 + int(parts[1])


def format_minutes(minutes: int) -> str:
    """Convert minutes since midnight to ``HH:MM``."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def weekday_of(value: date | str) -> Day:
    """Get the weekday of a date."""
    if isinstance(value, str):
        value = parse_date(value)
    return _WEEKDAYS[value.weekday()]


def local_now(tz: ZoneInfo, clock: Clock = utc_now) -> datetime:
    """Current instant expressed in the given timezone."""
    return clock().astimezone(tz)


def localize(day: date, at: time, tz: ZoneInfo) -> datetime:
    """Combine a calendar date and wall-clock time in the given timezone."""
    return datetime.combine(day, at, tzinfo=tz)
