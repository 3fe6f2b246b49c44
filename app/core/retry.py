"""Bounded retry with exponential backoff for transient infrastructure errors."""

import asyncio
import errno
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog
from sqlalchemy.exc import DBAPIError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

TRANSIENT_ERROR_CODES = frozenset(
    {
        "ECONNRESET",
        "ETIMEDOUT",
        "EPIPE",
        "ECONNREFUSED",
        "ENETUNREACH",
        "EHOSTUNREACH",
    }
)

TRANSIENT_ERROR_MESSAGES = (
    "connection terminated due to connection timeout",
    "timeout waiting for connection",
    "connection is closed",
    "connection was closed",
    "connection closed",
    "server closed the connection unexpectedly",
    "connection reset",
    "connection refused",
    "socket hang up",
    "etimedout",
    "timed out",
    "transient transaction error",
)


@dataclass(frozen=True)
class BackoffPolicy:
    """Retry budget and exponential delay schedule."""

    max_attempts: int = 3
    base_delay: float = 0.25
    factor: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before retrying after the given failed attempt (1-based)."""
        return self.base_delay * self.factor ** (attempt - 1)


def _error_code(exc: BaseException) -> str | None:
    code = getattr(exc, "code", None)
    if isinstance(code, str):
        return code
    err_no = getattr(exc, "errno", None)
    if isinstance(err_no, int):
        return errno.errorcode.get(err_no)
    return None


def is_transient_db_error(exc: BaseException) -> bool:
    """
    Classify an exception as a transient connectivity failure.

    Walks the DBAPI ``orig`` and ``__cause__`` chain so that driver errors
    wrapped by SQLAlchemy are classified the same as raw ones.

    Args:
        exc: Exception raised by a database or queue operation

    Returns:
        True if retrying the operation may succeed
    """
    seen: set[int] = set()
    current: BaseException | None = exc

    while current is not None and id(current) not in seen:
        seen.add(id(current))

        if isinstance(current, DBAPIError) and current.connection_invalidated:
            return True
        if isinstance(current, ConnectionError | TimeoutError | asyncio.TimeoutError):
            return True
        if _error_code(current) in TRANSIENT_ERROR_CODES:
            return True

        # SQLSTATE class 08 is "connection exception"
        sqlstate = getattr(current, "sqlstate", None) or getattr(current, "pgcode", None)
        if isinstance(sqlstate, str) and sqlstate.startswith("08"):
            return True

        message = str(current).lower()
        if any(fragment in message for fragment in TRANSIENT_ERROR_MESSAGES):
            return True

        orig = getattr(current, "orig", None)
        current = orig if isinstance(orig, BaseException) else current.__cause__

    return False


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    context: str,
    policy: BackoffPolicy | None = None,
    is_retryable: Callable[[BaseException], bool] = is_transient_db_error,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run an async operation, retrying retryable failures with exponential backoff.

    Non-retryable errors are re-raised immediately. The last error is
    re-raised once ``policy.max_attempts`` is exhausted.

    Args:
        operation: Zero-argument coroutine factory
        context: Label used in log events
        policy: Retry budget and delays
        is_retryable: Error classifier
        sleep: Awaitable sleep function

    Returns:
        The operation's result
    """
    policy = policy or BackoffPolicy()
    attempt = 0

    while True:
        try:
            return await operation()
        except Exception as e:
            attempt += 1
            if not is_retryable(e) or attempt >= policy.max_attempts:
                logger.error(
                    "operation_failed",
                    context=context,
                    attempts=attempt,
                    error=str(e),
                )
                raise

            delay = policy.delay_for(attempt)
            logger.warning(
                "transient_error_retrying",
                context=context,
                error=str(e),
                attempt=attempt + 1,
                max_attempts=policy.max_attempts,
                delay=delay,
            )
            await sleep(delay)
