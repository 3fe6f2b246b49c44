"""Notification service for queueing email and messaging jobs."""

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from enum import Enum
from html import escape
from typing import Any, Protocol
from uuid import uuid4

import structlog
from redis import asyncio as aioredis

from app.config import Settings

logger = structlog.get_logger(__name__)

QUEUE_KEY_PREFIX = "notifications:queue"
IDEMPOTENCY_KEY_PREFIX = "notifications:idempotency"


class NotificationChannel(str, Enum):
    """Delivery channel of a notification job."""

    EMAIL = "email"
    WHATSAPP = "whatsapp"


@dataclass(frozen=True)
class RetryPolicy:
    """Delivery retry hints stored alongside a queued job."""

    attempts: int
    backoff_ms: int
    backoff_type: str = "exponential"

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        """Build the default policy from configuration."""
        return cls(
            attempts=settings.notification_attempts,
            backoff_ms=settings.notification_backoff_ms,
        )


class NotificationTransport(Protocol):
    """Durable queue that accepts email and message jobs."""

    async def enqueue(
        self,
        channel: NotificationChannel,
        payload: dict[str, Any],
        *,
        idempotency_key: str | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> str | None:
        """
        Queue a job for delivery.

        Returns:
            Job ID, or None when a job with the same idempotency key was
            already accepted
        """
        ...


class RedisNotificationTransport:
    """Notification transport backed by Redis lists."""

    def __init__(self, redis_client: aioredis.Redis, settings: Settings):
        """Initialize transport with a Redis client."""
        self.redis = redis_client
        self.idempotency_ttl = settings.notification_idempotency_ttl_seconds

    async def enqueue(
        self,
        channel: NotificationChannel,
        payload: dict[str, Any],
        *,
        idempotency_key: str | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> str | None:
        """
        Push a job onto the channel queue.

        An idempotency key is reserved with ``SET NX`` before the push, so a
        second enqueue with the same key is a no-op. The reservation is
        released if the push fails.

        Args:
            channel: Target channel
            payload: Channel-specific job data
            idempotency_key: Optional deduplication key
            retry_policy: Optional delivery retry hints

        Returns:
            Job ID or None for a duplicate
        """
        reservation = None
        if idempotency_key:
            reservation = f"{IDEMPOTENCY_KEY_PREFIX}:{idempotency_key}"
            accepted = await self.redis.set(reservation, "1", nx=True, ex=self.idempotency_ttl)
            if not accepted:
                logger.info(
                    "notification_duplicate_skipped",
                    channel=channel.value,
                    idempotency_key=idempotency_key,
                )
                return None

        job_id = idempotency_key or str(uuid4())
        job = {
            "id": job_id,
            "channel": channel.value,
            "payload": payload,
            "retry": asdict(retry_policy) if retry_policy else None,
            "enqueued_at": datetime.now(UTC).isoformat(),
        }

        try:
            await self.redis.rpush(
                f"{QUEUE_KEY_PREFIX}:{channel.value}", json.dumps(job, default=str)
            )
        except Exception:
            if reservation:
                await self.redis.delete(reservation)
            raise

        logger.info("notification_enqueued", channel=channel.value, job_id=job_id)
        return job_id


def confirmation_key(appointment_id: Any, date: str, hour: str) -> str:
    """Idempotency key of a booking confirmation message."""
    return f"confirmation-{appointment_id}-{date}-{hour}"


def reminder_key(hours_before: int, appointment_id: Any, date: str, hour: str) -> str:
    """Idempotency key of a reminder message."""
    return f"whatsapp{hours_before}-{appointment_id}-{date}-{hour}"


def build_appointment_html(
    *,
    clinic_name: str,
    title: str,
    intro: str,
    patient_name: str,
    practitioner_name: str,
    date: str,
    hour: str,
    reason: str | None = None,
) -> str:
    """Render the HTML body shared by confirmation and reminder emails."""
    reason_row = (
        f"<tr><td><strong>Reason</strong></td><td>{escape(reason)}</td></tr>" if reason else ""
    )
    return (
        "<div style=\"font-family: Arial, sans-serif; max-width: 560px;\">"
        f"<h2>{escape(clinic_name)}</h2>"
        f"<h3>{escape(title)}</h3>"
        f"<p>Hello {escape(patient_name)},</p>"
        f"<p>{escape(intro)}</p>"
        "<table>"
        f"<tr><td><strong>Practitioner</strong></td><td>{escape(practitioner_name)}</td></tr>"
        f"<tr><td><strong>Date</strong></td><td>{escape(date)}</td></tr>"
        f"<tr><td><strong>Time</strong></td><td>{escape(hour)}</td></tr>"
        f"{reason_row}"
        "</table>"
        "<p style=\"color: #888; font-size: 12px;\">"
        "This is an automated message. Please do not reply."
        "</p>"
        "</div>"
    )


def build_confirmation_message(
    *,
    clinic_name: str,
    patient_name: str,
    practitioner_name: str,
    date: str,
    hour: str,
    observation: str | None = None,
) -> str:
    """Text of the booking confirmation message."""
    lines = [
        clinic_name,
        f"Hello {patient_name},",
        "",
        "Your appointment is confirmed.",
        "",
        f"Practitioner: {practitioner_name}",
        f"Date: {date}",
        f"Time: {hour}",
    ]
    if observation:
        lines.append(f"Reason: {observation}")
    lines += [
        "",
        "You can review the details from the patient portal.",
        "",
        "This is an automated message. Please do not reply.",
    ]
    return "\n".join(lines)


def build_reminder_message(
    *,
    clinic_name: str,
    patient_name: str,
    practitioner_name: str,
    date: str,
    hour: str,
    hours_before: int,
) -> str:
    """Text of a reminder message sent ``hours_before`` the appointment."""
    return "\n".join(
        [
            clinic_name,
            f"Hello {patient_name},",
            "",
            f"Reminder: your appointment with {practitioner_name} is in {hours_before} hours.",
            f"Date: {date}",
            f"Time: {hour}",
            "",
            "If you need to cancel or reschedule you can do it from the patient portal.",
            "",
            "This is an automated message. Please do not reply.",
        ]
    )


class NotificationService:
    """Builds notification jobs for appointments and hands them to a transport."""

    def __init__(self, transport: NotificationTransport, settings: Settings):
        """Initialize service with a transport and settings."""
        self.transport = transport
        self.settings = settings
        self.retry_policy = RetryPolicy.from_settings(settings)

    async def send_booking_confirmation(self, appointment: dict[str, Any]) -> None:
        """
        Queue the confirmation email and message for a new booking.

        Each channel is attempted independently. Failures are logged and
        never raised.

        Args:
            appointment: Appointment row joined with ``patient_*`` and
                ``practitioner_*`` fields
        """
        if appointment.get("patient_email"):
            try:
                await self._send_confirmation_email(appointment)
            except Exception as e:
                logger.warning(
                    "confirmation_email_failed",
                    appointment_id=str(appointment["id"]),
                    error=str(e),
                )

        if appointment.get("patient_phone"):
            try:
                await self._send_confirmation_message(appointment)
            except Exception as e:
                logger.warning(
                    "confirmation_message_failed",
                    appointment_id=str(appointment["id"]),
                    error=str(e),
                )

    async def _send_confirmation_email(self, appointment: dict[str, Any]) -> None:
        html = build_appointment_html(
            clinic_name=self.settings.clinic_name,
            title="Appointment confirmed",
            intro="Your appointment has been booked. These are the details:",
            patient_name=appointment.get("patient_name") or "Patient",
            practitioner_name=appointment.get("practitioner_name") or "Practitioner",
            date=appointment["date"],
            hour=appointment["hour"],
            reason=appointment.get("observation") or "Not specified",
        )
        await self.transport.enqueue(
            NotificationChannel.EMAIL,
            {
                "to": appointment["patient_email"],
                "subject": f"Appointment confirmed - {self.settings.clinic_name}",
                "html": html,
            },
            retry_policy=self.retry_policy,
        )

    async def _send_confirmation_message(self, appointment: dict[str, Any]) -> None:
        patient_name = appointment.get("patient_name") or "Patient"
        practitioner_name = appointment.get("practitioner_name") or "Practitioner"
        message = build_confirmation_message(
            clinic_name=self.settings.clinic_name,
            patient_name=patient_name,
            practitioner_name=practitioner_name,
            date=appointment["date"],
            hour=appointment["hour"],
            observation=appointment.get("observation"),
        )
        await self.transport.enqueue(
            NotificationChannel.WHATSAPP,
            {
                "to": appointment["patient_phone"],
                "message": message,
                "name": patient_name,
                "hours_before": 0,
                "practitioner": practitioner_name,
                "date": appointment["date"],
                "hour": appointment["hour"],
            },
            idempotency_key=confirmation_key(
                appointment["id"], appointment["date"], appointment["hour"]
            ),
        )

    async def send_reminder_email(self, appointment: dict[str, Any], hours_before: int) -> None:
        """Queue a reminder email."""
        patient_name = appointment.get("patient_name") or "Patient"
        html = build_appointment_html(
            clinic_name=self.settings.clinic_name,
            title=f"Appointment reminder ({hours_before} h)",
            intro=f"This is a reminder that you have an appointment in {hours_before} hours.",
            patient_name=patient_name,
            practitioner_name=appointment.get("practitioner_name") or "Practitioner",
            date=appointment["date"],
            hour=appointment["hour"],
        )
        await self.transport.enqueue(
            NotificationChannel.EMAIL,
            {
                "to": appointment["patient_email"],
                "subject": f"Reminder: you have an appointment in {hours_before} hours",
                "html": html,
            },
            retry_policy=self.retry_policy,
        )

    async def send_reminder_message(
        self, appointment: dict[str, Any], hours_before: int
    ) -> str | None:
        """Queue a reminder message, deduplicated per appointment and time."""
        patient_name = appointment.get("patient_name") or "Patient"
        practitioner_name = appointment.get("practitioner_name") or "Practitioner"
        message = build_reminder_message(
            clinic_name=self.settings.clinic_name,
            patient_name=patient_name,
            practitioner_name=practitioner_name,
            date=appointment["date"],
            hour=appointment["hour"],
            hours_before=hours_before,
        )
        return await self.transport.enqueue(
            NotificationChannel.WHATSAPP,
            {
                "to": appointment["patient_phone"],
                "message": message,
                "name": patient_name,
                "hours_before": hours_before,
                "practitioner": practitioner_name,
                "date": appointment["date"],
                "hour": appointment["hour"],
            },
            idempotency_key=reminder_key(
                hours_before, appointment["id"], appointment["date"], appointment["hour"]
            ),
        )
