"""Appointment service: booking transactions and appointment lifecycle."""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import Select, and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.core.exceptions import BadRequestException, ConflictException, NotFoundException
from app.core.timeutils import Clock, parse_date, parse_hour, to_minutes, utc_now, weekday_of
from app.models.appointment_slots import (
    appointment_slot_schedule_links,
    appointment_slot_schedules,
    appointment_slots,
)
from app.models.appointments import appointments
from app.models.categories import appointment_categories
from app.models.patients import patients
from app.models.practitioners import practitioners
from app.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentReprogram,
    AppointmentResponse,
    AppointmentStatus,
    ExistingPatient,
    PatientRef,
)
from app.services.availability_resolver import AvailabilityResolver
from app.services.category_service import CategoryService
from app.services.notification_service import NotificationService
from app.services.overlap_validator import OverlapValidator, effective_duration, find_overlap
from app.services.patient_service import PatientService
from app.services.practitioner_service import PractitionerService

logger = structlog.get_logger(__name__)

CONCURRENT_BOOKING_MESSAGE = "The requested time was just booked by someone else, please retry"


def appointment_detail_query() -> Select:
    """Appointments joined with the fields of every referenced entity."""
    return select(
        appointments,
        patients.c.dni.label("patient_dni"),
        patients.c.name.label("patient_name"),
        patients.c.last_name.label("patient_last_name"),
        patients.c.email.label("patient_email"),
        patients.c.phone.label("patient_phone"),
        practitioners.c.name.label("practitioner_name"),
        practitioners.c.last_name.label("practitioner_last_name"),
        practitioners.c.email.label("practitioner_email"),
        practitioners.c.phone.label("practitioner_phone"),
        appointment_slots.c.day.label("slot_day"),
        appointment_slots.c.duration.label("slot_duration"),
        appointment_slots.c.unavailable.label("slot_unavailable"),
        appointment_slot_schedules.c.opening_hour.label("schedule_opening_hour"),
        appointment_slot_schedules.c.close_hour.label("schedule_close_hour"),
        appointment_slot_schedules.c.overtime_start_hour.label("schedule_overtime_start_hour"),
        appointment_categories.c.name.label("category_name"),
        appointment_categories.c.color.label("category_color"),
    ).select_from(
        appointments.join(patients, patients.c.id == appointments.c.patient_id)
        .join(practitioners, practitioners.c.id == appointments.c.practitioner_id)
        .outerjoin(appointment_slots, appointment_slots.c.id == appointments.c.slot_id)
        .outerjoin(
            appointment_slot_schedules,
            appointment_slot_schedules.c.id == appointments.c.schedule_id,
        )
        .outerjoin(
            appointment_categories,
            appointment_categories.c.id == appointments.c.category_id,
        )
    )


def to_appointment_response(row: Any) -> AppointmentResponse:
    """Build the nested appointment response from a detail query row."""
    data = dict(row)
    data["patient"] = {
        "id": data["patient_id"],
        "dni": data["patient_dni"],
        "name": data["patient_name"],
        "last_name": data["patient_last_name"],
        "email": data["patient_email"],
        "phone": data["patient_phone"],
    }
    data["practitioner"] = {
        "id": data["practitioner_id"],
        "name": data["practitioner_name"],
        "last_name": data["practitioner_last_name"],
        "email": data["practitioner_email"],
        "phone": data["practitioner_phone"],
    }
    if data["slot_id"] is not None and data["slot_day"] is not None:
        data["slot"] = {
            "id": data["slot_id"],
            "day": data["slot_day"],
            "duration": data["slot_duration"],
            "unavailable": data["slot_unavailable"],
        }
    if data["schedule_id"] is not None and data["schedule_opening_hour"] is not None:
        data["schedule"] = {
            "id": data["schedule_id"],
            "opening_hour": data["schedule_opening_hour"],
            "close_hour": data["schedule_close_hour"],
            "overtime_start_hour": data["schedule_overtime_start_hour"],
        }
    if data["category_id"] is not None and data["category_name"] is not None:
        data["category"] = {
            "id": data["category_id"],
            "name": data["category_name"],
            "color": data["category_color"],
        }
    return AppointmentResponse.model_validate(data)


class AppointmentService:
    """Service for booking and managing appointments."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        notifications: NotificationService | None = None,
        clock: Clock = utc_now,
    ):
        """Initialize service with database session, settings and collaborators."""
        self.db = db
        self.settings = settings
        self.notifications = notifications
        self.clock = clock
        self.practitioners = PractitionerService(db)
        self.patients = PatientService(db)
        self.categories = CategoryService(db)
        self.resolver = AvailabilityResolver(db)
        self.validator = OverlapValidator(db, settings, clock)

    async def _resolve_patient(self, ref: PatientRef) -> dict[str, Any]:
        if isinstance(ref, ExistingPatient):
            return await self.patients.get_patient(ref.patient_id)
        return await self.patients.find_or_create_patient(ref.data)

    async def _get_live_slot(self, slot_id: UUID) -> dict[str, Any]:
        stmt = select(appointment_slots).where(
            and_(
                appointment_slots.c.id == slot_id,
                appointment_slots.c.deleted_at.is_(None),
            )
        )
        result = await self.db.execute(stmt)
        slot = result.mappings().first()
        if not slot:
            raise NotFoundException("Appointment slot not found")
        return dict(slot)

    async def _ensure_schedule_in_slot(self, slot_id: UUID, schedule_id: UUID) -> None:
        result = await self.db.execute(
            select(appointment_slot_schedules.c.id).where(
                appointment_slot_schedules.c.id == schedule_id
            )
        )
        if result.first() is None:
            raise NotFoundException("Appointment slot schedule not found")

        result = await self.db.execute(
            select(appointment_slot_schedule_links.c.slot_id).where(
                and_(
                    appointment_slot_schedule_links.c.slot_id == slot_id,
                    appointment_slot_schedule_links.c.schedule_id == schedule_id,
                )
            )
        )
        if result.first() is None:
            raise BadRequestException("The schedule does not belong to the selected slot")

    async def _check_slot_placement(
        self,
        practitioner_id: UUID,
        date: str,
        slot_id: UUID,
        schedule_id: UUID,
    ) -> dict[str, Any]:
        slot = await self._get_live_slot(slot_id)

        if slot["practitioner_id"] != practitioner_id:
            raise BadRequestException("The slot does not belong to the practitioner")

        day = weekday_of(date)
        if slot["day"] != day.value:
            raise BadRequestException(
                f"The date falls on {day.value} but the slot is for {slot['day']}"
            )

        await self._ensure_schedule_in_slot(slot_id, schedule_id)
        return slot

    async def _resolve_category(self, data: AppointmentCreate) -> UUID | None:
        if data.category_id is not None:
            category = await self.categories.get_category(data.category_id)
            return category["id"]
        if data.category is not None:
            category = await self.categories.find_or_create_category(data.category)
            return category["id"]
        return None

    async def _fetch_detail(self, appointment_id: UUID, include_deleted: bool = False) -> Any:
        conditions = [appointments.c.id == appointment_id]
        if not include_deleted:
            conditions.append(appointments.c.deleted_at.is_(None))

        result = await self.db.execute(appointment_detail_query().where(and_(*conditions)))
        row = result.mappings().first()
        if not row:
            raise NotFoundException("Appointment not found")
        return row

    async def create_appointment(self, data: AppointmentCreate) -> AppointmentResponse:
        """
        Book an appointment as a single transaction.

        Resolves the patient, the practitioner and the slot/schedule (auto
        resolving them from date and hour when not given), validates the
        interval and inserts the appointment. Confirmation notifications are
        queued after commit and never fail the booking.

        Args:
            data: Booking request

        Returns:
            Fully loaded appointment

        Raises:
            BadRequestException: On invalid input or a rejected interval
            NotFoundException: If a referenced entity does not exist
            ConflictException: If a concurrent booking took the same start
        """
        patient_ref = data.patient_ref()
        parse_date(data.date)
        hour = parse_hour(data.hour).strftime("%H:%M")

        try:
            patient = await self._resolve_patient(patient_ref)
            practitioner = await self.practitioners.get_practitioner(
                data.practitioner_id, lock=True
            )

            slot_id, schedule_id = data.slot_id, data.schedule_id
            if slot_id is None or schedule_id is None:
                resolved = await self.resolver.resolve(practitioner["id"], data.date, hour)
                if resolved is None:
                    raise BadRequestException("No availability for this date and time")
                slot_id, schedule_id = resolved.slot_id, resolved.schedule_id

            await self._check_slot_placement(practitioner["id"], data.date, slot_id, schedule_id)
            category_id = await self._resolve_category(data)

            duration = await self.validator.validate(
                practitioner,
                data.date,
                hour,
                duration=data.custom_duration,
                slot_id=slot_id,
            )

            now = datetime.now(UTC)
            stmt = (
                appointments.insert()
                .values(
                    date=data.date,
                    hour=hour,
                    status=(data.status or AppointmentStatus.PENDING).value,
                    observation=data.observation,
                    custom_duration=duration,
                    practitioner_id=practitioner["id"],
                    patient_id=patient["id"],
                    slot_id=slot_id,
                    schedule_id=schedule_id,
                    category_id=category_id,
                    created_at=now,
                    updated_at=now,
                )
                .returning(appointments.c.id)
            )
            result = await self.db.execute(stmt)
            appointment_id = result.scalar_one()
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(
                "appointment_booking_conflict",
                practitioner_id=str(data.practitioner_id),
                date=data.date,
                hour=hour,
                error=str(e.orig),
            )
            raise ConflictException(CONCURRENT_BOOKING_MESSAGE) from e
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "appointment_created",
            appointment_id=str(appointment_id),
            practitioner_id=str(practitioner["id"]),
            date=data.date,
            hour=hour,
            duration=duration,
        )

        row = await self._fetch_detail(appointment_id)

        if self.notifications:
            try:
                await self.notifications.send_booking_confirmation(dict(row))
            except Exception as e:
                # Log error but don't fail the booking
                logger.warning("failed_to_send_booking_confirmation", error=str(e))

        return to_appointment_response(row)

    async def reprogram_appointment(
        self, appointment_id: UUID, data: AppointmentReprogram
    ) -> AppointmentResponse:
        """
        Move an appointment to a new date, hour, slot and schedule.

        The new interval is validated with the moved appointment excluded
        from the overlap scan. Nothing is persisted on failure.

        Args:
            appointment_id: Appointment to move
            data: New placement

        Returns:
            Updated appointment

        Raises:
            BadRequestException: If the new placement is rejected
            NotFoundException: If the appointment or slot does not exist
        """
        parse_date(data.date)
        hour = parse_hour(data.hour).strftime("%H:%M")

        try:
            current = await self._fetch_detail(appointment_id)
            practitioner = await self.practitioners.get_practitioner(
                current["practitioner_id"], lock=True
            )

            await self._check_slot_placement(
                practitioner["id"], data.date, data.slot_id, data.schedule_id
            )

            await self.validator.validate(
                practitioner,
                data.date,
                hour,
                duration=current["custom_duration"],
                slot_id=data.slot_id,
                exclude_appointment_id=appointment_id,
            )

            values: dict[str, Any] = {
                "date": data.date,
                "hour": hour,
                "slot_id": data.slot_id,
                "schedule_id": data.schedule_id,
                "reprogrammed": True,
                # Reminders are owed again for the new time
                "email_3h": None,
                "email_24h": None,
                "whatsapp_3h": None,
                "whatsapp_24h": None,
                "updated_at": datetime.now(UTC),
            }
            if data.observation is not None:
                values["observation"] = data.observation

            await self.db.execute(
                update(appointments).where(appointments.c.id == appointment_id).values(**values)
            )
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictException(CONCURRENT_BOOKING_MESSAGE) from e
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "appointment_reprogrammed",
            appointment_id=str(appointment_id),
            from_date=current["date"],
            from_hour=current["hour"],
            date=data.date,
            hour=hour,
        )
        return await self.get_appointment(appointment_id)

    async def get_appointment(
        self, appointment_id: UUID, include_deleted: bool = False
    ) -> AppointmentResponse:
        """
        Get a fully loaded appointment.

        Raises:
            NotFoundException: If appointment not found
        """
        row = await self._fetch_detail(appointment_id, include_deleted)
        return to_appointment_response(row)

    async def list_appointments(self, filters: AppointmentFilters) -> AppointmentListResponse:
        """
        List appointments with filtering and pagination.

        Args:
            filters: Filter and pagination parameters

        Returns:
            Paginated list ordered by date and hour
        """
        conditions = []
        if filters.practitioner_id:
            conditions.append(appointments.c.practitioner_id == filters.practitioner_id)
        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)
        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)
        if filters.date:
            parse_date(filters.date)
            conditions.append(appointments.c.date == filters.date)
        if filters.from_date:
            parse_date(filters.from_date)
            conditions.append(appointments.c.date >= filters.from_date)
        if filters.to_date:
            parse_date(filters.to_date)
            conditions.append(appointments.c.date <= filters.to_date)
        if not filters.include_deleted:
            conditions.append(appointments.c.deleted_at.is_(None))

        where = and_(*conditions) if conditions else None

        count_stmt = select(func.count()).select_from(appointments)
        query = appointment_detail_query()
        if where is not None:
            count_stmt = count_stmt.where(where)
            query = query.where(where)

        total = (await self.db.execute(count_stmt)).scalar_one()

        offset = (filters.page - 1) * filters.page_size
        query = (
            query.order_by(appointments.c.date, appointments.c.hour)
            .offset(offset)
            .limit(filters.page_size)
        )
        result = await self.db.execute(query)
        items = [to_appointment_response(row) for row in result.mappings().all()]

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=items,
        )

    async def _ensure_interval_free(self, row: Any) -> None:
        practitioner = await self.practitioners.get_practitioner(row["practitioner_id"], lock=True)
        start = to_minutes(row["hour"])
        end = start + effective_duration(
            row["custom_duration"],
            row["slot_duration"],
            practitioner["default_duration"],
            self.settings.default_appointment_duration,
        )
        booked = await self.validator.booked_intervals(
            practitioner, row["date"], exclude_appointment_id=row["id"]
        )
        conflict = find_overlap(start, end, booked)
        if conflict is not None:
            raise BadRequestException(
                f"The appointment overlaps an existing appointment at {conflict.hour}"
            )

    async def update_status(
        self, appointment_id: UUID, status: AppointmentStatus
    ) -> AppointmentResponse:
        """
        Change an appointment's status.

        Moving a cancelled appointment back to an active status re-checks
        that its interval is still free.

        Raises:
            NotFoundException: If appointment not found
            BadRequestException: If reactivating would overlap another booking
        """
        try:
            row = await self._fetch_detail(appointment_id)
            if (
                row["status"] == AppointmentStatus.CANCELLED.value
                and status != AppointmentStatus.CANCELLED
            ):
                await self._ensure_interval_free(row)

            await self.db.execute(
                update(appointments)
                .where(appointments.c.id == appointment_id)
                .values(status=status.value, updated_at=datetime.now(UTC))
            )
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictException(CONCURRENT_BOOKING_MESSAGE) from e
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "appointment_status_updated",
            appointment_id=str(appointment_id),
            old_status=row["status"],
            new_status=status.value,
        )
        return await self.get_appointment(appointment_id)

    async def cancel_appointment(self, appointment_id: UUID, reprogrammed: bool = False) -> None:
        """
        Soft delete an appointment, releasing its interval.

        Args:
            appointment_id: Appointment to cancel
            reprogrammed: Mark the appointment as replaced by a new booking

        Raises:
            NotFoundException: If appointment not found
        """
        await self._fetch_detail(appointment_id)

        now = datetime.now(UTC)
        values: dict[str, Any] = {"deleted_at": now, "updated_at": now}
        if reprogrammed:
            values["reprogrammed"] = True

        await self.db.execute(
            update(appointments).where(appointments.c.id == appointment_id).values(**values)
        )
        await self.db.commit()
        logger.info(
            "appointment_cancelled",
            appointment_id=str(appointment_id),
            reprogrammed=reprogrammed,
        )

    async def recover_appointment(self, appointment_id: UUID) -> AppointmentResponse:
        """
        Undo the soft delete of an appointment.

        Raises:
            NotFoundException: If appointment not found
            BadRequestException: If it is not deleted or its interval was taken
        """
        try:
            row = await self._fetch_detail(appointment_id, include_deleted=True)
            if row["deleted_at"] is None:
                raise BadRequestException("Appointment is not cancelled")

            if row["status"] != AppointmentStatus.CANCELLED.value:
                await self._ensure_interval_free(row)

            await self.db.execute(
                update(appointments)
                .where(appointments.c.id == appointment_id)
                .values(deleted_at=None, updated_at=datetime.now(UTC))
            )
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictException(CONCURRENT_BOOKING_MESSAGE) from e
        except Exception:
            await self.db.rollback()
            raise

        logger.info("appointment_recovered", appointment_id=str(appointment_id))
        return await self.get_appointment(appointment_id)
