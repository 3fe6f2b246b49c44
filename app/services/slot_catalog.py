"""Slot catalog: recurring weekly availability of practitioners."""

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BadRequestException, NotFoundException
from app.core.timeutils import parse_hour
from app.models.appointment_slots import (
    appointment_slot_schedule_links,
    appointment_slot_schedules,
    appointment_slots,
)
from app.models.practitioners import practitioners
from app.schemas.slots import (
    Day,
    ScheduleCreate,
    ScheduleResponse,
    ScheduleUpdate,
    SlotCreate,
    SlotResponse,
    SlotSpec,
    SlotUpdate,
)

logger = structlog.get_logger(__name__)

SLOT_DAY_ORDER = [day.value for day in Day]


def validate_schedules(schedules: Sequence[ScheduleCreate]) -> None:
    """
    Validate schedule hour ordering.

    Args:
        schedules: Schedules to validate

    Raises:
        BadRequestException: If the list is empty or any window is invalid
    """
    if not schedules:
        raise BadRequestException("At least one schedule is required")

    for schedule in schedules:
        validate_schedule_hours(
            schedule.opening_hour, schedule.close_hour, schedule.overtime_start_hour
        )


def validate_schedule_hours(
    opening_hour: str | None, close_hour: str | None, overtime_start_hour: str | None
) -> None:
    """Check opening < close and, when present, opening < overtime < close."""
    if not opening_hour or not close_hour:
        raise BadRequestException("Each schedule must define opening_hour and close_hour")

    opening = parse_hour(opening_hour)
    close = parse_hour(close_hour)
    if opening >= close:
        raise BadRequestException("opening_hour must be before close_hour")

    if overtime_start_hour:
        overtime = parse_hour(overtime_start_hour)
        if not opening < overtime < close:
            raise BadRequestException(
                "overtime_start_hour must be between opening_hour and close_hour"
            )


def unique_schedules(schedules: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Drop repeated schedule rows and reject distinct rows sharing one range.

    Raises:
        BadRequestException: If two schedules have the same opening and close hours
    """
    by_id: dict[UUID, dict[str, Any]] = {}
    ranges: set[tuple[str, str]] = set()
    for schedule in schedules:
        if schedule["id"] in by_id:
            continue
        key = (schedule["opening_hour"], schedule["close_hour"])
        if key in ranges:
            raise BadRequestException(f"Duplicate schedule range {key[0]}-{key[1]}")
        ranges.add(key)
        by_id[schedule["id"]] = schedule
    return list(by_id.values())


class SlotCatalog:
    """Service for managing appointment slots and their schedules."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def _ensure_practitioner(self, practitioner_id: UUID) -> None:
        stmt = select(practitioners.c.id).where(
            and_(
                practitioners.c.id == practitioner_id,
                practitioners.c.deleted_at.is_(None),
            )
        )
        result = await self.db.execute(stmt)
        if result.first() is None:
            raise NotFoundException("Practitioner not found")

    async def _find_schedule(
        self, opening_hour: str, close_hour: str, overtime_start_hour: str | None
    ) -> Any | None:
        overtime_clause = (
            appointment_slot_schedules.c.overtime_start_hour == overtime_start_hour
            if overtime_start_hour
            else appointment_slot_schedules.c.overtime_start_hour.is_(None)
        )
        stmt = select(appointment_slot_schedules).where(
            and_(
                appointment_slot_schedules.c.opening_hour == opening_hour,
                appointment_slot_schedules.c.close_hour == close_hour,
                overtime_clause,
            )
        )
        result = await self.db.execute(stmt)
        return result.mappings().first()

    async def find_or_create_schedule(
        self, opening_hour: str, close_hour: str, overtime_start_hour: str | None = None
    ) -> dict[str, Any]:
        """
        Get the shared schedule row for an hour triple, creating it if needed.

        Concurrent creators of the same triple are serialized by the unique
        index: the loser re-reads the winner's row.
        """
        overtime_start_hour = overtime_start_hour or None
        existing = await self._find_schedule(opening_hour, close_hour, overtime_start_hour)
        if existing:
            return dict(existing)

        stmt = (
            insert(appointment_slot_schedules)
            .values(
                opening_hour=opening_hour,
                close_hour=close_hour,
                overtime_start_hour=overtime_start_hour,
            )
            .returning(appointment_slot_schedules)
        )
        try:
            async with self.db.begin_nested():
                result = await self.db.execute(stmt)
                row = result.mappings().one()
        except IntegrityError:
            existing = await self._find_schedule(opening_hour, close_hour, overtime_start_hour)
            if existing is None:
                raise
            return dict(existing)

        logger.info(
            "schedule_created",
            schedule_id=str(row["id"]),
            opening_hour=opening_hour,
            close_hour=close_hour,
        )
        return dict(row)

    async def find_or_create_schedules(
        self, schedules: Iterable[ScheduleCreate]
    ) -> list[dict[str, Any]]:
        """Resolve each schedule to its shared row."""
        return [
            await self.find_or_create_schedule(
                s.opening_hour, s.close_hour, s.overtime_start_hour
            )
            for s in schedules
        ]

    async def _load_schedules(self, slot_ids: Sequence[UUID]) -> dict[UUID, list[dict[str, Any]]]:
        if not slot_ids:
            return {}

        stmt = (
            select(
                appointment_slot_schedule_links.c.slot_id,
                appointment_slot_schedules,
            )
            .join(
                appointment_slot_schedules,
                appointment_slot_schedules.c.id == appointment_slot_schedule_links.c.schedule_id,
            )
            .where(appointment_slot_schedule_links.c.slot_id.in_(slot_ids))
            .order_by(
                appointment_slot_schedules.c.opening_hour,
                appointment_slot_schedules.c.close_hour,
            )
        )
        result = await self.db.execute(stmt)

        grouped: dict[UUID, list[dict[str, Any]]] = {slot_id: [] for slot_id in slot_ids}
        for row in result.mappings().all():
            data = dict(row)
            grouped[data.pop("slot_id")].append(data)
        return grouped

    async def _link_schedules(self, slot_id: UUID, schedule_ids: Iterable[UUID]) -> None:
        rows = [{"slot_id": slot_id, "schedule_id": sid} for sid in schedule_ids]
        if rows:
            await self.db.execute(insert(appointment_slot_schedule_links), rows)

    def _to_response(self, slot: Any, schedules: list[dict[str, Any]]) -> SlotResponse:
        data = dict(slot)
        data["schedules"] = [ScheduleResponse.model_validate(s) for s in schedules]
        return SlotResponse.model_validate(data)

    async def _insert_slot(
        self, practitioner_id: UUID, data: SlotSpec, schedules: list[dict[str, Any]]
    ) -> UUID:
        now = datetime.now(UTC)
        values: dict[str, Any] = {
            "practitioner_id": practitioner_id,
            "day": data.day.value,
            "created_at": now,
            "updated_at": now,
            "unavailable": data.unavailable,
            "location_id": data.location_id,
        }
        if data.duration is not None:
            values["duration"] = data.duration

        stmt = insert(appointment_slots).values(**values).returning(appointment_slots.c.id)
        result = await self.db.execute(stmt)
        slot_id = result.scalar_one()

        await self._link_schedules(slot_id, [s["id"] for s in schedules])
        return slot_id

    async def add_slot(
        self,
        practitioner_id: UUID,
        data: SlotSpec,
        merge: bool = True,
    ) -> UUID:
        """
        Add a slot for a practitioner inside the current transaction.

        With ``merge`` the schedules are folded into the practitioner's
        existing slot for that weekday, keeping only ranges that are not
        already present. Without it a new, parallel slot is always created.

        Args:
            practitioner_id: Owner of the slot
            data: Slot definition
            merge: Merge into an existing slot for the same weekday

        Returns:
            ID of the created or merged slot

        Raises:
            BadRequestException: If schedules are invalid, repeat a range or all
                duplicate existing ranges
        """
        validate_schedules(data.schedules)
        schedules = unique_schedules(await self.find_or_create_schedules(data.schedules))

        if not merge:
            slot_id = await self._insert_slot(practitioner_id, data, schedules)
            logger.info("slot_created", slot_id=str(slot_id), day=data.day.value, merged=False)
            return slot_id

        stmt = (
            select(appointment_slots.c.id)
            .where(
                and_(
                    appointment_slots.c.practitioner_id == practitioner_id,
                    appointment_slots.c.day == data.day.value,
                    appointment_slots.c.deleted_at.is_(None),
                )
            )
            .order_by(appointment_slots.c.created_at, appointment_slots.c.id)
            .limit(1)
        )
        result = await self.db.execute(stmt)
        existing_id = result.scalar_one_or_none()

        if existing_id is None:
            slot_id = await self._insert_slot(practitioner_id, data, schedules)
            logger.info("slot_created", slot_id=str(slot_id), day=data.day.value, merged=False)
            return slot_id

        existing = (await self._load_schedules([existing_id]))[existing_id]
        known_ranges = {(s["opening_hour"], s["close_hour"]) for s in existing}

        new_ids: list[UUID] = []
        for schedule in schedules:
            key = (schedule["opening_hour"], schedule["close_hour"])
            if key not in known_ranges:
                known_ranges.add(key)
                new_ids.append(schedule["id"])

        if not new_ids:
            raise BadRequestException(
                f"All schedules sent for {data.day.value} already exist"
            )

        await self._link_schedules(existing_id, new_ids)
        await self.db.execute(
            update(appointment_slots)
            .where(appointment_slots.c.id == existing_id)
            .values(updated_at=datetime.now(UTC))
        )
        logger.info(
            "slot_merged",
            slot_id=str(existing_id),
            day=data.day.value,
            added_schedules=len(new_ids),
        )
        return existing_id

    async def create_slot(self, data: SlotCreate) -> SlotResponse:
        """
        Create a slot, merging into an existing one for the same weekday.

        Args:
            data: Slot creation data

        Returns:
            The created or merged slot

        Raises:
            NotFoundException: If practitioner not found
            BadRequestException: If schedules are invalid or all duplicated
        """
        await self._ensure_practitioner(data.practitioner_id)
        slot_id = await self.add_slot(data.practitioner_id, data, merge=True)
        await self.db.commit()
        return await self.get_slot(slot_id)

    async def create_slot_without_merge(self, data: SlotCreate) -> SlotResponse:
        """Create a new slot even if one already exists for the weekday."""
        await self._ensure_practitioner(data.practitioner_id)
        slot_id = await self.add_slot(data.practitioner_id, data, merge=False)
        await self.db.commit()
        return await self.get_slot(slot_id)

    async def _get_slot_row(self, slot_id: UUID, include_deleted: bool = False) -> Any:
        conditions = [appointment_slots.c.id == slot_id]
        if not include_deleted:
            conditions.append(appointment_slots.c.deleted_at.is_(None))

        result = await self.db.execute(select(appointment_slots).where(and_(*conditions)))
        row = result.mappings().first()
        if not row:
            raise NotFoundException("Appointment slot not found")
        return row

    async def get_slot(self, slot_id: UUID, include_deleted: bool = False) -> SlotResponse:
        """
        Get a slot with its schedules.

        Raises:
            NotFoundException: If slot not found or soft-deleted
        """
        row = await self._get_slot_row(slot_id, include_deleted)
        schedules = await self._load_schedules([slot_id])
        return self._to_response(row, schedules[slot_id])

    async def list_slots(
        self,
        practitioner_id: UUID | None = None,
        day: Day | None = None,
        include_deleted: bool = False,
    ) -> list[SlotResponse]:
        """List slots ordered by weekday and creation time."""
        conditions = []
        if practitioner_id:
            conditions.append(appointment_slots.c.practitioner_id == practitioner_id)
        if day:
            conditions.append(appointment_slots.c.day == day.value)
        if not include_deleted:
            conditions.append(appointment_slots.c.deleted_at.is_(None))

        stmt = select(appointment_slots).order_by(
            appointment_slots.c.created_at, appointment_slots.c.id
        )
        if conditions:
            stmt = stmt.where(and_(*conditions))

        result = await self.db.execute(stmt)
        rows = result.mappings().all()
        rows = sorted(rows, key=lambda r: SLOT_DAY_ORDER.index(r["day"]))

        schedules = await self._load_schedules([r["id"] for r in rows])
        return [self._to_response(r, schedules[r["id"]]) for r in rows]

    async def _resolve_schedule_update(self, item: ScheduleUpdate) -> dict[str, Any]:
        if item.id:
            result = await self.db.execute(
                select(appointment_slot_schedules).where(
                    appointment_slot_schedules.c.id == item.id
                )
            )
            current = result.mappings().first()
            if not current:
                raise BadRequestException(f"Schedule with id {item.id} not found")

            opening = item.opening_hour or current["opening_hour"]
            close = item.close_hour or current["close_hour"]
            overtime = (
                item.overtime_start_hour
                if "overtime_start_hour" in item.model_fields_set
                else current["overtime_start_hour"]
            )
        elif item.opening_hour and item.close_hour:
            opening, close, overtime = item.opening_hour, item.close_hour, item.overtime_start_hour
        else:
            raise BadRequestException(
                "Each schedule item must include either id or both opening_hour and close_hour"
            )

        validate_schedule_hours(opening, close, overtime)
        return await self.find_or_create_schedule(opening, close, overtime)

    async def update_slot(self, slot_id: UUID, data: SlotUpdate) -> SlotResponse:
        """
        Patch a slot.

        When ``schedules`` is sent it replaces the whole schedule set (an
        empty list clears it). Each item is resolved either by ``id``,
        applying any hour overrides, or by raw hours. Repeats of one schedule
        are dropped. Two different schedules with the same range are rejected.

        Args:
            slot_id: Slot to update
            data: Fields to change

        Returns:
            Updated slot

        Raises:
            NotFoundException: If slot or new practitioner not found
            BadRequestException: If a schedule item is invalid or unknown,
                or two items share a range
        """
        await self._get_slot_row(slot_id)

        values: dict[str, Any] = {}
        fields = data.model_fields_set

        if "practitioner_id" in fields and data.practitioner_id is not None:
            await self._ensure_practitioner(data.practitioner_id)
            values["practitioner_id"] = data.practitioner_id
        if "day" in fields and data.day is not None:
            values["day"] = data.day.value
        if "duration" in fields and data.duration is not None:
            values["duration"] = data.duration
        if "unavailable" in fields and data.unavailable is not None:
            values["unavailable"] = data.unavailable
        if "location_id" in fields:
            values["location_id"] = data.location_id

        if "schedules" in fields and data.schedules is not None:
            resolved = unique_schedules(
                [await self._resolve_schedule_update(item) for item in data.schedules]
            )

            await self.db.execute(
                delete(appointment_slot_schedule_links).where(
                    appointment_slot_schedule_links.c.slot_id == slot_id
                )
            )
            await self._link_schedules(slot_id, [s["id"] for s in resolved])

        values["updated_at"] = datetime.now(UTC)
        await self.db.execute(
            update(appointment_slots).where(appointment_slots.c.id == slot_id).values(**values)
        )
        await self.db.commit()

        logger.info("slot_updated", slot_id=str(slot_id), fields=sorted(fields))
        return await self.get_slot(slot_id)

    async def soft_delete_slot(self, slot_id: UUID) -> None:
        """
        Soft delete a slot.

        Raises:
            NotFoundException: If slot not found or already deleted
        """
        await self._get_slot_row(slot_id)

        now = datetime.now(UTC)
        await self.db.execute(
            update(appointment_slots)
            .where(appointment_slots.c.id == slot_id)
            .values(deleted_at=now, updated_at=now)
        )
        await self.db.commit()
        logger.info("slot_soft_deleted", slot_id=str(slot_id))

    async def restore_slot(self, slot_id: UUID) -> SlotResponse:
        """
        Restore a soft-deleted slot.

        Raises:
            NotFoundException: If slot not found
            BadRequestException: If slot is not soft-deleted
        """
        row = await self._get_slot_row(slot_id, include_deleted=True)
        if row["deleted_at"] is None:
            raise BadRequestException("Appointment slot is not soft-deleted")

        await self.db.execute(
            update(appointment_slots)
            .where(appointment_slots.c.id == slot_id)
            .values(deleted_at=None, updated_at=datetime.now(UTC))
        )
        await self.db.commit()
        logger.info("slot_restored", slot_id=str(slot_id))
        return await self.get_slot(slot_id)
