"""Tests for listing bookable start times."""

from datetime import UTC, datetime
from uuid import uuid4

import pytest
from conftest import NEXT_MONDAY, FixedClock, add_appointment, monday_slot

from app.core.exceptions import BadRequestException, NotFoundException
from app.schemas.appointments import AppointmentCreate, AppointmentStatus
from app.schemas.categories import CategoryAvailabilityCreate, CategoryCreate
from app.schemas.slots import Day, ScheduleCreate, SlotSpec, SlotUpdate
from app.services.appointment_service import AppointmentService
from app.services.availability_service import AvailabilityService
from app.services.category_service import CategoryService
from app.services.overlap_validator import OverlapValidator
from app.services.slot_catalog import SlotCatalog


@pytest.fixture
def list_available(session_factory, test_settings, clock):
    """List availability in a short-lived session."""

    async def _list(practitioner_id, date=NEXT_MONDAY, category_id=None, at=None):
        async with session_factory() as db:
            service = AvailabilityService(db, test_settings, at or clock)
            return await service.list_available(practitioner_id, date, category_id)

    return _list


def _times(response) -> list[str]:
    return [entry.time for entry in response.available]


@pytest.mark.asyncio
async def test_free_day_offers_every_step(list_available, practitioner):
    """Test stepping a 09:00-12:00 schedule in 30 minute increments."""
    response = await list_available(practitioner["id"])

    assert response.date == NEXT_MONDAY
    assert _times(response) == ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30"]
    assert response.booked == []
    slot = practitioner["slots"][0]
    assert all(entry.slot_id == slot["id"] for entry in response.available)
    assert all(entry.is_overtime is False for entry in response.available)


@pytest.mark.asyncio
async def test_full_working_day(list_available, make_practitioner):
    """Test that an 8 hour schedule yields 16 half-hour starts."""
    practitioner = await make_practitioner(monday_slot("08:00", "16:00"))

    response = await list_available(practitioner["id"])

    assert len(response.available) == 16
    assert response.available[0].time == "08:00"
    assert response.available[-1].time == "15:30"


@pytest.mark.asyncio
async def test_split_day_offers_both_schedules(list_available, make_practitioner):
    """Test a morning and an afternoon schedule on one slot."""
    practitioner = await make_practitioner(
        SlotSpec(
            day=Day.MONDAY,
            duration=30,
            schedules=[
                ScheduleCreate(opening_hour="09:00", close_hour="13:00"),
                ScheduleCreate(opening_hour="14:00", close_hour="18:00"),
            ],
        )
    )

    response = await list_available(practitioner["id"])

    hours = (9, 10, 11, 12, 14, 15, 16, 17)
    assert _times(response) == [f"{hour:02d}:{minute:02d}" for hour in hours for minute in (0, 30)]
    assert len({entry.schedule_id for entry in response.available}) == 2


@pytest.mark.asyncio
async def test_slot_duration_sets_the_step(list_available, make_practitioner):
    """Test that the slot's own duration drives the step."""
    practitioner = await make_practitioner(monday_slot("09:00", "10:00", duration=20))

    response = await list_available(practitioner["id"])

    assert _times(response) == ["09:00", "09:20", "09:40"]


@pytest.mark.asyncio
async def test_booked_times_are_excluded(list_available, practitioner, patient, session_factory):
    """Test that booked intervals remove every overlapping candidate."""
    await add_appointment(session_factory, practitioner, patient, "10:15", custom_duration=30)
    await add_appointment(session_factory, practitioner, patient, "11:30", status="CANCELLED")

    response = await list_available(practitioner["id"])

    assert _times(response) == ["09:00", "09:30", "11:00", "11:30"]
    assert response.booked == ["10:15"]


@pytest.mark.asyncio
async def test_overtime_is_not_offered_but_bookable(
    list_available, make_practitioner, patient, session_factory, test_settings, clock
):
    """Test that overtime is hidden from listings yet accepted on direct request."""
    practitioner = await make_practitioner(monday_slot("09:00", "12:00", overtime="11:00"))

    response = await list_available(practitioner["id"])
    assert _times(response) == ["09:00", "09:30", "10:00", "10:30"]

    async with session_factory() as db:
        appointment = await AppointmentService(db, test_settings, clock=clock).create_appointment(
            AppointmentCreate(
                practitioner_id=practitioner["id"],
                date=NEXT_MONDAY,
                hour="11:15",
                patient_id=patient["id"],
            )
        )
    assert appointment.status == AppointmentStatus.PENDING
    assert appointment.hour == "11:15"


@pytest.mark.asyncio
async def test_today_skips_past_starts(list_available, practitioner):
    """Test that only starts strictly after now are offered for today."""
    # Monday 2025-01-06 10:10 local
    monday_morning = FixedClock(datetime(2025, 1, 6, 13, 10, tzinfo=UTC))

    response = await list_available(practitioner["id"], at=monday_morning)

    assert _times(response) == ["10:30", "11:00", "11:30"]

    # A start exactly at now is already in the past
    on_the_hour = FixedClock(datetime(2025, 1, 6, 13, 30, tzinfo=UTC))
    response = await list_available(practitioner["id"], at=on_the_hour)
    assert _times(response) == ["11:00", "11:30"]


@pytest.mark.asyncio
async def test_offered_starts_today_are_bookable(
    list_available, practitioner, session_factory, test_settings
):
    """Test that every start offered at an exact minute passes validation."""
    # Monday 2025-01-06 10:00:00 local
    on_the_hour = FixedClock(datetime(2025, 1, 6, 13, 0, tzinfo=UTC))

    response = await list_available(practitioner["id"], at=on_the_hour)

    assert _times(response) == ["10:30", "11:00", "11:30"]
    async with session_factory() as db:
        validator = OverlapValidator(db, test_settings, on_the_hour)
        for entry in response.available:
            assert await validator.validate(practitioner, NEXT_MONDAY, entry.time) == 30
        with pytest.raises(BadRequestException):
            await validator.validate(practitioner, NEXT_MONDAY, "10:00")


@pytest.mark.asyncio
async def test_past_date_offers_nothing(list_available, practitioner):
    """Test that a past Monday has no availability."""
    response = await list_available(practitioner["id"], "2024-12-30")

    assert response.available == []


@pytest.mark.asyncio
async def test_date_defaults_to_today(list_available, practitioner):
    """Test the default date in the configured timezone."""
    response = await list_available(practitioner["id"], None)

    # The fixed clock is a Wednesday, the practitioner only works Mondays
    assert response.date == "2025-01-01"
    assert response.available == []


@pytest.mark.asyncio
async def test_unavailable_slot_offers_nothing(list_available, practitioner, db_session):
    """Test that unavailable slots are skipped."""
    await SlotCatalog(db_session).update_slot(
        practitioner["slots"][0]["id"], SlotUpdate(unavailable=True)
    )
    await db_session.close()

    response = await list_available(practitioner["id"])

    assert response.available == []


@pytest.mark.asyncio
async def test_category_window_restricts_offers(list_available, practitioner, session_factory):
    """Test that a category's weekday window narrows the schedule."""
    async with session_factory() as db:
        service = CategoryService(db)
        restricted = await service.create_category(CategoryCreate(name="Lab", color="#123456"))
        await service.add_availability(
            restricted.id,
            CategoryAvailabilityCreate(day=Day.MONDAY, start_time="10:00", end_time="11:00"),
        )
        tuesday_only = await service.create_category(CategoryCreate(name="Vaccines"))
        await service.add_availability(
            tuesday_only.id,
            CategoryAvailabilityCreate(day=Day.TUESDAY, start_time="08:00", end_time="20:00"),
        )
        open_category = await service.create_category(CategoryCreate(name="General"))

    response = await list_available(practitioner["id"], category_id=restricted.id)
    assert _times(response) == ["10:00", "10:30"]

    response = await list_available(practitioner["id"], category_id=tuesday_only.id)
    assert response.available == []

    response = await list_available(practitioner["id"], category_id=open_category.id)
    assert len(response.available) == 6


@pytest.mark.asyncio
async def test_invalid_inputs(list_available, practitioner):
    """Test malformed dates and unknown references."""
    with pytest.raises(BadRequestException):
        await list_available(practitioner["id"], "2025/01/06")

    with pytest.raises(NotFoundException):
        await list_available(uuid4())

    with pytest.raises(NotFoundException):
        await list_available(practitioner["id"], category_id=uuid4())
