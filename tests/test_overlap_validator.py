"""Tests for appointment interval validation."""

from uuid import uuid4

import pytest
from conftest import NEXT_MONDAY, add_appointment, monday_slot

from app.core.exceptions import BadRequestException
from app.services.overlap_validator import (
    BookedInterval,
    OverlapValidator,
    effective_duration,
    find_overlap,
)


def test_touching_intervals_do_not_overlap():
    """Test half-open interval semantics."""
    booked = BookedInterval(appointment_id=uuid4(), hour="10:00", start=600, end=630)

    assert booked.overlaps(615, 645)
    assert booked.overlaps(570, 601)
    assert booked.overlaps(590, 640)
    assert not booked.overlaps(630, 660)
    assert not booked.overlaps(570, 600)


def test_find_overlap_returns_first_conflict():
    """Test that the first intersecting interval is reported."""
    first = BookedInterval(uuid4(), "09:00", 540, 570)
    second = BookedInterval(uuid4(), "10:00", 600, 660)

    assert find_overlap(610, 620, [first, second]) is second
    assert find_overlap(570, 600, [first, second]) is None


@pytest.mark.parametrize(
    ("custom", "slot", "practitioner", "expected"),
    [
        (45, 30, 20, 45),
        (None, 30, 20, 30),
        (None, None, 20, 20),
        (None, None, None, 15),
        (0, 0, 0, 15),
    ],
)
def test_effective_duration_precedence(custom, slot, practitioner, expected):
    """Test override, slot, practitioner, default fallback order."""
    assert effective_duration(custom, slot, practitioner, 15) == expected


@pytest.fixture
def validator(db_session, test_settings, clock) -> OverlapValidator:
    """Validator with the fixed clock."""
    return OverlapValidator(db_session, test_settings, clock)


@pytest.mark.asyncio
async def test_validate_free_interval(validator, practitioner):
    """Test that a free start inside the schedule is accepted."""
    duration = await validator.validate(
        practitioner, NEXT_MONDAY, "10:00", slot_id=practitioner["slots"][0]["id"]
    )
    assert duration == 30


@pytest.mark.asyncio
async def test_validate_rejects_past_start(validator, practitioner):
    """Test that the start must be strictly after now."""
    with pytest.raises(BadRequestException) as exc_info:
        await validator.validate(practitioner, "2024-12-30", "10:00")
    assert "past" in exc_info.value.message

    # The fixed clock is 2025-01-01 12:00 local
    with pytest.raises(BadRequestException):
        await validator.validate(practitioner, "2025-01-01", "12:00")


@pytest.mark.asyncio
async def test_validate_rejects_day_without_slots(validator, practitioner):
    """Test booking on a weekday the practitioner does not work."""
    with pytest.raises(BadRequestException) as exc_info:
        await validator.validate(practitioner, "2025-01-07", "10:00")
    assert "TUESDAY" in exc_info.value.message


@pytest.mark.asyncio
async def test_validate_interval_must_fit_window(validator, practitioner):
    """Test that the end of the interval must not pass the close hour."""
    assert await validator.validate(practitioner, NEXT_MONDAY, "11:30") == 30

    with pytest.raises(BadRequestException) as exc_info:
        await validator.validate(practitioner, NEXT_MONDAY, "11:45")
    assert "outside" in exc_info.value.message

    with pytest.raises(BadRequestException):
        await validator.validate(practitioner, NEXT_MONDAY, "08:45")

    with pytest.raises(BadRequestException):
        await validator.validate(practitioner, NEXT_MONDAY, "11:00", duration=90)


@pytest.mark.asyncio
async def test_validate_rejects_overlap(validator, practitioner, patient, session_factory):
    """Test that intersecting an existing appointment is rejected."""
    await add_appointment(session_factory, practitioner, patient, "10:00")

    with pytest.raises(BadRequestException) as exc_info:
        await validator.validate(practitioner, NEXT_MONDAY, "10:15")
    assert "10:00" in exc_info.value.message

    with pytest.raises(BadRequestException):
        await validator.validate(practitioner, NEXT_MONDAY, "09:45")

    # Touching on either side is fine
    assert await validator.validate(practitioner, NEXT_MONDAY, "10:30") == 30
    assert await validator.validate(practitioner, NEXT_MONDAY, "09:30") == 30


@pytest.mark.asyncio
async def test_validate_uses_existing_appointment_duration(
    validator, practitioner, patient, session_factory
):
    """Test that each booked interval keeps its own duration."""
    await add_appointment(session_factory, practitioner, patient, "10:00", custom_duration=60)

    with pytest.raises(BadRequestException):
        await validator.validate(practitioner, NEXT_MONDAY, "10:30")
    assert await validator.validate(practitioner, NEXT_MONDAY, "11:00") == 30


@pytest.mark.asyncio
async def test_validate_ignores_cancelled_and_deleted(
    validator, practitioner, patient, session_factory
):
    """Test that cancelled or soft-deleted appointments release their interval."""
    await add_appointment(session_factory, practitioner, patient, "10:00", status="CANCELLED")
    await add_appointment(
        session_factory, practitioner, patient, "10:30", deleted_at=validator.clock()
    )

    assert await validator.validate(practitioner, NEXT_MONDAY, "10:00") == 30
    assert await validator.validate(practitioner, NEXT_MONDAY, "10:30") == 30


@pytest.mark.asyncio
async def test_validate_excludes_moved_appointment(
    validator, practitioner, patient, session_factory
):
    """Test that an appointment does not conflict with itself when moved."""
    appointment_id = await add_appointment(session_factory, practitioner, patient, "10:00")

    with pytest.raises(BadRequestException):
        await validator.validate(practitioner, NEXT_MONDAY, "10:15")

    duration = await validator.validate(
        practitioner, NEXT_MONDAY, "10:15", exclude_appointment_id=appointment_id
    )
    assert duration == 30


@pytest.mark.asyncio
async def test_validate_accepts_overtime_tail(db_session, test_settings, clock, make_practitioner):
    """Test that the overtime part of a schedule stays bookable on request."""
    practitioner = await make_practitioner(monday_slot(overtime="11:00"))
    validator = OverlapValidator(db_session, test_settings, clock)

    assert await validator.validate(practitioner, NEXT_MONDAY, "11:15") == 30