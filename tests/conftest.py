import os
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

# Settings are read at import time, so point them at a throwaway database first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, insert, select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from app.config import Settings, get_settings
from app.database import get_db
from app.dependencies import get_clock, get_notification_transport, get_session_factory
from app.main import app
from app.models import metadata
from app.models.appointments import appointments
from app.schemas.patients import PatientCreate
from app.schemas.practitioners import PractitionerCreate
from app.schemas.slots import Day, ScheduleCreate, SlotSpec
from app.services.notification_service import NotificationChannel, NotificationService
from app.services.patient_service import PatientService
from app.services.practitioner_service import PractitionerService

# Load environment variables from .env file
load_dotenv()

# Wednesday 2025-01-01 12:00 in Buenos Aires (UTC-3)
FIXED_NOW = datetime(2025, 1, 1, 15, 0, tzinfo=UTC)
NEXT_MONDAY = "2025-01-06"
CRON_SECRET = "test-cron-secret"


def _enable_sqlite_transactions(engine: AsyncEngine) -> None:
    """
    Let SQLAlchemy drive SQLite transactions itself.

    pysqlite's implicit BEGIN breaks SAVEPOINT, and ``BEGIN IMMEDIATE``
    makes concurrent writers wait on each other instead of failing.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class FixedClock:
    """Clock returning a settable instant."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingTransport:
    """In-memory notification transport that honours idempotency keys."""

    def __init__(self) -> None:
        self.jobs: list[dict[str, Any]] = []
        self.seen_keys: set[str] = set()
        self.fail_channels: set[NotificationChannel] = set()

    async def enqueue(
        self,
        channel: NotificationChannel,
        payload: dict[str, Any],
        *,
        idempotency_key: str | None = None,
        retry_policy: Any = None,
    ) -> str | None:
        if channel in self.fail_channels:
            raise ConnectionError(f"{channel.value} queue unavailable")
        if idempotency_key:
            if idempotency_key in self.seen_keys:
                return None
            self.seen_keys.add(idempotency_key)

        job_id = idempotency_key or f"job-{len(self.jobs) + 1}"
        self.jobs.append(
            {
                "id": job_id,
                "channel": channel,
                "payload": payload,
                "idempotency_key": idempotency_key,
            }
        )
        return job_id

    def by_channel(self, channel: NotificationChannel) -> list[dict[str, Any]]:
        return [job for job in self.jobs if job["channel"] == channel]


@pytest.fixture
def test_settings() -> Settings:
    """Settings for tests: fixed timezone, no retry delay, cron enabled."""
    return Settings(
        DATABASE_URL="sqlite+aiosqlite://",
        APP_TIMEZONE="America/Argentina/Buenos_Aires",
        DEFAULT_APPOINTMENT_DURATION=30,
        REMINDER_SWEEP_MINUTES=5,
        DB_RETRY_BASE_DELAY_MS=0,
        CRON_SECRET=CRON_SECRET,
        SCHEDULER_ENABLED=False,
        CLINIC_NAME="Test Clinic",
    )


@pytest.fixture
def clock() -> FixedClock:
    """Clock pinned to Wednesday 2025-01-01 12:00 local time."""
    return FixedClock()


@pytest.fixture
def transport() -> RecordingTransport:
    """Recording notification transport."""
    return RecordingTransport()


@pytest.fixture
def notifications(transport: RecordingTransport, test_settings: Settings) -> NotificationService:
    """Notification service bound to the recording transport."""
    return NotificationService(transport, test_settings)


@pytest_asyncio.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh database per test. SQLite in tmp_path unless TEST_DATABASE_URL is set."""
    url = os.getenv("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    # Use NullPool to avoid event loop issues between tests
    engine = create_async_engine(url, echo=False, poolclass=NullPool)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_transactions(engine)

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    test_settings: Settings,
    transport: RecordingTransport,
    clock: FixedClock,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_notification_transport] = lambda: transport
    app.dependency_overrides[get_clock] = lambda: clock

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def cron_headers() -> dict:
    """Headers accepted by the internal cron triggers."""
    return {"X-Cron-Secret": CRON_SECRET}


def monday_slot(
    opening: str = "09:00",
    close: str = "12:00",
    overtime: str | None = None,
    duration: int | None = 30,
) -> SlotSpec:
    """Monday slot with a single schedule."""
    return SlotSpec(
        day=Day.MONDAY,
        duration=duration,
        schedules=[
            ScheduleCreate(opening_hour=opening, close_hour=close, overtime_start_hour=overtime)
        ],
    )


@pytest.fixture
def make_practitioner(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Any]:
    """Factory creating a practitioner with the given slots."""

    async def _make(*slots: SlotSpec, email: str | None = None, **fields: Any) -> dict:
        data = PractitionerCreate(
            name=fields.pop("name", "Ana"),
            last_name=fields.pop("last_name", "Lopez"),
            email=email,
            slots=list(slots),
            **fields,
        )
        async with session_factory() as db:
            practitioner = await PractitionerService(db).create_practitioner(data)
        return practitioner.model_dump()

    return _make


@pytest_asyncio.fixture
async def practitioner(make_practitioner: Callable[..., Any]) -> dict:
    """Practitioner with a Monday 09:00-12:00 slot of 30 minutes."""
    return await make_practitioner(monday_slot(), email="ana.lopez@example.com")


@pytest.fixture
def patient_data() -> dict:
    """Inline patient payload."""
    return {
        "dni": "30123456",
        "name": "Juan",
        "last_name": "Perez",
        "email": "Juan.Perez@Example.com",
        "phone": "+54 11 5555-0000",
    }


def booking_payload(
    practitioner: dict, patient: dict, hour: str = "10:00", date: str = NEXT_MONDAY, **extra: Any
) -> dict:
    """JSON body of a booking request."""
    return {
        "practitioner_id": str(practitioner["id"]),
        "date": date,
        "hour": hour,
        "patient": patient,
        **extra,
    }


@pytest_asyncio.fixture
async def patient(
    session_factory: async_sessionmaker[AsyncSession], patient_data: dict
) -> dict:
    """Stored patient."""
    async with session_factory() as db:
        stored = await PatientService(db).find_or_create_patient(PatientCreate(**patient_data))
        await db.commit()
    return stored


async def add_appointment(
    session_factory: async_sessionmaker[AsyncSession],
    practitioner: dict,
    patient: dict,
    hour: str,
    date: str = NEXT_MONDAY,
    **values: Any,
) -> UUID:
    """Insert an appointment row directly, bypassing booking checks."""
    slot = practitioner["slots"][0] if practitioner["slots"] else None
    row = {
        "practitioner_id": practitioner["id"],
        "patient_id": patient["id"],
        "date": date,
        "hour": hour,
        "status": "PENDING",
        "slot_id": slot["id"] if slot else None,
        "schedule_id": slot["schedules"][0]["id"] if slot else None,
        **values,
    }
    async with session_factory() as db:
        result = await db.execute(insert(appointments).values(**row).returning(appointments.c.id))
        appointment_id = result.scalar_one()
        await db.commit()
    return appointment_id


async def fetch_appointment(
    session_factory: async_sessionmaker[AsyncSession], appointment_id: UUID
) -> dict:
    """Read an appointment row in a short-lived session."""
    async with session_factory() as db:
        result = await db.execute(select(appointments).where(appointments.c.id == appointment_id))
        return dict(result.mappings().one())
