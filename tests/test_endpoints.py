"""Tests for the HTTP API."""

import pytest
from conftest import CRON_SECRET, NEXT_MONDAY, add_appointment, booking_payload
from httpx import AsyncClient

from app.config import Settings, get_settings
from app.main import app

PRACTITIONER = {
    "name": "Ana",
    "last_name": "Lopez",
    "email": "ana@example.com",
    "default_duration": 30,
    "slots": [
        {
            "day": "MONDAY",
            "duration": 30,
            "schedules": [{"opening_hour": "09:00", "close_hour": "12:00"}],
        },
        {
            "day": "WEDNESDAY",
            "schedules": [
                {"opening_hour": "14:00", "close_hour": "18:00", "overtime_start_hour": "17:00"}
            ],
        },
    ],
}


async def _create_practitioner(client: AsyncClient, **overrides) -> dict:
    response = await client.post("/api/v1/practitioners/", json={**PRACTITIONER, **overrides})
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    """Test health check endpoint."""
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data

    response = await client.get("/api/v1/ping")
    assert response.json() == {"message": "pong"}


@pytest.mark.asyncio
async def test_create_and_get_practitioner(client: AsyncClient) -> None:
    """Test onboarding a practitioner with slots."""
    created = await _create_practitioner(client)

    assert [slot["day"] for slot in created["slots"]] == ["MONDAY", "WEDNESDAY"]
    assert created["slots"][1]["schedules"][0]["overtime_start_hour"] == "17:00"

    response = await client.get(f"/api/v1/practitioners/{created['id']}")
    assert response.status_code == 200
    assert response.json()["email"] == "ana@example.com"

    response = await client.get("/api/v1/practitioners/00000000-0000-0000-0000-000000000000")
    assert response.status_code == 404
    assert response.json()["error"] == "NotFoundException"


@pytest.mark.asyncio
async def test_create_practitioner_rejects_bad_schedule(client: AsyncClient) -> None:
    """Test that invalid schedules fail onboarding as a whole."""
    slots = [{"day": "MONDAY", "schedules": [{"opening_hour": "12:00", "close_hour": "09:00"}]}]
    response = await client.post("/api/v1/practitioners/", json={**PRACTITIONER, "slots": slots})
    assert response.status_code == 400

    # Nothing was stored, so the email is still free
    await _create_practitioner(client)


@pytest.mark.asyncio
async def test_duplicate_practitioner_email(client: AsyncClient) -> None:
    """Test that practitioner emails are unique."""
    await _create_practitioner(client)

    response = await client.post("/api/v1/practitioners/", json=PRACTITIONER)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_availability_endpoint(client: AsyncClient) -> None:
    """Test listing available times over HTTP."""
    practitioner = await _create_practitioner(client)

    response = await client.get(
        f"/api/v1/practitioners/{practitioner['id']}/availability", params={"date": NEXT_MONDAY}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["date"] == NEXT_MONDAY
    assert [entry["time"] for entry in data["available"]][:2] == ["09:00", "09:30"]
    assert len(data["available"]) == 6

    response = await client.get(
        f"/api/v1/practitioners/{practitioner['id']}/availability", params={"date": "2025-13-01"}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_find_or_create_patient(client: AsyncClient, patient_data: dict) -> None:
    """Test that posting the same patient twice returns one record."""
    first = await client.post("/api/v1/patients/", json=patient_data)
    second = await client.post("/api/v1/patients/", json={**patient_data, "name": "Other"})

    assert first.status_code == 200
    assert first.json()["email"] == "juan.perez@example.com"
    assert second.json()["id"] == first.json()["id"]

    response = await client.get(f"/api/v1/patients/{first.json()['id']}")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_booking_lifecycle(client: AsyncClient, patient_data: dict, transport) -> None:
    """Test booking, conflict, reprogram, status change, cancel and recover."""
    practitioner = await _create_practitioner(client)
    slot = practitioner["slots"][0]

    response = await client.post(
        "/api/v1/appointments/", json=booking_payload(practitioner, patient_data)
    )
    assert response.status_code == 201, response.text
    appointment = response.json()
    assert appointment["status"] == "PENDING"
    assert appointment["patient"]["dni"] == patient_data["dni"]
    assert len(transport.jobs) == 2

    # Same start again
    response = await client.post(
        "/api/v1/appointments/", json=booking_payload(practitioner, patient_data)
    )
    assert response.status_code == 400
    assert "overlaps" in response.json()["message"]

    response = await client.post(
        f"/api/v1/appointments/{appointment['id']}/reprogram",
        json={
            "date": NEXT_MONDAY,
            "hour": "11:00",
            "slot_id": slot["id"],
            "schedule_id": slot["schedules"][0]["id"],
        },
    )
    assert response.status_code == 200
    assert response.json()["hour"] == "11:00"
    assert response.json()["reprogrammed"] is True

    response = await client.patch(
        f"/api/v1/appointments/{appointment['id']}/status", json={"status": "APPROVED"}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "APPROVED"

    response = await client.delete(f"/api/v1/appointments/{appointment['id']}")
    assert response.status_code == 204

    response = await client.get(f"/api/v1/appointments/{appointment['id']}")
    assert response.status_code == 404

    response = await client.get(
        f"/api/v1/appointments/{appointment['id']}", params={"include_deleted": True}
    )
    assert response.status_code == 200
    assert response.json()["deleted_at"] is not None

    response = await client.post(f"/api/v1/appointments/{appointment['id']}/recover")
    assert response.status_code == 200
    assert response.json()["deleted_at"] is None


@pytest.mark.asyncio
async def test_booking_validation_errors(client: AsyncClient, patient_data: dict) -> None:
    """Test request errors of the booking endpoint."""
    practitioner = await _create_practitioner(client)

    response = await client.post(
        "/api/v1/appointments/",
        json={"practitioner_id": practitioner["id"], "date": NEXT_MONDAY, "hour": "10:00"},
    )
    assert response.status_code == 400

    response = await client.post("/api/v1/appointments/", json={"date": NEXT_MONDAY})
    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"

    response = await client.post(
        "/api/v1/appointments/", json=booking_payload(practitioner, patient_data, hour="25:00")
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_list_appointments(client: AsyncClient, patient_data: dict) -> None:
    """Test listing appointments with filters."""
    practitioner = await _create_practitioner(client)
    for hour in ("09:00", "10:00"):
        response = await client.post(
            "/api/v1/appointments/",
            json=booking_payload(practitioner, patient_data, hour=hour),
        )
        assert response.status_code == 201

    response = await client.get(
        "/api/v1/appointments/",
        params={"practitioner_id": practitioner["id"], "status": "PENDING"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert [item["hour"] for item in data["items"]] == ["09:00", "10:00"]


@pytest.mark.asyncio
async def test_slot_endpoints(client: AsyncClient) -> None:
    """Test slot create, merge, update, delete and restore."""
    practitioner = await _create_practitioner(client)
    slot_id = practitioner["slots"][0]["id"]

    response = await client.post(
        "/api/v1/slots/",
        json={
            "practitioner_id": practitioner["id"],
            "day": "MONDAY",
            "schedules": [{"opening_hour": "14:00", "close_hour": "16:00"}],
        },
    )
    assert response.status_code == 201
    assert response.json()["id"] == slot_id
    assert len(response.json()["schedules"]) == 2

    response = await client.post(
        "/api/v1/slots/",
        params={"merge": False},
        json={
            "practitioner_id": practitioner["id"],
            "day": "MONDAY",
            "schedules": [{"opening_hour": "14:00", "close_hour": "16:00"}],
        },
    )
    assert response.status_code == 201
    assert response.json()["id"] != slot_id

    response = await client.get(
        "/api/v1/slots/", params={"practitioner_id": practitioner["id"], "day": "MONDAY"}
    )
    assert len(response.json()) == 2

    response = await client.patch(f"/api/v1/slots/{slot_id}", json={"duration": 15})
    assert response.status_code == 200
    assert response.json()["duration"] == 15

    response = await client.delete(f"/api/v1/slots/{slot_id}")
    assert response.status_code == 204
    assert (await client.get(f"/api/v1/slots/{slot_id}")).status_code == 404

    response = await client.post(f"/api/v1/slots/{slot_id}/restore")
    assert response.status_code == 200
    response = await client.post(f"/api/v1/slots/{slot_id}/restore")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_category_endpoints(client: AsyncClient) -> None:
    """Test categories and their weekday windows."""
    response = await client.post("/api/v1/categories/", json={"name": "Lab", "color": "#123456"})
    assert response.status_code == 201
    category_id = response.json()["id"]

    window = {"day": "MONDAY", "start_time": "10:00", "end_time": "11:00"}
    response = await client.post(f"/api/v1/categories/{category_id}/availability", json=window)
    assert response.status_code == 201

    response = await client.post(f"/api/v1/categories/{category_id}/availability", json=window)
    assert response.status_code == 409

    response = await client.post(
        f"/api/v1/categories/{category_id}/availability",
        json={"day": "FRIDAY", "start_time": "11:00", "end_time": "10:00"},
    )
    assert response.status_code == 400

    response = await client.get(f"/api/v1/categories/{category_id}/availability")
    assert [w["day"] for w in response.json()] == ["MONDAY"]


@pytest.mark.asyncio
async def test_cron_requires_secret(client: AsyncClient) -> None:
    """Test that internal triggers reject missing or wrong secrets."""
    url = "/api/v1/internal/cron/appointments/reminders-24h"

    assert (await client.post(url)).status_code == 403
    assert (await client.post(url, headers={"X-Cron-Secret": "wrong"})).status_code == 403
    response = await client.post(url, headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_cron_disabled_without_secret(client: AsyncClient, test_settings: Settings) -> None:
    """Test that every trigger is rejected while no secret is configured."""
    app.dependency_overrides[get_settings] = lambda: test_settings.model_copy(
        update={"cron_secret": None}
    )

    response = await client.post(
        "/api/v1/internal/cron/appointments/absent-daily", headers={"X-Cron-Secret": CRON_SECRET}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_cron_triggers(
    client: AsyncClient, cron_headers: dict, practitioner, patient, session_factory
) -> None:
    """Test running the sweeps through the internal triggers."""
    await add_appointment(session_factory, practitioner, patient, "10:00", date="2024-12-31")
    await add_appointment(session_factory, practitioner, patient, "12:00", date="2025-01-02")

    response = await client.post(
        "/api/v1/internal/cron/appointments/absent-daily", headers=cron_headers
    )
    assert response.status_code == 200
    assert response.json() == {"updated": 1}

    response = await client.post(
        "/api/v1/internal/cron/appointments/reminders-24h",
        headers={"Authorization": f"Bearer {CRON_SECRET}"},
    )
    assert response.status_code == 200
    summary = response.json()
    assert summary["hours_before"] == 24
    assert summary["in_window"] == 1
    assert summary["messages_queued"] == 1

    response = await client.post(
        "/api/v1/internal/cron/appointments/reminders-3h", headers=cron_headers
    )
    assert response.status_code == 200
    assert response.json()["in_window"] == 0
