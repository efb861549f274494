"""Tests for appointment endpoints."""

from uuid import uuid4

import pytest

from app.core.security import create_access_token
from app.services.appointment_store import StoreError
from app.services.memory_store import MemoryUnitOfWork
from tests.conftest import DOCTOR_ID, OTHER_DOCTOR_ID, at

BASE = "/api/v1/appointments/"


async def create(client, headers, payload) -> dict:
    response = await client.post(BASE, json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_create_appointment(client, doctor_headers, booking_payload, memory_store):
    """Test booking an appointment."""
    response = await client.post(BASE, json=booking_payload, headers=doctor_headers)

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "SCHEDULED"
    assert data["doctor_id"] == str(DOCTOR_ID)
    assert data["duration_minutes"] == 30
    assert data["notes"] == "Follow-up visit"
    assert len(memory_store.audit_entries) == 1


@pytest.mark.asyncio
async def test_create_appointment_conflict(client, admin_headers, booking_payload):
    """Test that an overlapping booking is refused."""
    await create(client, admin_headers, booking_payload)

    response = await client.post(
        BASE, json={**booking_payload, "scheduled_at": at(9, 15)}, headers=admin_headers
    )

    assert response.status_code == 409
    assert response.json()["code"] == "SLOT_CONFLICT"


@pytest.mark.asyncio
async def test_create_appointment_back_to_back(client, admin_headers, booking_payload):
    await create(client, admin_headers, booking_payload)

    response = await client.post(
        BASE, json={**booking_payload, "scheduled_at": at(9, 30)}, headers=admin_headers
    )

    assert response.status_code == 201


@pytest.mark.asyncio
async def test_create_appointment_as_nurse(client, nurse_headers, booking_payload):
    """Test that nurses cannot book."""
    response = await client.post(BASE, json=booking_payload, headers=nurse_headers)

    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_create_appointment_bad_timestamp(client, admin_headers, booking_payload):
    response = await client.post(
        BASE, json={**booking_payload, "scheduled_at": "next tuesday"}, headers=admin_headers
    )

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_INPUT"


@pytest.mark.asyncio
async def test_create_appointment_bad_duration(client, admin_headers, booking_payload):
    response = await client.post(
        BASE, json={**booking_payload, "duration_minutes": 5}, headers=admin_headers
    )

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_INPUT"


@pytest.mark.asyncio
async def test_create_appointment_malformed_body(client, admin_headers):
    response = await client.post(BASE, json={"doctor_id": "x"}, headers=admin_headers)

    assert response.status_code == 422
    assert response.json()["code"] == "INVALID_INPUT"


@pytest.mark.asyncio
async def test_requires_authentication(client, booking_payload):
    response = await client.post(BASE, json=booking_payload)

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_rejects_invalid_token(client):
    response = await client.get(BASE, headers={"Authorization": "Bearer not-a-token"})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_get_appointment(client, admin_headers, nurse_headers, booking_payload):
    created = await create(client, admin_headers, booking_payload)

    response = await client.get(f"{BASE}{created['id']}", headers=nurse_headers)

    assert response.status_code == 200
    assert response.json() == created


@pytest.mark.asyncio
async def test_get_appointment_not_found(client, admin_headers):
    response = await client.get(f"{BASE}{uuid4()}", headers=admin_headers)

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_list_appointments(client, admin_headers, booking_payload):
    await create(client, admin_headers, booking_payload)
    await create(client, admin_headers, {**booking_payload, "scheduled_at": at(11)})
    await create(
        client,
        admin_headers,
        {**booking_payload, "doctor_id": str(OTHER_DOCTOR_ID)},
    )

    response = await client.get(
        BASE,
        params={"doctor_id": str(DOCTOR_ID), "page_size": 1},
        headers=admin_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["page_size"] == 1
    assert data["items"][0]["scheduled_at"].startswith("2030-01-02T11:00")


@pytest.mark.asyncio
async def test_list_appointments_by_status_and_date(client, admin_headers, booking_payload):
    first = await create(client, admin_headers, booking_payload)
    await create(client, admin_headers, {**booking_payload, "scheduled_at": at(9, day=3)})
    await client.patch(
        f"{BASE}{first['id']}/status", json={"status": "CONFIRMED"}, headers=admin_headers
    )

    confirmed = await client.get(BASE, params={"status": "CONFIRMED"}, headers=admin_headers)
    later = await client.get(
        BASE, params={"from_date": "2030-01-03T00:00:00+00:00"}, headers=admin_headers
    )

    assert [item["id"] for item in confirmed.json()["items"]] == [first["id"]]
    assert later.json()["total"] == 1


@pytest.mark.asyncio
async def test_list_appointments_bad_date(client, admin_headers):
    response = await client.get(BASE, params={"from_date": "yesterday"}, headers=admin_headers)

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_reschedule_appointment(client, nurse_headers, admin_headers, booking_payload):
    created = await create(client, admin_headers, booking_payload)

    response = await client.put(
        f"{BASE}{created['id']}",
        json={"scheduled_at": at(14), "duration_minutes": 60},
        headers=nurse_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["scheduled_at"].startswith("2030-01-02T14:00")
    assert data["duration_minutes"] == 60
    assert data["notes"] == created["notes"]


@pytest.mark.asyncio
async def test_reschedule_cancelled_appointment(client, admin_headers, booking_payload):
    created = await create(client, admin_headers, booking_payload)
    await client.patch(
        f"{BASE}{created['id']}/status", json={"status": "CANCELLED"}, headers=admin_headers
    )

    response = await client.put(
        f"{BASE}{created['id']}", json={"scheduled_at": at(14)}, headers=admin_headers
    )

    assert response.status_code == 400
    assert response.json()["code"] == "APPOINTMENT_LOCKED"


@pytest.mark.asyncio
async def test_update_status(client, doctor_headers, booking_payload):
    created = await create(client, doctor_headers, booking_payload)

    response = await client.patch(
        f"{BASE}{created['id']}/status", json={"status": "CONFIRMED"}, headers=doctor_headers
    )

    assert response.status_code == 200
    assert response.json()["status"] == "CONFIRMED"


@pytest.mark.asyncio
async def test_update_status_invalid_transition(client, admin_headers, booking_payload):
    created = await create(client, admin_headers, booking_payload)

    response = await client.patch(
        f"{BASE}{created['id']}/status", json={"status": "COMPLETED"}, headers=admin_headers
    )

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_TRANSITION"


@pytest.mark.asyncio
async def test_update_status_unknown_value(client, admin_headers, booking_payload):
    created = await create(client, admin_headers, booking_payload)

    response = await client.patch(
        f"{BASE}{created['id']}/status", json={"status": "ARCHIVED"}, headers=admin_headers
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_delete_appointment(client, admin_headers, booking_payload, memory_store):
    created = await create(client, admin_headers, booking_payload)

    response = await client.delete(f"{BASE}{created['id']}", headers=admin_headers)

    assert response.status_code == 204
    assert memory_store.appointments == {}
    assert memory_store.audit_entries[-1].action == "DELETE_APPOINTMENT"


@pytest.mark.asyncio
async def test_delete_appointment_as_doctor(client, doctor_headers, booking_payload):
    created = await create(client, doctor_headers, booking_payload)

    response = await client.delete(f"{BASE}{created['id']}", headers=doctor_headers)

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_delete_missing_appointment(client, admin_headers):
    response = await client.delete(f"{BASE}{uuid4()}", headers=admin_headers)

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_store_unavailable(client, admin_headers, booking_payload, monkeypatch):
    async def unreachable(self):
        raise StoreError("connection refused")

    monkeypatch.setattr(MemoryUnitOfWork, "__aenter__", unreachable)

    response = await client.post(BASE, json=booking_payload, headers=admin_headers)

    assert response.status_code == 500
    assert response.json()["code"] == "STORE_UNAVAILABLE"


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_detailed_health_memory_backend(client):
    response = await client.get("/api/v1/health/detailed")

    assert response.status_code == 200
    assert response.json()["store_backend"] == "memory"
    assert response.json()["database"] == "not_used"


@pytest.mark.asyncio
async def test_ping(client):
    response = await client.get("/api/v1/ping")

    assert response.json() == {"message": "pong"}


@pytest.mark.asyncio
async def test_list_appointments_naive_dates(client, admin_headers, booking_payload):
    """Dates without an offset are read in the clinic timezone."""
    await create(client, admin_headers, booking_payload)

    response = await client.get(
        BASE,
        params={"from_date": "2030-01-02T00:00:00", "to_date": "2030-01-02T23:59:59"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.json()["total"] == 1


@pytest.mark.asyncio
async def test_unknown_role_is_forbidden(client, booking_payload):
    token = create_access_token(data={"sub": "clerk-1", "role": "RECEPTIONIST"})

    response = await client.post(
        BASE, json=booking_payload, headers={"Authorization": f"Bearer {token}"}
    )

    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_reschedule_clears_notes_with_null(client, admin_headers, booking_payload):
    created = await create(client, admin_headers, booking_payload)

    kept = await client.put(
        f"{BASE}{created['id']}", json={"duration_minutes": 45}, headers=admin_headers
    )
    cleared = await client.put(f"{BASE}{created['id']}", json={"notes": None}, headers=admin_headers)

    assert kept.json()["notes"] == "Follow-up visit"
    assert cleared.status_code == 200
    assert cleared.json()["notes"] is None
    assert cleared.json()["duration_minutes"] == 45
