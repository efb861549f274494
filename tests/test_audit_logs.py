"""Tests for audit log endpoints."""

import pytest

from tests.conftest import at

BASE = "/api/v1/audit-logs/"


@pytest.mark.asyncio
async def test_admin_lists_audit_trail(client, admin_headers, booking_payload):
    created = await client.post("/api/v1/appointments/", json=booking_payload, headers=admin_headers)
    appointment_id = created.json()["id"]
    await client.patch(
        f"/api/v1/appointments/{appointment_id}/status",
        json={"status": "CONFIRMED"},
        headers=admin_headers,
    )

    response = await client.get(BASE, headers=admin_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert [item["action"] for item in data["items"]] == ["UPDATE_STATUS", "CREATE"]
    assert data["items"][1]["details"]["patient_name"] == "Jane Roe"
    assert data["items"][0]["details"]["previous_status"] == "SCHEDULED"


@pytest.mark.asyncio
async def test_filter_by_action_and_appointment(client, admin_headers, booking_payload):
    first = await client.post("/api/v1/appointments/", json=booking_payload, headers=admin_headers)
    await client.post(
        "/api/v1/appointments/",
        json={**booking_payload, "scheduled_at": at(12)},
        headers=admin_headers,
    )

    response = await client.get(
        BASE,
        params={"action": "CREATE", "appointment_id": first.json()["id"]},
        headers=admin_headers,
    )

    assert response.json()["total"] == 1


@pytest.mark.asyncio
async def test_rejected_requests_are_not_audited(client, admin_headers, nurse_headers, booking_payload):
    await client.post("/api/v1/appointments/", json=booking_payload, headers=nurse_headers)

    response = await client.get(BASE, headers=admin_headers)

    assert response.json()["total"] == 0


@pytest.mark.asyncio
async def test_doctor_cannot_read_audit_trail(client, doctor_headers):
    response = await client.get(BASE, headers=doctor_headers)

    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"
