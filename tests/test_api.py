"""
Integration tests for the REST API endpoints.

The app is built with prebuilt components on a throwaway SQLite database,
so the lifespan hook (Redis, lock sweeper) never runs.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.api.app import create_app
from src.api.middleware import limiter
from src.domain.enums import BookingStatus
from tests.conftest import ADMIN, CUSTOMER, DRIVER, OTHER_DRIVER


def _headers(actor) -> dict[str, str]:
    return {
        "X-Actor-Id": actor.id,
        "X-Actor-Role": actor.role.value,
        "X-Client-Source": actor.source,
    }


DRIVER_H = _headers(DRIVER)
OTHER_DRIVER_H = _headers(OTHER_DRIVER)
CUSTOMER_H = _headers(CUSTOMER)
ADMIN_H = _headers(ADMIN)

NEAR_PICKUP_JSON = {"latitude": 12.4974, "longitude": 78.5605}
FAR_PICKUP_JSON = {"latitude": 12.5004, "longitude": 78.5604}
NEAR_DROPOFF_JSON = {"latitude": 12.5186, "longitude": 78.2138}


# ── Fixture ───────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(components):
    """AsyncClient backed by SQLite-wired components."""
    limiter.reset()
    app = create_app(components)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ── Tests ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_missing_identity_is_401(client: AsyncClient, make_booking):
    await make_booking()
    resp = await client.get("/api/v1/bookings/bk-1")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_unknown_role_is_401(client: AsyncClient, make_booking):
    await make_booking()
    resp = await client.get(
        "/api/v1/bookings/bk-1", headers={"X-Actor-Id": "x", "X-Actor-Role": "dispatcher"}
    )
    assert resp.status_code == 401


# ── Reads ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_get_booking(client: AsyncClient, make_booking):
    await make_booking()

    resp = await client.get("/api/v1/bookings/bk-1", headers=CUSTOMER_H)

    assert resp.status_code == 200
    data = resp.json()
    assert data["id"] == "bk-1"
    assert data["status"] == "accepted"
    assert data["driver_id"] == DRIVER.id
    assert data["sequence"] == 0
    assert data["pickup_lat"] == 12.4974


@pytest.mark.asyncio
async def test_get_booking_not_found(client: AsyncClient):
    resp = await client.get("/api/v1/bookings/missing", headers=ADMIN_H)
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "BOOKING_NOT_FOUND"


@pytest.mark.asyncio
async def test_get_booking_forbidden(client: AsyncClient, make_booking):
    await make_booking()
    resp = await client.get("/api/v1/bookings/bk-1", headers=OTHER_DRIVER_H)
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "ACCESS_DENIED"


# ── Status updates ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_arrival_at_pickup(client: AsyncClient, make_booking):
    await make_booking(status=BookingStatus.ACCEPTED)

    resp = await client.patch(
        "/api/v1/bookings/bk-1/status",
        json={"status": "driver_arrived", "location": NEAR_PICKUP_JSON, "event_id": "evt-1"},
        headers=DRIVER_H,
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "driver_arrived"
    assert data["previous_status"] == "accepted"
    assert data["sequence"] == 1
    assert data["idempotent"] is False


@pytest.mark.asyncio
async def test_retry_with_same_event_id(client: AsyncClient, make_booking):
    await make_booking(status=BookingStatus.ACCEPTED)
    body = {"status": "driver_arrived", "location": NEAR_PICKUP_JSON, "event_id": "evt-1"}

    await client.patch("/api/v1/bookings/bk-1/status", json=body, headers=DRIVER_H)
    resp = await client.patch("/api/v1/bookings/bk-1/status", json=body, headers=DRIVER_H)

    assert resp.status_code == 200
    assert resp.json()["idempotent"] is True
    assert resp.json()["sequence"] == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", ["sometime-today", 1772443800000])
async def test_client_timestamp_forms_are_accepted(client: AsyncClient, make_booking, raw):
    await make_booking(status=BookingStatus.PICKED_UP)

    resp = await client.patch(
        "/api/v1/bookings/bk-1/status",
        json={"status": "in_transit", "event_timestamp": raw},
        headers=DRIVER_H,
    )

    assert resp.status_code == 200
    assert resp.json()["status"] == "in_transit"


@pytest.mark.asyncio
async def test_admin_cannot_accept_through_status_update(client: AsyncClient, make_booking):
    await make_booking(status=BookingStatus.PENDING, driver_id=None)

    resp = await client.patch(
        "/api/v1/bookings/bk-1/status", json={"status": "accepted"}, headers=ADMIN_H
    )

    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "FORBIDDEN_STATUS"


@pytest.mark.asyncio
async def test_outside_radius_is_400_with_distance(client: AsyncClient, make_booking):
    await make_booking(status=BookingStatus.ACCEPTED)

    resp = await client.patch(
        "/api/v1/bookings/bk-1/status",
        json={"status": "driver_arrived", "location": FAR_PICKUP_JSON},
        headers=DRIVER_H,
    )

    assert resp.status_code == 400
    detail = resp.json()["detail"]
    assert detail["code"] == "OUTSIDE_CONFIRMATION_RADIUS"
    assert detail["limit_m"] == 100.0
    assert detail["distance_m"] > 300
    assert "You are currently" in detail["detail"]


@pytest.mark.asyncio
async def test_location_required_is_400(client: AsyncClient, make_booking):
    await make_booking(status=BookingStatus.ACCEPTED)
    resp = await client.patch(
        "/api/v1/bookings/bk-1/status", json={"status": "picked_up"}, headers=DRIVER_H
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "LOCATION_REQUIRED"


@pytest.mark.asyncio
async def test_delivered_via_status_endpoint_is_forbidden(client: AsyncClient, make_booking):
    await make_booking(status=BookingStatus.AT_DROPOFF)
    resp = await client.patch(
        "/api/v1/bookings/bk-1/status",
        json={"status": "delivered", "location": NEAR_DROPOFF_JSON},
        headers=DRIVER_H,
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "FORBIDDEN_STATUS"


@pytest.mark.asyncio
async def test_invalid_transition_is_409(client: AsyncClient, make_booking):
    await make_booking(status=BookingStatus.PENDING)
    resp = await client.patch(
        "/api/v1/bookings/bk-1/status", json={"status": "in_transit"}, headers=DRIVER_H
    )
    assert resp.status_code == 409
    detail = resp.json()["detail"]
    assert detail["code"] == "INVALID_STATE_TRANSITION"
    assert detail["current_status"] == "pending"


@pytest.mark.asyncio
async def test_unknown_status_is_400(client: AsyncClient, make_booking):
    await make_booking()
    resp = await client.patch(
        "/api/v1/bookings/bk-1/status", json={"status": "teleported"}, headers=DRIVER_H
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "INVALID_STATUS"


@pytest.mark.asyncio
async def test_out_of_range_coordinates_are_422(client: AsyncClient, make_booking):
    await make_booking()
    resp = await client.patch(
        "/api/v1/bookings/bk-1/status",
        json={"status": "driver_arrived", "location": {"latitude": 95.0, "longitude": 78.5}},
        headers=DRIVER_H,
    )
    assert resp.status_code == 422


# ── Acceptance ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_accept_without_body(client: AsyncClient, make_booking):
    await make_booking(status=BookingStatus.PENDING, driver_id=None)

    resp = await client.post("/api/v1/bookings/bk-1/accept", headers=DRIVER_H)

    assert resp.status_code == 200
    assert resp.json()["status"] == "accepted"


@pytest.mark.asyncio
async def test_accept_while_locked_is_423(client: AsyncClient, make_booking, components):
    await make_booking(status=BookingStatus.PENDING, driver_id=None)
    await components.locks.acquire("bk-1", OTHER_DRIVER.id)

    resp = await client.post(
        "/api/v1/bookings/bk-1/accept", json={"event_id": "acc-1"}, headers=DRIVER_H
    )

    assert resp.status_code == 423
    assert resp.json()["detail"]["code"] == "BOOKING_LOCKED"


# ── Completion, payment, cancellation ─────────────────────────────────


@pytest.mark.asyncio
async def test_complete_twice(client: AsyncClient, make_booking):
    await make_booking(status=BookingStatus.AT_DROPOFF)
    body = {
        "location": NEAR_DROPOFF_JSON,
        "photo_ref": "photos/bk-1.jpg",
        "recipient_name": "Asha",
    }

    first = await client.post("/api/v1/bookings/bk-1/complete", json=body, headers=DRIVER_H)
    second = await client.post("/api/v1/bookings/bk-1/complete", json=body, headers=DRIVER_H)

    assert first.status_code == 200
    assert first.json()["status"] == "delivered"
    assert first.json()["idempotent"] is False
    assert second.status_code == 200
    assert second.json()["idempotent"] is True

    booking = await client.get("/api/v1/bookings/bk-1", headers=DRIVER_H)
    assert booking.json()["delivery_verified"] is True


@pytest.mark.asyncio
async def test_confirm_payment(client: AsyncClient, make_booking):
    await make_booking(status=BookingStatus.DELIVERED)
    resp = await client.post("/api/v1/bookings/bk-1/confirm-payment", headers=DRIVER_H)
    assert resp.status_code == 200
    assert resp.json()["status"] == "completed"


@pytest.mark.asyncio
async def test_cancel_and_history(client: AsyncClient, make_booking):
    await make_booking(status=BookingStatus.PENDING, driver_id=None)

    resp = await client.post(
        "/api/v1/bookings/bk-1/cancel", json={"reason": "Ordered twice"}, headers=CUSTOMER_H
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"

    history = await client.get("/api/v1/bookings/bk-1/history", headers=CUSTOMER_H)
    assert history.status_code == 200
    entries = history.json()
    assert [e["status"] for e in entries] == ["cancelled"]
    assert entries[0]["metadata"]["reason"] == "Ordered twice"

    booking = await client.get("/api/v1/bookings/bk-1", headers=CUSTOMER_H)
    assert booking.json()["cancellation_reason"] == "Ordered twice"


# ── Admin ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_admin_assigns_driver(client: AsyncClient, make_booking):
    await make_booking(status=BookingStatus.PENDING, driver_id=None)

    resp = await client.post(
        "/api/v1/admin/bookings/bk-1/assign", json={"driver_id": DRIVER.id}, headers=ADMIN_H
    )

    assert resp.status_code == 200
    assert resp.json()["status"] == "driver_assigned"


@pytest.mark.asyncio
async def test_assign_requires_admin(client: AsyncClient, make_booking):
    await make_booking(status=BookingStatus.PENDING, driver_id=None)
    resp = await client.post(
        "/api/v1/admin/bookings/bk-1/assign", json={"driver_id": DRIVER.id}, headers=DRIVER_H
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_integrity_report(client: AsyncClient, make_booking):
    await make_booking("bk-ok", status=BookingStatus.ACCEPTED)
    await make_booking("bk-bad", status=BookingStatus.PENDING)

    ok = await client.get("/api/v1/admin/bookings/bk-ok/integrity", headers=ADMIN_H)
    bad = await client.get("/api/v1/admin/bookings/bk-bad/integrity", headers=ADMIN_H)

    assert ok.json() == {"booking_id": "bk-ok", "valid": True, "issues": []}
    assert bad.json()["valid"] is False
    assert bad.json()["issues"] == ["Booking has driverId but status is pending"]


@pytest.mark.asyncio
async def test_lock_inspection_and_force_release(client: AsyncClient, components):
    await components.locks.acquire("bk-1", DRIVER.id)

    status = await client.get("/api/v1/admin/locks/bk-1", headers=ADMIN_H)
    assert status.json() == {"booking_id": "bk-1", "locked": True, "owner": DRIVER.id}

    released = await client.delete("/api/v1/admin/locks/bk-1", headers=ADMIN_H)
    assert released.json() == {"booking_id": "bk-1", "released": True}

    status = await client.get("/api/v1/admin/locks/bk-1", headers=ADMIN_H)
    assert status.json()["locked"] is False
