"""
Tests for driver assignment, release and reviews.

Service-level tests call driver_service directly on one session to stage
the interleavings an HTTP client cannot produce deterministically.
"""

import pytest
from httpx import AsyncClient
from prometheus_client import REGISTRY
from sqlalchemy import delete, select, update

from carrental.core.errors import DriverUnavailable, InvalidState, InvalidTransition
from carrental.models import Booking, Driver, DriverAssignment, DriverStatus
from carrental.services import driver_service


def _metric(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


async def _assign(client: AsyncClient, headers: dict, driver_id: int, booking_id: int):
    return await client.put(f"/api/v1/drivers/{driver_id}/assign/{booking_id}", headers=headers)


@pytest.mark.asyncio
async def test_assign_driver(client: AsyncClient, admin_headers, test_driver, pending_booking):
    response = await _assign(client, admin_headers, test_driver.id, pending_booking.id)
    assert response.status_code == 200
    data = response.json()
    assert data["driver"]["status"] == "assigned"
    assert data["driver"]["current_booking_id"] == pending_booking.id
    assert data["booking"]["driver_id"] == test_driver.id
    assert data["booking"]["driver_assigned"] is True

    history = await client.get(f"/api/v1/drivers/{test_driver.id}/history", headers=admin_headers)
    entries = history.json()
    assert len(entries) == 1
    assert entries[0]["booking_id"] == pending_booking.id
    assert entries[0]["completed_at"] is None


@pytest.mark.asyncio
async def test_double_assignment_is_rejected(
    client: AsyncClient, db_session, admin_headers, test_driver, pending_booking, second_booking
):
    """The second booking never sees the driver; the first keeps it."""
    first = await _assign(client, admin_headers, test_driver.id, pending_booking.id)
    assert first.status_code == 200

    second = await _assign(client, admin_headers, test_driver.id, second_booking.id)
    assert second.status_code == 409
    assert second.json()["detail"]["error"] == "DriverUnavailable"

    await db_session.refresh(test_driver)
    await db_session.refresh(second_booking)
    assert test_driver.current_booking_id == pending_booking.id
    assert second_booking.driver_id is None
    assert second_booking.driver_assigned is False

    history = await db_session.execute(
        select(DriverAssignment).where(DriverAssignment.driver_id == test_driver.id)
    )
    assert len(history.scalars().all()) == 1


@pytest.mark.asyncio
async def test_assign_loses_race_after_read(db_session, test_driver, pending_booking, second_booking):
    """
    Driver looks available in our snapshot but another request took it
    before our write: the conditional update matches nothing.
    """
    await driver_service.get_driver(db_session, test_driver.id)

    # Concurrent writer, bypassing the identity map
    await db_session.execute(
        update(Driver)
        .where(Driver.id == test_driver.id)
        .values(status=DriverStatus.ASSIGNED, current_booking_id=second_booking.id)
        .execution_options(synchronize_session=False)
    )
    assert test_driver.status == DriverStatus.AVAILABLE

    with pytest.raises(DriverUnavailable):
        await driver_service.assign_driver(db_session, pending_booking.id, test_driver.id)

    history = await db_session.execute(select(DriverAssignment))
    assert history.scalars().all() == []


@pytest.mark.asyncio
async def test_assign_to_terminal_booking(client: AsyncClient, admin_headers, test_driver, booking_factory):
    booking = await booking_factory(status="completed")

    response = await _assign(client, admin_headers, test_driver.id, booking.id)
    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "InvalidTransition"


@pytest.mark.asyncio
async def test_booking_with_current_driver_rejects_second_driver(
    db_session, test_driver, second_driver, pending_booking
):
    await driver_service.assign_driver(db_session, pending_booking.id, test_driver.id)

    with pytest.raises(InvalidTransition):
        await driver_service.assign_driver(db_session, pending_booking.id, second_driver.id)

    await db_session.refresh(second_driver)
    assert second_driver.status == DriverStatus.AVAILABLE


@pytest.mark.asyncio
async def test_assign_missing_driver_or_booking(client: AsyncClient, admin_headers, test_driver, pending_booking):
    assert (await _assign(client, admin_headers, 99999, pending_booking.id)).status_code == 404
    assert (await _assign(client, admin_headers, test_driver.id, 99999)).status_code == 404


@pytest.mark.asyncio
async def test_assign_requires_admin(client: AsyncClient, auth_headers, test_driver, pending_booking):
    assert (await _assign(client, auth_headers, test_driver.id, pending_booking.id)).status_code == 403


@pytest.mark.asyncio
async def test_complete_assignment(client: AsyncClient, db_session, admin_headers, test_driver, pending_booking):
    await _assign(client, admin_headers, test_driver.id, pending_booking.id)

    response = await client.put(
        f"/api/v1/drivers/{test_driver.id}/complete-assignment", headers=admin_headers
    )
    assert response.status_code == 200
    assert response.json()["status"] == "available"
    assert response.json()["current_booking_id"] is None

    history = await client.get(f"/api/v1/drivers/{test_driver.id}/history", headers=admin_headers)
    assert history.json()[0]["completed_at"] is not None

    # The booking keeps a record of who drove it
    await db_session.refresh(pending_booking)
    assert pending_booking.driver_id == test_driver.id


@pytest.mark.asyncio
async def test_complete_when_not_assigned(client: AsyncClient, admin_headers, test_driver):
    response = await client.put(
        f"/api/v1/drivers/{test_driver.id}/complete-assignment", headers=admin_headers
    )
    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "InvalidState"


@pytest.mark.asyncio
async def test_complete_heals_missing_history(db_session, test_driver, pending_booking):
    """No open history entry: counted and logged, the driver is released anyway."""
    await driver_service.assign_driver(db_session, pending_booking.id, test_driver.id)
    await db_session.execute(delete(DriverAssignment))

    before = _metric("driver_inconsistent_history_total")
    driver = await driver_service.complete_driver_assignment(db_session, test_driver.id)

    assert driver.status == DriverStatus.AVAILABLE
    assert driver.current_booking_id is None
    assert _metric("driver_inconsistent_history_total") == before + 1


@pytest.mark.asyncio
async def test_cancelling_booking_releases_driver(
    client: AsyncClient, db_session, admin_headers, test_driver, pending_booking
):
    await _assign(client, admin_headers, test_driver.id, pending_booking.id)

    response = await client.put(
        f"/api/v1/admin/bookings/{pending_booking.id}/status",
        json={"status": "cancelled"},
        headers=admin_headers,
    )
    assert response.status_code == 200

    await db_session.refresh(test_driver)
    assert test_driver.status == DriverStatus.AVAILABLE
    assert test_driver.current_booking_id is None


@pytest.mark.asyncio
async def test_user_cancel_releases_driver(
    client: AsyncClient, db_session, admin_headers, auth_headers, test_driver, pending_booking
):
    await _assign(client, admin_headers, test_driver.id, pending_booking.id)

    response = await client.put(f"/api/v1/bookings/{pending_booking.id}/cancel", headers=auth_headers)
    assert response.status_code == 200

    await db_session.refresh(test_driver)
    assert test_driver.status == DriverStatus.AVAILABLE


@pytest.mark.asyncio
async def test_manual_status_edits(client: AsyncClient, admin_headers, test_driver, pending_booking):
    url = f"/api/v1/drivers/{test_driver.id}/status"

    response = await client.put(url, json={"status": "on-leave"}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "on-leave"

    # Drivers on leave cannot be assigned
    assign = await _assign(client, admin_headers, test_driver.id, pending_booking.id)
    assert assign.status_code == 409

    response = await client.put(url, json={"status": "assigned"}, headers=admin_headers)
    assert response.status_code == 409

    response = await client.put(url, json={"status": "available"}, headers=admin_headers)
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_status_edit_refused_while_assigned(client: AsyncClient, admin_headers, test_driver, pending_booking):
    await _assign(client, admin_headers, test_driver.id, pending_booking.id)

    response = await client.put(
        f"/api/v1/drivers/{test_driver.id}/status", json={"status": "inactive"}, headers=admin_headers
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_delete_driver(client: AsyncClient, admin_headers, test_driver, pending_booking):
    await _assign(client, admin_headers, test_driver.id, pending_booking.id)
    assert (await client.delete(f"/api/v1/drivers/{test_driver.id}", headers=admin_headers)).status_code == 409

    await client.put(f"/api/v1/drivers/{test_driver.id}/complete-assignment", headers=admin_headers)
    assert (await client.delete(f"/api/v1/drivers/{test_driver.id}", headers=admin_headers)).status_code == 200

    booking = await client.get(f"/api/v1/bookings/{pending_booking.id}", headers=admin_headers)
    assert booking.json()["driver_id"] is None
    assert booking.json()["driver_assigned"] is False


@pytest.mark.asyncio
async def test_create_and_list_drivers(client: AsyncClient, admin_headers, test_driver):
    payload = {
        "name": "New Driver",
        "license_number": "LIC-9999",
        "phone": "9811111111",
        "email": "new.driver@example.com",
        "address": "Lalitpur",
        "date_of_birth": "1988-05-17",
        "experience": 10,
    }
    response = await client.post("/api/v1/drivers/", json=payload, headers=admin_headers)
    assert response.status_code == 201
    assert response.json()["status"] == "available"

    duplicate = await client.post("/api/v1/drivers/", json=payload, headers=admin_headers)
    assert duplicate.status_code == 409

    available = await client.get("/api/v1/drivers/available", headers=admin_headers)
    assert len(available.json()) == 2


@pytest.mark.asyncio
async def test_review_rating_is_the_mean(
    client: AsyncClient, db_session, admin_headers, auth_headers, other_user, other_headers,
    test_driver, pending_booking, booking_factory,
):
    other_booking = await booking_factory(user=other_user)

    for booking, headers, rating in (
        (pending_booking, auth_headers, 5),
        (other_booking, other_headers, 2),
    ):
        await _assign(client, admin_headers, test_driver.id, booking.id)
        await client.put(
            f"/api/v1/admin/bookings/{booking.id}/status",
            json={"status": "completed"},
            headers=admin_headers,
        )
        response = await client.post(
            f"/api/v1/drivers/{test_driver.id}/reviews",
            json={"rating": rating, "comment": "ok"},
            headers=headers,
        )
        assert response.status_code == 200

    assert response.json()["rating"] == pytest.approx(3.5)
    assert len(response.json()["reviews"]) == 2

    # A second review from the same customer replaces the first
    response = await client.post(
        f"/api/v1/drivers/{test_driver.id}/reviews",
        json={"rating": 4},
        headers=other_headers,
    )
    assert response.json()["rating"] == pytest.approx(4.5)
    assert len(response.json()["reviews"]) == 2


@pytest.mark.asyncio
async def test_review_requires_completed_ride(client: AsyncClient, admin_headers, auth_headers, test_driver, pending_booking):
    await _assign(client, admin_headers, test_driver.id, pending_booking.id)

    response = await client.post(
        f"/api/v1/drivers/{test_driver.id}/reviews",
        json={"rating": 5},
        headers=auth_headers,
    )
    assert response.status_code == 409

    listing = await client.get(f"/api/v1/drivers/{test_driver.id}/reviews")
    assert listing.json()["reviews"] == []


@pytest.mark.asyncio
async def test_admin_edits_driver_profile(client: AsyncClient, admin_headers, auth_headers, test_driver):
    url = f"/api/v1/drivers/{test_driver.id}"
    assert (await client.put(url, json={"phone": "9811111111"}, headers=auth_headers)).status_code == 403

    response = await client.put(url, json={"phone": "9811111111", "experience": 8}, headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["phone"] == "9811111111"
    assert data["experience"] == 8
    assert data["license_number"] == test_driver.license_number
    assert data["status"] == "available"


@pytest.mark.asyncio
async def test_edit_driver_to_taken_license(client: AsyncClient, admin_headers, test_driver, second_driver):
    response = await client.put(
        f"/api/v1/drivers/{second_driver.id}",
        json={"license_number": test_driver.license_number},
        headers=admin_headers,
    )
    assert response.status_code == 409

    # Keeping its own license is not a conflict
    response = await client.put(
        f"/api/v1/drivers/{second_driver.id}",
        json={"license_number": second_driver.license_number, "name": "Renamed"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["name"] == "Renamed"


@pytest.mark.asyncio
async def test_edit_missing_driver(client: AsyncClient, admin_headers):
    response = await client.put("/api/v1/drivers/99999", json={"name": "Ghost"}, headers=admin_headers)
    assert response.status_code == 404
