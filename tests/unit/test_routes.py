"""Unit tests for the HTTP API."""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from room_booking.api.dependencies import get_booking_service, get_outbox_store
from room_booking.api.main import app
from room_booking.config import settings
from room_booking.domain.booking_service import BookingResult, CancellationResult
from room_booking.models.exceptions import (
    BookingConflict,
    BookingNotFound,
    Forbidden,
    InvalidJobState,
    NotFound,
    StorageUnavailable,
    ValidationError,
)
from room_booking.models.outbox import JobStatus

OWNER = "00000000-0000-0000-0000-000000000001"
ALICE = "00000000-0000-0000-0000-00000000000a"
BOB = "00000000-0000-0000-0000-00000000000b"


@pytest.fixture
def booking_service():
    service = MagicMock()
    service.create_booking = AsyncMock()
    service.cancel_booking = AsyncMock()
    service.check_conflict = AsyncMock(return_value=[])
    return service


@pytest.fixture
def outbox_store():
    store = MagicMock()
    store.list_failed = AsyncMock(return_value=[])
    store.requeue = AsyncMock()
    return store


@pytest.fixture
def client(booking_service, outbox_store):
    app.dependency_overrides[get_booking_service] = lambda: booking_service
    app.dependency_overrides[get_outbox_store] = lambda: outbox_store
    yield TestClient(app)
    app.dependency_overrides.clear()


def booking_payload(**overrides):
    payload = {
        "room": "Sala 1",
        "start_time": "2025-03-10T10:00:00Z",
        "end_time": "2025-03-10T11:00:00Z",
        "reason": "Sprint planning",
        "owner_id": OWNER,
        "participant_ids": [ALICE, BOB],
    }
    payload.update(overrides)
    return payload


def test_create_booking(client, booking_service):
    booking_id = uuid.uuid4()
    booking_service.create_booking.return_value = BookingResult(
        booking_id=booking_id,
        invitations_enqueued=1,
        skipped_participants=[uuid.UUID(BOB)],
    )

    response = client.post("/v1/bookings", json=booking_payload())

    assert response.status_code == 201
    assert response.json() == {
        "booking_id": str(booking_id),
        "invitations_enqueued": 1,
        "skipped_participant_ids": [BOB],
    }
    kwargs = booking_service.create_booking.call_args.kwargs
    assert kwargs["room"] == "Sala 1"
    assert kwargs["owner_id"] == uuid.UUID(OWNER)
    assert kwargs["participant_ids"] == [uuid.UUID(ALICE), uuid.UUID(BOB)]
    assert kwargs["start_time"] == datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "error,status_code",
    [
        (ValidationError("start_time must be before end_time"), 400),
        (BookingConflict("Room Sala 1 is already booked in that period"), 409),
        (StorageUnavailable("database down"), 503),
    ],
)
def test_create_booking_errors(client, booking_service, error, status_code):
    booking_service.create_booking.side_effect = error

    response = client.post("/v1/bookings", json=booking_payload())

    assert response.status_code == status_code


def test_create_booking_rejects_malformed_body(client, booking_service):
    response = client.post("/v1/bookings", json=booking_payload(owner_id="not-a-uuid"))

    assert response.status_code == 422
    booking_service.create_booking.assert_not_called()


def test_cancel_booking(client, booking_service):
    booking_id = uuid.uuid4()
    booking_service.cancel_booking.return_value = CancellationResult(
        booking_id=booking_id, cancellations_enqueued=2
    )

    response = client.post(f"/v1/bookings/{booking_id}/cancel", json={"requester_id": OWNER})

    assert response.status_code == 200
    assert response.json() == {
        "booking_id": str(booking_id),
        "status": "CANCELLED",
        "cancellations_enqueued": 2,
    }
    booking_service.cancel_booking.assert_awaited_once_with(booking_id, uuid.UUID(OWNER))


@pytest.mark.parametrize(
    "error,status_code",
    [
        (BookingNotFound("missing"), 404),
        (Forbidden("Only the booking owner can cancel it"), 403),
        (StorageUnavailable("database down"), 503),
    ],
)
def test_cancel_booking_errors(client, booking_service, error, status_code):
    booking_service.cancel_booking.side_effect = error

    response = client.post(f"/v1/bookings/{uuid.uuid4()}/cancel", json={"requester_id": OWNER})

    assert response.status_code == status_code


def test_room_availability_free(client, booking_service):
    response = client.get(
        "/v1/rooms/Sala 1/availability",
        params={"start_time": "2025-03-10T10:00:00Z", "end_time": "2025-03-10T11:00:00Z"},
    )

    assert response.status_code == 200
    assert response.json()["available"] is True
    assert response.json()["conflicts"] == []


def test_room_availability_busy(client, booking_service):
    conflict_id = uuid.uuid4()
    booking_service.check_conflict.return_value = [
        {
            "id": conflict_id,
            "start_time": datetime(2025, 3, 10, 10, 30, tzinfo=timezone.utc),
            "end_time": datetime(2025, 3, 10, 11, 30, tzinfo=timezone.utc),
            "reason": "Retro",
        }
    ]

    response = client.get(
        "/v1/rooms/Sala 1/availability",
        params={"start_time": "2025-03-10T10:00:00Z", "end_time": "2025-03-10T11:00:00Z"},
    )

    body = response.json()
    assert body["available"] is False
    assert body["conflicts"][0]["booking_id"] == str(conflict_id)
    assert body["conflicts"][0]["reason"] == "Retro"


def test_room_availability_invalid_range(client, booking_service):
    booking_service.check_conflict.side_effect = ValidationError("start_time must be before end_time")

    response = client.get(
        "/v1/rooms/Sala 1/availability",
        params={"start_time": "2025-03-10T11:00:00Z", "end_time": "2025-03-10T10:00:00Z"},
    )

    assert response.status_code == 400


def test_list_failed_jobs(client, outbox_store, make_job):
    failed_at = datetime(2025, 3, 2, 8, 0, tzinfo=timezone.utc)
    outbox_store.list_failed.return_value = [
        make_job(id=42, status=JobStatus.FAILED, attempts=5, failed_at=failed_at, last_error="boom")
    ]

    response = client.get("/v1/admin/outbox/failed", params={"limit": 10})

    assert response.status_code == 200
    jobs = response.json()
    assert len(jobs) == 1
    assert jobs[0]["id"] == 42
    assert jobs[0]["status"] == "FAILED"
    assert jobs[0]["type"] == "INVITE"
    assert jobs[0]["last_error"] == "boom"
    outbox_store.list_failed.assert_awaited_once_with(limit=10)


def test_requeue_job(client, outbox_store, make_job):
    outbox_store.requeue.return_value = make_job(id=42, requeue_count=1)

    response = client.post("/v1/admin/outbox/42/requeue")

    assert response.status_code == 200
    assert response.json()["status"] == "PENDING"
    assert response.json()["attempts"] == 0
    assert response.json()["requeue_count"] == 1
    outbox_store.requeue.assert_awaited_once_with(42)


@pytest.mark.parametrize(
    "error,status_code",
    [
        (NotFound("Outbox job 42 does not exist"), 404),
        (InvalidJobState("Outbox job 42 is SENT"), 409),
        (StorageUnavailable("database down"), 503),
    ],
)
def test_requeue_job_errors(client, outbox_store, error, status_code):
    outbox_store.requeue.side_effect = error

    response = client.post("/v1/admin/outbox/42/requeue")

    assert response.status_code == status_code


def test_health_check_success():
    """Test health check returns 200 when database is healthy."""
    with patch("room_booking.api.main.ping", new_callable=AsyncMock) as mock_ping:
        client = TestClient(app)
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["service"] == "room-booking"
        assert "environment" in response.json()
        mock_ping.assert_awaited_once()


def test_health_check_database_failure():
    """Test health check returns 503 when database connection fails."""
    with patch(
        "room_booking.api.main.ping",
        new_callable=AsyncMock,
        side_effect=StorageUnavailable("Cannot connect to database"),
    ):
        client = TestClient(app)
        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
        assert "Cannot connect" in response.json()["error"]


def test_lifespan_starts_and_stops_worker():
    """Startup verifies the database and runs the worker; shutdown stops it and closes the pool."""
    worker = MagicMock()
    worker.run = AsyncMock(return_value=None)

    with patch("room_booking.api.main.get_pool", new_callable=AsyncMock), patch(
        "room_booking.api.main.ping", new_callable=AsyncMock
    ), patch("room_booking.api.main.close_pool", new_callable=AsyncMock) as close_pool, patch(
        "room_booking.api.main.build_dispatch_worker", return_value=worker
    ), patch.object(
        settings.dispatch, "enabled", True
    ):
        with TestClient(app) as client:
            assert client.get("/").status_code == 200
            assert app.state.dispatch_worker is worker

    worker.stop.assert_called_once()
    close_pool.assert_awaited_once()


def test_root_endpoint():
    """Test root endpoint returns service information."""
    # Import without lifespan to avoid database connection
    from room_booking.api.main import root
    import asyncio

    result = asyncio.run(root())

    assert result["service"] == "Room Booking API"
    assert result["version"] == "0.1.0"
