"""Pytest configuration and shared fixtures for all tests.

This module provides shared test fixtures including:
- Sample outbox jobs
- Calendar settings
- Mock database connections for patching ``get_connection``/``transaction``
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from room_booking.config import CalendarSettings
from room_booking.models.outbox import JobKind, JobStatus, OutboxJob


@pytest.fixture
def calendar_settings():
    """Calendar settings with fixed, predictable values."""
    return CalendarSettings(
        organizer_email="reservas@example.com",
        organizer_name="Room Booking",
        uid_domain="test.local",
        display_timezone="UTC",
    )


@pytest.fixture
def booking_id():
    return uuid.UUID("00000000-0000-0000-0000-0000000000b1")


@pytest.fixture
def owner_id():
    """Standard test owner ID (valid UUID format)."""
    return uuid.UUID("00000000-0000-0000-0000-000000000001")


@pytest.fixture
def make_job(booking_id):
    """Factory for OutboxJob instances with sensible defaults."""

    def _make(**overrides) -> OutboxJob:
        kind = overrides.pop("kind", JobKind.INVITE)
        values = dict(
            id=1,
            kind=kind,
            status=JobStatus.PENDING,
            attempts=0,
            max_attempts=5,
            booking_id=booking_id,
            participant_id=uuid.UUID("00000000-0000-0000-0000-000000000002"),
            email="ana@example.com",
            name="Ana Souza",
            room="Sala 1",
            start_time=datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc),
            end_time=datetime(2025, 3, 10, 11, 0, tzinfo=timezone.utc),
            reason="Sprint planning",
            calendar_uid="6b3f0c52-1d2e-5f4a-9b8c-7d6e5f4a3b2c@test.local",
            sequence=0 if kind == JobKind.INVITE else 1,
            created_at=datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc),
            next_attempt_at=datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc),
        )
        values.update(overrides)
        return OutboxJob(**values)

    return _make


@pytest.fixture
def job_record(make_job):
    """Factory for ``email_outbox`` rows as asyncpg would return them."""

    def _record(**overrides) -> dict:
        job = make_job(**overrides)
        return {
            "id": job.id,
            "type": job.kind.value,
            "status": job.status.value,
            "attempts": job.attempts,
            "max_attempts": job.max_attempts,
            "booking_id": job.booking_id,
            "participant_id": job.participant_id,
            "email": job.email,
            "name": job.name,
            "room": job.room,
            "start_time": job.start_time,
            "end_time": job.end_time,
            "reason": job.reason,
            "calendar_uid": job.calendar_uid,
            "sequence": job.sequence,
            "created_at": job.created_at,
            "next_attempt_at": job.next_attempt_at,
            "claimed_at": job.claimed_at,
            "claimed_by": job.claimed_by,
            "last_error": job.last_error,
            "sent_at": job.sent_at,
            "failed_at": job.failed_at,
            "requeue_count": job.requeue_count,
        }

    return _record


@pytest.fixture
def mock_conn():
    """Mock asyncpg connection."""
    return AsyncMock()


@pytest.fixture
def connection_factory(mock_conn):
    """Async context manager yielding ``mock_conn``; patch it over get_connection/transaction."""

    @asynccontextmanager
    async def _connection():
        yield mock_conn

    return _connection
