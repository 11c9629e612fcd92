"""Booking, participant and user persistence."""

import uuid
from datetime import datetime

import asyncpg
import structlog

logger = structlog.get_logger()


class BookingStatus:
    """Booking status constants."""

    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"


async def lock_room(conn: asyncpg.Connection, room: str) -> None:
    """Serialize booking writes for one room until the transaction ends.

    Args:
        conn: Database connection (must be in transaction)
        room: Room name
    """
    await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", room)


async def find_conflicts(
    conn: asyncpg.Connection,
    room: str,
    start_time: datetime,
    end_time: datetime,
) -> list[dict]:
    """Active bookings of ``room`` overlapping the half-open range [start_time, end_time).

    Args:
        conn: Database connection
        room: Room name
        start_time: Candidate start (inclusive)
        end_time: Candidate end (exclusive)

    Returns:
        Overlapping bookings ordered by start time
    """
    rows = await conn.fetch(
        """
        SELECT id, room, start_time, end_time, reason, owner_id
        FROM bookings
        WHERE room = $1
          AND status = 'ACTIVE'
          AND start_time < $3
          AND end_time > $2
        ORDER BY start_time
        """,
        room,
        start_time,
        end_time,
    )

    return [dict(row) for row in rows]


async def insert_booking(
    conn: asyncpg.Connection,
    booking_id: uuid.UUID,
    room: str,
    start_time: datetime,
    end_time: datetime,
    reason: str,
    owner_id: uuid.UUID,
) -> None:
    """Write a new ACTIVE booking.

    Args:
        conn: Database connection (must be in transaction)
    """
    await conn.execute(
        """
        INSERT INTO bookings (id, room, start_time, end_time, reason, owner_id, status, created_at)
        VALUES ($1, $2, $3, $4, $5, $6, 'ACTIVE', NOW())
        """,
        booking_id,
        room,
        start_time,
        end_time,
        reason,
        owner_id,
    )

    logger.info(
        "booking_written",
        booking_id=str(booking_id),
        room=room,
        start_time=start_time.isoformat(),
        end_time=end_time.isoformat(),
    )


async def add_participants(
    conn: asyncpg.Connection,
    booking_id: uuid.UUID,
    participant_ids: list[uuid.UUID],
) -> None:
    """Link participants to a booking.

    Args:
        conn: Database connection (must be in transaction)
    """
    if not participant_ids:
        return

    await conn.executemany(
        """
        INSERT INTO booking_participants (booking_id, participant_id)
        VALUES ($1, $2)
        ON CONFLICT DO NOTHING
        """,
        [(booking_id, participant_id) for participant_id in participant_ids],
    )


async def get_users(conn: asyncpg.Connection, user_ids: list[uuid.UUID]) -> dict[uuid.UUID, dict]:
    """Fetch users by id.

    Returns:
        Mapping of user id to ``{"id", "email", "name"}``; unknown ids are absent
    """
    if not user_ids:
        return {}

    rows = await conn.fetch(
        """
        SELECT id, email, name
        FROM users
        WHERE id = ANY($1::uuid[])
        """,
        list(user_ids),
    )

    return {row["id"]: dict(row) for row in rows}


async def get_booking(
    conn: asyncpg.Connection,
    booking_id: uuid.UUID,
    for_update: bool = False,
) -> dict | None:
    """Fetch a booking, optionally locking its row for the rest of the transaction."""
    query = """
        SELECT id, room, start_time, end_time, reason, owner_id, status, created_at, cancelled_at
        FROM bookings
        WHERE id = $1
    """
    if for_update:
        query += " FOR UPDATE"

    row = await conn.fetchrow(query, booking_id)
    return dict(row) if row else None


async def mark_cancelled(conn: asyncpg.Connection, booking_id: uuid.UUID) -> None:
    """Flip a booking to CANCELLED.

    Args:
        conn: Database connection (must be in transaction)
    """
    await conn.execute(
        """
        UPDATE bookings
        SET status = 'CANCELLED', cancelled_at = NOW()
        WHERE id = $1
        """,
        booking_id,
    )

    logger.info("booking_cancelled", booking_id=str(booking_id))
