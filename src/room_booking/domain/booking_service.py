"""
Booking creation and cancellation.

Every booking change and the invitation jobs it causes are written in one
database transaction: either the booking row and all of its outbox rows
are committed, or none of them are. Mail is never sent from here; the
dispatch worker picks the jobs up after commit.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime

import structlog

from room_booking.domain.calendar import as_utc, calendar_uid
from room_booking.infrastructure import bookings, outbox
from room_booking.infrastructure.database import get_connection, transaction
from room_booking.models.exceptions import (
    BookingConflict,
    BookingNotFound,
    Forbidden,
    ValidationError,
)
from room_booking.models.outbox import JobKind, NewOutboxJob
from room_booking.utils import (
    has_control_characters,
    is_valid_email,
    normalize_email,
    title_case_name,
)

logger = structlog.get_logger(__name__)

MAX_ROOM_LENGTH = 100
MAX_REASON_LENGTH = 500


@dataclass
class BookingResult:
    """Outcome of a booking creation."""

    booking_id: uuid.UUID
    invitations_enqueued: int
    skipped_participants: list[uuid.UUID] = field(default_factory=list)


@dataclass
class CancellationResult:
    """Outcome of a booking cancellation."""

    booking_id: uuid.UUID
    cancellations_enqueued: int
    already_cancelled: bool = False


def _dedupe(ids: list[uuid.UUID]) -> list[uuid.UUID]:
    seen = set()
    result = []
    for item in ids:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def validate_booking_request(
    room: str,
    start_time: datetime,
    end_time: datetime,
    reason: str,
) -> tuple[str, datetime, datetime, str]:
    """Normalize and validate booking fields.

    Returns:
        Tuple of (room, start_utc, end_utc, reason)

    Raises:
        ValidationError: If any field is malformed
    """
    room = (room or "").strip()
    reason = (reason or "").strip()

    if not room:
        raise ValidationError("room is required")
    if len(room) > MAX_ROOM_LENGTH:
        raise ValidationError(f"room must be at most {MAX_ROOM_LENGTH} characters")
    if has_control_characters(room):
        raise ValidationError("room contains control characters")
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(f"reason must be at most {MAX_REASON_LENGTH} characters")
    if has_control_characters(reason):
        raise ValidationError("reason contains control characters")
    if start_time is None or end_time is None:
        raise ValidationError("start_time and end_time are required")

    start_utc = as_utc(start_time)
    end_utc = as_utc(end_time)
    if start_utc >= end_utc:
        raise ValidationError("start_time must be before end_time")

    return room, start_utc, end_utc, reason


class BookingService:
    """Creates and cancels bookings and queues their calendar invitations."""

    def __init__(self, uid_domain: str, max_attempts: int = 5):
        self.uid_domain = uid_domain
        self.max_attempts = max_attempts

    async def check_conflict(
        self,
        room: str,
        start_time: datetime,
        end_time: datetime,
    ) -> list[dict]:
        """Active bookings of ``room`` that overlap [start_time, end_time).

        An empty list means the room is free. Ranges that merely touch
        (one ends exactly when the other starts) do not conflict.
        """
        room, start_utc, end_utc, _ = validate_booking_request(room, start_time, end_time, "")

        async with get_connection() as conn:
            return await bookings.find_conflicts(conn, room, start_utc, end_utc)

    async def create_booking(
        self,
        room: str,
        start_time: datetime,
        end_time: datetime,
        reason: str,
        owner_id: uuid.UUID,
        participant_ids: list[uuid.UUID],
    ) -> BookingResult:
        """Create a booking and queue one invitation per reachable participant.

        Participants without a usable email are recorded against the
        booking but get no invitation.

        Raises:
            ValidationError: Malformed fields or unknown owner/participants
            BookingConflict: The room is already booked in that range
        """
        room, start_utc, end_utc, reason = validate_booking_request(
            room, start_time, end_time, reason
        )
        participant_ids = _dedupe(list(participant_ids or []))
        booking_id = uuid.uuid4()
        skipped: list[uuid.UUID] = []
        enqueued = 0

        async with transaction() as conn:
            users = await bookings.get_users(conn, participant_ids + [owner_id])

            if owner_id not in users:
                raise ValidationError(f"Unknown owner: {owner_id}")
            unknown = [pid for pid in participant_ids if pid not in users]
            if unknown:
                raise ValidationError(
                    "Unknown participants: " + ", ".join(str(pid) for pid in unknown)
                )

            await bookings.lock_room(conn, room)
            conflicts = await bookings.find_conflicts(conn, room, start_utc, end_utc)
            if conflicts:
                logger.info(
                    "booking_conflict_detected",
                    room=room,
                    start_time=start_utc.isoformat(),
                    end_time=end_utc.isoformat(),
                    conflicting_ids=[str(c["id"]) for c in conflicts],
                )
                raise BookingConflict(f"Room {room} is already booked in that period")

            await bookings.insert_booking(
                conn, booking_id, room, start_utc, end_utc, reason, owner_id
            )
            await bookings.add_participants(conn, booking_id, participant_ids)

            for participant_id in participant_ids:
                user = users[participant_id]
                email = normalize_email(user["email"])
                if not is_valid_email(email):
                    logger.info(
                        "invitation_skipped_no_email",
                        booking_id=str(booking_id),
                        participant_id=str(participant_id),
                    )
                    skipped.append(participant_id)
                    continue

                await outbox.enqueue_job(
                    conn,
                    NewOutboxJob(
                        kind=JobKind.INVITE,
                        booking_id=booking_id,
                        participant_id=participant_id,
                        email=email,
                        name=title_case_name(user["name"]),
                        room=room,
                        start_time=start_utc,
                        end_time=end_utc,
                        reason=reason,
                        calendar_uid=calendar_uid(booking_id, participant_id, self.uid_domain),
                        sequence=0,
                        max_attempts=self.max_attempts,
                    ),
                )
                enqueued += 1

        logger.info(
            "booking_created",
            booking_id=str(booking_id),
            room=room,
            participants=len(participant_ids),
            invitations_enqueued=enqueued,
        )

        return BookingResult(
            booking_id=booking_id,
            invitations_enqueued=enqueued,
            skipped_participants=skipped,
        )

    async def cancel_booking(
        self,
        booking_id: uuid.UUID,
        requester_id: uuid.UUID,
    ) -> CancellationResult:
        """Cancel a booking and queue a cancellation for every invitation it sent.

        Each cancellation reuses the invitation's calendar UID and recipient
        with a higher sequence, so calendar clients replace the original
        event instead of showing a second one. Cancelling twice is a no-op.

        Raises:
            BookingNotFound: Unknown booking
            Forbidden: The requester does not own the booking
        """
        enqueued = 0

        async with transaction() as conn:
            booking = await bookings.get_booking(conn, booking_id, for_update=True)

            if booking is None:
                raise BookingNotFound(f"Booking {booking_id} does not exist")
            if booking["owner_id"] != requester_id:
                raise Forbidden("Only the booking owner can cancel it")

            if booking["status"] == bookings.BookingStatus.CANCELLED:
                logger.info("booking_already_cancelled", booking_id=str(booking_id))
                return CancellationResult(
                    booking_id=booking_id,
                    cancellations_enqueued=0,
                    already_cancelled=True,
                )

            await bookings.mark_cancelled(conn, booking_id)

            invites = await outbox.list_jobs_for_booking(conn, booking_id, JobKind.INVITE)
            for invite in invites:
                last_sequence = await outbox.get_max_sequence(conn, invite.calendar_uid)
                if last_sequence is None:
                    last_sequence = invite.sequence

                await outbox.enqueue_job(
                    conn,
                    NewOutboxJob(
                        kind=JobKind.CANCEL,
                        booking_id=booking_id,
                        participant_id=invite.participant_id,
                        email=invite.email,
                        name=invite.name,
                        room=booking["room"],
                        start_time=booking["start_time"],
                        end_time=booking["end_time"],
                        reason=booking["reason"],
                        calendar_uid=invite.calendar_uid,
                        sequence=last_sequence + 1,
                        max_attempts=self.max_attempts,
                    ),
                )
                enqueued += 1

        logger.info(
            "booking_cancellation_committed",
            booking_id=str(booking_id),
            cancellations_enqueued=enqueued,
        )

        return CancellationResult(booking_id=booking_id, cancellations_enqueued=enqueued)
