"""Pydantic models for JSON API requests/responses."""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from room_booking.models.outbox import OutboxJob


class CreateBookingRequestJSON(BaseModel):
    """JSON request model for creating a booking."""

    room: str = Field(..., min_length=1, max_length=100, description="Room name")
    start_time: datetime = Field(..., description="Start of the booking (ISO 8601, UTC if no offset)")
    end_time: datetime = Field(..., description="End of the booking, exclusive")
    reason: str = Field(default="", max_length=500, description="Why the room is booked")
    owner_id: uuid.UUID = Field(..., description="User creating the booking")
    participant_ids: List[uuid.UUID] = Field(
        default_factory=list, description="Users to invite"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "room": "Sala 1",
                "start_time": "2025-03-10T10:00:00Z",
                "end_time": "2025-03-10T11:00:00Z",
                "reason": "Sprint planning",
                "owner_id": "00000000-0000-0000-0000-000000000001",
                "participant_ids": [
                    "00000000-0000-0000-0000-000000000002",
                    "00000000-0000-0000-0000-000000000003",
                ],
            }
        }


class CreateBookingResponseJSON(BaseModel):
    """JSON response model for a created booking."""

    booking_id: str = Field(..., description="Booking ID")
    invitations_enqueued: int = Field(..., description="Invitations queued for delivery")
    skipped_participant_ids: List[str] = Field(
        default_factory=list, description="Participants without a usable email"
    )


class CancelBookingRequestJSON(BaseModel):
    """JSON request model for cancelling a booking."""

    requester_id: uuid.UUID = Field(..., description="User requesting the cancellation")


class CancelBookingResponseJSON(BaseModel):
    """JSON response model for a cancelled booking."""

    booking_id: str = Field(..., description="Booking ID")
    status: str = Field(..., description="Booking status (CANCELLED)")
    cancellations_enqueued: int = Field(..., description="Cancellation notices queued")


class ConflictJSON(BaseModel):
    """An existing booking overlapping the requested range."""

    booking_id: str
    start_time: datetime
    end_time: datetime
    reason: Optional[str] = None


class AvailabilityResponseJSON(BaseModel):
    """JSON response model for a room availability check."""

    room: str
    start_time: datetime
    end_time: datetime
    available: bool
    conflicts: List[ConflictJSON] = Field(default_factory=list)


class OutboxJobJSON(BaseModel):
    """JSON model for an outbox job as shown to operators."""

    id: int
    type: str
    status: str
    attempts: int
    max_attempts: int
    booking_id: str
    participant_id: str
    email: str
    calendar_uid: str
    sequence: int
    created_at: datetime
    failed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    requeue_count: int = 0

    @classmethod
    def from_job(cls, job: OutboxJob) -> "OutboxJobJSON":
        return cls(
            id=job.id,
            type=job.kind.value,
            status=job.status.value,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            booking_id=str(job.booking_id),
            participant_id=str(job.participant_id),
            email=job.email,
            calendar_uid=job.calendar_uid,
            sequence=job.sequence,
            created_at=job.created_at,
            failed_at=job.failed_at,
            last_error=job.last_error,
            requeue_count=job.requeue_count,
        )
