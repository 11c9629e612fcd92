"""Outbox domain models."""

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping


class JobKind(str, Enum):
    """What an outbox job delivers."""

    INVITE = "INVITE"
    CANCEL = "CANCEL"

    @property
    def method(self) -> str:
        """iTIP method carried by the calendar object for this kind."""
        return "REQUEST" if self is JobKind.INVITE else "CANCEL"


class JobStatus(str, Enum):
    """Outbox job status."""

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


@dataclass
class NewOutboxJob:
    """
    A job as handed to the store by the booking service.

    Recipient and booking fields are a snapshot taken at enqueue time; the
    dispatch worker never re-reads them from the users or bookings tables.
    """

    kind: JobKind
    booking_id: uuid.UUID
    participant_id: uuid.UUID
    email: str
    name: str
    room: str
    start_time: datetime
    end_time: datetime
    reason: str
    calendar_uid: str
    sequence: int
    max_attempts: int = 5

    def __post_init__(self) -> None:
        if self.sequence < 0:
            raise ValueError("sequence must be >= 0")
        if self.kind == JobKind.INVITE and self.sequence != 0:
            raise ValueError("INVITE jobs start at sequence 0")
        if self.kind == JobKind.CANCEL and self.sequence < 1:
            raise ValueError("CANCEL jobs need sequence >= 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")


@dataclass
class OutboxJob:
    """An outbox row as read back from the store."""

    id: int
    kind: JobKind
    status: JobStatus
    attempts: int
    max_attempts: int
    booking_id: uuid.UUID
    participant_id: uuid.UUID
    email: str
    name: str
    room: str
    start_time: datetime
    end_time: datetime
    reason: str
    calendar_uid: str
    sequence: int
    created_at: datetime
    next_attempt_at: datetime | None = None
    claimed_at: datetime | None = None
    claimed_by: str | None = None
    last_error: str | None = None
    sent_at: datetime | None = None
    failed_at: datetime | None = None
    requeue_count: int = 0

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "OutboxJob":
        """Build a job from an ``email_outbox`` row."""
        return cls(
            id=record["id"],
            kind=JobKind(record["type"]),
            status=JobStatus(record["status"]),
            attempts=record["attempts"],
            max_attempts=record["max_attempts"],
            booking_id=record["booking_id"],
            participant_id=record["participant_id"],
            email=record["email"],
            name=record["name"],
            room=record["room"],
            start_time=record["start_time"],
            end_time=record["end_time"],
            reason=record["reason"],
            calendar_uid=record["calendar_uid"],
            sequence=record["sequence"],
            created_at=record["created_at"],
            next_attempt_at=record.get("next_attempt_at"),
            claimed_at=record.get("claimed_at"),
            claimed_by=record.get("claimed_by"),
            last_error=record.get("last_error"),
            sent_at=record.get("sent_at"),
            failed_at=record.get("failed_at"),
            requeue_count=record.get("requeue_count") or 0,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.SENT, JobStatus.FAILED)
