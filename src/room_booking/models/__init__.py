"""Domain models for the Room Booking service."""

from room_booking.models.exceptions import (
    BookingConflict,
    BookingNotFound,
    ClaimLost,
    Forbidden,
    InvalidJobState,
    NotFound,
    StorageUnavailable,
    TerminalDeliveryError,
    TransientDeliveryError,
    ValidationError,
)
from room_booking.models.outbox import JobKind, JobStatus, NewOutboxJob, OutboxJob

__all__ = [
    "BookingConflict",
    "BookingNotFound",
    "ClaimLost",
    "Forbidden",
    "InvalidJobState",
    "JobKind",
    "JobStatus",
    "NewOutboxJob",
    "NotFound",
    "OutboxJob",
    "StorageUnavailable",
    "TerminalDeliveryError",
    "TransientDeliveryError",
    "ValidationError",
]
