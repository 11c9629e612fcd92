"""Custom exceptions for the Room Booking service."""


class RoomBookingError(Exception):
    """Base exception for all service errors."""

    pass


class ValidationError(RoomBookingError):
    """
    Raised when caller-supplied data is malformed.

    Raised before any row is written, so nothing is ever enqueued for
    invalid input. The ICS encoder raises it too instead of emitting a
    corrupt calendar object.
    """

    pass


class BookingConflict(RoomBookingError):
    """Raised when a requested time range overlaps an active booking of the same room."""

    pass


class BookingNotFound(RoomBookingError):
    """Raised when a booking id does not exist."""

    pass


class Forbidden(RoomBookingError):
    """Raised when the requester may not act on a booking (e.g. cancel someone else's)."""

    pass


class DeliveryError(RoomBookingError):
    """Base exception for invitation delivery errors."""

    pass


class TransientDeliveryError(DeliveryError):
    """
    Raised when the mail sender is unreachable or a recipient is temporarily rejected.

    This is a RETRYABLE error. The job goes back to PENDING with an
    exponential backoff until max_attempts is reached.
    """

    pass


class TerminalDeliveryError(DeliveryError):
    """
    Raised when a job can never be delivered, e.g. its snapshot cannot be encoded.

    This is a TERMINAL error. The job is marked FAILED without further
    retries and only an explicit requeue makes it eligible again.
    """

    pass


class StorageError(RoomBookingError):
    """Base exception for outbox storage errors."""

    pass


class StorageUnavailable(StorageError):
    """
    Raised when the database cannot be reached.

    This is a TRANSIENT error. The dispatch cycle aborts and the next
    scheduled tick retries; claims left behind become stale and are
    re-claimed after the claim timeout.
    """

    pass


class NotFound(StorageError):
    """Raised when an outbox job id does not exist. Indicates a logic bug; never retried."""

    pass


class InvalidJobState(StorageError):
    """Raised when an administrative transition is requested on a job in the wrong state."""

    pass


class ClaimLost(StorageError):
    """
    Raised when a worker resolves a job whose claim it no longer holds.

    The claim went stale and another worker re-claimed the job, so the
    outcome belongs to the new holder and is not recorded.
    """

    pass
