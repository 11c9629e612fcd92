"""FastAPI dependencies for service-layer injection."""

from typing import Annotated

from fastapi import Depends

from room_booking.config import settings
from room_booking.domain.booking_service import BookingService
from room_booking.infrastructure.outbox import OutboxStore


def get_booking_service() -> BookingService:
    """Provide the booking service configured from settings."""
    return BookingService(
        uid_domain=settings.calendar.uid_domain,
        max_attempts=settings.dispatch.max_attempts,
    )


def get_outbox_store() -> OutboxStore:
    """Provide an outbox store for administrative queries."""
    dispatch = settings.dispatch
    return OutboxStore(
        worker_id=f"{settings.service_name}-admin",
        claim_timeout_seconds=dispatch.claim_timeout_seconds,
        backoff_base_seconds=dispatch.backoff_base_seconds,
        backoff_max_seconds=dispatch.backoff_max_seconds,
    )


BookingSvc = Annotated[BookingService, Depends(get_booking_service)]
OutboxAdmin = Annotated[OutboxStore, Depends(get_outbox_store)]
