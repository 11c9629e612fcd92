"""Booking endpoints: create, cancel, availability."""

import uuid
from datetime import datetime

import structlog
from fastapi import APIRouter, HTTPException, Query, status

from room_booking.api.dependencies import BookingSvc
from room_booking.api.models import (
    AvailabilityResponseJSON,
    CancelBookingRequestJSON,
    CancelBookingResponseJSON,
    ConflictJSON,
    CreateBookingRequestJSON,
    CreateBookingResponseJSON,
)
from room_booking.models.exceptions import (
    BookingConflict,
    BookingNotFound,
    Forbidden,
    StorageUnavailable,
    ValidationError,
)

logger = structlog.get_logger()

router = APIRouter()


@router.post(
    "/v1/bookings",
    status_code=status.HTTP_201_CREATED,
    response_model=CreateBookingResponseJSON,
)
async def create_booking(
    request: CreateBookingRequestJSON,
    service: BookingSvc,
) -> CreateBookingResponseJSON:
    """Create a booking.

    The booking and one invitation job per reachable participant are
    committed together; mail goes out asynchronously.
    """
    logger.info(
        "create_booking_request_received",
        room=request.room,
        owner_id=str(request.owner_id),
        participants=len(request.participant_ids),
    )

    try:
        result = await service.create_booking(
            room=request.room,
            start_time=request.start_time,
            end_time=request.end_time,
            reason=request.reason,
            owner_id=request.owner_id,
            participant_ids=request.participant_ids,
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except BookingConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except StorageUnavailable as e:
        logger.error("create_booking_storage_unavailable", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Booking storage is temporarily unavailable",
        )

    return CreateBookingResponseJSON(
        booking_id=str(result.booking_id),
        invitations_enqueued=result.invitations_enqueued,
        skipped_participant_ids=[str(pid) for pid in result.skipped_participants],
    )


@router.post(
    "/v1/bookings/{booking_id}/cancel",
    response_model=CancelBookingResponseJSON,
)
async def cancel_booking(
    booking_id: uuid.UUID,
    request: CancelBookingRequestJSON,
    service: BookingSvc,
) -> CancelBookingResponseJSON:
    """Cancel a booking and notify everyone who was invited."""
    try:
        result = await service.cancel_booking(booking_id, request.requester_id)
    except BookingNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Forbidden as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except StorageUnavailable as e:
        logger.error("cancel_booking_storage_unavailable", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Booking storage is temporarily unavailable",
        )

    return CancelBookingResponseJSON(
        booking_id=str(result.booking_id),
        status="CANCELLED",
        cancellations_enqueued=result.cancellations_enqueued,
    )


@router.get(
    "/v1/rooms/{room}/availability",
    response_model=AvailabilityResponseJSON,
)
async def room_availability(
    room: str,
    service: BookingSvc,
    start_time: datetime = Query(..., description="Start of the range (inclusive)"),
    end_time: datetime = Query(..., description="End of the range (exclusive)"),
) -> AvailabilityResponseJSON:
    """Report whether a room is free in [start_time, end_time)."""
    try:
        conflicts = await service.check_conflict(room, start_time, end_time)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except StorageUnavailable as e:
        logger.error("availability_storage_unavailable", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Booking storage is temporarily unavailable",
        )

    return AvailabilityResponseJSON(
        room=room,
        start_time=start_time,
        end_time=end_time,
        available=not conflicts,
        conflicts=[
            ConflictJSON(
                booking_id=str(c["id"]),
                start_time=c["start_time"],
                end_time=c["end_time"],
                reason=c.get("reason"),
            )
            for c in conflicts
        ],
    )
