"""Operator endpoints for the invitation outbox."""

import structlog
from fastapi import APIRouter, HTTPException, Query, status

from room_booking.api.dependencies import OutboxAdmin
from room_booking.api.models import OutboxJobJSON
from room_booking.models.exceptions import InvalidJobState, NotFound, StorageUnavailable

logger = structlog.get_logger()

router = APIRouter()


@router.get("/v1/admin/outbox/failed", response_model=list[OutboxJobJSON])
async def list_failed_jobs(
    store: OutboxAdmin,
    limit: int = Query(default=100, ge=1, le=1000),
) -> list[OutboxJobJSON]:
    """Jobs that exhausted their delivery attempts."""
    try:
        jobs = await store.list_failed(limit=limit)
    except StorageUnavailable as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return [OutboxJobJSON.from_job(job) for job in jobs]


@router.post("/v1/admin/outbox/{job_id}/requeue", response_model=OutboxJobJSON)
async def requeue_job(job_id: int, store: OutboxAdmin) -> OutboxJobJSON:
    """Give a FAILED job a fresh attempt budget."""
    try:
        job = await store.requeue(job_id)
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidJobState as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except StorageUnavailable as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    logger.info("outbox_job_requeued_by_operator", job_id=job_id)
    return OutboxJobJSON.from_job(job)
