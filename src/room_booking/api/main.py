"""FastAPI application entry point for the Room Booking API."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from room_booking import __version__
from room_booking.api.routes.admin import router as admin_router
from room_booking.api.routes.bookings import router as bookings_router
from room_booking.config import settings
from room_booking.handlers.dispatcher import DispatchWorker, build_dispatch_worker
from room_booking.infrastructure.database import close_pool, get_pool, ping
from room_booking.logging_config import configure_logging

# Configure logging at module level
configure_logging()

logger = structlog.get_logger()


async def _stop_worker(worker: DispatchWorker, task: asyncio.Task) -> None:
    worker.stop()
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the database pool and, when enabled, run the dispatch worker alongside the API.

    Booking requests only ever write to the outbox; the worker task started
    here is what actually sends the invitations.
    """
    logger.info("starting_room_booking_api", environment=settings.environment)

    try:
        await get_pool()
        await ping()
        logger.info("database_connection_verified")
    except Exception as e:
        logger.error("failed_to_initialize_database", error=str(e))
        raise

    worker: DispatchWorker | None = None
    task: asyncio.Task | None = None
    if settings.dispatch.enabled:
        worker = build_dispatch_worker(settings)
        task = asyncio.create_task(worker.run(), name="dispatch-worker")
        logger.info("dispatch_worker_started", worker_id=settings.dispatch.worker_id)
    else:
        logger.info("dispatch_worker_disabled")

    app.state.dispatch_worker = worker

    try:
        yield
    finally:
        logger.info("shutting_down_room_booking_api")
        if worker is not None and task is not None:
            await _stop_worker(worker, task)
        await close_pool()
        logger.info("room_booking_api_shutdown_complete")


app = FastAPI(
    title="Room Booking API",
    description="Room bookings with calendar invitations delivered through an email outbox",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(bookings_router)
app.include_router(admin_router)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint.

    Returns:
        200 OK if the database answers
        503 Service Unavailable otherwise
    """
    try:
        await ping()
    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "service": settings.service_name,
                "error": str(e),
            },
        )

    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "service": settings.service_name,
            "environment": settings.environment,
        },
    )


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "Room Booking API",
        "version": __version__,
        "status": "running",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "room_booking.api.main:app",
        host="0.0.0.0",
        port=8000,
        log_level=settings.log_level.lower(),
    )
