"""Structured logging configuration using structlog."""

import logging
import sys

import structlog

from room_booking.config import settings


def configure_logging(log_level: str | None = None, json_output: bool | None = None) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Overrides ``settings.log_level`` when given
        json_output: Render JSON lines; defaults to True in production
    """
    level = logging.getLevelName((log_level or settings.log_level).upper())
    if json_output is None:
        json_output = settings.environment == "production"

    # Configure standard library logging (uvicorn, alembic, asyncio)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )
    # One line per request is noise next to the booking events
    logging.getLogger("uvicorn.access").setLevel(max(level, logging.WARNING))

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Add service context to all logs
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        service=settings.service_name,
        environment=settings.environment,
    )
