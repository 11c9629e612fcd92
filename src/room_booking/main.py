"""Standalone entry point for the invitation dispatch worker.

Run with ``python -m room_booking.main`` when the worker should not live
inside the API process (set ``DISPATCH__ENABLED=false`` on the API then).
"""

import asyncio
import signal
import sys
from typing import Any

import structlog

from room_booking.config import settings
from room_booking.handlers.dispatcher import DispatchWorker, build_dispatch_worker
from room_booking.infrastructure.database import close_pool, get_pool
from room_booking.logging_config import configure_logging

configure_logging()

logger = structlog.get_logger(__name__)


async def main() -> None:
    """Main application entry point."""
    worker: DispatchWorker = build_dispatch_worker(settings)

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler(sig: Any) -> None:
        logger.info("received_signal", signal=signal.Signals(sig).name)
        worker.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        await get_pool()
        await worker.run()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")
    except Exception as e:
        logger.error("fatal_error", error=str(e), exc_info=True)
        sys.exit(1)
    finally:
        await close_pool()
        logger.info("worker_stopped")


if __name__ == "__main__":
    asyncio.run(main())
