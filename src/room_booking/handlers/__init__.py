"""Background handlers for outbox delivery."""

from room_booking.handlers.dispatcher import CycleReport, DispatchOutcome, DispatchWorker

__all__ = ["DispatchWorker", "DispatchOutcome", "CycleReport"]
