"""
Invitation dispatch worker.

Each cycle claims a batch of due outbox jobs, renders the calendar
invitation for every job and hands it to the mail sender. Jobs are
independent: a failed send only reschedules that job (or fails it for good
once its attempts are used up, or at once when its snapshot cannot be
encoded) and the rest of the batch carries on. A storage outage aborts the
cycle; whatever was claimed but not resolved is picked up again once the
claim goes stale.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

import structlog

from room_booking.clients.mail_sender import Attachment, MailSender, get_mail_sender
from room_booking.config import CalendarSettings, Settings
from room_booking.domain.invitation import render_invitation
from room_booking.infrastructure.outbox import OutboxStore
from room_booking.models.exceptions import (
    ClaimLost,
    NotFound,
    StorageUnavailable,
    TerminalDeliveryError,
    TransientDeliveryError,
    ValidationError,
)
from room_booking.models.outbox import JobStatus, OutboxJob

logger = structlog.get_logger(__name__)


class DispatchOutcome(str, Enum):
    """Result of dispatching a single job."""

    SENT = "sent"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class CycleReport:
    """Counts for one polling cycle."""

    claimed: int = 0
    sent: int = 0
    retry_scheduled: int = 0
    failed: int = 0
    skipped: int = 0

    def record(self, outcome: DispatchOutcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DispatchWorker:
    """Polls the outbox and delivers calendar invitations."""

    def __init__(
        self,
        store: OutboxStore,
        mail_sender: MailSender,
        calendar: CalendarSettings,
        batch_size: int = 20,
        poll_interval_ms: int = 5000,
        error_backoff_seconds: float = 1.0,
        claim_timeout_seconds: float = 300,
        send_timeout_seconds: float = 30,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.mail_sender = mail_sender
        self.calendar = calendar
        self.batch_size = batch_size
        self.poll_interval_seconds = poll_interval_ms / 1000.0
        self.error_backoff_seconds = error_backoff_seconds
        # A send may only start while the claim outlives the longest possible send
        self.send_deadline = timedelta(seconds=claim_timeout_seconds - send_timeout_seconds)
        self.clock = clock
        self._stop_event = asyncio.Event()

    def _claim_expiring(self, job: OutboxJob) -> bool:
        if job.claimed_at is None:
            return False
        return self.clock() - job.claimed_at >= self.send_deadline

    async def _deliver(self, job: OutboxJob) -> None:
        """Render and send one job; raises on any delivery failure."""
        try:
            rendered = render_invitation(job, self.calendar)
        except ValidationError as e:
            raise TerminalDeliveryError(f"Invitation cannot be encoded: {e}") from e

        result = await self.mail_sender.send(
            from_address=self.calendar.organizer_email,
            from_name=self.calendar.organizer_name,
            to=job.email,
            subject=rendered.subject,
            text_body=rendered.text_body,
            attachment=Attachment(
                filename=rendered.attachment_filename,
                mime_type=rendered.attachment_mime_type,
                content=rendered.attachment_content,
            ),
        )

        if not result.ok:
            rejected = ", ".join(result.rejected) or job.email
            raise TransientDeliveryError(f"Recipient rejected by mail server: {rejected}")

    async def dispatch_job(self, job: OutboxJob) -> DispatchOutcome:
        """Attempt delivery of one claimed job and record the outcome.

        Raises:
            StorageUnavailable: If the outcome could not be recorded
        """
        log = logger.bind(
            job_id=job.id,
            kind=job.kind.value,
            booking_id=str(job.booking_id),
            calendar_uid=job.calendar_uid,
            sequence=job.sequence,
            attempt=job.attempts + 1,
            max_attempts=job.max_attempts,
        )

        try:
            await self._deliver(job)
        except Exception as e:
            terminal = isinstance(e, TerminalDeliveryError)
            log.warning(
                "invitation_delivery_failed",
                error_type=type(e).__name__,
                error=str(e),
                terminal=terminal,
            )
            try:
                updated = await self.store.mark_failed_attempt(
                    job.id,
                    f"{type(e).__name__}: {e}",
                    now=self.clock(),
                    claimed_at=job.claimed_at,
                    terminal=terminal,
                )
            except NotFound:
                log.error("outbox_job_vanished")
                return DispatchOutcome.SKIPPED
            except ClaimLost:
                log.warning("outbox_claim_lost")
                return DispatchOutcome.SKIPPED

            if updated.status == JobStatus.FAILED:
                log.error(
                    "invitation_delivery_abandoned",
                    attempts=updated.attempts,
                    last_error=updated.last_error,
                )
                return DispatchOutcome.FAILED
            if updated.status == JobStatus.SENT:
                return DispatchOutcome.SKIPPED
            return DispatchOutcome.RETRY_SCHEDULED

        try:
            await self.store.mark_sent(job.id, now=self.clock(), claimed_at=job.claimed_at)
        except NotFound:
            log.error("outbox_job_vanished")
            return DispatchOutcome.SKIPPED
        except ClaimLost:
            log.warning("outbox_claim_lost")
            return DispatchOutcome.SKIPPED

        log.info("invitation_sent", method=job.kind.method)
        return DispatchOutcome.SENT

    async def run_cycle(self) -> CycleReport:
        """Claim one batch and dispatch every job in it.

        Jobs whose claim would go stale before a send could finish are left
        for the next claim instead of being sent.

        Raises:
            StorageUnavailable: If the store cannot be reached; the cycle stops
        """
        jobs = await self.store.claim_batch(self.batch_size, now=self.clock())
        report = CycleReport(claimed=len(jobs))

        for job in jobs:
            if self._claim_expiring(job):
                logger.warning(
                    "outbox_claim_expiring",
                    job_id=job.id,
                    claimed_at=job.claimed_at.isoformat(),
                )
                report.record(DispatchOutcome.SKIPPED)
                continue
            outcome = await self.dispatch_job(job)
            report.record(outcome)

        if report.claimed:
            logger.info(
                "dispatch_cycle_completed",
                claimed=report.claimed,
                sent=report.sent,
                retry_scheduled=report.retry_scheduled,
                failed=report.failed,
                skipped=report.skipped,
            )

        return report


    async def _wait(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def run(self) -> None:
        """Poll until stop() is called or the task is cancelled."""
        logger.info(
            "dispatch_worker_starting",
            worker_id=self.store.worker_id,
            batch_size=self.batch_size,
            poll_interval_seconds=self.poll_interval_seconds,
        )

        try:
            while not self._stop_event.is_set():
                delay = self.poll_interval_seconds
                try:
                    report = await self.run_cycle()
                    if report.claimed >= self.batch_size:
                        # Full batch: there is probably more due work, poll again at once
                        delay = 0
                except StorageUnavailable as e:
                    logger.warning("dispatch_cycle_aborted", error=str(e))
                except Exception as e:
                    logger.error("dispatch_worker_error", error=str(e), exc_info=True)
                    delay = self.error_backoff_seconds

                if delay:
                    await self._wait(delay)
                else:
                    await asyncio.sleep(0)

        except asyncio.CancelledError:
            logger.info("dispatch_worker_cancelled")
            raise

        finally:
            logger.info("dispatch_worker_stopped")

    def stop(self) -> None:
        """Ask the run loop to exit after the current cycle."""
        self._stop_event.set()


def build_dispatch_worker(
    app_settings: Settings,
    mail_sender: MailSender | None = None,
) -> DispatchWorker:
    """Wire a DispatchWorker from settings."""
    dispatch = app_settings.dispatch
    store = OutboxStore(
        worker_id=dispatch.worker_id,
        claim_timeout_seconds=dispatch.claim_timeout_seconds,
        backoff_base_seconds=dispatch.backoff_base_seconds,
        backoff_max_seconds=dispatch.backoff_max_seconds,
    )
    return DispatchWorker(
        store=store,
        mail_sender=mail_sender or get_mail_sender(app_settings),
        calendar=app_settings.calendar,
        batch_size=dispatch.batch_size,
        poll_interval_ms=dispatch.poll_interval_ms,
        error_backoff_seconds=dispatch.error_backoff_seconds,
        claim_timeout_seconds=dispatch.claim_timeout_seconds,
        send_timeout_seconds=app_settings.smtp.timeout_seconds,
    )
