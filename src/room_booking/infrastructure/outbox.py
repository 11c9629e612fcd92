"""Email outbox: durable queue of calendar invitations.

Booking code writes jobs with ``enqueue_job`` on its own transaction, so a
job exists exactly when the booking change that caused it was committed.
The dispatch worker drains the table through ``OutboxStore``: claims are a
single ``UPDATE ... FOR UPDATE SKIP LOCKED`` statement, so concurrent
workers never hold the same job, and a claim older than the claim timeout
is considered abandoned and can be taken again.
"""

import functools
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, TypeVar

import asyncpg
import structlog

from room_booking.infrastructure.database import CONNECTION_ERRORS, get_connection, transaction
from room_booking.models.exceptions import (
    ClaimLost,
    InvalidJobState,
    NotFound,
    StorageUnavailable,
)
from room_booking.models.outbox import JobKind, JobStatus, NewOutboxJob, OutboxJob

logger = structlog.get_logger()

T = TypeVar("T")

MAX_ERROR_LENGTH = 1000


def translate_storage_errors(
    func: Callable[..., Awaitable[T]],
) -> Callable[..., Awaitable[T]]:
    """Re-raise connection-level database errors as StorageUnavailable."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except CONNECTION_ERRORS as e:
            raise StorageUnavailable(f"Outbox storage unavailable: {e}") from e

    return wrapper


def backoff_delay(attempts: int, base_seconds: int, max_seconds: int) -> timedelta:
    """Delay before the next attempt after ``attempts`` failed deliveries.

    Doubles per attempt starting at ``base_seconds`` and never exceeds
    ``max_seconds``: 30s, 60s, 120s, ... with the default settings.
    """
    if attempts < 1:
        return timedelta(0)
    # Cap the exponent so large attempt counts don't build huge integers
    exponent = min(attempts - 1, 32)
    return timedelta(seconds=min(base_seconds * (2 ** exponent), max_seconds))


async def enqueue_job(conn: asyncpg.Connection, job: NewOutboxJob) -> int:
    """Write a PENDING job to the outbox.

    Args:
        conn: Database connection (must be in the caller's transaction)
        job: Job snapshot to persist

    Returns:
        The new job id
    """
    job_id = await conn.fetchval(
        """
        INSERT INTO email_outbox (
            type,
            status,
            attempts,
            max_attempts,
            booking_id,
            participant_id,
            email,
            name,
            room,
            start_time,
            end_time,
            reason,
            calendar_uid,
            sequence,
            created_at,
            next_attempt_at
        )
        VALUES ($1, 'PENDING', 0, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, NOW(), NOW())
        RETURNING id
        """,
        job.kind.value,
        job.max_attempts,
        job.booking_id,
        job.participant_id,
        job.email,
        job.name,
        job.room,
        job.start_time,
        job.end_time,
        job.reason,
        job.calendar_uid,
        job.sequence,
    )

    logger.info(
        "outbox_job_enqueued",
        job_id=job_id,
        kind=job.kind.value,
        booking_id=str(job.booking_id),
        participant_id=str(job.participant_id),
        calendar_uid=job.calendar_uid,
        sequence=job.sequence,
    )

    return job_id


async def list_jobs_for_booking(
    conn: asyncpg.Connection,
    booking_id: uuid.UUID,
    kind: JobKind | None = None,
) -> list[OutboxJob]:
    """Read the jobs of one booking, oldest first.

    Args:
        conn: Database connection
        booking_id: Booking whose jobs to read
        kind: Restrict to one job kind
    """
    if kind is None:
        rows = await conn.fetch(
            """
            SELECT *
            FROM email_outbox
            WHERE booking_id = $1
            ORDER BY created_at, id
            """,
            booking_id,
        )
    else:
        rows = await conn.fetch(
            """
            SELECT *
            FROM email_outbox
            WHERE booking_id = $1 AND type = $2
            ORDER BY created_at, id
            """,
            booking_id,
            kind.value,
        )

    return [OutboxJob.from_record(row) for row in rows]


async def get_max_sequence(conn: asyncpg.Connection, calendar_uid: str) -> int | None:
    """Highest sequence used so far for a calendar UID, or None if the UID is unused."""
    return await conn.fetchval(
        """
        SELECT MAX(sequence)
        FROM email_outbox
        WHERE calendar_uid = $1
        """,
        calendar_uid,
    )


class OutboxStore:
    """Worker- and admin-facing operations on the outbox table."""

    def __init__(
        self,
        worker_id: str,
        claim_timeout_seconds: int = 300,
        backoff_base_seconds: int = 30,
        backoff_max_seconds: int = 3600,
    ):
        self.worker_id = worker_id
        self.claim_timeout = timedelta(seconds=claim_timeout_seconds)
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds

    @translate_storage_errors
    async def claim_batch(self, limit: int, now: datetime | None = None) -> list[OutboxJob]:
        """Claim up to ``limit`` PENDING jobs that are due, oldest first.

        Jobs are due when their backoff has elapsed and they are either
        unclaimed or hold a claim older than the claim timeout.

        Returns:
            The claimed jobs, ordered by creation time
        """
        now = now or datetime.now(timezone.utc)
        stale_before = now - self.claim_timeout

        async with get_connection() as conn:
            rows = await conn.fetch(
                """
                UPDATE email_outbox AS o
                SET claimed_at = $2, claimed_by = $3
                WHERE o.id IN (
                    SELECT id
                    FROM email_outbox
                    WHERE status = 'PENDING'
                      AND next_attempt_at <= $2
                      AND (claimed_at IS NULL OR claimed_at < $4)
                    ORDER BY created_at, id
                    LIMIT $1
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING o.*
                """,
                limit,
                now,
                self.worker_id,
                stale_before,
            )

        jobs = sorted(
            (OutboxJob.from_record(row) for row in rows),
            key=lambda job: (job.created_at, job.id),
        )

        if jobs:
            logger.debug(
                "outbox_batch_claimed",
                worker_id=self.worker_id,
                count=len(jobs),
                job_ids=[job.id for job in jobs],
            )

        return jobs

    def _holds_claim(self, job: OutboxJob, claimed_at: datetime | None) -> bool:
        if job.claimed_by != self.worker_id:
            return False
        return claimed_at is None or job.claimed_at == claimed_at

    @translate_storage_errors
    async def mark_sent(
        self,
        job_id: int,
        now: datetime | None = None,
        claimed_at: datetime | None = None,
    ) -> None:
        """Record a successful delivery.

        Only the worker holding the claim can resolve a PENDING job; passing
        ``claimed_at`` also pins the exact claim, so a claim this worker lost
        and took again is told apart from the current one.

        Idempotent: a job that is already SENT is left alone. A FAILED job
        is terminal and is not changed either.

        Raises:
            NotFound: If the job does not exist
            ClaimLost: If the job is PENDING under another claim
        """
        now = now or datetime.now(timezone.utc)

        async with get_connection() as conn:
            updated = await conn.fetchval(
                """
                UPDATE email_outbox
                SET status = 'SENT',
                    attempts = attempts + 1,
                    sent_at = $2,
                    last_error = NULL,
                    claimed_at = NULL,
                    claimed_by = NULL
                WHERE id = $1
                  AND status = 'PENDING'
                  AND claimed_by = $3
                  AND ($4::timestamptz IS NULL OR claimed_at = $4)
                RETURNING id
                """,
                job_id,
                now,
                self.worker_id,
                claimed_at,
            )

            if updated is not None:
                logger.info("outbox_job_sent", job_id=job_id)
                return

            status = await conn.fetchval(
                "SELECT status FROM email_outbox WHERE id = $1",
                job_id,
            )

        if status is None:
            raise NotFound(f"Outbox job {job_id} does not exist")

        if status == JobStatus.SENT.value:
            logger.debug("outbox_job_already_sent", job_id=job_id)
        elif status == JobStatus.PENDING.value:
            raise ClaimLost(f"Outbox job {job_id} is no longer claimed by {self.worker_id}")
        else:
            logger.warning("outbox_job_mark_sent_ignored", job_id=job_id, status=status)

    @translate_storage_errors
    async def mark_failed_attempt(
        self,
        job_id: int,
        error: str,
        now: datetime | None = None,
        claimed_at: datetime | None = None,
        terminal: bool = False,
    ) -> OutboxJob:
        """Record a failed delivery attempt.

        Increments ``attempts``. Once ``attempts`` reaches ``max_attempts``,
        or straight away when ``terminal`` is set, the job becomes FAILED;
        otherwise it goes back to PENDING and is not due again until the
        backoff delay has passed.

        Raises:
            NotFound: If the job does not exist
            ClaimLost: If the job is PENDING under another claim

        Returns:
            The job after the update
        """
        now = now or datetime.now(timezone.utc)

        async with transaction() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM email_outbox WHERE id = $1 FOR UPDATE",
                job_id,
            )

            if row is None:
                raise NotFound(f"Outbox job {job_id} does not exist")

            job = OutboxJob.from_record(row)
            if job.is_terminal:
                logger.warning(
                    "outbox_job_mark_failed_ignored",
                    job_id=job_id,
                    status=job.status.value,
                )
                return job
            if not self._holds_claim(job, claimed_at):
                raise ClaimLost(f"Outbox job {job_id} is no longer claimed by {self.worker_id}")

            attempts = job.attempts + 1
            if terminal or attempts >= job.max_attempts:
                status = JobStatus.FAILED
                next_attempt_at = job.next_attempt_at
                failed_at = now
            else:
                status = JobStatus.PENDING
                next_attempt_at = now + backoff_delay(
                    attempts, self.backoff_base_seconds, self.backoff_max_seconds
                )
                failed_at = None

            row = await conn.fetchrow(
                """
                UPDATE email_outbox
                SET status = $2,
                    attempts = $3,
                    next_attempt_at = $4,
                    failed_at = $5,
                    last_error = $6,
                    claimed_at = NULL,
                    claimed_by = NULL
                WHERE id = $1
                RETURNING *
                """,
                job_id,
                status.value,
                attempts,
                next_attempt_at,
                failed_at,
                error[:MAX_ERROR_LENGTH],
            )

        updated = OutboxJob.from_record(row)

        if updated.status == JobStatus.FAILED:
            logger.error(
                "outbox_job_failed_terminal",
                job_id=job_id,
                kind=updated.kind.value,
                booking_id=str(updated.booking_id),
                email=updated.email,
                attempts=updated.attempts,
                max_attempts=updated.max_attempts,
                error=updated.last_error,
            )
        else:
            logger.warning(
                "outbox_job_retry_scheduled",
                job_id=job_id,
                attempts=updated.attempts,
                max_attempts=updated.max_attempts,
                next_attempt_at=updated.next_attempt_at.isoformat(),
                error=updated.last_error,
            )

        return updated

    @translate_storage_errors
    async def list_failed(self, limit: int = 100) -> list[OutboxJob]:
        """FAILED jobs, most recently failed first."""
        async with get_connection() as conn:
            rows = await conn.fetch(
                """
                SELECT *
                FROM email_outbox
                WHERE status = 'FAILED'
                ORDER BY failed_at DESC NULLS LAST, id DESC
                LIMIT $1
                """,
                limit,
            )

        return [OutboxJob.from_record(row) for row in rows]

    @translate_storage_errors
    async def requeue(self, job_id: int, now: datetime | None = None) -> OutboxJob:
        """Manually return a FAILED job to PENDING with a fresh attempt budget.

        Raises:
            NotFound: If the job does not exist
            InvalidJobState: If the job is not FAILED
        """
        now = now or datetime.now(timezone.utc)

        async with transaction() as conn:
            status = await conn.fetchval(
                "SELECT status FROM email_outbox WHERE id = $1 FOR UPDATE",
                job_id,
            )

            if status is None:
                raise NotFound(f"Outbox job {job_id} does not exist")
            if status != JobStatus.FAILED.value:
                raise InvalidJobState(f"Outbox job {job_id} is {status}, only FAILED jobs can be requeued")

            row = await conn.fetchrow(
                """
                UPDATE email_outbox
                SET status = 'PENDING',
                    attempts = 0,
                    next_attempt_at = $2,
                    failed_at = NULL,
                    last_error = NULL,
                    claimed_at = NULL,
                    claimed_by = NULL,
                    requeue_count = requeue_count + 1
                WHERE id = $1
                RETURNING *
                """,
                job_id,
                now,
            )

        job = OutboxJob.from_record(row)
        logger.info("outbox_job_requeued", job_id=job_id, requeue_count=job.requeue_count)
        return job
