"""Integration tests for bookings, the email outbox and the dispatch worker."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from room_booking.clients.mail_sender import MailSender, SendResult
from room_booking.config import CalendarSettings
from room_booking.domain.booking_service import BookingService
from room_booking.handlers.dispatcher import DispatchWorker
from room_booking.infrastructure import outbox
from room_booking.infrastructure.outbox import OutboxStore
from room_booking.models.exceptions import (
    BookingConflict,
    ClaimLost,
    InvalidJobState,
    TransientDeliveryError,
)
from room_booking.models.outbox import JobKind, JobStatus

pytestmark = pytest.mark.integration

DAY = datetime(2030, 3, 10, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0) -> datetime:
    return DAY.replace(hour=hour, minute=minute)


class RecordingSender(MailSender):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send(self, from_address, to, subject, text_body, attachment=None, from_name=None):
        if self.fail:
            raise TransientDeliveryError("connection refused")
        self.sent.append({"to": to, "subject": subject, "attachment": attachment})
        return SendResult(accepted=[to])


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def soon() -> datetime:
    """A moment safely after anything the database stamped with NOW()."""
    return datetime.now(timezone.utc) + timedelta(seconds=5)


@pytest.fixture
def service():
    return BookingService(uid_domain="test.local", max_attempts=5)


def make_worker(sender, clock, worker_id="worker-a"):
    return DispatchWorker(
        store=OutboxStore(worker_id=worker_id),
        mail_sender=sender,
        calendar=CalendarSettings(uid_domain="test.local"),
        batch_size=20,
        clock=clock,
    )


async def fetch_jobs(db_pool, booking_id):
    async with db_pool.acquire() as conn:
        return await outbox.list_jobs_for_booking(conn, booking_id)


@pytest.mark.asyncio
async def test_conflict_uses_half_open_ranges(db_pool, create_user, service):
    """R1 10:00-11:00 conflicts with 10:30-11:30 but not with 11:00-12:00."""
    owner = await create_user("owner@example.com")
    await service.create_booking("R1", at(10), at(11), "first", owner, [])

    assert len(await service.check_conflict("R1", at(10, 30), at(11, 30))) == 1
    assert await service.check_conflict("R1", at(11), at(12)) == []
    assert await service.check_conflict("R2", at(10, 30), at(11, 30)) == []

    with pytest.raises(BookingConflict):
        await service.create_booking("R1", at(10, 30), at(11, 30), "overlap", owner, [])

    await service.create_booking("R1", at(11), at(12), "adjacent", owner, [])


@pytest.mark.asyncio
async def test_concurrent_bookings_for_same_slot(db_pool, create_user, service):
    """Only one of two simultaneous requests for the same slot succeeds."""
    owner = await create_user("owner@example.com")

    results = await asyncio.gather(
        service.create_booking("R1", at(14), at(15), "a", owner, []),
        service.create_booking("R1", at(14, 30), at(15, 30), "b", owner, []),
        return_exceptions=True,
    )

    conflicts = [r for r in results if isinstance(r, BookingConflict)]
    assert len(conflicts) == 1


@pytest.mark.asyncio
async def test_booking_and_invites_commit_together(db_pool, create_user, service):
    """If enqueueing fails the booking is rolled back as well."""
    owner = await create_user("owner@example.com")
    alice = await create_user("alice@example.com")

    with patch.object(outbox, "enqueue_job", side_effect=RuntimeError("boom")):
        with pytest.raises(RuntimeError):
            await service.create_booking("R1", at(9), at(10), "", owner, [alice])

    async with db_pool.acquire() as conn:
        assert await conn.fetchval("SELECT COUNT(*) FROM bookings") == 0
        assert await conn.fetchval("SELECT COUNT(*) FROM email_outbox") == 0


@pytest.mark.asyncio
async def test_concurrent_claims_never_overlap(db_pool, create_user, service):
    owner = await create_user("owner@example.com")
    participants = [await create_user(f"p{i}@example.com") for i in range(10)]
    await service.create_booking("R1", at(10), at(11), "", owner, participants)

    now = soon()
    store_a = OutboxStore(worker_id="worker-a")
    store_b = OutboxStore(worker_id="worker-b")

    batch_a, batch_b = await asyncio.gather(
        store_a.claim_batch(10, now=now),
        store_b.claim_batch(10, now=now),
    )

    ids_a = {job.id for job in batch_a}
    ids_b = {job.id for job in batch_b}
    assert not ids_a & ids_b
    assert len(ids_a | ids_b) == 10

    # Live claims are not handed out again
    assert await store_a.claim_batch(10, now=now + timedelta(seconds=1)) == []


@pytest.mark.asyncio
async def test_stale_claim_is_reclaimed(db_pool, create_user, service):
    owner = await create_user("owner@example.com")
    alice = await create_user("alice@example.com")
    await service.create_booking("R1", at(10), at(11), "", owner, [alice])

    now = soon()
    crashed = OutboxStore(worker_id="worker-a", claim_timeout_seconds=300)
    survivor = OutboxStore(worker_id="worker-b", claim_timeout_seconds=300)

    assert len(await crashed.claim_batch(5, now=now)) == 1
    assert await survivor.claim_batch(5, now=now + timedelta(seconds=299)) == []

    reclaimed = await survivor.claim_batch(5, now=now + timedelta(seconds=301))
    assert len(reclaimed) == 1
    assert reclaimed[0].claimed_by == "worker-b"


@pytest.mark.asyncio
async def test_stale_worker_cannot_resolve_reclaimed_job(db_pool, create_user, service):
    owner = await create_user("owner@example.com")
    alice = await create_user("alice@example.com")
    await service.create_booking("R1", at(10), at(11), "", owner, [alice])

    now = soon()
    stale = OutboxStore(worker_id="worker-a", claim_timeout_seconds=300)
    current = OutboxStore(worker_id="worker-b", claim_timeout_seconds=300)
    # Same worker id as the stale claim; only the claim time tells them apart
    restarted = OutboxStore(worker_id="worker-a", claim_timeout_seconds=300)

    (old,) = await stale.claim_batch(5, now=now)
    (new,) = await current.claim_batch(5, now=now + timedelta(seconds=301))

    with pytest.raises(ClaimLost):
        await stale.mark_sent(old.id, now=now + timedelta(seconds=302), claimed_at=old.claimed_at)
    with pytest.raises(ClaimLost):
        await stale.mark_failed_attempt(
            old.id, "timeout", now=now + timedelta(seconds=302), claimed_at=old.claimed_at
        )

    (again,) = await restarted.claim_batch(5, now=now + timedelta(seconds=602))
    with pytest.raises(ClaimLost):
        await restarted.mark_sent(old.id, now=now + timedelta(seconds=603), claimed_at=old.claimed_at)

    await restarted.mark_sent(again.id, now=now + timedelta(seconds=603), claimed_at=again.claimed_at)
    async with db_pool.acquire() as conn:
        row = await conn.fetchrow("SELECT status, attempts FROM email_outbox WHERE id = $1", new.id)
    assert row["status"] == "SENT"
    assert row["attempts"] == 1



@pytest.mark.asyncio
async def test_invite_and_cancel_flow(db_pool, create_user, service):
    """Invites go to reachable participants; cancellations reuse the UID with a higher sequence."""
    owner = await create_user("owner@example.com")
    alice = await create_user("Alice@Example.com", "alice smith")
    nomail = await create_user(None, "No Mail")

    result = await service.create_booking("R1", at(10), at(11), "Planning", owner, [alice, nomail])

    assert result.invitations_enqueued == 1
    assert result.skipped_participants == [nomail]

    sender = RecordingSender()
    clock = Clock(soon())
    worker = make_worker(sender, clock)

    report = await worker.run_cycle()
    assert report.sent == 1
    assert sender.sent[0]["to"] == "alice@example.com"
    assert "METHOD:REQUEST" in sender.sent[0]["attachment"].content

    cancellation = await service.cancel_booking(result.booking_id, owner)
    assert cancellation.cancellations_enqueued == 1

    clock.now = soon()
    report = await worker.run_cycle()
    assert report.sent == 1
    assert "METHOD:CANCEL" in sender.sent[1]["attachment"].content

    jobs = await fetch_jobs(db_pool, result.booking_id)
    invite = next(job for job in jobs if job.kind == JobKind.INVITE)
    cancel = next(job for job in jobs if job.kind == JobKind.CANCEL)
    assert invite.calendar_uid == cancel.calendar_uid
    assert cancel.sequence > invite.sequence
    assert invite.status == cancel.status == JobStatus.SENT
    assert invite.attempts == 1
    assert invite.sent_at is not None

    # Cancelling again changes nothing
    again = await service.cancel_booking(result.booking_id, owner)
    assert again.already_cancelled
    assert len(await fetch_jobs(db_pool, result.booking_id)) == 2

    # The slot is free again
    assert await service.check_conflict("R1", at(10), at(11)) == []


@pytest.mark.asyncio
async def test_failed_job_and_requeue(db_pool, create_user, service):
    owner = await create_user("owner@example.com")
    alice = await create_user("alice@example.com")
    result = await service.create_booking("R1", at(10), at(11), "", owner, [alice])

    sender = RecordingSender(fail=True)
    clock = Clock(soon())
    worker = make_worker(sender, clock)

    for _ in range(6):
        await worker.run_cycle()
        clock.now += timedelta(hours=2)

    [job] = await fetch_jobs(db_pool, result.booking_id)
    assert job.status == JobStatus.FAILED
    assert job.attempts == 5
    assert job.failed_at is not None
    assert "connection refused" in job.last_error

    admin = OutboxStore(worker_id="admin")
    failed = await admin.list_failed()
    assert [f.id for f in failed] == [job.id]

    requeued = await admin.requeue(job.id)
    assert requeued.status == JobStatus.PENDING
    assert requeued.attempts == 0
    assert requeued.requeue_count == 1

    with pytest.raises(InvalidJobState):
        await admin.requeue(job.id)

    sender.fail = False
    clock.now = soon()
    report = await worker.run_cycle()
    assert report.sent == 1
