"""Tests for the durable estimate queue and its runner."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select, update

from relaykit.domain.enums import QueueRunOutcome, QueueStatus
from relaykit.domain.errors import ConfigurationError, JobNotFoundError, UpstreamError
from relaykit.domain.models import EstimateQueueEntry, utcnow
from relaykit.services.estimate_queue import EstimateQueue


@pytest.fixture
def orchestrator():
    mock = AsyncMock()
    mock.generate.return_value = None
    return mock


@pytest.fixture
def queue(session_factory, orchestrator, test_settings):
    return EstimateQueue(session_factory, orchestrator, test_settings)


async def _entries(session_factory, job_id=None):
    async with session_factory() as db:
        query = select(EstimateQueueEntry)
        if job_id:
            query = query.where(EstimateQueueEntry.job_id == job_id)
        result = await db.execute(query)
        return list(result.scalars().all())


async def _set_entry(session_factory, entry_id, **values):
    async with session_factory() as db:
        await db.execute(
            update(EstimateQueueEntry).where(EstimateQueueEntry.id == entry_id).values(**values)
        )
        await db.commit()


# ---------------------------------------------------------------------------
# Enqueue
# ---------------------------------------------------------------------------


async def test_enqueue_is_idempotent(session_factory, queue, make_workspace, make_job):
    ws = await make_workspace()
    job = await make_job(ws.id)

    first = await queue.enqueue(job.id)
    second = await queue.enqueue(job.id)

    assert first.id == second.id
    assert first.status == "pending"
    assert first.attempts == 0
    assert first.max_attempts == 3
    assert first.workspace_id == ws.id
    assert len(await _entries(session_factory, job.id)) == 1


async def test_enqueue_after_failure_creates_new_entry(session_factory, queue, make_workspace, make_job):
    ws = await make_workspace()
    job = await make_job(ws.id)
    first = await queue.enqueue(job.id)
    await _set_entry(session_factory, first.id, status="failed")

    second = await queue.enqueue(job.id)

    assert second.id != first.id
    assert len(await _entries(session_factory, job.id)) == 2


async def test_enqueue_unknown_job(queue):
    with pytest.raises(JobNotFoundError):
        await queue.enqueue("missing")


# ---------------------------------------------------------------------------
# Leasing
# ---------------------------------------------------------------------------


async def test_dequeue_leases_oldest_pending(session_factory, queue, make_workspace, make_job):
    ws = await make_workspace()
    older = await queue.enqueue((await make_job(ws.id, title="first")).id)
    await queue.enqueue((await make_job(ws.id, title="second")).id)

    entry = await queue.dequeue()

    assert entry.id == older.id
    assert entry.status == "running"
    assert entry.attempts == 1
    assert entry.locked_at is not None


async def test_concurrent_claims_have_one_winner(queue, make_workspace, make_job):
    ws = await make_workspace()
    job = await make_job(ws.id)
    entry = await queue.enqueue(job.id)

    claims = await asyncio.gather(*(queue._claim(entry.id) for _ in range(5)))

    winners = [c for c in claims if c is not None]
    assert len(winners) == 1
    assert winners[0].attempts == 1


async def test_concurrent_dequeues_never_share_an_entry(queue, make_workspace, make_job):
    ws = await make_workspace()
    for n in range(3):
        await queue.enqueue((await make_job(ws.id, title=f"job {n}")).id)

    leased = await asyncio.gather(*(queue.dequeue() for _ in range(5)))

    ids = [e.id for e in leased if e is not None]
    assert len(ids) == len(set(ids))
    assert len(ids) <= 3


async def test_dequeue_empty(queue):
    assert await queue.dequeue() is None


async def test_expired_lease_returns_to_pending(session_factory, queue, make_workspace, make_job):
    ws = await make_workspace()
    job = await make_job(ws.id)
    entry = await queue.enqueue(job.id)
    await queue.dequeue()
    await _set_entry(session_factory, entry.id, locked_at=utcnow() - timedelta(hours=1))

    assert await queue.reclaim_expired_leases() == 1

    [stored] = await _entries(session_factory, job.id)
    assert stored.status == "pending"
    assert stored.locked_at is None
    assert stored.error_message == "Lease expired"


async def test_expired_lease_on_last_attempt_fails(session_factory, queue, make_workspace, make_job):
    ws = await make_workspace()
    job = await make_job(ws.id)
    entry = await queue.enqueue(job.id)
    await queue.dequeue()
    await _set_entry(session_factory, entry.id, attempts=3, locked_at=utcnow() - timedelta(hours=1))

    await queue.reclaim_expired_leases()

    [stored] = await _entries(session_factory, job.id)
    assert stored.status == "failed"


async def test_live_lease_is_not_reclaimed(queue, make_workspace, make_job):
    ws = await make_workspace()
    await queue.enqueue((await make_job(ws.id)).id)
    await queue.dequeue()

    assert await queue.reclaim_expired_leases() == 0


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


async def test_run_once_idle(queue, orchestrator):
    result = await queue.run_once()
    assert result.outcome == QueueRunOutcome.IDLE
    orchestrator.generate.assert_not_awaited()


async def test_success_deletes_entry(session_factory, queue, orchestrator, make_workspace, make_job):
    ws = await make_workspace()
    job = await make_job(ws.id)
    entry = await queue.enqueue(job.id)

    result = await queue.run_once()

    assert result.outcome == QueueRunOutcome.SUCCEEDED
    assert result.entry_id == entry.id
    assert result.attempts == 1
    orchestrator.generate.assert_awaited_once_with(job.id)
    assert await _entries(session_factory, job.id) == []


async def test_retryable_failure_returns_to_pending(session_factory, queue, orchestrator, make_workspace, make_job):
    ws = await make_workspace()
    job = await make_job(ws.id)
    await queue.enqueue(job.id)
    orchestrator.generate.side_effect = UpstreamError("Gemini unavailable")

    result = await queue.run_once()

    assert result.outcome == QueueRunOutcome.RETRYING
    assert result.error == "Gemini unavailable"
    [stored] = await _entries(session_factory, job.id)
    assert stored.status == "pending"
    assert stored.attempts == 1
    assert stored.error_message == "Gemini unavailable"
    assert stored.locked_at is None


async def test_attempts_exhausted_marks_failed(session_factory, queue, orchestrator, make_workspace, make_job):
    ws = await make_workspace()
    job = await make_job(ws.id)
    entry = await queue.enqueue(job.id)
    await _set_entry(session_factory, entry.id, attempts=2)
    orchestrator.generate.side_effect = RuntimeError("boom")

    result = await queue.run_once()

    assert result.outcome == QueueRunOutcome.FAILED
    assert result.attempts == 3
    [stored] = await _entries(session_factory, job.id)
    assert stored.status == "failed"
    assert stored.error_message == "boom"


async def test_non_retryable_failure_fails_immediately(session_factory, queue, orchestrator, make_workspace, make_job):
    ws = await make_workspace()
    job = await make_job(ws.id)
    await queue.enqueue(job.id)
    orchestrator.generate.side_effect = ConfigurationError("GEMINI_API_KEY is missing")

    result = await queue.run_once()

    assert result.outcome == QueueRunOutcome.FAILED
    [stored] = await _entries(session_factory, job.id)
    assert stored.status == "failed"
    assert stored.attempts == 1


async def test_three_failures_then_parked(session_factory, queue, orchestrator, make_workspace, make_job):
    ws = await make_workspace()
    job = await make_job(ws.id)
    await queue.enqueue(job.id)
    orchestrator.generate.side_effect = UpstreamError("flaky")

    outcomes = [(await queue.run_once()).outcome for _ in range(4)]

    assert outcomes == [
        QueueRunOutcome.RETRYING,
        QueueRunOutcome.RETRYING,
        QueueRunOutcome.FAILED,
        QueueRunOutcome.IDLE,
    ]
    assert orchestrator.generate.await_count == 3


async def test_direct_mode_leases_jobs_own_row(session_factory, queue, orchestrator, make_workspace, make_job):
    ws = await make_workspace()
    job = await make_job(ws.id)
    other = await make_job(ws.id, title="older job")
    await queue.enqueue(other.id)
    entry = await queue.enqueue(job.id)

    result = await queue.run_once(job_id=job.id)

    assert result.outcome == QueueRunOutcome.SUCCEEDED
    assert result.entry_id == entry.id
    orchestrator.generate.assert_awaited_once_with(job.id)
    assert await _entries(session_factory, job.id) == []
    assert len(await _entries(session_factory, other.id)) == 1


async def test_direct_mode_busy_when_leased(queue, orchestrator, make_workspace, make_job):
    ws = await make_workspace()
    job = await make_job(ws.id)
    await queue.enqueue(job.id)
    await queue.dequeue()

    result = await queue.run_once(job_id=job.id)

    assert result.outcome == QueueRunOutcome.BUSY
    orchestrator.generate.assert_not_awaited()


async def test_direct_mode_without_row_generates(queue, orchestrator, make_workspace, make_job):
    ws = await make_workspace()
    job = await make_job(ws.id)

    result = await queue.run_once(job_id=job.id)

    assert result.outcome == QueueRunOutcome.SUCCEEDED
    assert result.entry_id is None
    orchestrator.generate.assert_awaited_once_with(job.id)


async def test_direct_mode_without_row_reports_failure(queue, orchestrator, make_workspace, make_job):
    ws = await make_workspace()
    job = await make_job(ws.id)
    orchestrator.generate.side_effect = UpstreamError("quota exceeded")

    result = await queue.run_once(job_id=job.id)

    assert result.outcome == QueueRunOutcome.FAILED
    assert result.error == "quota exceeded"


async def test_drain_processes_until_idle(session_factory, queue, orchestrator, make_workspace, make_job):
    ws = await make_workspace()
    for n in range(3):
        await queue.enqueue((await make_job(ws.id, title=f"job {n}")).id)

    results = await queue.drain()

    assert [r.outcome for r in results] == [QueueRunOutcome.SUCCEEDED] * 3
    assert await _entries(session_factory) == []


async def test_run_result_to_dict(queue):
    result = await queue.run_once()
    assert result.to_dict() == {
        "outcome": "idle",
        "job_id": None,
        "entry_id": None,
        "attempts": 0,
        "error": None,
    }


async def test_fail_keeps_status_for_entry_no_longer_running(session_factory, queue, make_workspace, make_job):
    ws = await make_workspace()
    job = await make_job(ws.id)
    await queue.enqueue(job.id)
    leased = await queue.dequeue()
    await _set_entry(session_factory, leased.id, status=QueueStatus.PENDING.value)

    await queue.fail(leased, "late failure")

    [stored] = await _entries(session_factory, job.id)
    assert stored.error_message is None
