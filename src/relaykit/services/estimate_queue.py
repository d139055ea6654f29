"""Durable estimate queue with lease/attempt bookkeeping.

Entries move ``pending -> running`` only through a compare-and-swap claim,
so two runners can never hold the same entry. On success the entry is
deleted; on failure it returns to ``pending`` while attempts remain,
otherwise it is parked as ``failed``. Generation itself is delegated to
the shared ``EstimateOrchestrator``.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from relaykit.app.config import Settings, get_settings
from relaykit.domain.enums import QueueRunOutcome, QueueStatus
from relaykit.domain.errors import JobNotFoundError, RelayKitError
from relaykit.domain.models import EstimateQueueEntry, Job, utcnow
from relaykit.services.estimate_orchestrator import EstimateOrchestrator

logger = logging.getLogger(__name__)

# Candidates examined per dequeue before giving up to contention
_MAX_CLAIM_ROUNDS = 5


@dataclass
class RunResult:
    outcome: QueueRunOutcome
    job_id: Optional[str] = None
    entry_id: Optional[str] = None
    attempts: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "job_id": self.job_id,
            "entry_id": self.entry_id,
            "attempts": self.attempts,
            "error": self.error,
        }


class EstimateQueue:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        orchestrator: Optional[EstimateOrchestrator] = None,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.orchestrator = orchestrator
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def enqueue(self, job_id: str) -> EstimateQueueEntry:
        """Queue a generation for ``job_id``.

        Idempotent: an existing pending or running entry is returned instead
        of creating a duplicate.
        """
        async with self.session_factory() as db:
            job = await db.get(Job, job_id)
            if job is None:
                raise JobNotFoundError(job_id)

            existing = await self._open_entry(db, job_id)
            if existing is not None:
                return existing

            entry = EstimateQueueEntry(
                job_id=job_id,
                workspace_id=job.workspace_id,
                status=QueueStatus.PENDING.value,
                attempts=0,
                max_attempts=self.settings.estimate_queue_max_attempts,
            )
            db.add(entry)
            await db.commit()
            await db.refresh(entry)
            logger.info("Enqueued estimate entry=%s job=%s", entry.id, job_id)
            return entry

    async def _open_entry(self, db, job_id: str) -> Optional[EstimateQueueEntry]:
        result = await db.execute(
            select(EstimateQueueEntry)
            .where(
                EstimateQueueEntry.job_id == job_id,
                EstimateQueueEntry.status.in_([QueueStatus.PENDING.value, QueueStatus.RUNNING.value]),
            )
            .order_by(EstimateQueueEntry.created_at.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Leasing
    # ------------------------------------------------------------------

    async def _claim(self, entry_id: str) -> Optional[EstimateQueueEntry]:
        """CAS ``pending -> running``; returns the leased entry or None if lost."""
        now = utcnow()
        async with self.session_factory() as db:
            result = await db.execute(
                update(EstimateQueueEntry)
                .where(
                    EstimateQueueEntry.id == entry_id,
                    EstimateQueueEntry.status == QueueStatus.PENDING.value,
                )
                .values(
                    status=QueueStatus.RUNNING.value,
                    attempts=EstimateQueueEntry.attempts + 1,
                    locked_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            if result.rowcount != 1:
                return None
            return await db.get(EstimateQueueEntry, entry_id, populate_existing=True)

    async def dequeue(self) -> Optional[EstimateQueueEntry]:
        """Atomically lease the oldest pending entry, or return None."""
        for _ in range(_MAX_CLAIM_ROUNDS):
            async with self.session_factory() as db:
                result = await db.execute(
                    select(EstimateQueueEntry.id)
                    .where(EstimateQueueEntry.status == QueueStatus.PENDING.value)
                    .order_by(EstimateQueueEntry.created_at.asc())
                    .limit(1)
                    .with_for_update(skip_locked=True)
                )
                entry_id = result.scalar_one_or_none()
            if entry_id is None:
                return None
            entry = await self._claim(entry_id)
            if entry is not None:
                return entry
            logger.debug("Lost claim on entry=%s, retrying", entry_id)
        return None

    async def lease_for_job(self, job_id: str) -> tuple[Optional[EstimateQueueEntry], bool]:
        """Lease the job's own queue row for direct mode.

        Returns ``(entry, busy)``. ``entry`` is None when the job has no open
        row; ``busy`` is True when another runner holds a live lease.
        """
        async with self.session_factory() as db:
            existing = await self._open_entry(db, job_id)
        if existing is None:
            return None, False
        if existing.status == QueueStatus.RUNNING.value:
            return None, True
        entry = await self._claim(existing.id)
        if entry is None:
            return None, True
        return entry, False

    async def reclaim_expired_leases(self) -> int:
        """Return running entries whose lease has expired to pending (or failed)."""
        cutoff = utcnow() - timedelta(seconds=self.settings.estimate_queue_lease_seconds)
        async with self.session_factory() as db:
            result = await db.execute(
                select(EstimateQueueEntry).where(
                    EstimateQueueEntry.status == QueueStatus.RUNNING.value,
                    EstimateQueueEntry.locked_at < cutoff,
                )
            )
            expired = list(result.scalars().all())

            reclaimed = 0
            for entry in expired:
                status = (
                    QueueStatus.PENDING if entry.attempts < entry.max_attempts else QueueStatus.FAILED
                )
                cas = await db.execute(
                    update(EstimateQueueEntry)
                    .where(
                        EstimateQueueEntry.id == entry.id,
                        EstimateQueueEntry.status == QueueStatus.RUNNING.value,
                        EstimateQueueEntry.locked_at == entry.locked_at,
                    )
                    .values(
                        status=status.value,
                        locked_at=None,
                        error_message="Lease expired",
                        updated_at=utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                if cas.rowcount == 1:
                    reclaimed += 1
                    logger.warning(
                        "Lease expired for entry=%s job=%s, now %s", entry.id, entry.job_id, status.value
                    )
            await db.commit()
        return reclaimed

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def complete(self, entry: EstimateQueueEntry) -> None:
        async with self.session_factory() as db:
            await db.execute(delete(EstimateQueueEntry).where(EstimateQueueEntry.id == entry.id))
            await db.commit()

    async def fail(self, entry: EstimateQueueEntry, message: str, retryable: bool = True) -> QueueStatus:
        """Record a failed attempt. Returns the entry's new status."""
        if retryable and entry.attempts < entry.max_attempts:
            status = QueueStatus.PENDING
        else:
            status = QueueStatus.FAILED
        async with self.session_factory() as db:
            await db.execute(
                update(EstimateQueueEntry)
                .where(
                    EstimateQueueEntry.id == entry.id,
                    EstimateQueueEntry.status == QueueStatus.RUNNING.value,
                )
                .values(
                    status=status.value,
                    error_message=message[:2000],
                    locked_at=None,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        return status

    # ------------------------------------------------------------------
    # Runner
    # ------------------------------------------------------------------

    async def run_once(self, job_id: Optional[str] = None) -> RunResult:
        """Process one entry.

        Queue-pull mode (no ``job_id``) leases the oldest pending entry.
        Direct mode leases the job's own row if it has one, and generates
        without a row otherwise.
        """
        if self.orchestrator is None:
            raise RuntimeError("EstimateQueue.run_once requires an orchestrator")

        await self.reclaim_expired_leases()

        if job_id is None:
            entry = await self.dequeue()
            if entry is None:
                return RunResult(QueueRunOutcome.IDLE)
            job_id = entry.job_id
        else:
            entry, busy = await self.lease_for_job(job_id)
            if busy:
                logger.info("Job %s is already being processed, skipping", job_id)
                return RunResult(QueueRunOutcome.BUSY, job_id=job_id)

        entry_id = entry.id if entry else None
        attempts = entry.attempts if entry else 0
        try:
            await self.orchestrator.generate(job_id)
        except Exception as exc:
            message = exc.message if isinstance(exc, RelayKitError) else (str(exc) or type(exc).__name__)
            retryable = getattr(exc, "retryable", True)
            if entry is None:
                return RunResult(QueueRunOutcome.FAILED, job_id, None, attempts, message)
            status = await self.fail(entry, message, retryable=retryable)
            outcome = QueueRunOutcome.RETRYING if status == QueueStatus.PENDING else QueueRunOutcome.FAILED
            logger.warning(
                "Queue entry=%s job=%s attempt %d/%d failed (%s): %s",
                entry_id, job_id, attempts, entry.max_attempts, outcome.value, message,
            )
            return RunResult(outcome, job_id, entry_id, attempts, message)

        if entry is not None:
            await self.complete(entry)
        logger.info("Queue entry=%s job=%s succeeded", entry_id, job_id)
        return RunResult(QueueRunOutcome.SUCCEEDED, job_id, entry_id, attempts)

    async def drain(self, limit: int = 10) -> list[RunResult]:
        """Run until the queue is idle or ``limit`` entries were processed."""
        results = []
        for _ in range(limit):
            result = await self.run_once()
            if result.outcome == QueueRunOutcome.IDLE:
                break
            results.append(result)
        return results


async def estimate_worker_loop(queue: EstimateQueue, interval_seconds: float) -> None:
    """Background loop: drain the queue every ``interval_seconds``."""
    logger.info("Estimate worker started (interval=%.0fs)", interval_seconds)
    while True:
        try:
            processed = await queue.drain()
            if processed:
                logger.info("Estimate worker processed %d entries", len(processed))
        except Exception:
            logger.exception("Estimate worker pass failed")
        await asyncio.sleep(interval_seconds)
