"""Job status state machine: validates transitions and applies them atomically.

Status writes are compare-and-swap: the UPDATE only matches while the job
is still in one of the statuses allowed to move to the target, so retries
and concurrent writers can never regress a job.
"""

import logging
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from relaykit.domain.enums import JobStatus
from relaykit.domain.errors import ErrorCode, RelayKitError
from relaykit.domain.models import Job, utcnow

logger = logging.getLogger(__name__)


class InvalidTransitionError(RelayKitError):
    """Raised when a job status transition is not allowed."""

    http_status = 409
    retryable = False

    def __init__(self, current_status: JobStatus, target_status: JobStatus, reason: str):
        self.current_status = current_status
        self.target_status = target_status
        self.reason = reason
        super().__init__(
            ErrorCode.INVALID_TRANSITION,
            f"Invalid transition from {current_status.value} to {target_status.value}: {reason}",
            {"from": current_status.value, "to": target_status.value},
        )


# ---------------------------------------------------------------------------
# Transition map: from_status -> allowed to_statuses
# ---------------------------------------------------------------------------

S = JobStatus

TRANSITION_MAP: dict[JobStatus, set[JobStatus]] = {
    S.DRAFT: {S.AI_PENDING},
    S.AI_PENDING: {S.AI_READY, S.AI_ERROR},
    S.AI_READY: {S.AI_PENDING, S.PDF_PENDING},
    S.AI_ERROR: {S.AI_PENDING},
    S.PDF_PENDING: {S.COMPLETE, S.PDF_ERROR},
    S.COMPLETE: {S.AI_PENDING, S.PDF_PENDING},
    S.PDF_ERROR: {S.AI_PENDING, S.PDF_PENDING},
}


def allowed_sources(target: JobStatus) -> set[JobStatus]:
    """Statuses from which ``target`` may be entered."""
    return {source for source, targets in TRANSITION_MAP.items() if target in targets}


def validate_transition(current: JobStatus, target: JobStatus) -> bool:
    """Return True if the transition is valid. Raise InvalidTransitionError if not."""
    allowed = TRANSITION_MAP.get(current)
    if allowed is None:
        raise InvalidTransitionError(current, target, f"No transitions allowed from {current.value}")
    if target not in allowed:
        raise InvalidTransitionError(
            current,
            target,
            f"Transition from {current.value} to {target.value} is not allowed",
        )
    return True


async def transition_job(
    db: AsyncSession,
    job_id: str,
    target: JobStatus,
    **fields: Any,
) -> bool:
    """Move ``job_id`` to ``target`` if its current status allows it.

    Extra ``fields`` (``error_message``, ``estimated_at``...) are written in
    the same statement. Returns True when this call won the swap. The caller
    owns the commit.
    """
    sources = [s.value for s in allowed_sources(target)]
    values = {"status": target.value, "updated_at": utcnow(), **fields}
    result = await db.execute(
        update(Job)
        .where(Job.id == job_id, Job.status.in_(sources))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    won = result.rowcount == 1
    if not won:
        logger.info("Job %s: transition to %s lost (status not in %s)", job_id, target.value, sources)
    return won
