"""Tests for job status transitions."""

import pytest

from relaykit.domain.enums import JobStatus
from relaykit.domain.models import Job
from relaykit.services.job_state_machine import (
    InvalidTransitionError,
    allowed_sources,
    transition_job,
    validate_transition,
)

S = JobStatus


@pytest.mark.parametrize(
    "current, target",
    [
        (S.DRAFT, S.AI_PENDING),
        (S.AI_PENDING, S.AI_READY),
        (S.AI_PENDING, S.AI_ERROR),
        (S.AI_ERROR, S.AI_PENDING),
        (S.AI_READY, S.PDF_PENDING),
        (S.PDF_PENDING, S.COMPLETE),
        (S.PDF_PENDING, S.PDF_ERROR),
        (S.COMPLETE, S.AI_PENDING),
    ],
)
def test_valid_transitions(current, target):
    assert validate_transition(current, target) is True


@pytest.mark.parametrize(
    "current, target",
    [
        (S.DRAFT, S.AI_READY),
        (S.DRAFT, S.COMPLETE),
        (S.AI_READY, S.COMPLETE),
        (S.AI_ERROR, S.AI_READY),
        (S.AI_PENDING, S.PDF_PENDING),
    ],
)
def test_invalid_transitions(current, target):
    with pytest.raises(InvalidTransitionError) as exc_info:
        validate_transition(current, target)
    assert exc_info.value.http_status == 409
    assert exc_info.value.details == {"from": current.value, "to": target.value}


def test_ai_ready_is_entered_only_from_ai_pending():
    assert allowed_sources(S.AI_READY) == {S.AI_PENDING}


async def test_transition_job_writes_status_and_fields(session_factory, make_workspace, make_job):
    ws = await make_workspace()
    job = await make_job(ws.id, status="ai_pending")

    async with session_factory() as db:
        won = await transition_job(db, job.id, S.AI_ERROR, error_message="model offline")
        await db.commit()
    assert won is True

    async with session_factory() as db:
        fresh = await db.get(Job, job.id)
    assert fresh.status == "ai_error"
    assert fresh.error_message == "model offline"


async def test_transition_job_loses_when_status_disallows(session_factory, make_workspace, make_job):
    ws = await make_workspace()
    job = await make_job(ws.id, status="draft")

    async with session_factory() as db:
        won = await transition_job(db, job.id, S.AI_READY)
        await db.commit()
    assert won is False

    async with session_factory() as db:
        fresh = await db.get(Job, job.id)
    assert fresh.status == "draft"
