"""Job CRUD plus estimate generation, history, PDF link and share package."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from relaykit.app.config import get_settings
from relaykit.app.routes.deps import (
    Member,
    get_current_member,
    get_estimate_queue,
    get_orchestrator,
    get_pdf_service,
    http_error,
)
from relaykit.domain.errors import RelayKitError
from relaykit.domain.schemas import (
    AiOutputResponse,
    EstimateQueueResponse,
    JobCreate,
    JobResponse,
    JobUpdate,
)
from relaykit.infra.database import get_db
from relaykit.services import job_service
from relaykit.services.estimate_orchestrator import EstimateOrchestrator, diagnostics
from relaykit.services.estimate_queue import EstimateQueue
from relaykit.services.pdf_service import PdfService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


@router.get("", response_model=list[JobResponse])
async def list_jobs(
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    jobs = await job_service.list_jobs(db, member.workspace_id)
    return [JobResponse.model_validate(j) for j in jobs]


@router.post("", response_model=JobResponse, status_code=201)
async def create_job(
    data: JobCreate,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    try:
        job = await job_service.create_job(db, member.workspace_id, member.user.id, data)
    except RelayKitError as exc:
        raise http_error(exc)
    return JobResponse.model_validate(job)


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    try:
        job = await job_service.get_job(db, member.workspace_id, job_id)
    except RelayKitError as exc:
        raise http_error(exc)
    return JobResponse.model_validate(job)


@router.put("/{job_id}", response_model=JobResponse)
async def update_job(
    job_id: str,
    data: JobUpdate,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    try:
        job = await job_service.update_job(db, member.workspace_id, job_id, data)
    except RelayKitError as exc:
        raise http_error(exc)
    return JobResponse.model_validate(job)


@router.delete("/{job_id}")
async def delete_job(
    job_id: str,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    try:
        await job_service.delete_job(db, member.workspace_id, job_id)
    except RelayKitError as exc:
        raise http_error(exc)
    return {"success": True}


# ---------------------------------------------------------------------------
# Estimates
# ---------------------------------------------------------------------------


@router.post("/{job_id}/estimate")
async def generate_estimate(
    job_id: str,
    debug: bool = Query(False, description="Include diagnostics on failure"),
    member: Member = Depends(get_current_member),
    orchestrator: EstimateOrchestrator = Depends(get_orchestrator),
):
    """Generate an estimate synchronously and return the refreshed job with it."""
    try:
        result = await orchestrator.generate(job_id, workspace_id=member.workspace_id)
    except RelayKitError as exc:
        extra = {"diagnostics": diagnostics(exc)} if debug else {}
        raise http_error(exc, **extra)
    except Exception as exc:
        logger.exception("Estimate request failed for job=%s", job_id)
        detail = {"error": str(exc) or "Failed to generate estimate"}
        if debug:
            detail["diagnostics"] = diagnostics(exc)
        raise HTTPException(status_code=500, detail=detail)

    return {
        "job": result.job,
        "ai_output": result.ai_output,
        "refreshed": result.refreshed,
    }


@router.post("/{job_id}/estimate/queue", response_model=EstimateQueueResponse, status_code=202)
async def queue_estimate(
    job_id: str,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
    queue: EstimateQueue = Depends(get_estimate_queue),
):
    try:
        await job_service.get_job(db, member.workspace_id, job_id)
        entry = await queue.enqueue(job_id)
    except RelayKitError as exc:
        raise http_error(exc)
    return EstimateQueueResponse.model_validate(entry)


@router.get("/{job_id}/ai-output", response_model=AiOutputResponse)
async def latest_ai_output(
    job_id: str,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    try:
        await job_service.get_job(db, member.workspace_id, job_id)
    except RelayKitError as exc:
        raise http_error(exc)
    output = await job_service.latest_ai_output(db, job_id)
    if output is None:
        raise HTTPException(status_code=404, detail={"error": "No estimate generated yet"})
    return AiOutputResponse.model_validate(output)


@router.get("/{job_id}/ai-outputs", response_model=list[AiOutputResponse])
async def ai_output_history(
    job_id: str,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    try:
        await job_service.get_job(db, member.workspace_id, job_id)
    except RelayKitError as exc:
        raise http_error(exc)
    outputs = await job_service.list_ai_outputs(db, job_id)
    return [AiOutputResponse.model_validate(o) for o in outputs]


# ---------------------------------------------------------------------------
# PDF / package
# ---------------------------------------------------------------------------


@router.get("/{job_id}/pdf-link")
async def pdf_link(
    job_id: str,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
    pdf: PdfService = Depends(get_pdf_service),
):
    try:
        await job_service.get_job(db, member.workspace_id, job_id)
    except RelayKitError as exc:
        raise http_error(exc)
    latest = await pdf.latest_pdf(job_id)
    if latest is None:
        raise HTTPException(status_code=404, detail={"error": "PDF not generated yet"})
    return {
        "signed_url": pdf.signed_url(latest),
        "storage_path": latest.storage_path,
        "expires_in": get_settings().signed_url_ttl_seconds,
    }


@router.post("/{job_id}/package")
async def create_package(
    job_id: str,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    try:
        package = await job_service.get_or_create_package(db, member.workspace_id, job_id)
    except RelayKitError as exc:
        raise http_error(exc)
    return {
        "id": package.id,
        "public_slug": package.public_slug,
        "url": f"{get_settings().app_base_url.rstrip('/')}/packages/{package.public_slug}",
    }
