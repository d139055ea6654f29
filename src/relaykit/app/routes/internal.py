"""Internal endpoints for schedulers: queue worker tick and PDF generation."""

import logging

from fastapi import APIRouter, Depends

from relaykit.app.routes.deps import (
    get_estimate_queue,
    get_pdf_service,
    http_error,
    require_internal_token,
)
from relaykit.domain.errors import RelayKitError
from relaykit.domain.schemas import PdfRequest, WorkerRunRequest
from relaykit.services.estimate_queue import EstimateQueue
from relaykit.services.pdf_service import PdfService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/internal",
    tags=["internal"],
    dependencies=[Depends(require_internal_token)],
)


@router.post("/estimate-worker")
async def run_estimate_worker(
    data: WorkerRunRequest,
    queue: EstimateQueue = Depends(get_estimate_queue),
):
    """Process one queue entry: the next pending one, or ``job_id``'s own row."""
    result = await queue.run_once(job_id=data.job_id)
    return result.to_dict()


@router.post("/generate-pdf")
async def generate_pdf(data: PdfRequest, pdf: PdfService = Depends(get_pdf_service)):
    try:
        return await pdf.generate(data.job_id, force=data.force)
    except RelayKitError as exc:
        raise http_error(exc)
