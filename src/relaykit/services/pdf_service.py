"""Estimate PDF generation.

Renders the newest ``ai_outputs`` row for a job with reportlab, stores it
through the storage provider and records a ``job_files`` row. Idempotent:
without ``force`` an existing PDF is returned as-is.
"""

import asyncio
import io
import logging
from datetime import datetime, timezone
from typing import Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from relaykit.app.config import get_settings
from relaykit.domain.enums import JobFileKind, JobStatus
from relaykit.domain.errors import JobNotFoundError, PdfGenerationError
from relaykit.domain.models import AiOutput, Job, JobFile, Workspace
from relaykit.infra.storage import StorageProvider
from relaykit.services.best_effort import best_effort
from relaykit.services.job_state_machine import transition_job

logger = logging.getLogger(__name__)

DEFAULT_TERMS = "Payment due upon receipt."

MARGIN = 48
FOOTER_Y = 60


def _money(value) -> str:
    try:
        return f"${float(value):,.2f}"
    except (TypeError, ValueError):
        return "$0.00"


class _Page:
    """Top-down text cursor over a reportlab canvas with automatic page breaks."""

    def __init__(self, c: canvas.Canvas):
        self.c = c
        self.width, self.height = LETTER
        self.y = self.height - MARGIN

    def ensure(self, needed: float) -> None:
        if self.y - needed < FOOTER_Y:
            self.c.showPage()
            self.y = self.height - MARGIN

    def text(self, value: str, x: float = MARGIN, size: float = 10, bold: bool = False, gap: float = 14):
        self.ensure(gap)
        self.c.setFont("Helvetica-Bold" if bold else "Helvetica", size)
        self.c.drawString(x, self.y, value)
        self.y -= gap

    def wrapped(self, value: str, size: float = 10, width: Optional[float] = None) -> None:
        width = width or (self.width - 2 * MARGIN)
        for paragraph in (value or "").splitlines() or [""]:
            for line in simpleSplit(paragraph, "Helvetica", size, width) or [""]:
                self.text(line, size=size, gap=size + 3)

    def row(self, cells: list[tuple[float, str]], size: float = 10, bold: bool = False) -> None:
        self.ensure(size + 4)
        self.c.setFont("Helvetica-Bold" if bold else "Helvetica", size)
        for x, value in cells:
            self.c.drawString(x, self.y, value)
        self.y -= size + 4

    def rule(self) -> None:
        self.ensure(10)
        self.c.setStrokeColor(colors.lightgrey)
        self.c.line(MARGIN, self.y + 4, self.width - MARGIN, self.y + 4)
        self.y -= 8


def render_estimate_pdf(
    ai_json: dict,
    company_name: str,
    job_title: str,
    due_date: str = "",
) -> bytes:
    """Render an ``ai_json`` estimate to PDF bytes (materials, labor, totals, terms)."""
    client = ai_json.get("client") or {}
    estimate = ai_json.get("estimate") or {}
    terms = ai_json.get("terms") or DEFAULT_TERMS

    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=LETTER)
    c.setTitle(f"Estimate {estimate.get('estimateNumber', '')}")
    page = _Page(c)

    page.text(company_name or "Estimate", size=20, bold=True, gap=26)
    page.text(f"Estimate for {estimate.get('project') or job_title}", size=12, gap=16)
    page.row([
        (MARGIN, f"Client: {client.get('customerName') or ''}"),
        (340, f"Estimate #: {estimate.get('estimateNumber') or ''}"),
    ], size=11)
    page.row([
        (MARGIN, f"Address: {client.get('address') or ''}"),
        (340, f"Due Date: {due_date or client.get('preferredDate') or 'N/A'}"),
    ], size=11)
    page.y -= 6

    if estimate.get("jobDescription"):
        page.text("Scope", size=11, bold=True)
        page.wrapped(estimate["jobDescription"])
        page.y -= 6

    page.text("Materials", size=12, bold=True)
    page.row([(MARGIN, "Description"), (340, "Qty"), (400, "Unit"), (480, "Total")], bold=True)
    page.rule()
    for m in estimate.get("materials") or []:
        qty = float(m.get("qty") or 0)
        cost = float(m.get("cost") or 0)
        name = m.get("item") or ""
        if m.get("pricing_status") == "missing":
            name += " (price pending)"
        lines = simpleSplit(name, "Helvetica", 10, 280) or [""]
        page.row([(MARGIN, lines[0]), (340, f"{qty:g}"), (400, _money(cost)), (480, _money(qty * cost))])
        for extra in lines[1:]:
            page.row([(MARGIN, extra)])
    page.y -= 6

    page.text("Labor", size=12, bold=True)
    page.row([(MARGIN, "Task"), (340, "Hours"), (400, "Rate"), (480, "Total")], bold=True)
    page.rule()
    for line in estimate.get("labor") or []:
        page.row([
            (MARGIN, (line.get("task") or "")[:60]),
            (340, f"{float(line.get('hours') or 0):g}"),
            (400, _money(line.get("rate"))),
            (480, _money(line.get("total"))),
        ])
    page.y -= 10

    page.row([(400, f"Subtotal: {_money(estimate.get('subtotal'))}")])
    page.row([(400, f"Tax: {_money(estimate.get('tax'))}")])
    page.row([(400, f"Total: {_money(estimate.get('total'))}")], size=12, bold=True)
    page.y -= 14

    page.text("Terms", size=11, bold=True)
    page.wrapped(terms)

    c.setFont("Helvetica", 9)
    c.setFillColor(colors.grey)
    c.drawString(MARGIN, 36, "Thank you for your business.")
    c.drawRightString(page.width - MARGIN, 36, "Powered by RelayKit")

    c.save()
    return buffer.getvalue()


class PdfService:
    """PDF collaborator. The estimate orchestrator fires ``generate`` and never awaits it."""

    def __init__(self, session_factory: async_sessionmaker, storage: StorageProvider):
        self.session_factory = session_factory
        self.storage = storage

    async def latest_pdf(self, job_id: str) -> Optional[JobFile]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(JobFile)
                .where(JobFile.job_id == job_id, JobFile.kind == JobFileKind.PDF.value)
                .order_by(JobFile.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    def signed_url(self, pdf: JobFile) -> str:
        return self.storage.create_signed_url(pdf.storage_path, get_settings().signed_url_ttl_seconds)

    async def _mark(self, job_id: str, target: JobStatus, **fields) -> bool:
        async with self.session_factory() as db:
            won = await transition_job(db, job_id, target, **fields)
            await db.commit()
            return won

    async def _mark_complete(self, job_id: str) -> None:
        # complete is only reachable through pdf_pending
        await self._mark(job_id, JobStatus.PDF_PENDING, error_message=None)
        await self._mark(job_id, JobStatus.COMPLETE, error_message=None)

    async def generate(self, job_id: str, force: bool = False) -> dict:
        """Return the job's PDF, rendering a new one when missing or ``force``.

        Returns:
            ``{"storage_path", "signed_url", "reused"}``
        """
        existing = await self.latest_pdf(job_id)
        if existing is not None and not force:
            await best_effort(f"job={job_id} complete", self._mark_complete(job_id))
            return {
                "storage_path": existing.storage_path,
                "signed_url": self.signed_url(existing),
                "reused": True,
            }

        async with self.session_factory() as db:
            job = await db.get(Job, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            workspace = await db.get(Workspace, job.workspace_id)
            result = await db.execute(
                select(AiOutput)
                .where(AiOutput.job_id == job_id)
                .order_by(AiOutput.created_at.desc())
                .limit(1)
            )
            output = result.scalar_one_or_none()
            company_name = workspace.name if workspace else ""
            job_title = job.title
            due_date = job.due_date.isoformat() if job.due_date else ""

        await best_effort(
            f"job={job_id} pdf_pending",
            self._mark(job_id, JobStatus.PDF_PENDING, error_message=None),
        )

        if output is None:
            await best_effort(
                f"job={job_id} pdf_error",
                self._mark(job_id, JobStatus.PDF_ERROR, error_message="Missing ai output"),
            )
            raise PdfGenerationError("Missing ai output", {"job_id": job_id})

        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        storage_path = f"{job_id}/{stamp}.pdf"
        try:
            data = await asyncio.to_thread(
                render_estimate_pdf, output.ai_json, company_name, job_title, due_date
            )
            await self.storage.write(storage_path, data, "application/pdf")
            async with self.session_factory() as db:
                pdf = JobFile(
                    job_id=job_id,
                    kind=JobFileKind.PDF.value,
                    storage_path=storage_path,
                    mime_type="application/pdf",
                )
                db.add(pdf)
                await db.commit()
        except Exception as exc:
            logger.error("PDF generation failed for job=%s: %s", job_id, exc, exc_info=True)
            await best_effort(
                f"job={job_id} pdf_error",
                self._mark(job_id, JobStatus.PDF_ERROR, error_message=f"PDF generation failed: {exc}"),
            )
            raise PdfGenerationError(f"PDF generation failed: {exc}", {"job_id": job_id}) from exc

        await best_effort(f"job={job_id} complete", self._mark(job_id, JobStatus.COMPLETE, error_message=None))
        logger.info("PDF stored for job=%s at %s", job_id, storage_path)
        return {
            "storage_path": storage_path,
            "signed_url": self.storage.create_signed_url(
                storage_path, get_settings().signed_url_ttl_seconds
            ),
            "reused": False,
        }
