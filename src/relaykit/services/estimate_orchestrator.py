"""Estimate Orchestrator: one job's estimate generation, end to end.

Shared by the interactive endpoint and the queue runner. The only
authoritative side effect is appending one ``ai_outputs`` row; every
status marker, the PDF trigger and the final refetch are advisory and go
through ``services.best_effort`` so they can never undo or hide it.

Pipeline:
    load job -> entitlement -> single-flight marker -> ai_pending
    -> settings -> photos -> prompt -> catalog hints -> LLM draft
    -> price materials -> totals -> append ai_output -> ai_ready
    -> PDF trigger -> refetch
"""

import asyncio
import logging
import mimetypes
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm import selectinload

from relaykit.agents.base import ERROR_INVALID_JSON
from relaykit.agents.estimate_agent import EstimateAgent
from relaykit.agents.prompts.estimate import build_user_text
from relaykit.app.config import Settings, get_settings
from relaykit.domain.enums import JobFileKind, JobItemType, JobStatus
from relaykit.domain.errors import (
    ConfigurationError,
    GenerationInProgressError,
    JobNotFoundError,
    MalformedResponseError,
    RelayKitError,
    UpstreamError,
)
from relaykit.domain.models import AiOutput, Job, JobFile
from relaykit.domain.schemas import DraftEstimateResponse, JobResponse
from relaykit.infra.storage import StorageProvider
from relaykit.services.access_service import require_access
from relaykit.services.best_effort import best_effort, best_effort_value, fire_and_forget
from relaykit.services.job_state_machine import transition_job
from relaykit.services.pricing_service import PricingLookup, PricingSummary
from relaykit.services.prompt_resolver import ResolvedPrompt, resolve_prompt
from relaykit.services.totals import compute_totals, labor_line
from relaykit.services.workspace_service import get_or_create_settings

logger = logging.getLogger(__name__)

PdfTrigger = Callable[[str], Awaitable[Any]]


def format_estimate_number(moment: datetime) -> str:
    """``YYYYMMDD-HHMM`` in UTC."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y%m%d-%H%M")


def _naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass
class Photo:
    url: str
    mime_type: str
    data: bytes


@dataclass
class EstimateResult:
    """What a successful generation hands back to its caller."""

    job: dict
    ai_output: dict
    refreshed: bool = True
    warnings: list[str] = field(default_factory=list)


class EstimateOrchestrator:
    """Drives ``ai_pending -> ai_ready | ai_error`` for one job.

    Every step opens its own short-lived session from ``session_factory``
    so an advisory write can never share a transaction with the estimate
    insert.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        storage: StorageProvider,
        agent: Optional[EstimateAgent] = None,
        settings: Optional[Settings] = None,
        pdf_trigger: Optional[PdfTrigger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.settings = settings or get_settings()
        self.agent = agent or EstimateAgent(
            model_name=self.settings.estimate_model,
            temperature=self.settings.estimate_temperature,
            timeout_seconds=self.settings.llm_timeout_seconds,
        )
        self.pdf_trigger = pdf_trigger
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def generate(self, job_id: str, workspace_id: Optional[str] = None) -> EstimateResult:
        """Generate and persist one estimate for ``job_id``.

        Args:
            job_id: Job to estimate.
            workspace_id: When given, the job must belong to this workspace.

        Raises:
            JobNotFoundError: unknown job (or another workspace's job).
            EntitlementError: workspace has neither a subscription nor a live trial.
            GenerationInProgressError: another generation holds the job.
            ConfigurationError: no LLM credentials configured.
            MalformedResponseError / UpstreamError: LLM failures.
        """
        job = await self._load_job(job_id)
        if job is None or (workspace_id is not None and job.workspace_id != workspace_id):
            raise JobNotFoundError(job_id)

        async with self.session_factory() as db:
            await require_access(db, job.workspace_id)

        marker = await self._acquire_generation(job_id)
        try:
            await best_effort(
                f"job={job_id} ai_pending",
                self._mark(job_id, JobStatus.AI_PENDING, error_message=None),
            )
            try:
                return await self._run(job)
            except Exception as exc:
                logger.error("Estimate generation failed for job=%s: %s", job_id, exc, exc_info=True)
                await best_effort(
                    f"job={job_id} ai_error",
                    self._mark(job_id, JobStatus.AI_ERROR, error_message=_error_text(exc)),
                )
                raise
        finally:
            await best_effort(f"job={job_id} release", self._release_generation(job_id, marker))

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(self, job: Job) -> EstimateResult:
        async with self.session_factory() as db:
            ws_settings = await get_or_create_settings(db, job.workspace_id)
            tax_rate = float(ws_settings.tax_rate_percent or 0)
            markup_percent = float(ws_settings.markup_percent or 0)
            hourly_rate = float(ws_settings.hourly_rate or 0)
            prompt = await resolve_prompt(db, job.workspace_id, customer_id=job.customer_id)

        photos = await self._collect_photos(job.id)

        pricing = PricingLookup.for_job(
            self.session_factory,
            workspace_id=job.workspace_id,
            trade=prompt.trade,
            customer_id=job.customer_id,
            timeout_seconds=self.settings.pricing_lookup_timeout_seconds,
        )
        try:
            line_items = _line_items(job)
            hints = await pricing.hints(
                _hint_context(job, line_items), limit=self.settings.catalog_hint_limit
            )

            draft = await self._draft(job, prompt, line_items, hints, photos)

            labor = [labor_line(line.task, line.hours, hourly_rate) for line in draft.estimate.labor]
            proposed = [
                {"item": (m.item or "").strip(), "qty": m.qty, "cost": 0.0}
                for m in draft.estimate.materials
            ]
            priced = await pricing.price_materials(proposed)
        finally:
            pricing.close()

        totals = compute_totals(labor, priced.materials, hourly_rate, markup_percent, tax_rate)

        moment = self.clock()
        ai_json = self._build_ai_json(
            job, draft, labor, priced, totals, prompt, moment,
            tax_rate=tax_rate, markup_percent=markup_percent, hourly_rate=hourly_rate,
        )

        # Authoritative write
        async with self.session_factory() as db:
            output = AiOutput(job_id=job.id, ai_json=ai_json)
            db.add(output)
            await db.commit()
            await db.refresh(output)
            ai_output = {
                "id": output.id,
                "job_id": output.job_id,
                "ai_json": output.ai_json,
                "created_at": output.created_at.isoformat() if output.created_at else None,
            }
        logger.info(
            "Estimate persisted for job=%s output=%s total=%.2f missing=%d",
            job.id, ai_output["id"], totals.total, priced.missing_count,
        )

        await best_effort(
            f"job={job.id} ai_ready",
            self._mark(
                job.id, JobStatus.AI_READY,
                error_message=None, estimated_at=_naive_utc(moment),
            ),
        )

        if self.pdf_trigger is not None:
            fire_and_forget(f"job={job.id} pdf", self.pdf_trigger(job.id))

        refreshed = await best_effort_value(f"job={job.id} refetch", self._refetch(job.id))
        if refreshed is None:
            return EstimateResult(
                job={
                    "id": job.id,
                    "workspace_id": job.workspace_id,
                    "title": job.title,
                    "status": JobStatus.AI_READY.value,
                    "estimated_at": _naive_utc(moment).isoformat(),
                },
                ai_output=ai_output,
                refreshed=False,
            )
        return EstimateResult(job=refreshed, ai_output=ai_output)

    async def _draft(
        self,
        job: Job,
        prompt: ResolvedPrompt,
        line_items: list[dict],
        hints: list[str],
        photos: list[Photo],
    ) -> DraftEstimateResponse:
        if not self.settings.gemini_api_key:
            raise ConfigurationError("GEMINI_API_KEY is missing")

        user_text = build_user_text(
            title=job.title,
            client_name=job.client_name or "",
            due_date=job.due_date.isoformat() if job.due_date else "",
            description=job.description_md or "",
            line_items=line_items,
            catalog_hints=hints,
            photo_urls=[p.url for p in photos],
        )
        result = await self.agent.draft(
            system_prompt=prompt.system_prompt,
            user_text=user_text,
            images=[{"mime_type": p.mime_type, "data": p.data} for p in photos],
        )
        if result.ok:
            return result.data
        if result.error_code == ERROR_INVALID_JSON:
            raise MalformedResponseError(
                "AI returned invalid JSON",
                {"reason": result.error, "raw_head": str(result.data or "")[:200]},
            )
        raise UpstreamError(
            result.error or "AI request failed",
            {"error_code": result.error_code},
        )

    def _build_ai_json(
        self,
        job: Job,
        draft: DraftEstimateResponse,
        labor: list[dict],
        priced: PricingSummary,
        totals,
        prompt: ResolvedPrompt,
        moment: datetime,
        *,
        tax_rate: float,
        markup_percent: float,
        hourly_rate: float,
    ) -> dict:
        client = draft.client
        estimate = draft.estimate
        job_notes = estimate.job_notes or ""
        unpriced = [m["item"] for m in priced.materials if m["pricing_status"] == "missing" and m["item"]]
        if unpriced:
            job_notes = (job_notes + "\n\n" if job_notes else "") + "Unpriced materials: " + ", ".join(unpriced)

        return {
            "client": {
                "customerName": client.customer_name or job.client_name or "",
                "customerEmail": client.customer_email or "",
                "address": client.address or "",
                "phone": client.phone or "",
                "preferredDate": client.preferred_date
                or (job.due_date.isoformat() if job.due_date else ""),
            },
            "estimate": {
                "estimateNumber": format_estimate_number(moment),
                "project": estimate.project or job.title,
                "jobDescription": estimate.job_description or job.description_md or "",
                "jobNotes": job_notes,
                "formattingStatus": "success",
                "labor": labor,
                "materials": priced.materials,
                "subtotal": totals.subtotal,
                "tax": totals.tax,
                "total": totals.total,
            },
            "image_analysis": [a.model_dump() for a in draft.image_analysis],
            "metadata": {
                "tax_rate_percent": tax_rate,
                "markup_percent": markup_percent,
                "markup_amount": totals.markup_amount,
                "hourly_rate": hourly_rate,
                "model": self.settings.estimate_model,
                "prompt_id": prompt.id,
                "prompt_source": prompt.source.value,
                "prompt_trade": prompt.trade,
                "generated_at": moment.isoformat(),
                "pricing_missing_count": priced.missing_count,
                "pricing_missing_timeout_count": priced.missing_timeout_count,
            },
        }

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _load_job(self, job_id: str) -> Optional[Job]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Job).options(selectinload(Job.items)).where(Job.id == job_id)
            )
            return result.scalar_one_or_none()

    async def _refetch(self, job_id: str) -> dict:
        job = await self._load_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return JobResponse.model_validate(job).model_dump(mode="json")

    async def _collect_photos(self, job_id: str) -> list[Photo]:
        """Signed URL plus bytes for the first ``max_estimate_images`` photos.

        Fetched concurrently; a photo that fails or times out is skipped.
        """
        async with self.session_factory() as db:
            result = await db.execute(
                select(JobFile)
                .where(JobFile.job_id == job_id, JobFile.kind == JobFileKind.IMAGE.value)
                .order_by(JobFile.created_at.asc())
                .limit(self.settings.max_estimate_images)
            )
            files = list(result.scalars().all())

        async def _fetch(file: JobFile) -> Optional[Photo]:
            try:
                url = self.storage.create_signed_url(
                    file.storage_path, self.settings.signed_url_ttl_seconds
                )
                data = await asyncio.wait_for(
                    self.storage.read(file.storage_path),
                    timeout=self.settings.storage_timeout_seconds,
                )
            except Exception as exc:
                logger.warning("Skipping photo %s for job=%s: %s", file.storage_path, job_id, exc)
                return None
            mime = file.mime_type or mimetypes.guess_type(file.storage_path)[0] or "image/jpeg"
            return Photo(url=url, mime_type=mime, data=data)

        fetched = await asyncio.gather(*(_fetch(f) for f in files))
        return [p for p in fetched if p is not None]

    async def _mark(self, job_id: str, target: JobStatus, **fields: Any) -> bool:
        async with self.session_factory() as db:
            won = await transition_job(db, job_id, target, **fields)
            await db.commit()
            return won

    async def _acquire_generation(self, job_id: str) -> datetime:
        """Claim the job's running-generation marker or raise 409."""
        stamp = _naive_utc(self.clock())
        stale_before = stamp - timedelta(seconds=self.settings.generation_lock_ttl_seconds)
        async with self.session_factory() as db:
            result = await db.execute(
                update(Job)
                .where(
                    Job.id == job_id,
                    or_(
                        Job.generation_started_at.is_(None),
                        Job.generation_started_at < stale_before,
                    ),
                )
                .values(generation_started_at=stamp)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        if result.rowcount != 1:
            raise GenerationInProgressError(job_id)
        return stamp

    async def _release_generation(self, job_id: str, stamp: datetime) -> None:
        async with self.session_factory() as db:
            await db.execute(
                update(Job)
                .where(Job.id == job_id, Job.generation_started_at == stamp)
                .values(generation_started_at=None)
                .execution_options(synchronize_session=False)
            )
            await db.commit()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _line_items(job: Job) -> list[dict]:
    items = []
    for item in job.items or []:
        if item.type != JobItemType.LINE_ITEM.value:
            continue
        content = item.content_json or {}
        items.append({
            "name": item.title or "",
            "description": str(content.get("description") or ""),
            "unit": str(content.get("unit") or ""),
            "unit_price": content.get("unit_price") or 0,
            "quantity": content.get("quantity") or 0,
        })
    return items


def _hint_context(job: Job, line_items: list[dict]) -> str:
    parts = [job.title or "", job.description_md or ""]
    for item in line_items:
        parts.append(item["name"])
        parts.append(item["description"])
    return " ".join(parts)


def _error_text(exc: Exception) -> str:
    if isinstance(exc, RelayKitError):
        return exc.message
    return str(exc) or type(exc).__name__


def diagnostics(exc: Exception) -> dict:
    """Debug-only detail for an estimate failure (``?debug=true``)."""
    frames = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return {
        "code": getattr(exc, "code", type(exc).__name__),
        "details": getattr(exc, "details", {}),
        "stack_head": "".join(frames[-3:])[:1000],
    }


def build_orchestrator(session_factory: async_sessionmaker) -> EstimateOrchestrator:
    """Default wiring: local storage, Gemini agent, background PDF generation."""
    from relaykit.infra.storage import get_storage
    from relaykit.services.pdf_service import PdfService

    storage = get_storage()
    pdf = PdfService(session_factory, storage)
    return EstimateOrchestrator(
        session_factory=session_factory,
        storage=storage,
        pdf_trigger=pdf.generate,
    )
