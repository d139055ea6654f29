"""Job templates and public share packages."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from relaykit.app.routes.deps import Member, get_current_member, get_pdf_service, http_error
from relaykit.domain.errors import RelayKitError
from relaykit.domain.schemas import (
    AiOutputResponse,
    JobResponse,
    TemplateCreate,
    TemplateResponse,
    TemplateUpdate,
)
from relaykit.infra.database import get_db
from relaykit.services import job_service
from relaykit.services.pdf_service import PdfService

router = APIRouter(prefix="/api/templates", tags=["templates"])
packages_router = APIRouter(prefix="/api/packages", tags=["packages"])


@router.get("", response_model=list[TemplateResponse])
async def list_templates(
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    templates = await job_service.list_templates(db, member.workspace_id)
    return [TemplateResponse.model_validate(t) for t in templates]


@router.post("", response_model=TemplateResponse, status_code=201)
async def create_template(
    data: TemplateCreate,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    template = await job_service.create_template(db, member.workspace_id, data)
    return TemplateResponse.model_validate(template)


@router.put("/{template_id}", response_model=TemplateResponse)
async def update_template(
    template_id: str,
    data: TemplateUpdate,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    try:
        template = await job_service.update_template(db, member.workspace_id, template_id, data)
    except RelayKitError as exc:
        raise http_error(exc)
    return TemplateResponse.model_validate(template)


@router.delete("/{template_id}")
async def delete_template(
    template_id: str,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    try:
        await job_service.delete_template(db, member.workspace_id, template_id)
    except RelayKitError as exc:
        raise http_error(exc)
    return {"success": True}


@packages_router.get("/{slug}")
async def get_package(
    slug: str,
    db: AsyncSession = Depends(get_db),
    pdf: PdfService = Depends(get_pdf_service),
):
    """Public: the shared job, its latest estimate and a signed PDF link."""
    try:
        package, job, output = await job_service.get_public_package(db, slug)
    except RelayKitError as exc:
        raise http_error(exc)

    latest_pdf = await pdf.latest_pdf(job.id)
    return {
        "package": {
            "id": package.id,
            "public_slug": package.public_slug,
            "created_at": package.created_at.isoformat() if package.created_at else None,
        },
        "job": JobResponse.model_validate(job).model_dump(mode="json"),
        "estimate": AiOutputResponse.model_validate(output).model_dump(mode="json") if output else None,
        "pdf_url": pdf.signed_url(latest_pdf) if latest_pdf else None,
    }
