"""Workspace-scoped CRUD for jobs, customers, templates and share packages."""

import logging
import secrets
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from relaykit.domain.enums import JobItemType
from relaykit.domain.errors import JobNotFoundError, ResourceNotFoundError
from relaykit.domain.models import (
    AiOutput,
    Customer,
    EstimateQueueEntry,
    Job,
    JobFile,
    JobItem,
    Package,
    Template,
)
from relaykit.domain.schemas import (
    CustomerCreate,
    JobCreate,
    JobUpdate,
    LineItemIn,
    TemplateCreate,
    TemplateUpdate,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


def _line_item_rows(job_id: str, line_items: list[LineItemIn]) -> list[JobItem]:
    return [
        JobItem(
            job_id=job_id,
            type=JobItemType.LINE_ITEM.value,
            title=item.title,
            content_json={
                "description": item.description,
                "unit": item.unit,
                "unit_price": item.unit_price,
                "quantity": item.quantity,
            },
            order_index=index,
        )
        for index, item in enumerate(line_items)
    ]


async def list_jobs(db: AsyncSession, workspace_id: str) -> list[Job]:
    result = await db.execute(
        select(Job)
        .options(selectinload(Job.items))
        .where(Job.workspace_id == workspace_id)
        .order_by(Job.updated_at.desc())
    )
    return list(result.scalars().all())


async def get_job(db: AsyncSession, workspace_id: str, job_id: str) -> Job:
    """Load a job (with items) owned by ``workspace_id`` or raise JobNotFoundError."""
    result = await db.execute(
        select(Job)
        .options(selectinload(Job.items))
        .where(Job.id == job_id, Job.workspace_id == workspace_id)
        .execution_options(populate_existing=True)
    )
    job = result.scalar_one_or_none()
    if job is None:
        raise JobNotFoundError(job_id)
    return job


async def _check_customer(db: AsyncSession, workspace_id: str, customer_id: Optional[str]) -> None:
    if customer_id is None:
        return
    customer = await db.get(Customer, customer_id)
    if customer is None or customer.workspace_id != workspace_id:
        raise ResourceNotFoundError("customer", customer_id)


async def create_job(db: AsyncSession, workspace_id: str, user_id: str, data: JobCreate) -> Job:
    await _check_customer(db, workspace_id, data.customer_id)
    job = Job(
        workspace_id=workspace_id,
        created_by_user_id=user_id,
        customer_id=data.customer_id,
        title=data.title,
        client_name=data.client_name,
        description_md=data.description_md,
        due_date=data.due_date,
    )
    db.add(job)
    await db.flush()
    db.add_all(_line_item_rows(job.id, data.line_items))
    await db.commit()
    logger.info("Job created: id=%s workspace=%s items=%d", job.id, workspace_id, len(data.line_items))
    return await get_job(db, workspace_id, job.id)


async def update_job(db: AsyncSession, workspace_id: str, job_id: str, data: JobUpdate) -> Job:
    """Apply a partial update. ``line_items`` (when given) replaces every line item."""
    job = await get_job(db, workspace_id, job_id)
    fields = data.model_dump(exclude_unset=True, exclude={"line_items"})
    if "customer_id" in fields:
        await _check_customer(db, workspace_id, fields["customer_id"])
    for name, value in fields.items():
        setattr(job, name, value)

    if data.line_items is not None:
        await db.execute(
            delete(JobItem).where(
                JobItem.job_id == job_id,
                JobItem.type == JobItemType.LINE_ITEM.value,
            )
        )
        db.add_all(_line_item_rows(job_id, data.line_items))

    await db.commit()
    return await get_job(db, workspace_id, job_id)


async def delete_job(db: AsyncSession, workspace_id: str, job_id: str) -> None:
    await get_job(db, workspace_id, job_id)
    for model in (AiOutput, Package, EstimateQueueEntry, JobFile, JobItem):
        await db.execute(delete(model).where(model.job_id == job_id))
    await db.execute(delete(Job).where(Job.id == job_id))
    await db.commit()
    logger.info("Job deleted: id=%s workspace=%s", job_id, workspace_id)


# ---------------------------------------------------------------------------
# Estimates
# ---------------------------------------------------------------------------


async def latest_ai_output(db: AsyncSession, job_id: str) -> Optional[AiOutput]:
    result = await db.execute(
        select(AiOutput)
        .where(AiOutput.job_id == job_id)
        .order_by(AiOutput.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_ai_outputs(db: AsyncSession, job_id: str) -> list[AiOutput]:
    """Every estimate generated for the job, newest first."""
    result = await db.execute(
        select(AiOutput).where(AiOutput.job_id == job_id).order_by(AiOutput.created_at.desc())
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------


async def list_customers(db: AsyncSession, workspace_id: str) -> list[Customer]:
    result = await db.execute(
        select(Customer).where(Customer.workspace_id == workspace_id).order_by(Customer.name.asc())
    )
    return list(result.scalars().all())


async def create_customer(db: AsyncSession, workspace_id: str, data: CustomerCreate) -> Customer:
    customer = Customer(workspace_id=workspace_id, **data.model_dump())
    db.add(customer)
    await db.commit()
    await db.refresh(customer)
    return customer


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


async def list_templates(db: AsyncSession, workspace_id: str) -> list[Template]:
    result = await db.execute(
        select(Template).where(Template.workspace_id == workspace_id).order_by(Template.updated_at.desc())
    )
    return list(result.scalars().all())


async def get_template(db: AsyncSession, workspace_id: str, template_id: str) -> Template:
    template = await db.get(Template, template_id)
    if template is None or template.workspace_id != workspace_id:
        raise ResourceNotFoundError("template", template_id)
    return template


async def create_template(db: AsyncSession, workspace_id: str, data: TemplateCreate) -> Template:
    template = Template(workspace_id=workspace_id, **data.model_dump())
    db.add(template)
    await db.commit()
    await db.refresh(template)
    return template


async def update_template(
    db: AsyncSession, workspace_id: str, template_id: str, data: TemplateUpdate
) -> Template:
    template = await get_template(db, workspace_id, template_id)
    for name, value in data.model_dump(exclude_unset=True).items():
        setattr(template, name, value)
    await db.commit()
    await db.refresh(template)
    return template


async def delete_template(db: AsyncSession, workspace_id: str, template_id: str) -> None:
    template = await get_template(db, workspace_id, template_id)
    await db.delete(template)
    await db.commit()


# ---------------------------------------------------------------------------
# Packages
# ---------------------------------------------------------------------------


async def get_or_create_package(db: AsyncSession, workspace_id: str, job_id: str) -> Package:
    """Return the job's share package, creating it with a fresh public slug."""
    await get_job(db, workspace_id, job_id)
    result = await db.execute(select(Package).where(Package.job_id == job_id))
    package = result.scalar_one_or_none()
    if package is not None:
        return package

    package = Package(
        job_id=job_id,
        workspace_id=workspace_id,
        public_slug=secrets.token_urlsafe(9).lower().replace("_", "-"),
        is_public=True,
    )
    db.add(package)
    await db.commit()
    await db.refresh(package)
    logger.info("Package created: job=%s slug=%s", job_id, package.public_slug)
    return package


async def get_public_package(db: AsyncSession, slug: str) -> tuple[Package, Job, Optional[AiOutput]]:
    result = await db.execute(
        select(Package).where(Package.public_slug == slug, Package.is_public.is_(True))
    )
    package = result.scalar_one_or_none()
    if package is None:
        raise ResourceNotFoundError("package", slug)
    job = await get_job(db, package.workspace_id, package.job_id)
    return package, job, await latest_ai_output(db, job.id)
