"""Workspace settings, members and customers."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from relaykit.app.routes.deps import MANAGER_ROLES, Member, get_current_member, http_error, require_role
from relaykit.domain.errors import RelayKitError
from relaykit.domain.schemas import (
    CustomerCreate,
    CustomerResponse,
    MemberResponse,
    MemberRoleUpdate,
    WorkspaceSettingsResponse,
    WorkspaceSettingsUpdate,
)
from relaykit.infra.database import get_db
from relaykit.services import job_service
from relaykit.services.workspace_service import (
    change_member_role,
    get_or_create_settings,
    list_members,
    remove_member,
    upsert_settings,
)

router = APIRouter(prefix="/api/workspaces", tags=["workspaces"])
customers_router = APIRouter(prefix="/api/customers", tags=["customers"])


@router.get("/settings", response_model=WorkspaceSettingsResponse)
async def get_settings_route(
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    return WorkspaceSettingsResponse.model_validate(
        await get_or_create_settings(db, member.workspace_id)
    )


@router.put("/settings", response_model=WorkspaceSettingsResponse)
async def update_settings_route(
    data: WorkspaceSettingsUpdate,
    member: Member = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    row = await upsert_settings(db, member.workspace_id, **data.model_dump())
    return WorkspaceSettingsResponse.model_validate(row)


@router.get("/members", response_model=list[MemberResponse])
async def list_members_route(
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    return [
        MemberResponse(user_id=m.user_id, role=m.role, created_at=m.created_at, user_email=email)
        for m, email in await list_members(db, member.workspace_id)
    ]


@router.put("/members/{user_id}", response_model=MemberResponse)
async def change_member_role_route(
    user_id: str,
    data: MemberRoleUpdate,
    member: Member = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    try:
        updated = await change_member_role(db, member.workspace_id, user_id, data.role)
    except RelayKitError as exc:
        raise http_error(exc)
    return MemberResponse(user_id=updated.user_id, role=updated.role, created_at=updated.created_at)


@router.delete("/members/{user_id}")
async def remove_member_route(
    user_id: str,
    member: Member = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    try:
        await remove_member(db, member.workspace_id, user_id)
    except RelayKitError as exc:
        raise http_error(exc)
    return {"success": True}

@customers_router.get("", response_model=list[CustomerResponse])
async def list_customers(
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    customers = await job_service.list_customers(db, member.workspace_id)
    return [CustomerResponse.model_validate(c) for c in customers]


@customers_router.post("", response_model=CustomerResponse, status_code=201)
async def create_customer(
    data: CustomerCreate,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    customer = await job_service.create_customer(db, member.workspace_id, data)
    return CustomerResponse.model_validate(customer)
