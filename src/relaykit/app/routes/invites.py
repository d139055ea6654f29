"""Workspace invite routes: create, validate, accept, revoke."""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from relaykit.app.config import get_settings
from relaykit.app.routes.deps import MANAGER_ROLES, Member, get_current_user_dep, http_error, require_role
from relaykit.domain.models import User, Workspace
from relaykit.domain.schemas import InviteAccept, InviteCreate
from relaykit.infra.database import get_db
from relaykit.services.email_service import send_invite_email
from relaykit.services.invite_service import (
    InviteError,
    accept_invite,
    create_invite,
    find_valid_invite,
    invite_link,
    revoke_invite,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/invites", tags=["invites"])


@router.post("", status_code=201)
async def create_invite_route(
    data: InviteCreate,
    member: Member = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    try:
        invite, token = await create_invite(db, member.workspace_id, data.email, data.role, member.user.id)
    except InviteError as exc:
        raise http_error(exc)

    workspace = await db.get(Workspace, member.workspace_id)
    link = invite_link(token)
    email_sent = await send_invite_email(
        invite.email,
        workspace.name if workspace else "",
        link,
        get_settings().invite_expiry_days,
    )
    return {
        "id": invite.id,
        "email": invite.email,
        "role": invite.role,
        "expires_at": invite.expires_at.isoformat(),
        "invite_url": link,
        "email_sent": email_sent,
    }


@router.get("/validate")
async def validate_invite(token: str = Query(""), db: AsyncSession = Depends(get_db)):
    try:
        invite, workspace = await find_valid_invite(db, token)
    except InviteError as exc:
        raise http_error(exc)
    return {
        "valid": True,
        "email": invite.email,
        "role": invite.role,
        "workspace_name": workspace.name if workspace else None,
        "expires_at": invite.expires_at.isoformat(),
    }


@router.post("/accept")
async def accept_invite_route(
    data: InviteAccept,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        invite, workspace = await accept_invite(db, data.token, user.id)
    except InviteError as exc:
        raise http_error(exc)
    return {
        "success": True,
        "workspace_id": invite.workspace_id,
        "workspace_name": workspace.name if workspace else None,
        "role": invite.role,
    }


@router.delete("/{invite_id}")
async def revoke_invite_route(
    invite_id: str,
    member: Member = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    try:
        await revoke_invite(db, member.workspace_id, invite_id)
    except InviteError as exc:
        raise http_error(exc)
    return {"success": True}
