"""Workspace invites. Raw tokens are only ever shown once; the table stores a peppered hash."""

import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from relaykit.app.config import get_settings
from relaykit.domain.enums import MemberRole
from relaykit.domain.errors import RelayKitError
from relaykit.domain.models import Invite, Workspace, WorkspaceMember, utcnow

logger = logging.getLogger(__name__)

INVITABLE_ROLES = {MemberRole.ADMIN.value, MemberRole.MEMBER.value}


class InviteError(RelayKitError):
    retryable = False

    def __init__(self, message: str, http_status: int = 400):
        super().__init__("INVITE_INVALID", message)
        self.http_status = http_status


def hash_token(token: str) -> str:
    return hashlib.sha256((token + get_settings().invite_token_pepper).encode("utf-8")).hexdigest()


async def create_invite(
    db: AsyncSession,
    workspace_id: str,
    email: str,
    role: str,
    invited_by_user_id: str,
) -> tuple[Invite, str]:
    """Create an invite. Returns ``(invite, raw_token)``."""
    if role not in INVITABLE_ROLES:
        raise InviteError(f"Role must be one of {sorted(INVITABLE_ROLES)}")

    token = secrets.token_urlsafe(24)
    invite = Invite(
        workspace_id=workspace_id,
        email=email.strip().lower(),
        role=role,
        token_hash=hash_token(token),
        invited_by_user_id=invited_by_user_id,
        expires_at=utcnow() + timedelta(days=get_settings().invite_expiry_days),
    )
    db.add(invite)
    await db.commit()
    await db.refresh(invite)
    logger.info("Invite created: workspace=%s email=%s role=%s", workspace_id, invite.email, role)
    return invite, token


def invite_link(token: str) -> str:
    return f"{get_settings().app_base_url.rstrip('/')}/invite/{token}"


async def find_valid_invite(db: AsyncSession, token: str) -> tuple[Invite, Optional[Workspace]]:
    """Look up an invite by raw token; raise InviteError if unknown, used or expired."""
    if not token:
        raise InviteError("Token required")
    result = await db.execute(select(Invite).where(Invite.token_hash == hash_token(token)))
    invite = result.scalar_one_or_none()
    if invite is None:
        raise InviteError("Invalid invite token", http_status=404)
    if invite.accepted_at is not None:
        raise InviteError("This invite has already been accepted")
    if invite.expires_at < utcnow():
        raise InviteError("This invite has expired")
    workspace = await db.get(Workspace, invite.workspace_id)
    return invite, workspace


async def accept_invite(db: AsyncSession, token: str, user_id: str) -> tuple[Invite, Optional[Workspace]]:
    """Join the invite's workspace. A user may belong to only one workspace."""
    invite, workspace = await find_valid_invite(db, token)

    existing = await db.execute(select(WorkspaceMember).where(WorkspaceMember.user_id == user_id))
    if existing.scalars().first() is not None:
        raise InviteError("You already belong to a workspace. Each user can only be in one workspace.")

    db.add(WorkspaceMember(workspace_id=invite.workspace_id, user_id=user_id, role=invite.role))
    invite.accepted_at = utcnow()
    await db.commit()
    logger.info("Invite %s accepted by user=%s", invite.id, user_id)
    return invite, workspace


async def revoke_invite(db: AsyncSession, workspace_id: str, invite_id: str) -> None:
    """Delete a workspace's invite so its token stops validating."""
    result = await db.execute(
        select(Invite).where(Invite.id == invite_id, Invite.workspace_id == workspace_id)
    )
    invite = result.scalar_one_or_none()
    if invite is None:
        raise InviteError("Invite not found", http_status=404)
    await db.delete(invite)
    await db.commit()
    logger.info("Invite %s revoked: workspace=%s", invite_id, workspace_id)
