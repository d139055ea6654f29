"""Workspace settings and membership helpers."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from relaykit.domain.enums import MemberRole
from relaykit.domain.errors import RelayKitError, ResourceNotFoundError
from relaykit.domain.models import User, WorkspaceMember, WorkspaceSettings

logger = logging.getLogger(__name__)

ASSIGNABLE_ROLES = {MemberRole.ADMIN.value, MemberRole.MEMBER.value}


class MembershipError(RelayKitError):
    retryable = False

    def __init__(self, message: str, http_status: int = 400):
        super().__init__("MEMBERSHIP_INVALID", message)
        self.http_status = http_status


async def get_or_create_settings(db: AsyncSession, workspace_id: str) -> WorkspaceSettings:
    """Return the workspace's settings row, seeding an all-zero one if missing.

    A concurrent seed losing the insert race re-reads the winner's row.
    """
    result = await db.execute(
        select(WorkspaceSettings).where(WorkspaceSettings.workspace_id == workspace_id)
    )
    row = result.scalar_one_or_none()
    if row is not None:
        return row

    row = WorkspaceSettings(
        workspace_id=workspace_id,
        tax_rate_percent=0,
        markup_percent=0,
        hourly_rate=0,
    )
    db.add(row)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        result = await db.execute(
            select(WorkspaceSettings).where(WorkspaceSettings.workspace_id == workspace_id)
        )
        return result.scalar_one()
    logger.info("Seeded settings for workspace=%s", workspace_id)
    return row


async def upsert_settings(
    db: AsyncSession,
    workspace_id: str,
    tax_rate_percent: Optional[float] = None,
    markup_percent: Optional[float] = None,
    hourly_rate: Optional[float] = None,
) -> WorkspaceSettings:
    row = await get_or_create_settings(db, workspace_id)
    if tax_rate_percent is not None:
        row.tax_rate_percent = tax_rate_percent
    if markup_percent is not None:
        row.markup_percent = markup_percent
    if hourly_rate is not None:
        row.hourly_rate = hourly_rate
    await db.commit()
    await db.refresh(row)
    return row


async def get_membership(db: AsyncSession, user_id: str) -> Optional[WorkspaceMember]:
    """The user's first workspace membership (users belong to one workspace at a time)."""
    result = await db.execute(
        select(WorkspaceMember)
        .where(WorkspaceMember.user_id == user_id)
        .order_by(WorkspaceMember.created_at.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_members(db: AsyncSession, workspace_id: str) -> list[tuple[WorkspaceMember, Optional[str]]]:
    """Members of the workspace with their email, oldest first."""
    result = await db.execute(
        select(WorkspaceMember, User.email)
        .outerjoin(User, User.id == WorkspaceMember.user_id)
        .where(WorkspaceMember.workspace_id == workspace_id)
        .order_by(WorkspaceMember.created_at.asc())
    )
    return [(member, email) for member, email in result.all()]


async def _get_member(db: AsyncSession, workspace_id: str, user_id: str) -> WorkspaceMember:
    result = await db.execute(
        select(WorkspaceMember).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id == user_id,
        )
    )
    member = result.scalar_one_or_none()
    if member is None:
        raise ResourceNotFoundError("member", user_id)
    return member


async def change_member_role(
    db: AsyncSession, workspace_id: str, user_id: str, role: str
) -> WorkspaceMember:
    """Switch a member between admin and member. The owner's role is fixed."""
    if role not in ASSIGNABLE_ROLES:
        raise MembershipError(f"Role must be one of {sorted(ASSIGNABLE_ROLES)}")
    member = await _get_member(db, workspace_id, user_id)
    if member.role == MemberRole.OWNER.value:
        raise MembershipError("The workspace owner's role cannot be changed", http_status=403)
    member.role = role
    await db.commit()
    await db.refresh(member)
    logger.info("Member role changed: workspace=%s user=%s role=%s", workspace_id, user_id, role)
    return member


async def remove_member(db: AsyncSession, workspace_id: str, user_id: str) -> None:
    member = await _get_member(db, workspace_id, user_id)
    if member.role == MemberRole.OWNER.value:
        raise MembershipError("The workspace owner cannot be removed", http_status=403)
    await db.delete(member)
    await db.commit()
    logger.info("Member removed: workspace=%s user=%s", workspace_id, user_id)
