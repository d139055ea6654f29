"""Workspace entitlement checks."""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from relaykit.domain.enums import SubscriptionStatus
from relaykit.domain.errors import EntitlementError
from relaykit.domain.models import Workspace, utcnow


def workspace_has_access(workspace: Optional[Workspace], now: Optional[datetime] = None) -> bool:
    """Active subscription, or a trial that has not ended yet."""
    if workspace is None:
        return False
    if workspace.subscription_status == SubscriptionStatus.ACTIVE.value:
        return True
    if workspace.trial_ends_at is not None:
        return workspace.trial_ends_at > (now or utcnow())
    return False


async def has_access(db: AsyncSession, workspace_id: str) -> bool:
    result = await db.execute(select(Workspace).where(Workspace.id == workspace_id))
    return workspace_has_access(result.scalar_one_or_none())


async def require_access(db: AsyncSession, workspace_id: str) -> None:
    """Raise EntitlementError (402) when the workspace has no access."""
    if not await has_access(db, workspace_id):
        raise EntitlementError(workspace_id)
