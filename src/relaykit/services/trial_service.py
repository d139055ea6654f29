"""Shareable trial links. A manager mints a link; redeeming it starts a trial."""

import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from relaykit.app.config import get_settings
from relaykit.domain.enums import SubscriptionStatus, TrialLinkStatus
from relaykit.domain.errors import RelayKitError
from relaykit.domain.models import TrialLink, Workspace, utcnow

logger = logging.getLogger(__name__)


class TrialError(RelayKitError):
    retryable = False

    def __init__(self, message: str, http_status: int = 409):
        super().__init__("TRIAL_INVALID", message)
        self.http_status = http_status


def hash_token(token: str) -> str:
    return hashlib.sha256((token + get_settings().trial_token_pepper).encode("utf-8")).hexdigest()


def trial_link_url(token: str) -> str:
    return f"{get_settings().app_base_url.rstrip('/')}/trial/{token}"


def _ensure_trial_allowed(workspace: Workspace) -> None:
    if workspace.subscription_status == SubscriptionStatus.ACTIVE.value:
        raise TrialError("Workspace already active.")
    if workspace.trial_ends_at is not None and workspace.trial_ends_at > utcnow():
        raise TrialError("Trial already active.")


async def create_trial_link(
    db: AsyncSession, workspace_id: str, created_by_user_id: str
) -> tuple[TrialLink, str]:
    """Mint a trial link for a workspace without a live trial or subscription.

    Returns ``(link, raw_token)``. Active links past their expiry are marked
    expired first; a still-live link blocks a new one.
    """
    workspace = await db.get(Workspace, workspace_id)
    if workspace is None:
        raise TrialError("Workspace not found", http_status=404)
    _ensure_trial_allowed(workspace)

    now = utcnow()
    await db.execute(
        update(TrialLink)
        .where(
            TrialLink.workspace_id == workspace_id,
            TrialLink.status == TrialLinkStatus.ACTIVE.value,
            TrialLink.expires_at <= now,
        )
        .values(status=TrialLinkStatus.EXPIRED.value)
    )
    live = await db.execute(
        select(TrialLink).where(
            TrialLink.workspace_id == workspace_id,
            TrialLink.status == TrialLinkStatus.ACTIVE.value,
            TrialLink.expires_at > now,
        )
    )
    if live.scalars().first() is not None:
        await db.commit()
        raise TrialError("An active trial link already exists.")

    token = secrets.token_urlsafe(24)
    link = TrialLink(
        workspace_id=workspace_id,
        token_hash=hash_token(token),
        status=TrialLinkStatus.ACTIVE.value,
        created_by_user_id=created_by_user_id,
        expires_at=now + timedelta(days=get_settings().trial_link_ttl_days),
    )
    db.add(link)
    await db.commit()
    await db.refresh(link)
    logger.info("Trial link created: workspace=%s link=%s", workspace_id, link.id)
    return link, token


async def redeem_trial_link(
    db: AsyncSession, token: str, user_id: Optional[str] = None
) -> Workspace:
    """Start a ``trial_link_days`` trial for the link's workspace and consume the link."""
    if not token:
        raise TrialError("Token required", http_status=400)
    result = await db.execute(select(TrialLink).where(TrialLink.token_hash == hash_token(token)))
    link = result.scalar_one_or_none()
    if link is None:
        raise TrialError("Invalid or expired trial link.", http_status=404)
    if link.status != TrialLinkStatus.ACTIVE.value:
        raise TrialError("Trial link is no longer active.")

    now = utcnow()
    if link.expires_at <= now:
        link.status = TrialLinkStatus.EXPIRED.value
        await db.commit()
        raise TrialError("Trial link has expired.", http_status=410)

    workspace = await db.get(Workspace, link.workspace_id)
    if workspace is None:
        raise TrialError("Workspace not found", http_status=404)
    _ensure_trial_allowed(workspace)

    workspace.subscription_status = SubscriptionStatus.TRIALING.value
    workspace.trial_ends_at = now + timedelta(days=get_settings().trial_link_days)
    link.status = TrialLinkStatus.REDEEMED.value
    link.redeemed_at = now
    link.redeemed_by_user_id = user_id
    await db.commit()
    await db.refresh(workspace)
    logger.info("Trial link %s redeemed: workspace=%s until=%s", link.id, workspace.id, workspace.trial_ends_at)
    return workspace
