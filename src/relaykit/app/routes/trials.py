"""Trial link routes: create (managers) and redeem (anyone holding the link)."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from relaykit.app.routes.deps import MANAGER_ROLES, Member, get_optional_user, http_error, require_role
from relaykit.domain.models import User
from relaykit.domain.schemas import TrialRedeem
from relaykit.infra.database import get_db
from relaykit.services.trial_service import TrialError, create_trial_link, redeem_trial_link, trial_link_url

router = APIRouter(prefix="/api/trials", tags=["trials"])


@router.post("/create", status_code=201)
async def create_trial_link_route(
    member: Member = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    try:
        link, token = await create_trial_link(db, member.workspace_id, member.user.id)
    except TrialError as exc:
        raise http_error(exc)
    return {
        "id": link.id,
        "link": trial_link_url(token),
        "token": token,
        "expires_at": link.expires_at.isoformat(),
    }


@router.post("/redeem")
async def redeem_trial_link_route(
    data: TrialRedeem,
    user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        workspace = await redeem_trial_link(db, data.token.strip(), user.id if user else None)
    except TrialError as exc:
        raise http_error(exc)
    return {
        "workspace_id": workspace.id,
        "subscription_status": workspace.subscription_status,
        "trial_ends_at": workspace.trial_ends_at.isoformat(),
    }
