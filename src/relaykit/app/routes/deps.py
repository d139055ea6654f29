"""Shared route dependencies: current user, workspace membership, services."""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from relaykit.app.config import get_settings
from relaykit.domain.enums import MemberRole
from relaykit.domain.errors import RelayKitError
from relaykit.domain.models import User
from relaykit.infra.database import get_db, get_session_factory
from relaykit.infra.storage import StorageProvider, get_storage
from relaykit.services.auth_service import decode_token
from relaykit.services.estimate_orchestrator import EstimateOrchestrator, build_orchestrator
from relaykit.services.estimate_queue import EstimateQueue
from relaykit.services.pdf_service import PdfService
from relaykit.services.workspace_service import get_membership

logger = logging.getLogger(__name__)

MANAGER_ROLES = (MemberRole.OWNER.value, MemberRole.ADMIN.value)


def http_error(exc: RelayKitError, **extra) -> HTTPException:
    """Translate a domain error into an HTTPException with an ``{"error": ...}`` body."""
    return HTTPException(status_code=exc.http_status, detail={"error": exc.message, **extra})


async def get_current_user_dep(
    request: Request, db: AsyncSession = Depends(get_db)
) -> User:
    """Dependency: extract current user from Bearer token."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Unauthorized"},
        )
    payload = decode_token(auth_header.removeprefix("Bearer "))
    if not payload or "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Invalid or expired token"},
        )
    result = await db.execute(select(User).where(User.id == payload["sub"]))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "User not found or inactive"},
        )
    return user


async def get_optional_user(
    request: Request, db: AsyncSession = Depends(get_db)
) -> Optional[User]:
    """Like ``get_current_user_dep`` but anonymous callers get ``None``."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    payload = decode_token(auth_header.removeprefix("Bearer "))
    if not payload or "sub" not in payload:
        return None
    user = await db.get(User, payload["sub"])
    return user if user is not None and user.is_active else None

@dataclass
class Member:
    """The authenticated user together with their workspace and role."""

    user: User
    workspace_id: str
    role: str


async def get_current_member(
    user: User = Depends(get_current_user_dep), db: AsyncSession = Depends(get_db)
) -> Member:
    membership = await get_membership(db, user.id)
    if membership is None:
        raise HTTPException(status_code=400, detail={"error": "No workspace found"})
    return Member(user=user, workspace_id=membership.workspace_id, role=membership.role)


def require_role(*roles: str):
    """Factory: dependency that checks the member has one of the required roles."""

    async def checker(member: Member = Depends(get_current_member)) -> Member:
        if member.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"error": "Insufficient permissions"},
            )
        return member

    return checker


def require_internal_token(request: Request) -> None:
    if request.headers.get("X-Internal-Token", "") != get_settings().internal_token:
        raise HTTPException(status_code=401, detail={"error": "Unauthorized"})


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


def get_orchestrator(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> EstimateOrchestrator:
    return build_orchestrator(session_factory)


def get_estimate_queue(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    orchestrator: EstimateOrchestrator = Depends(get_orchestrator),
) -> EstimateQueue:
    return EstimateQueue(session_factory, orchestrator)


def get_pdf_service(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    storage: StorageProvider = Depends(get_storage),
) -> PdfService:
    return PdfService(session_factory, storage)
