"""Authentication routes: signup, login, me."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from relaykit.app.routes.deps import get_current_user_dep
from relaykit.domain.enums import Trade
from relaykit.domain.models import User, utcnow
from relaykit.domain.schemas import LoginRequest, SignupRequest, TokenResponse, UserResponse
from relaykit.infra.database import get_db
from relaykit.services.auth_service import (
    create_access_token,
    get_user_by_email,
    signup as signup_user,
    verify_password,
)
from relaykit.services.workspace_service import get_membership

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/signup", response_model=TokenResponse)
async def signup(data: SignupRequest, db: AsyncSession = Depends(get_db)):
    if data.trade not in {t.value for t in Trade}:
        raise HTTPException(status_code=400, detail={"error": "Invalid trade"})
    existing = await get_user_by_email(db, data.email)
    if existing:
        raise HTTPException(status_code=400, detail={"error": "Email already registered"})

    user, workspace = await signup_user(
        db, data.email, data.password, data.name, data.workspace_name, data.trade
    )
    logger.info("Signup: user=%s workspace=%s", user.id, workspace.id)
    return TokenResponse(
        access_token=create_access_token(user.id, workspace.id),
        user=UserResponse.model_validate(user),
        workspace_id=workspace.id,
        role="owner",
    )


@router.post("/login", response_model=TokenResponse)
async def login(data: LoginRequest, db: AsyncSession = Depends(get_db)):
    user = await get_user_by_email(db, data.email)
    if not user or not verify_password(data.password, user.password_hash):
        raise HTTPException(status_code=401, detail={"error": "Invalid email or password"})
    user.last_login_at = utcnow()
    await db.commit()

    membership = await get_membership(db, user.id)
    workspace_id = membership.workspace_id if membership else None
    return TokenResponse(
        access_token=create_access_token(user.id, workspace_id),
        user=UserResponse.model_validate(user),
        workspace_id=workspace_id,
        role=membership.role if membership else None,
    )


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user_dep)):
    return UserResponse.model_validate(user)
