"""Authentication service: password hashing, JWT tokens and signup."""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from relaykit.app.config import get_settings
from relaykit.domain.enums import MemberRole, SubscriptionStatus
from relaykit.domain.models import User, Workspace, WorkspaceMember, WorkspaceSettings, utcnow

settings = get_settings()
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def create_access_token(user_id: str, workspace_id: str | None = None) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expiration_minutes)
    payload = {"sub": user_id, "ws": workspace_id, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def create_user(db: AsyncSession, email: str, password: str, name: str) -> User:
    user = User(
        email=email.strip().lower(),
        password_hash=hash_password(password),
        name=name,
    )
    db.add(user)
    await db.flush()
    return user


async def signup(
    db: AsyncSession,
    email: str,
    password: str,
    name: str,
    workspace_name: str,
    trade: str,
) -> tuple[User, Workspace]:
    """Create a user, their workspace (owner membership, zeroed settings) and a trial."""
    user = await create_user(db, email, password, name)

    workspace = Workspace(
        name=workspace_name,
        trade=trade,
        subscription_status=SubscriptionStatus.TRIALING.value,
        trial_ends_at=utcnow() + timedelta(days=settings.trial_days),
    )
    db.add(workspace)
    await db.flush()

    db.add(WorkspaceMember(workspace_id=workspace.id, user_id=user.id, role=MemberRole.OWNER.value))
    db.add(WorkspaceSettings(workspace_id=workspace.id))

    await db.commit()
    await db.refresh(user)
    await db.refresh(workspace)
    return user, workspace
