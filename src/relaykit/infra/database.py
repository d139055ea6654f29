"""Async database engine and session management."""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from relaykit.app.config import get_settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all models."""
    pass


def engine_options(database_url: str) -> dict:
    """Keyword arguments for ``create_async_engine`` given a database URL."""
    if "sqlite" in database_url:
        # Wait up to 30s for the write lock; queue claims contend on it
        return {"echo": False, "connect_args": {"check_same_thread": False, "timeout": 30}}
    return {"echo": False, "pool_size": 5, "max_overflow": 10, "pool_pre_ping": True}


settings = get_settings()
_is_sqlite = "sqlite" in settings.database_url

engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency: yield an async database session."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker:
    """FastAPI dependency: the session factory used by multi-step services.

    The estimate orchestrator and queue runner open short-lived sessions
    per step so advisory writes never share a transaction with the
    authoritative estimate insert.
    """
    return async_session


async def init_db():
    """Create all tables (for local dev). Use Alembic for production migrations."""
    import relaykit.domain.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if _is_sqlite:
        # WAL lets the queue worker read while a request writes
        async with engine.connect() as conn:
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text("PRAGMA busy_timeout=30000"))


async def close_db():
    await engine.dispose()
