"""Durable local store for deferred client operations.

Kept in its own SQLite database (separate ``DeclarativeBase``) so a
client can queue writes while the API is unreachable.
"""

import logging
import time
from typing import Any, Optional

from sqlalchemy import JSON, Column, Float, Integer, LargeBinary, String, Text, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from relaykit.domain.enums import SyncOperationStatus

logger = logging.getLogger(__name__)


class SyncBase(DeclarativeBase):
    pass


class DeferredOperation(SyncBase):
    """One queued mutation or upload."""

    __tablename__ = "deferred_operations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    queue = Column(String(50), nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    blob = Column(LargeBinary, nullable=True)
    retries = Column(Integer, nullable=False, default=0)
    status = Column(String(10), nullable=False, default="pending", index=True)
    # Epoch seconds; 0 means immediately due
    next_attempt_at = Column(Float, nullable=False, default=0.0)
    last_error = Column(Text, nullable=True)
    created_at = Column(Float, nullable=False, default=time.time)


class SyncStore:
    """Async CRUD over ``deferred_operations``."""

    def __init__(self, database_url: str = "sqlite+aiosqlite:///./relaykit-sync.db"):
        self.engine = create_async_engine(database_url, connect_args={"check_same_thread": False})
        self.session_factory = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def init(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SyncBase.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    async def add(self, queue: str, payload: dict[str, Any], blob: Optional[bytes] = None) -> DeferredOperation:
        async with self.session_factory() as db:
            op = DeferredOperation(queue=queue, payload=payload, blob=blob)
            db.add(op)
            await db.commit()
            await db.refresh(op)
            return op

    async def pending(self, queue: str) -> list[DeferredOperation]:
        """Pending operations for ``queue`` in enqueue order."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(DeferredOperation)
                .where(
                    DeferredOperation.queue == queue,
                    DeferredOperation.status == SyncOperationStatus.PENDING.value,
                )
                .order_by(DeferredOperation.id.asc())
            )
            return list(result.scalars().all())

    async def all(self, queue: str) -> list[DeferredOperation]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(DeferredOperation)
                .where(DeferredOperation.queue == queue)
                .order_by(DeferredOperation.id.asc())
            )
            return list(result.scalars().all())

    async def remove(self, op_id: int) -> None:
        async with self.session_factory() as db:
            await db.execute(delete(DeferredOperation).where(DeferredOperation.id == op_id))
            await db.commit()

    async def reschedule(self, op_id: int, retries: int, next_attempt_at: float, error: str) -> None:
        await self._update(op_id, retries=retries, next_attempt_at=next_attempt_at, last_error=error)

    async def park(self, op_id: int, retries: int, error: str) -> None:
        await self._update(
            op_id, retries=retries, status=SyncOperationStatus.FAILED.value, last_error=error
        )

    async def _update(self, op_id: int, **values: Any) -> None:
        async with self.session_factory() as db:
            await db.execute(
                update(DeferredOperation).where(DeferredOperation.id == op_id).values(**values)
            )
            await db.commit()
