"""Generic durable deferred-operation queue with escalating retry delays.

One ``DeferredQueue`` per concern (entity mutations, photo uploads), each
owning its draining state. Operations are executed oldest first. After the
n-th consecutive failure an operation waits ``delays[n]`` seconds; once n
reaches ``len(delays)`` it is parked as ``failed`` and never retried.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from relaykit.sync.store import DeferredOperation, SyncStore

logger = logging.getLogger(__name__)

SYNC_RETRY_DELAYS: tuple[float, ...] = (1, 2, 5, 10, 30)

# Minimum runner wait between passes, in seconds
_MIN_WAIT = 0.1

Executor = Callable[[DeferredOperation], Awaitable[Any]]


@dataclass
class DrainResult:
    succeeded: int = 0
    retried: int = 0
    failed: int = 0
    deferred: int = 0
    skipped: bool = False


class DeferredQueue:
    def __init__(
        self,
        name: str,
        store: SyncStore,
        executor: Executor,
        delays: tuple[float, ...] = SYNC_RETRY_DELAYS,
        online: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.store = store
        self.executor = executor
        self.delays = delays
        self.online = online
        self.clock = clock
        self._draining = False
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_draining(self) -> bool:
        return self._draining

    async def enqueue(self, payload: dict[str, Any], blob: Optional[bytes] = None) -> DeferredOperation:
        op = await self.store.add(self.name, payload, blob)
        logger.debug("Queued %s operation id=%s", self.name, op.id)
        self._wake.set()
        return op

    async def drain(self) -> DrainResult:
        """Execute every due operation once. A no-op while offline or already draining."""
        if not self.online or self._draining:
            return DrainResult(skipped=True)

        self._draining = True
        result = DrainResult()
        try:
            for op in await self.store.pending(self.name):
                if not self.online:
                    break
                if op.next_attempt_at > self.clock():
                    result.deferred += 1
                    continue
                try:
                    await self.executor(op)
                except Exception as exc:
                    if await self._record_failure(op, exc):
                        result.retried += 1
                    else:
                        result.failed += 1
                    continue
                await self.store.remove(op.id)
                result.succeeded += 1
        finally:
            self._draining = False
        return result

    async def _record_failure(self, op: DeferredOperation, exc: Exception) -> bool:
        """Reschedule or park ``op``. Returns True when it will be retried."""
        retries = op.retries + 1
        error = str(exc) or type(exc).__name__
        if retries < len(self.delays):
            delay = self.delays[retries]
            await self.store.reschedule(op.id, retries, self.clock() + delay, error)
            logger.warning(
                "%s operation id=%s failed (attempt %d), retrying in %ss: %s",
                self.name, op.id, retries, delay, error,
            )
            return True
        await self.store.park(op.id, retries, error)
        logger.error("%s operation id=%s failed permanently after %d attempts: %s", self.name, op.id, retries, error)
        return False

    # ------------------------------------------------------------------
    # Runner
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def notify_online(self) -> Optional[DrainResult]:
        """Mark the client online and flush immediately.

        With a runner started the flush happens on the runner task and None
        is returned; otherwise the drain runs inline.
        """
        self.online = True
        if self.is_running:
            self._wake.set()
            return None
        return await self.drain()

    def notify_offline(self) -> None:
        self.online = False

    async def _next_due_in(self) -> Optional[float]:
        if not self.online:
            return None
        due = [op.next_attempt_at for op in await self.store.pending(self.name)]
        if not due:
            return None
        return max(_MIN_WAIT, min(due) - self.clock())

    async def _run(self) -> None:
        while True:
            self._wake.clear()
            try:
                await self.drain()
                timeout = await self._next_due_in()
            except Exception:
                logger.exception("%s queue pass failed", self.name)
                timeout = self.delays[0] if self.delays else 1.0
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass
