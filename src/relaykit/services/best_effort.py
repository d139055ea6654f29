"""Advisory writes.

Status markers, PDF triggers and post-write refetches must never abort or
hide the authoritative write of an estimate. Every such call goes through
``best_effort`` so the swallow-and-log policy lives in one place.
"""

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Strong references so scheduled tasks aren't garbage-collected mid-flight
_background: set[asyncio.Task] = set()


async def best_effort(label: str, awaitable: Awaitable[T], timeout: Optional[float] = None) -> bool:
    """Await ``awaitable``; log and swallow any failure. Returns True on success."""
    try:
        if timeout is not None:
            await asyncio.wait_for(awaitable, timeout=timeout)
        else:
            await awaitable
        return True
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.warning("Advisory write %s failed: %s", label, exc)
        return False


async def best_effort_value(label: str, awaitable: Awaitable[T], default: T = None) -> T:
    """Like ``best_effort`` but returns the awaited value, or ``default`` on failure."""
    try:
        return await awaitable
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.warning("Advisory read %s failed: %s", label, exc)
        return default


def fire_and_forget(label: str, awaitable: Awaitable) -> asyncio.Task:
    """Schedule ``awaitable`` in the background; its failure is only logged."""
    task = asyncio.ensure_future(best_effort(label, awaitable))
    _background.add(task)
    task.add_done_callback(_background.discard)
    return task
