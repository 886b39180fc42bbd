"""
Fire-and-forget background dispatch.

Side effects that must not delay or fail a request (last-used timestamps,
usage rows) are scheduled here. Tasks are kept in a module-level set until
done so the event loop cannot garbage-collect them mid-flight, and any
exception is logged instead of propagating.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)

_pending: set[asyncio.Task[Any]] = set()


def fire_and_forget(coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
    """Schedule `coro` on the running loop without awaiting it."""
    task = asyncio.create_task(coro, name=name)
    _pending.add(task)
    task.add_done_callback(_on_done)
    return task


def _on_done(task: asyncio.Task[Any]) -> None:
    _pending.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background task %s failed: %s", task.get_name(), exc, exc_info=exc)


async def drain_pending(timeout: float = 5.0) -> None:
    """Wait for in-flight background tasks (shutdown and tests)."""
    if not _pending:
        return
    done, not_done = await asyncio.wait(set(_pending), timeout=timeout)
    if not_done:
        logger.warning("%d background task(s) still running after %.1fs", len(not_done), timeout)
