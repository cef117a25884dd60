# app/utils/concurrency.py
"""
Bounded waits that give up on a task without cancelling it.

A caller that stops waiting hands the task over to a reaper set; the task
keeps running, and its eventual outcome is retrieved and logged so nothing
else ever acts on it.
"""

import asyncio
import logging
from typing import Awaitable, Optional, Set, TypeVar

from app.core.exceptions import OperationTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

_abandoned: Set[asyncio.Future] = set()


def _reap(task: asyncio.Future) -> None:
    _abandoned.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(
            "Abandoned task finished with an error",
            extra={"error": str(exc), "error_type": type(exc).__name__},
        )
    else:
        logger.debug("Abandoned task finished after its caller gave up")


def abandon(task: asyncio.Future) -> None:
    """Stop caring about ``task`` while keeping a reference until it finishes."""
    if task.done():
        _reap(task)
        return
    _abandoned.add(task)
    task.add_done_callback(_reap)


def abandoned_count() -> int:
    return len(_abandoned)


async def wait_or_abandon(
    aw: Awaitable[T], timeout: Optional[float], detail: str = "request timeout"
) -> T:
    """
    Wait up to ``timeout`` seconds for ``aw``.

    On expiry raises ``OperationTimeout(detail)`` and leaves the work running.
    """
    task = asyncio.ensure_future(aw)
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        abandon(task)
        raise

    if task not in done:
        abandon(task)
        raise OperationTimeout(detail)
    return task.result()
