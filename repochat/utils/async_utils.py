"""
Asyncio helpers for time-boxed calls and background tasks.
"""

import asyncio
from typing import Any, Awaitable, Optional, Set, TypeVar

from .logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar('T')

# Strong references so the event loop does not garbage-collect running tasks
_background_tasks: Set[asyncio.Task] = set()


def _consume_result(task: asyncio.Future, label: str) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f'{label} finished after its deadline with error: {error}')


async def with_timeout(awaitable: Awaitable[T], seconds: float, fallback: T, label: str = 'call') -> T:
    """Race an awaitable against a timer and resolve to a fallback on timeout or error.

    The underlying call is not cancelled on timeout: it keeps running and its
    late result is discarded.

    Args:
        awaitable: Coroutine or future producing the real value
        seconds: Deadline in seconds
        fallback: Value returned when the deadline passes or the call fails
        label: Name used in log messages

    Returns:
        The call's result, or the fallback
    """
    task = asyncio.ensure_future(awaitable)
    try:
        done, _ = await asyncio.wait({task}, timeout=seconds)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if not done:
        logger.info(f'{label} exceeded {seconds:.2f}s, using fallback')
        task.add_done_callback(lambda t: _consume_result(t, label))
        return fallback

    if task.cancelled():
        logger.warning(f'{label} was cancelled, using fallback')
        return fallback
    error = task.exception()
    if error is not None:
        logger.warning(f'{label} failed, using fallback: {error}')
        return fallback
    return task.result()


def fire_and_forget(awaitable: Awaitable[Any], label: str, tracked: Optional[Set[asyncio.Task]] = None) -> asyncio.Task:
    """Schedule a background task whose failure is logged and never surfaced.

    Args:
        awaitable: Work to run in the background
        label: Name used in log messages
        tracked: Optional caller-owned set that also holds the task until it finishes

    Returns:
        The scheduled task
    """
    task = asyncio.ensure_future(awaitable)
    _background_tasks.add(task)
    if tracked is not None:
        tracked.add(task)

    def _done(t: asyncio.Task) -> None:
        _background_tasks.discard(t)
        if tracked is not None:
            tracked.discard(t)
        if t.cancelled():
            logger.warning(f'Background task {label} was cancelled')
            return
        error = t.exception()
        if error is not None:
            logger.warning(f'Background task {label} failed: {error}')

    task.add_done_callback(_done)
    return task
