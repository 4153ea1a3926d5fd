"""Single boundary for fire-and-forget side effects (notifications, listeners,
deferred reminders). Failures are logged and dropped here so call sites stay clean."""
from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable

from loguru import logger

_background_tasks: set[asyncio.Task] = set()


async def fire_and_forget(target: Awaitable[Any] | Callable[[], Any], description: str) -> None:
    """Await/call ``target`` and swallow any exception after logging it."""
    try:
        result = target() if callable(target) else target
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception(f"Side effect failed: {description}")


def spawn(coro: Awaitable[Any], description: str) -> asyncio.Task:
    """Schedule ``coro`` on the running loop; its exception is logged, never raised."""
    task = asyncio.ensure_future(coro)
    _background_tasks.add(task)

    def _done(t: asyncio.Task) -> None:
        _background_tasks.discard(t)
        if t.cancelled():
            logger.debug(f"Background task cancelled: {description}")
            return
        exc = t.exception()
        if exc is not None:
            logger.opt(exception=exc).error(f"Background task failed: {description}")

    task.add_done_callback(_done)
    return task


def pending_tasks() -> list[asyncio.Task]:
    return [t for t in _background_tasks if not t.done()]


async def cancel_pending() -> int:
    """Cancel every still-running background task and wait for it to unwind."""
    loop = asyncio.get_running_loop()
    tasks = [t for t in pending_tasks() if t.get_loop() is loop]
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
    return len(tasks)
