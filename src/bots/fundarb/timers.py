"""Cancellable one-shot timers and fire-and-forget task ownership.

A timer is an asyncio task that sleeps and then awaits its callback. It can
be cancelled any number of times while it is still sleeping; once it has
fired, ``cancel()`` is a no-op so an in-flight callback (an entry or a close
procedure) is never torn down half way. Callbacks must re-check current
state themselves rather than trust whatever they captured.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Coroutine, Any, Optional

logger = logging.getLogger("bots.fundarb.timers")

Callback = Callable[[], Awaitable[None]]


class CancellableTimer:
    """One-shot timer handle stored in a per-symbol record."""

    def __init__(self, delay_s: float, callback: Callback, *, name: Optional[str] = None) -> None:
        self.delay_s = max(0.0, float(delay_s))
        self.name = name or "timer"
        self._callback = callback
        self._fired = False
        self._cancelled = False
        self._task: asyncio.Task[None] = asyncio.create_task(self._run(), name=self.name)

    async def _run(self) -> None:
        await asyncio.sleep(self.delay_s)
        if self._cancelled:
            return
        self._fired = True
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s: callback failed", self.name)

    def cancel(self) -> bool:
        """Stop the timer before it fires. Returns True only if this call did it."""
        if self._fired or self._cancelled or self._task.done():
            return False
        self._cancelled = True
        self._task.cancel()
        return True

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> None:
        """Wait until the timer was cancelled or its callback finished."""
        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise


class TaskSpawner:
    """Keeps strong references to spawned tasks and logs their failures."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: Optional[str] = None) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s: task failed: %r", task.get_name(), exc, exc_info=exc)

    async def join(self) -> None:
        """Wait for every task spawned so far."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


__all__ = ["CancellableTimer", "TaskSpawner"]
