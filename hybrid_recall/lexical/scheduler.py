"""
Debounce schedulers for the lexical index.

A scheduler holds at most one pending callback.  Scheduling again cancels
the pending one and restarts the delay, so a burst of edits costs one
rebuild.  The lexical index only talks to the `Scheduler` protocol; tests
use `ManualScheduler` to fire callbacks deterministically.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Protocol

from loguru import logger

Callback = Callable[[], Awaitable[None]]


class Scheduler(Protocol):
    def schedule(self, callback: Callback) -> None: ...

    def cancel(self) -> bool: ...

    @property
    def pending(self) -> bool: ...

    async def flush(self) -> None: ...


class DebounceScheduler:
    """Single-slot delayed task on the running asyncio loop."""

    def __init__(self, delay_seconds: float = 0.5) -> None:
        self.delay_seconds = delay_seconds
        self._task: Optional[asyncio.Task] = None
        self._callback: Optional[Callback] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, callback: Callback) -> None:
        self.cancel()
        self._callback = callback
        self._task = asyncio.get_running_loop().create_task(self._run(callback))

    def cancel(self) -> bool:
        """Cancel the pending callback. Returns True if one was pending."""
        task, self._task = self._task, None
        self._callback = None
        if task is not None and not task.done():
            task.cancel()
            return True
        return False

    async def flush(self) -> None:
        """Run the pending callback now instead of waiting out the delay."""
        callback = self._callback
        if callback is not None and self.cancel():
            await callback()

    async def _run(self, callback: Callback) -> None:
        await asyncio.sleep(self.delay_seconds)
        # Detach before running so the callback may reschedule or cancel freely
        self._task = None
        self._callback = None
        try:
            await callback()
        except Exception:
            # Nobody awaits this task; surface the failure in the log
            logger.exception("[Scheduler] Debounced callback failed")


class ManualScheduler:
    """Scheduler that only fires when told to. Used by tests and batch tools."""

    def __init__(self) -> None:
        self._callback: Optional[Callback] = None
        self.scheduled_count = 0

    @property
    def pending(self) -> bool:
        return self._callback is not None

    def schedule(self, callback: Callback) -> None:
        self._callback = callback
        self.scheduled_count += 1

    def cancel(self) -> bool:
        had_pending = self._callback is not None
        self._callback = None
        return had_pending

    async def flush(self) -> None:
        callback, self._callback = self._callback, None
        if callback is not None:
            await callback()
