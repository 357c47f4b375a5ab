from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SerializedWriter:
    """Runs writes for one session strictly one after another."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._in_flight = 0

    @property
    def in_flight(self) -> bool:
        return self._in_flight > 0

    async def run(self, write: Callable[[], Awaitable[T]]) -> T:
        async with self._lock:
            self._in_flight += 1
            try:
                return await write()
            finally:
                self._in_flight -= 1


class DebouncedTask:
    """A reschedulable delayed action.

    Every ``schedule()`` pushes the deadline back to ``delay_s`` from now, so a
    burst of triggers inside the window runs the action once. Once the timer
    fires the action runs to completion; a later ``schedule()`` starts a new
    window instead of cancelling it.
    """

    def __init__(self, action: Callable[[], Awaitable[None]], delay_s: float):
        self._action = action
        self.delay_s = max(0.0, float(delay_s))
        self._handle: asyncio.TimerHandle | None = None
        self._running: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def running(self) -> bool:
        return bool(self._running)

    def schedule(self) -> None:
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self.delay_s, self._fire, loop)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, loop: asyncio.AbstractEventLoop) -> None:
        self._handle = None
        task = loop.create_task(self._action())
        self._running.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._running.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("debounced action failed: %s", exc)

    async def drain(self) -> None:
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    async def stop(self) -> None:
        """Drop any pending run and wait for one already in progress."""
        self.cancel()
        await self.drain()
