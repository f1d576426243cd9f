from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class PollTimer:
    """Fixed-period timer; each tick awaits `on_tick` before sleeping again."""

    def __init__(self, interval_s: float, on_tick: Callable[[], Awaitable[object]]) -> None:
        if interval_s <= 0:
            raise ValueError("poll interval must be positive")
        self.interval_s = interval_s
        self._on_tick = on_tick
        self._task: asyncio.Task[None] | None = None
        self.ticks = 0

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        if self.active:
            return False
        self._task = asyncio.get_running_loop().create_task(self._run())
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            self.ticks += 1
            try:
                await self._on_tick()
            except Exception:
                logger.warning("poll tick failed", exc_info=True)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
