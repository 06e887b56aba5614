"""A cancellable asyncio periodic task."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Call a coroutine function on a fixed interval until stopped."""

    def __init__(self, name: str = "periodic") -> None:
        self.name = name
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(
        self,
        interval: float,
        fn: Callable[[], Awaitable[object]],
        initial_delay: float | None = None,
    ) -> None:
        """Install the loop on the running event loop.

        fn runs once after initial_delay (defaults to interval), then every
        interval seconds. Calling start while running is a no-op.
        """
        if self.running:
            logger.info("%s already running", self.name)
            return
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._stop_event = asyncio.Event()
        delay = interval if initial_delay is None else initial_delay
        self._task = asyncio.create_task(self._loop(interval, fn, delay, self._stop_event))
        logger.info("%s started (every %s seconds)", self.name, interval)

    async def stop(self) -> None:
        """Signal the loop to exit and wait for it to finish."""
        if self._task is None:
            return
        assert self._stop_event is not None
        self._stop_event.set()
        task = self._task
        self._task = None
        try:
            await asyncio.wait_for(task, timeout=5)
        except asyncio.TimeoutError:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("%s stopped", self.name)

    async def _loop(
        self,
        interval: float,
        fn: Callable[[], Awaitable[object]],
        delay: float,
        stop_event: asyncio.Event,
    ) -> None:
        while not await self._wait(stop_event, delay):
            try:
                await fn()
            except Exception:  # noqa: BLE001
                logger.exception("%s run failed", self.name)
            delay = interval

    @staticmethod
    async def _wait(stop_event: asyncio.Event, timeout: float) -> bool:
        """Sleep up to timeout seconds; True when stop was requested."""
        if timeout <= 0:
            return stop_event.is_set()
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True
