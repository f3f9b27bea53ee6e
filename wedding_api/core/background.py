"""Periodic background sweeper bound to the application lifecycle."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

LOGGER = logging.getLogger(__name__)


class PeriodicSweeper:
    """Run a synchronous sweep callable on a fixed interval until stopped."""

    def __init__(
        self, *, name: str, interval_seconds: float, sweep: Callable[[], int]
    ) -> None:
        """Bind the sweep callable and its interval."""
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._name = name
        self._interval_seconds = interval_seconds
        self._sweep = sweep
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        """Return whether the sweep loop is active."""
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start background loop if not already running."""
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop(), name=f"sweeper:{self._name}")

    async def stop(self) -> None:
        """Signal the loop and wait for it to finish."""
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None

    async def _loop(self) -> None:
        """Sweep every interval until stop event is set."""
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self._interval_seconds
                )
            except asyncio.TimeoutError:
                pass
            if self._stop_event.is_set():
                break
            try:
                removed = self._sweep()
            except Exception:
                LOGGER.exception("sweeper_failed", extra={"path": self._name})
                continue
            if removed:
                LOGGER.debug("sweeper_evicted %s entries from %s", removed, self._name)
