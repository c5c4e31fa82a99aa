# src/core/scheduler.py — v1
"""Schedulable background loops with deterministic shutdown.

A PeriodicTask runs a callback every ``interval_s`` seconds on the running
event loop. start() and stop() are idempotent; stop() cancels the loop task
and waits for it so that process exit and test teardown leave nothing behind.
Callback errors are logged and the loop keeps going.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

TaskCallback = Callable[[], Any]


class PeriodicTask:
    """Run a sync or async callback at a fixed interval."""

    def __init__(
        self,
        name: str,
        interval_s: float,
        callback: TaskCallback,
        run_immediately: bool = False,
    ) -> None:
        if interval_s <= 0:
            raise ValueError(f"interval_s must be > 0, got {interval_s}")
        self.name = name
        self.interval_s = interval_s
        self._callback = callback
        self._run_immediately = run_immediately
        self._task: asyncio.Task[None] | None = None
        self._stopping: asyncio.Event | None = None
        self.runs = 0
        self.errors = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop (no-op if running)."""
        if self.is_running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(
            self._loop(), name=f"periodic:{self.name}"
        )
        logger.debug("Periodic task '%s' started (every %.1fs)", self.name, self.interval_s)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish (no-op if stopped)."""
        task = self._task
        if task is None:
            return
        self._task = None
        if self._stopping is not None:
            self._stopping.set()
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Periodic task '%s' stopped after %d runs", self.name, self.runs)

    async def run_once(self) -> None:
        """Invoke the callback a single time, logging any error."""
        try:
            result = self._callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            self.errors += 1
            logger.exception("Periodic task '%s' failed", self.name)
        finally:
            self.runs += 1

    async def _loop(self) -> None:
        assert self._stopping is not None
        if self._run_immediately:
            await self.run_once()
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_s)
            except asyncio.TimeoutError:
                await self.run_once()
