"""
scheduler.py — Periodic per-hazard cycles and delayed callbacks.

One asyncio task per hazard kind runs its orchestrator cycle, then sleeps
the kind's poll interval. Any exception escaping a cycle is logged and the
loop carries on: the polling loop itself is the retry mechanism, so
nothing in a cycle may end it.

schedule(callback, delay) runs a coroutine function later on its own task.
The orchestrator uses it to hand new events to the alert matcher, so a
failed evaluation can be retried without re-running the fetch.

Usage:
    scheduler = HazardScheduler(orchestrator)
    await scheduler.start()
    ...
    await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

from hazardwatch.core.config import settings
from hazardwatch.spatial.severity import HazardKind

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[object]]


def default_intervals() -> Dict[HazardKind, float]:
    return {
        HazardKind.EARTHQUAKE: settings.QUAKE_POLL_SECONDS,
        HazardKind.STORM: settings.STORM_POLL_SECONDS,
        HazardKind.FLOOD: settings.FLOOD_POLL_SECONDS,
    }


class HazardScheduler:
    """
    Runs orchestrator cycles on independent timers.

    orchestrator only needs an async run_cycle(kind) method.
    """

    def __init__(
        self,
        orchestrator=None,
        *,
        intervals: Optional[Dict[HazardKind, float]] = None,
        retry_attempts: int = 3,
        retry_delay: float = 30.0,
    ):
        self.orchestrator = orchestrator
        self.intervals = intervals or default_intervals()
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._running = False
        self._loops: Dict[HazardKind, asyncio.Task] = {}
        self._pending: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._running

    async def start(self, kinds=None) -> None:
        """Start one polling loop per hazard kind."""
        if self._running:
            return
        if self.orchestrator is None:
            raise RuntimeError("HazardScheduler.start() needs an orchestrator")
        self._running = True
        for kind in kinds or self.intervals:
            self._loops[kind] = asyncio.create_task(
                self._run_loop(kind), name=f"cycle-{kind.value}",
            )
        logger.info("Hazard scheduler started: %s", ", ".join(k.value for k in self._loops))

    async def stop(self) -> None:
        """Cancel polling loops and pending callbacks."""
        self._running = False
        tasks = list(self._loops.values()) + list(self._pending)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loops.clear()
        self._pending.clear()
        logger.info("Hazard scheduler stopped")

    async def _run_loop(self, kind: HazardKind) -> None:
        interval = self.intervals[kind]
        while self._running:
            try:
                await self.orchestrator.run_cycle(kind)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Cycle for %s failed", kind.value, extra={"hazard": kind.value})
            await asyncio.sleep(interval)

    # ── Delayed callbacks ──

    def schedule(self, callback: Callback, delay: float = 0.0, *, name: str = "callback") -> asyncio.Task:
        """Run callback after delay seconds, retrying on failure."""
        task = asyncio.create_task(self._run_later(callback, delay, name), name=name)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _run_later(self, callback: Callback, delay: float, name: str):
        if delay > 0:
            await asyncio.sleep(delay)
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return await callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                if attempt == self.retry_attempts:
                    logger.exception("Scheduled %s failed after %d attempts", name, attempt)
                    return None
                logger.warning(
                    "Scheduled %s failed (attempt %d/%d), retrying in %.0fs",
                    name, attempt, self.retry_attempts, self.retry_delay,
                    exc_info=True,
                )
                await asyncio.sleep(self.retry_delay)
        return None

    async def drain(self) -> None:
        """Wait for every pending callback (used by tests and shutdown)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
