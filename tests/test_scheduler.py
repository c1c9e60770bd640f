"""
test_scheduler.py — Polling loops survive failures; delayed callbacks retry.

Run with:
    pytest tests/test_scheduler.py -v
"""

from __future__ import annotations

import asyncio

import pytest

from hazardwatch.pipeline.scheduler import HazardScheduler, default_intervals
from hazardwatch.spatial.severity import HazardKind


class CountingOrchestrator:
    def __init__(self, fail_first: int = 0):
        self.calls = []
        self.fail_first = fail_first

    async def run_cycle(self, kind):
        self.calls.append(kind)
        if len(self.calls) <= self.fail_first:
            raise RuntimeError("store exploded")


async def wait_for(predicate, timeout=1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class TestPollingLoops:

    async def test_one_loop_per_kind(self):
        orch = CountingOrchestrator()
        scheduler = HazardScheduler(orch, intervals={k: 10.0 for k in HazardKind})
        await scheduler.start()
        try:
            await wait_for(lambda: len(orch.calls) == 3)
            assert set(orch.calls) == set(HazardKind)
            assert scheduler.running
        finally:
            await scheduler.stop()
        assert not scheduler.running

    async def test_exception_does_not_end_loop(self):
        orch = CountingOrchestrator(fail_first=2)
        scheduler = HazardScheduler(orch, intervals={HazardKind.EARTHQUAKE: 0.01})
        await scheduler.start()
        try:
            await wait_for(lambda: len(orch.calls) >= 4)
        finally:
            await scheduler.stop()

    async def test_subset_of_kinds(self):
        orch = CountingOrchestrator()
        scheduler = HazardScheduler(orch, intervals={k: 10.0 for k in HazardKind})
        await scheduler.start([HazardKind.FLOOD])
        try:
            await wait_for(lambda: orch.calls == [HazardKind.FLOOD])
        finally:
            await scheduler.stop()

    async def test_start_twice_is_noop(self):
        orch = CountingOrchestrator()
        scheduler = HazardScheduler(orch, intervals={HazardKind.STORM: 10.0})
        await scheduler.start()
        await scheduler.start()
        try:
            await wait_for(lambda: len(orch.calls) == 1)
            await asyncio.sleep(0.02)
            assert len(orch.calls) == 1
        finally:
            await scheduler.stop()

    async def test_needs_orchestrator(self):
        with pytest.raises(RuntimeError):
            await HazardScheduler().start()

    def test_default_intervals_cover_every_kind(self):
        assert set(default_intervals()) == set(HazardKind)


class TestScheduledCallbacks:

    async def test_runs_after_delay(self):
        scheduler = HazardScheduler()
        ran = []

        async def callback():
            ran.append(True)
            return "done"

        task = scheduler.schedule(callback, 0.01, name="probe")
        assert ran == []
        assert await task == "done"
        assert ran == [True]

    async def test_retries_until_success(self):
        scheduler = HazardScheduler(retry_attempts=3, retry_delay=0.0)
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("store down")
            return len(attempts)

        assert await scheduler.schedule(flaky, name="flaky") == 3

    async def test_gives_up_after_attempts(self):
        scheduler = HazardScheduler(retry_attempts=2, retry_delay=0.0)
        attempts = []

        async def broken():
            attempts.append(1)
            raise ValueError("nope")

        assert await scheduler.schedule(broken, name="broken") is None
        assert len(attempts) == 2

    async def test_stop_cancels_pending(self):
        scheduler = HazardScheduler()
        done = []

        async def quick():
            done.append(1)

        async def forever():
            await asyncio.sleep(60)

        scheduler.schedule(quick, name="quick")
        slow = scheduler.schedule(forever, 30.0, name="slow")
        await asyncio.sleep(0.01)
        assert done == [1]
        await scheduler.stop()
        assert slow.cancelled()
