"""Tests for the re-arming tick scheduler."""

from __future__ import annotations

import asyncio
import unittest
from datetime import timedelta
from unittest.mock import AsyncMock

from favmirror.core.time_utils import utc_now
from favmirror.domain.exceptions import RecordStoreError
from favmirror.services.orchestrator import TickResult
from favmirror.services.scheduler import SchedulerService


async def _wait_for(predicate, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestSchedulerService(unittest.IsolatedAsyncioTestCase):
    async def test_ticks_rearm_with_computed_delay(self):
        orchestrator = AsyncMock()
        orchestrator.run_tick.return_value = TickResult(
            correlation_id="abc", mode="incremental", next_delay_seconds=0.0
        )
        scheduler = SchedulerService(orchestrator, short_interval=60)

        await scheduler.start()
        try:
            await _wait_for(lambda: scheduler.ticks_run >= 3)
        finally:
            await scheduler.stop()

        assert orchestrator.run_tick.await_count >= 3
        assert not scheduler.is_running

    async def test_failed_tick_falls_back_to_short_interval(self):
        orchestrator = AsyncMock()
        orchestrator.run_tick.side_effect = RuntimeError("boom")
        scheduler = SchedulerService(orchestrator, short_interval=3600)

        await scheduler.start()
        try:
            await _wait_for(
                lambda: scheduler.ticks_run >= 1 and scheduler.get_next_run_time() is not None
            )
            next_run = scheduler.get_next_run_time()
            assert next_run is not None
            assert next_run > utc_now() + timedelta(seconds=3000)
            assert orchestrator.run_tick.await_count == 1
        finally:
            await scheduler.stop()

    async def test_forced_full_applies_to_first_tick_only(self):
        orchestrator = AsyncMock()
        orchestrator.run_tick.return_value = TickResult(
            correlation_id="abc", mode="full", next_delay_seconds=0.0
        )
        scheduler = SchedulerService(orchestrator, short_interval=60)

        await scheduler.start(force_full=True)
        try:
            await _wait_for(lambda: scheduler.ticks_run >= 2)
        finally:
            await scheduler.stop()

        calls = orchestrator.run_tick.await_args_list
        assert calls[0].kwargs == {"force_full": True}
        assert calls[1].kwargs == {"force_full": None}

    async def test_failed_forced_tick_keeps_scheduler_running(self):
        orchestrator = AsyncMock()
        orchestrator.run_tick.side_effect = RecordStoreError("disk full")
        scheduler = SchedulerService(orchestrator, short_interval=3600)

        await scheduler.start(force_full=True)
        try:
            await _wait_for(
                lambda: scheduler.ticks_run >= 1 and scheduler.get_next_run_time() is not None
            )
            assert scheduler.is_running
            assert scheduler.get_next_run_time() > utc_now() + timedelta(seconds=3000)
        finally:
            await scheduler.stop()

    async def test_initial_delay_postpones_first_tick(self):
        orchestrator = AsyncMock()
        scheduler = SchedulerService(orchestrator, short_interval=60)

        await scheduler.start(initial_delay=600)
        try:
            next_run = scheduler.get_next_run_time()
            assert next_run > utc_now() + timedelta(seconds=500)
            orchestrator.run_tick.assert_not_awaited()
        finally:
            await scheduler.stop()

    async def test_stop_sets_shared_event_and_prevents_rearm(self):
        stop = asyncio.Event()
        orchestrator = AsyncMock()
        scheduler = SchedulerService(orchestrator, short_interval=60, stop_event=stop)

        await scheduler.start(initial_delay=600)
        await scheduler.stop()

        assert stop.is_set()
        assert scheduler.get_next_run_time() is None
        await asyncio.wait_for(scheduler.wait_stopped(), timeout=1)

    async def test_double_start_is_ignored(self):
        scheduler = SchedulerService(AsyncMock(), short_interval=60)

        await scheduler.start(initial_delay=600)
        try:
            await scheduler.start(initial_delay=0)
            assert scheduler.get_next_run_time() > utc_now() + timedelta(seconds=500)
        finally:
            await scheduler.stop()


if __name__ == "__main__":
    unittest.main()
