"""Re-arming tick scheduler.

Each tick computes its own successor delay, so the job is scheduled with a
one-shot ``DateTrigger`` and re-armed after every run instead of using a
fixed interval. Re-arming happens in a job-event listener: the executor has
released the finished instance by then, so ``max_instances=1`` never drops
the successor.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from favmirror.core.time_utils import utc_now

if TYPE_CHECKING:
    from favmirror.services.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

TICK_JOB_ID = "favmirror_tick"
DRAIN_TIMEOUT = 30.0


class SchedulerService:
    """Runs orchestrator ticks back to back until stopped."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        *,
        short_interval: float,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._short_interval = float(short_interval)
        self._stop_event = stop_event or asyncio.Event()
        self._scheduler: AsyncIOScheduler | None = None
        self._started = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._next_delay = 0.0
        self._force_full_next = False
        self.ticks_run = 0

    async def start(self, initial_delay: float = 0.0, *, force_full: bool = False) -> None:
        """Start the scheduler and arm the first tick.

        With ``force_full`` the first tick runs a full pass regardless of
        when the last one completed.
        """
        if self._started:
            logger.warning("scheduler_already_started")
            return

        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._scheduler.add_listener(self._on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
        self._scheduler.start()
        self._started = True
        self._force_full_next = force_full
        logger.info(
            "scheduler_started",
            extra={"short_interval": self._short_interval, "force_full": force_full},
        )
        self._arm(initial_delay)

    def _arm(self, delay: float) -> None:
        if self._scheduler is None or self._stop_event.is_set():
            return
        run_at = utc_now() + timedelta(seconds=max(0.0, delay))
        self._scheduler.add_job(
            self._run_tick,
            trigger=DateTrigger(run_date=run_at),
            id=TICK_JOB_ID,
            name="Favorites mirror tick",
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=None,
        )
        logger.info(
            "scheduler_tick_armed",
            extra={"job_id": TICK_JOB_ID, "delay_seconds": delay, "run_at": run_at},
        )

    async def _run_tick(self) -> None:
        delay = self._short_interval
        force_full = self._force_full_next
        self._idle.clear()
        try:
            result = await self._orchestrator.run_tick(force_full=True if force_full else None)
            delay = result.next_delay_seconds
        except Exception as e:
            logger.exception("scheduled_tick_failed", extra={"error": str(e)})
        finally:
            self._force_full_next = False
            self.ticks_run += 1
            self._next_delay = delay
            self._idle.set()

    def _on_job_event(self, event: JobExecutionEvent) -> None:
        if event.job_id == TICK_JOB_ID:
            self._arm(self._next_delay)

    async def stop(self, drain_timeout: float = DRAIN_TIMEOUT) -> None:
        """Signal running work to stop, wait for an in-flight tick, then shut down."""
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=drain_timeout)
        except TimeoutError:
            logger.warning("scheduler_drain_timeout", extra={"timeout": drain_timeout})
        if self._scheduler and self._started:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            self._started = False
            logger.info("scheduler_stopped")

    async def wait_stopped(self) -> None:
        await self._stop_event.wait()

    def get_next_run_time(self) -> datetime | None:
        """Next scheduled tick, or None when idle or stopped."""
        if not self._scheduler or not self._started:
            return None
        job = self._scheduler.get_job(TICK_JOB_ID)
        return job.next_run_time if job else None

    @property
    def is_running(self) -> bool:
        return self._started and self._scheduler is not None
