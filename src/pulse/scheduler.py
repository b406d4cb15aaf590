"""
APScheduler integration. One interval job per active monitor, at most one
check in flight per monitor, plus an hourly check history prune.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.util import undefined

from pulse.checker import ProbePipeline
from pulse.models.monitor import Monitor
from pulse.phases import CheckResult

logger = logging.getLogger("pulse.scheduler")

ResultHandler = Callable[[Monitor, CheckResult], Awaitable[object]]

PRUNE_JOB_ID = "prune_check_history"


def job_id_for(monitor_id: str) -> str:
    return f"check_{monitor_id}"


class CheckScheduler:
    def __init__(
        self,
        pipeline: ProbePipeline,
        on_result: ResultHandler,
        deadline_grace_ms: int = 1000,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self._pipeline = pipeline
        self._on_result = on_result
        self._grace_ms = deadline_grace_ms
        self._scheduler = scheduler or AsyncIOScheduler()
        self._monitors: dict[str, Monitor] = {}
        self._in_flight: dict[str, asyncio.Task] = {}

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info(f"Scheduler started with {len(self._monitors)} monitor(s)")

    def stop(self) -> None:
        for task in list(self._in_flight.values()):
            task.cancel()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    def schedule(self, monitor: Monitor) -> None:
        """Add or replace the check job for a monitor."""
        self._monitors[monitor.id] = monitor
        first_run = datetime.now(timezone.utc) if monitor.last_check_at is None else None
        self._scheduler.add_job(
            self.run_check,
            trigger=IntervalTrigger(seconds=monitor.interval_seconds),
            id=job_id_for(monitor.id),
            args=[monitor.id],
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=first_run or undefined,
        )
        logger.info(f"Scheduled monitor {monitor.id} (every {monitor.interval_seconds}s)")

    def schedule_pruning(self, prune: Callable[[], Awaitable[object]], interval_seconds: int) -> None:
        """Run history retention pruning every ``interval_seconds``."""
        self._scheduler.add_job(
            prune,
            trigger=IntervalTrigger(seconds=interval_seconds),
            id=PRUNE_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def reschedule(self, monitor: Monitor) -> None:
        """Apply changed configuration from the next firing on.

        A check already in flight finishes with the configuration it started with.
        """
        job = self._scheduler.get_job(job_id_for(monitor.id))
        if job is None:
            self.schedule(monitor)
            return
        self._monitors[monitor.id] = monitor
        if job.trigger.interval.total_seconds() != monitor.interval_seconds:
            self._scheduler.reschedule_job(
                job.id, trigger=IntervalTrigger(seconds=monitor.interval_seconds)
            )
            logger.info(f"Rescheduled monitor {monitor.id} (every {monitor.interval_seconds}s)")

    def unschedule(self, monitor_id: str) -> None:
        """Remove the job and abort an in-flight check, if any."""
        self._monitors.pop(monitor_id, None)
        try:
            self._scheduler.remove_job(job_id_for(monitor_id))
        except JobLookupError:
            pass
        task = self._in_flight.get(monitor_id)
        if task is not None:
            task.cancel()
            logger.info(f"Cancelled in-flight check for monitor {monitor_id}")

    def is_scheduled(self, monitor_id: str) -> bool:
        return self._scheduler.get_job(job_id_for(monitor_id)) is not None

    def is_in_flight(self, monitor_id: str) -> bool:
        return monitor_id in self._in_flight

    def scheduled_ids(self) -> list[str]:
        return list(self._monitors)

    async def _probe(self, monitor: Monitor) -> CheckResult:
        deadline_ms = monitor.timeout_ms + self._grace_ms
        checked_at = datetime.now(timezone.utc)
        try:
            return await asyncio.wait_for(self._pipeline.run(monitor), timeout=deadline_ms / 1000)
        except asyncio.TimeoutError:
            return CheckResult(
                success=False,
                checked_at=checked_at,
                total_duration_ms=0,
                error=f"Check exceeded its {monitor.timeout_ms}ms timeout",
                timed_out=True,
            )

    async def run_check(self, monitor_id: str) -> None:
        """Job body: probe the monitor and hand the result on."""
        monitor = self._monitors.get(monitor_id)
        if monitor is None or not monitor.is_active:
            return
        if monitor_id in self._in_flight:
            logger.debug(f"Check for monitor {monitor_id} still in flight, skipping")
            return

        task = asyncio.create_task(self._probe(monitor))
        self._in_flight[monitor_id] = task
        try:
            result = await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            logger.info(f"Discarded cancelled check for monitor {monitor_id}")
            return
        finally:
            if self._in_flight.get(monitor_id) is task:
                del self._in_flight[monitor_id]

        if self._monitors.get(monitor_id) is not monitor or not monitor.is_active:
            logger.info(f"Monitor {monitor_id} deactivated during check, result discarded")
            return

        try:
            await self._on_result(monitor, result)
        except Exception as e:
            logger.error(f"Error processing check result for monitor {monitor_id}: {e}")
