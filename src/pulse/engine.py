"""Connects check scheduling and incident tracking to storage and notifications."""
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional

from pulse.checker import ProbePipeline
from pulse.config import Settings, get_settings
from pulse.incidents import IncidentNotFoundError, IncidentStateError, IncidentTracker, utcnow
from pulse.models.check_history import CheckHistory
from pulse.models.incident import Incident, IncidentStatus
from pulse.models.monitor import Monitor
from pulse.notifier import DOWN, UP, LoggingNotifier, Notifier
from pulse.phases import CheckResult
from pulse.scheduler import CheckScheduler
from pulse.schemas import MonitorConfig, MonitorUpdate
from pulse.status import StatusMachine, Transition
from pulse.store import MonitorStore

logger = logging.getLogger("pulse.engine")


class MonitorNotFoundError(Exception):
    def __init__(self, monitor_id: str):
        super().__init__(f"Monitor {monitor_id} not found")
        self.monitor_id = monitor_id


class Engine:
    def __init__(
        self,
        store: MonitorStore,
        notifier: Optional[Notifier] = None,
        pipeline: Optional[ProbePipeline] = None,
        settings: Optional[Settings] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        settings = settings or get_settings()
        self._settings = settings
        self._now = now or utcnow
        self._store = store
        self._notifier = notifier or LoggingNotifier()
        self._pipeline = pipeline or ProbePipeline(user_agent=settings.user_agent)
        self.tracker = IncidentTracker(now=now)
        self.status_machine = StatusMachine(
            self.tracker,
            degraded_threshold=settings.degraded_threshold,
            down_threshold=settings.down_threshold,
            now=now,
        )
        self.scheduler = CheckScheduler(
            self._pipeline, self.process, deadline_grace_ms=settings.deadline_grace_ms
        )
        self._monitors: dict[str, Monitor] = {}

    async def start(self) -> None:
        """Restore open incidents, schedule every active monitor and start ticking."""
        self.tracker.restore(await self._store.load_open_incidents())
        monitors = await self._store.load_active_monitors()
        for monitor in monitors:
            self._monitors[monitor.id] = monitor
            self.scheduler.schedule(monitor)
        self.scheduler.schedule_pruning(self.prune_history, self._settings.prune_interval_seconds)
        self.scheduler.start()
        logger.info(
            f"Engine started with {len(monitors)} active monitor(s), "
            f"{len(self.tracker.open_incidents())} open incident(s)"
        )

    async def stop(self) -> None:
        self.scheduler.stop()
        await self._pipeline.aclose()

    # --- Monitors ---

    async def all_monitors(self) -> list[Monitor]:
        stored = await self._store.list_monitors()
        return [self._monitors.get(m.id, m) for m in stored]

    async def monitor(self, monitor_id: str) -> Monitor:
        monitor = self._monitors.get(monitor_id)
        if monitor is None:
            monitor = await self._store.get_monitor(monitor_id)
            if monitor is None:
                raise MonitorNotFoundError(monitor_id)
            self._monitors[monitor.id] = monitor
        return monitor

    async def register(self, config: MonitorConfig) -> Monitor:
        monitor = Monitor(**config.model_dump())
        await self._store.save_monitor(monitor)
        self._monitors[monitor.id] = monitor
        self.scheduler.schedule(monitor)
        logger.info(f"Registered monitor {monitor.id} for {monitor.url}")
        return monitor

    async def update(self, monitor_id: str, changes: MonitorUpdate) -> Monitor:
        monitor = await self.monitor(monitor_id)
        data = changes.model_dump(exclude_unset=True)
        previous = {field: getattr(monitor, field) for field in data}
        for field, value in data.items():
            setattr(monitor, field, value)
        try:
            await self._store.save_monitor(monitor)
        except Exception:
            # Keep the live monitor in step with the stored row
            for field, value in previous.items():
                setattr(monitor, field, value)
            raise
        if monitor.is_active:
            self.scheduler.reschedule(monitor)
        return monitor

    async def remove(self, monitor_id: str) -> None:
        """Stop checking a monitor and delete it with its incidents and history."""
        monitor = await self.monitor(monitor_id)
        self.scheduler.unschedule(monitor.id)
        self.tracker.forget(monitor.id)
        self._monitors.pop(monitor.id, None)
        await self._store.delete_monitor(monitor.id)
        logger.info(f"Removed monitor {monitor.id}")

    async def pause(self, monitor_id: str) -> Monitor:
        monitor = await self.monitor(monitor_id)
        if not monitor.is_active:
            return monitor
        self.scheduler.unschedule(monitor.id)
        self.status_machine.pause(monitor)
        await self._store.save_monitor_status(monitor)
        logger.info(f"Paused monitor {monitor.id}")
        return monitor

    async def resume(self, monitor_id: str) -> Monitor:
        monitor = await self.monitor(monitor_id)
        if monitor.is_active:
            return monitor
        self.status_machine.resume(monitor)
        await self._store.save_monitor_status(monitor)
        self.scheduler.schedule(monitor)
        logger.info(f"Resumed monitor {monitor.id}")
        return monitor

    # --- Check results ---

    async def process(self, monitor: Monitor, result: CheckResult) -> Transition:
        """Apply a finished check to the monitor's state and record the outcome."""
        transition = self.status_machine.apply(monitor, result)
        if transition.ignored:
            return transition

        try:
            # An open incident is written on every check, so a failed write heals on the next one
            incident = transition.touched_incident or self.tracker.open_incident_for(monitor.id)
            if incident is not None:
                await self._store.save_incident(incident)
            await self._store.save_monitor_status(monitor)
            await self._record_history(monitor, result, transition)
        finally:
            if transition.opened is not None:
                await self._notify(transition.opened, DOWN)
            if transition.resolved is not None:
                await self._notify(transition.resolved, UP)

        logger.info(
            f"Monitor {monitor.id}: {'UP' if result.success else 'FAIL'} "
            f"({result.total_duration_ms}ms) status={monitor.current_status}"
        )
        return transition

    async def _record_history(self, monitor: Monitor, result: CheckResult, transition: Transition) -> None:
        try:
            await self._store.append_check_history(monitor.id, result, transition.rca)
        except Exception as e:
            logger.error(f"Failed to record check history for monitor {monitor.id}: {e}")

    async def check_history(self, monitor_id: str, hours: int = 24, limit: int = 100) -> list[CheckHistory]:
        """Recent checks for a monitor, newest first."""
        await self.monitor(monitor_id)
        since = self._now() - timedelta(hours=hours)
        return await self._store.list_check_history(monitor_id, since, limit)

    async def prune_history(self) -> int:
        cutoff = self._now() - timedelta(hours=self._settings.check_retention_hours)
        removed = await self._store.prune_check_history(cutoff)
        logger.info(f"Pruned {removed} check history row(s) older than {cutoff.isoformat()}")
        return removed

    async def _notify(self, incident: Incident, transition: str) -> None:
        try:
            await self._notifier.notify(incident, transition)
        except Exception as e:
            logger.error(f"Failed to send {transition} notification for incident {incident.id}: {e}")

    # --- Incidents ---

    async def incident(self, incident_id: str) -> Incident:
        """Read an incident, preferring the tracker's live copy.

        Resolved incidents are read from the store and never handed back to the tracker.
        """
        incident = self.tracker.get(incident_id)
        if incident is None:
            incident = await self._store.get_incident(incident_id)
            if incident is None:
                raise IncidentNotFoundError(incident_id)
            if incident.is_open:
                self.tracker.restore([incident])
        return incident

    async def incidents(
        self, monitor_id: Optional[str] = None, status: Optional[str] = None, limit: int = 100
    ) -> list[Incident]:
        if monitor_id is not None:
            await self.monitor(monitor_id)
        stored = await self._store.list_incidents(monitor_id=monitor_id, status=status, limit=limit)
        return [self.tracker.get(i.id) or i for i in stored]

    async def acknowledge(self, incident_id: str, by: str) -> Incident:
        incident = await self.incident(incident_id)
        if incident.status == IncidentStatus.RESOLVED.value:
            raise IncidentStateError("Incident is already resolved")
        incident = self.tracker.acknowledge(incident_id, by)
        await self._store.save_incident(incident)
        return incident

    async def annotate(self, incident_id: str, notes: Optional[str]) -> Incident:
        incident = await self.incident(incident_id)
        if incident.is_open:
            incident = self.tracker.annotate(incident_id, notes)
        else:
            incident.notes = notes
            incident.updated_at = self._now()
        await self._store.save_incident(incident)
        return incident
