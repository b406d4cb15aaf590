"""
Applies consecutive check results to monitor status with hysteresis, opening and
resolving incidents as the status crosses DOWN.
"""
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pulse.incidents import IncidentTracker, utcnow
from pulse.models.incident import Incident
from pulse.models.monitor import Monitor, MonitorStatus
from pulse.phases import CheckResult
from pulse.rca import RCADetails, classify

logger = logging.getLogger("pulse.status")


@dataclass
class Transition:
    monitor_id: str
    previous: MonitorStatus
    current: MonitorStatus
    rca: Optional[RCADetails] = None
    opened: Optional[Incident] = None
    resolved: Optional[Incident] = None
    reclassified: Optional[Incident] = None
    ignored: bool = False

    @property
    def changed(self) -> bool:
        return self.previous != self.current

    @property
    def touched_incident(self) -> Optional[Incident]:
        return self.opened or self.resolved or self.reclassified


class StatusMachine:
    def __init__(
        self,
        tracker: IncidentTracker,
        degraded_threshold: int = 1,
        down_threshold: int = 3,
        now: Optional[Callable[[], datetime]] = None,
    ):
        if degraded_threshold < 1:
            raise ValueError("degraded_threshold must be at least 1")
        if down_threshold < degraded_threshold:
            raise ValueError("down_threshold must not be below degraded_threshold")
        self._tracker = tracker
        self.degraded_threshold = degraded_threshold
        self.down_threshold = down_threshold
        self._now = now or utcnow

    def _set_status(self, monitor: Monitor, status: MonitorStatus, now: datetime) -> None:
        if monitor.current_status != status.value:
            monitor.current_status = status.value
            monitor.last_status_change_at = now

    def _status_after_failure(self, previous: MonitorStatus, failures: int) -> MonitorStatus:
        if failures >= self.down_threshold:
            return MonitorStatus.DOWN
        if failures >= self.degraded_threshold:
            return MonitorStatus.DEGRADED
        return previous

    def apply(self, monitor: Monitor, result: CheckResult) -> Transition:
        """Apply one check result to ``monitor``. Paused monitors are left untouched."""
        previous = monitor.status
        if not monitor.is_active or previous == MonitorStatus.PAUSED:
            return Transition(monitor.id, previous, previous, ignored=True)

        now = self._now()
        rca = classify(result)
        transition = Transition(monitor.id, previous, previous, rca=rca)
        monitor.last_check_at = now

        if result.success:
            monitor.consecutive_failures = 0
            new_status = MonitorStatus.UP
            incident = self._tracker.open_incident_for(monitor.id)
            if incident is not None:
                transition.resolved = self._tracker.resolve(incident.id)
        else:
            monitor.consecutive_failures += 1
            new_status = self._status_after_failure(previous, monitor.consecutive_failures)
            if new_status == MonitorStatus.DOWN:
                incident = self._tracker.open_incident_for(monitor.id)
                if incident is None:
                    transition.opened = self._tracker.open(monitor.id, rca)
                elif incident.error_category != (rca.category.value if rca.category else None):
                    transition.reclassified = self._tracker.reclassify(incident, rca)

        self._set_status(monitor, new_status, now)
        transition.current = new_status
        if transition.changed:
            logger.info(
                f"Monitor {monitor.id}: {previous.value} -> {new_status.value} "
                f"(failures={monitor.consecutive_failures})"
            )
        return transition

    def pause(self, monitor: Monitor) -> Transition:
        previous = monitor.status
        monitor.is_active = False
        self._set_status(monitor, MonitorStatus.PAUSED, self._now())
        return Transition(monitor.id, previous, MonitorStatus.PAUSED)

    def resume(self, monitor: Monitor) -> Transition:
        previous = monitor.status
        monitor.is_active = True
        monitor.consecutive_failures = 0
        self._set_status(monitor, MonitorStatus.UNKNOWN, self._now())
        return Transition(monitor.id, previous, MonitorStatus.UNKNOWN)
