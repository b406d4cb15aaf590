"""Incident lifecycle. At most one unresolved incident exists per monitor."""
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Optional

from pulse.models.incident import Incident, IncidentStatus
from pulse.rca import RCADetails

logger = logging.getLogger("pulse.incidents")


class IncidentError(Exception):
    pass


class IncidentNotFoundError(IncidentError):
    def __init__(self, incident_id: str):
        super().__init__(f"Incident {incident_id} not found")
        self.incident_id = incident_id


class IncidentStateError(IncidentError):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back without tzinfo
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def duration_seconds(started_at: datetime, ended_at: datetime) -> int:
    return int((_as_utc(ended_at) - _as_utc(started_at)).total_seconds())


class IncidentTracker:
    def __init__(self, now: Optional[Callable[[], datetime]] = None):
        self._now = now or utcnow
        self._open_by_monitor: dict[str, Incident] = {}
        self._known: dict[str, Incident] = {}

    def restore(self, incidents: Iterable[Incident]) -> None:
        """Seed the tracker with incidents loaded from storage."""
        for incident in incidents:
            if not incident.is_open:
                continue
            self._known[incident.id] = incident
            current = self._open_by_monitor.get(incident.monitor_id)
            if current is not None and current.id != incident.id:
                logger.error(
                    f"Monitor {incident.monitor_id} has more than one open incident; "
                    f"keeping {current.id}, ignoring {incident.id}"
                )
                continue
            self._open_by_monitor[incident.monitor_id] = incident

    def get(self, incident_id: str) -> Optional[Incident]:
        """Look up an unresolved incident. Resolved incidents live only in storage."""
        return self._known.get(incident_id)

    def forget(self, monitor_id: str) -> None:
        """Drop every incident tracked for a monitor that no longer exists."""
        self._open_by_monitor.pop(monitor_id, None)
        for incident_id in [i.id for i in self._known.values() if i.monitor_id == monitor_id]:
            del self._known[incident_id]

    def open_incident_for(self, monitor_id: str) -> Optional[Incident]:
        return self._open_by_monitor.get(monitor_id)

    def open_incidents(self) -> list[Incident]:
        return list(self._open_by_monitor.values())

    def open(self, monitor_id: str, rca: RCADetails) -> Optional[Incident]:
        """Open an incident unless the monitor already has one. Returns the new incident."""
        if monitor_id in self._open_by_monitor:
            logger.debug(f"Incident already open for monitor {monitor_id}")
            return None

        now = self._now()
        incident = Incident(
            monitor_id=monitor_id,
            status=IncidentStatus.OPEN.value,
            started_at=now,
            created_at=now,
            updated_at=now,
            error_category=rca.category.value if rca.category else None,
            error_message=rca.message,
            rca_details=rca.to_json(),
        )
        self._open_by_monitor[monitor_id] = incident
        self._known[incident.id] = incident
        logger.warning(
            f"INCIDENT: monitor {monitor_id} is DOWN ({incident.error_category}) - {rca.message}"
        )
        return incident

    def reclassify(self, incident: Incident, rca: RCADetails) -> Incident:
        """Record a new root cause on an open incident. ``started_at`` is kept."""
        previous = incident.error_category
        incident.error_category = rca.category.value if rca.category else None
        incident.error_message = rca.message
        incident.rca_details = rca.to_json()
        incident.updated_at = self._now()
        logger.info(
            f"Incident {incident.id} cause changed: {previous} -> {incident.error_category}"
        )
        return incident

    def _require(self, incident_id: str) -> Incident:
        incident = self._known.get(incident_id)
        if incident is None:
            raise IncidentNotFoundError(incident_id)
        return incident

    def acknowledge(self, incident_id: str, by: str) -> Incident:
        incident = self._require(incident_id)
        if incident.status != IncidentStatus.OPEN.value:
            raise IncidentStateError("Only OPEN incidents can be acknowledged")

        now = self._now()
        incident.status = IncidentStatus.ACKNOWLEDGED.value
        incident.acknowledged_at = now
        incident.acknowledged_by = by
        incident.updated_at = now
        logger.info(f"Incident {incident.id} acknowledged by {by}")
        return incident

    def resolve(self, incident_id: str) -> Incident:
        """Resolve an incident and stop tracking it."""
        incident = self._require(incident_id)

        now = self._now()
        incident.status = IncidentStatus.RESOLVED.value
        incident.resolved_at = now
        incident.duration_seconds = duration_seconds(incident.started_at, now)
        incident.updated_at = now
        if self._open_by_monitor.get(incident.monitor_id) is incident:
            del self._open_by_monitor[incident.monitor_id]
        self._known.pop(incident.id, None)
        logger.info(
            f"RESOLVED: incident {incident.id} for monitor {incident.monitor_id} "
            f"after {incident.duration_seconds}s"
        )
        return incident

    def annotate(self, incident_id: str, notes: str) -> Incident:
        incident = self._require(incident_id)
        incident.notes = notes
        incident.updated_at = self._now()
        return incident

