from pulse.models.monitor import Monitor, MonitorStatus
from pulse.models.check_history import CheckHistory
from pulse.models.incident import Incident, IncidentStatus

__all__ = ["Monitor", "MonitorStatus", "CheckHistory", "Incident", "IncidentStatus"]
