"""
Notification collaborator. Delivery lives outside the engine; the engine only
calls ``notify`` on incident open (``"DOWN"``) and resolve (``"UP"``).
"""
import logging
from datetime import timedelta
from typing import Protocol

from pulse.models.incident import Incident

logger = logging.getLogger("pulse.notifier")

DOWN = "DOWN"
UP = "UP"


class Notifier(Protocol):
    async def notify(self, incident: Incident, transition: str) -> None: ...


class LoggingNotifier:
    async def notify(self, incident: Incident, transition: str) -> None:
        if transition == DOWN:
            logger.info(
                f"ALERT: monitor {incident.monitor_id} is DOWN. "
                f"{incident.error_category or 'UNKNOWN_ERROR'}: {incident.error_message or 'Unknown'}"
            )
        else:
            duration = timedelta(seconds=incident.duration_seconds or 0)
            logger.info(
                f"RECOVERY: monitor {incident.monitor_id} is back UP "
                f"after {format_duration(duration)}"
            )


def format_duration(delta: timedelta) -> str:
    """Format a timedelta as a human-readable string."""
    total_seconds = int(delta.total_seconds())
    if total_seconds < 60:
        return f"{total_seconds}s"
    elif total_seconds < 3600:
        minutes = total_seconds // 60
        return f"{minutes}m"
    elif total_seconds < 86400:
        hours = total_seconds // 3600
        minutes = (total_seconds % 3600) // 60
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    else:
        days = total_seconds // 86400
        hours = (total_seconds % 86400) // 3600
        return f"{days}d {hours}h" if hours else f"{days}d"
