import logging
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pulse.models.check_history import CheckHistory
from pulse.models.incident import Incident, IncidentStatus
from pulse.models.monitor import Monitor
from pulse.phases import CheckResult
from pulse.rca import RCADetails

logger = logging.getLogger("pulse.store")


class MonitorStore(Protocol):
    async def load_active_monitors(self) -> list[Monitor]: ...

    async def list_monitors(self) -> list[Monitor]: ...

    async def get_monitor(self, monitor_id: str) -> Optional[Monitor]: ...

    async def load_open_incidents(self) -> list[Incident]: ...

    async def get_incident(self, incident_id: str) -> Optional[Incident]: ...

    async def save_monitor(self, monitor: Monitor) -> None: ...

    async def save_monitor_status(self, monitor: Monitor) -> None: ...

    async def save_incident(self, incident: Incident) -> None: ...

    async def append_check_history(
        self, monitor_id: str, result: CheckResult, rca: RCADetails
    ) -> None: ...

    async def list_check_history(
        self, monitor_id: str, since: datetime, limit: int = 100
    ) -> list[CheckHistory]: ...

    async def prune_check_history(self, before: datetime) -> int: ...

    async def list_incidents(
        self, monitor_id: Optional[str] = None, status: Optional[str] = None, limit: int = 100
    ) -> list[Incident]: ...

    async def delete_monitor(self, monitor_id: str) -> bool: ...


class SqlMonitorStore:
    """MonitorStore backed by SQLAlchemy async sessions.

    Objects returned here are detached (sessions use ``expire_on_commit=False``)
    and are owned by the engine afterwards; saves merge them back.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load_active_monitors(self) -> list[Monitor]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Monitor).where(Monitor.is_active == True)  # noqa: E712
            )
            return list(result.scalars().all())

    async def list_monitors(self) -> list[Monitor]:
        async with self._session_factory() as db:
            result = await db.execute(select(Monitor).order_by(Monitor.created_at.desc()))
            return list(result.scalars().all())

    async def get_monitor(self, monitor_id: str) -> Optional[Monitor]:
        async with self._session_factory() as db:
            result = await db.execute(select(Monitor).where(Monitor.id == monitor_id))
            return result.scalar_one_or_none()

    async def load_open_incidents(self) -> list[Incident]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Incident)
                .where(Incident.status.in_([IncidentStatus.OPEN.value, IncidentStatus.ACKNOWLEDGED.value]))
                .order_by(Incident.started_at.desc())
            )
            return list(result.scalars().all())

    async def get_incident(self, incident_id: str) -> Optional[Incident]:
        async with self._session_factory() as db:
            result = await db.execute(select(Incident).where(Incident.id == incident_id))
            return result.scalar_one_or_none()

    async def save_monitor(self, monitor: Monitor) -> None:
        async with self._session_factory() as db:
            await db.merge(monitor)
            await db.commit()

    async def save_monitor_status(self, monitor: Monitor) -> None:
        # Status fields only, so a concurrent config edit is never overwritten
        async with self._session_factory() as db:
            await db.execute(
                update(Monitor)
                .where(Monitor.id == monitor.id)
                .values(
                    is_active=monitor.is_active,
                    current_status=monitor.current_status,
                    consecutive_failures=monitor.consecutive_failures,
                    last_check_at=monitor.last_check_at,
                    last_status_change_at=monitor.last_status_change_at,
                )
            )
            await db.commit()

    async def save_incident(self, incident: Incident) -> None:
        async with self._session_factory() as db:
            await db.merge(incident)
            await db.commit()

    async def append_check_history(
        self, monitor_id: str, result: CheckResult, rca: RCADetails
    ) -> None:
        async with self._session_factory() as db:
            db.add(
                CheckHistory(
                    monitor_id=monitor_id,
                    success=result.success,
                    status_code=result.status_code,
                    response_time_ms=result.total_duration_ms,
                    error_category=rca.category.value if rca.category else None,
                    error_message=None if result.success else rca.message,
                    rca_details=None if result.success else rca.to_json(),
                    checked_at=result.checked_at,
                )
            )
            await db.commit()

    async def list_check_history(
        self, monitor_id: str, since: datetime, limit: int = 100
    ) -> list[CheckHistory]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(CheckHistory)
                .where(
                    CheckHistory.monitor_id == monitor_id,
                    CheckHistory.checked_at >= since,
                )
                .order_by(CheckHistory.checked_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def prune_check_history(self, before: datetime) -> int:
        """Delete check history rows older than ``before``. Returns the number removed."""
        async with self._session_factory() as db:
            result = await db.execute(
                delete(CheckHistory).where(CheckHistory.checked_at < before)
            )
            await db.commit()
            return result.rowcount or 0

    async def list_incidents(
        self, monitor_id: Optional[str] = None, status: Optional[str] = None, limit: int = 100
    ) -> list[Incident]:
        query = select(Incident)
        if monitor_id is not None:
            query = query.where(Incident.monitor_id == monitor_id)
        if status is not None:
            query = query.where(Incident.status == status)
        async with self._session_factory() as db:
            result = await db.execute(
                query.order_by(Incident.started_at.desc()).limit(limit)
            )
            return list(result.scalars().all())

    async def delete_monitor(self, monitor_id: str) -> bool:
        """Delete a monitor together with its incidents and check history."""
        async with self._session_factory() as db:
            result = await db.execute(select(Monitor).where(Monitor.id == monitor_id))
            monitor = result.scalar_one_or_none()
            if monitor is None:
                return False
            await db.delete(monitor)
            await db.commit()
            return True
