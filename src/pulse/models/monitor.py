import enum
import uuid
from datetime import datetime, timezone
from sqlalchemy import String, Boolean, DateTime, Integer, JSON, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pulse.database import Base


class MonitorStatus(str, enum.Enum):
    UP = "UP"
    DOWN = "DOWN"
    DEGRADED = "DEGRADED"
    UNKNOWN = "UNKNOWN"
    PAUSED = "PAUSED"


# Python-side defaults, so a Monitor built outside a session matches an inserted row
_DEFAULTS = {
    "method": "GET",
    "interval_seconds": 300,
    "timeout_ms": 30000,
    "expected_status": 200,
    "is_active": True,
    "current_status": MonitorStatus.UNKNOWN.value,
    "consecutive_failures": 0,
}


class Monitor(Base):
    __tablename__ = "monitors"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    method: Mapped[str] = mapped_column(String(10), default="GET")
    interval_seconds: Mapped[int] = mapped_column(Integer, default=300)
    timeout_ms: Mapped[int] = mapped_column(Integer, default=30000)
    expected_status: Mapped[int] = mapped_column(Integer, default=200)
    keyword: Mapped[str | None] = mapped_column(Text, nullable=True)
    headers: Mapped[dict] = mapped_column(JSON, default=dict)
    tags: Mapped[list] = mapped_column(JSON, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    current_status: Mapped[str] = mapped_column(String(20), default="UNKNOWN")
    consecutive_failures: Mapped[int] = mapped_column(Integer, default=0)
    last_check_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_status_change_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    check_history: Mapped[list["CheckHistory"]] = relationship(  # noqa: F821
        back_populates="monitor", cascade="all, delete-orphan"
    )
    incidents: Mapped[list["Incident"]] = relationship(  # noqa: F821
        back_populates="monitor", cascade="all, delete-orphan"
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("id", str(uuid.uuid4()))
        for key, value in _DEFAULTS.items():
            kwargs.setdefault(key, value)
        kwargs.setdefault("headers", {})
        kwargs.setdefault("tags", [])
        now = datetime.now(timezone.utc)
        kwargs.setdefault("created_at", now)
        kwargs.setdefault("updated_at", now)
        super().__init__(**kwargs)

    @property
    def status(self) -> MonitorStatus:
        return MonitorStatus(self.current_status)

    @property
    def uses_tls(self) -> bool:
        return self.url.lower().startswith("https://")

    def __repr__(self) -> str:
        return f"<Monitor {self.id} {self.url} {self.current_status}>"
