from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, field_validator, model_validator

ALLOWED_METHODS = {"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"}

MIN_INTERVAL_SECONDS = 60
MAX_INTERVAL_SECONDS = 3600
MIN_TIMEOUT_MS = 5000
MAX_TIMEOUT_MS = 60000

INVALID_INTERVAL = "Interval must be between 60 and 3600 seconds"
INVALID_TIMEOUT = "Timeout must be between 5000 and 60000 milliseconds"

NON_NULLABLE_FIELDS = frozenset({
    "name", "url", "method", "interval_seconds", "timeout_ms",
    "expected_status", "headers", "tags",
})


def _check_name(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Monitor name is required")
    if len(v) > 255:
        raise ValueError("Monitor name must be at most 255 characters")
    return v


def _check_url(v: str) -> str:
    v = v.strip()
    if not v.startswith(("http://", "https://")):
        raise ValueError("URL must start with http:// or https://")
    if len(v) > 2048:
        raise ValueError("URL must be at most 2048 characters")
    return v


def _check_method(v: str) -> str:
    v = v.upper().strip()
    if v not in ALLOWED_METHODS:
        raise ValueError(f"Method must be one of: {', '.join(sorted(ALLOWED_METHODS))}")
    return v


def _check_interval(v: int) -> int:
    if v < MIN_INTERVAL_SECONDS or v > MAX_INTERVAL_SECONDS:
        raise ValueError(INVALID_INTERVAL)
    return v


def _check_timeout(v: int) -> int:
    if v < MIN_TIMEOUT_MS or v > MAX_TIMEOUT_MS:
        raise ValueError(INVALID_TIMEOUT)
    return v


def _check_expected_status(v: int) -> int:
    if v < 100 or v > 599:
        raise ValueError("Expected status code must be between 100 and 599")
    return v


# --- Monitor Schemas ---

class MonitorConfig(BaseModel):
    """Per-monitor configuration, validated before it reaches the scheduler."""

    name: str
    url: str
    method: str = "GET"
    interval_seconds: int = 300
    timeout_ms: int = 30000
    expected_status: int = 200
    keyword: Optional[str] = None
    headers: dict[str, str] = {}
    tags: list[str] = []

    @field_validator("name")
    @classmethod
    def name_valid(cls, v: str) -> str:
        return _check_name(v)

    @field_validator("url")
    @classmethod
    def url_valid(cls, v: str) -> str:
        return _check_url(v)

    @field_validator("method")
    @classmethod
    def method_valid(cls, v: str) -> str:
        return _check_method(v)

    @field_validator("interval_seconds")
    @classmethod
    def interval_valid(cls, v: int) -> int:
        return _check_interval(v)

    @field_validator("timeout_ms")
    @classmethod
    def timeout_valid(cls, v: int) -> int:
        return _check_timeout(v)

    @field_validator("expected_status")
    @classmethod
    def status_code_valid(cls, v: int) -> int:
        return _check_expected_status(v)

    @field_validator("keyword")
    @classmethod
    def keyword_valid(cls, v: Optional[str]) -> Optional[str]:
        # Blank keywords disable the keyword phase
        return v if v else None


class MonitorUpdate(BaseModel):
    name: Optional[str] = None
    url: Optional[str] = None
    method: Optional[str] = None
    interval_seconds: Optional[int] = None
    timeout_ms: Optional[int] = None
    expected_status: Optional[int] = None
    keyword: Optional[str] = None
    headers: Optional[dict[str, str]] = None
    tags: Optional[list[str]] = None

    @field_validator("name")
    @classmethod
    def name_valid(cls, v: Optional[str]) -> Optional[str]:
        return _check_name(v) if v is not None else v

    @field_validator("url")
    @classmethod
    def url_valid(cls, v: Optional[str]) -> Optional[str]:
        return _check_url(v) if v is not None else v

    @field_validator("method")
    @classmethod
    def method_valid(cls, v: Optional[str]) -> Optional[str]:
        return _check_method(v) if v is not None else v

    @field_validator("interval_seconds")
    @classmethod
    def interval_valid(cls, v: Optional[int]) -> Optional[int]:
        return _check_interval(v) if v is not None else v

    @field_validator("timeout_ms")
    @classmethod
    def timeout_valid(cls, v: Optional[int]) -> Optional[int]:
        return _check_timeout(v) if v is not None else v

    @field_validator("expected_status")
    @classmethod
    def status_code_valid(cls, v: Optional[int]) -> Optional[int]:
        return _check_expected_status(v) if v is not None else v

    @field_validator("keyword")
    @classmethod
    def keyword_valid(cls, v: Optional[str]) -> Optional[str]:
        return v if v else None

    @model_validator(mode="after")
    def required_fields_not_null(self) -> "MonitorUpdate":
        # Only keyword may be cleared with an explicit null
        for field in sorted(self.model_fields_set & NON_NULLABLE_FIELDS):
            if getattr(self, field) is None:
                raise ValueError(f"{field} cannot be null")
        return self


class MonitorResponse(BaseModel):
    id: str
    name: str
    url: str
    method: str
    interval_seconds: int
    timeout_ms: int
    expected_status: int
    keyword: Optional[str] = None
    headers: dict[str, str] = {}
    tags: list[str] = []
    is_active: bool
    current_status: str
    consecutive_failures: int
    last_check_at: Optional[datetime] = None
    last_status_change_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class CheckHistoryResponse(BaseModel):
    id: str
    monitor_id: str
    success: bool
    status_code: Optional[int] = None
    response_time_ms: Optional[int] = None
    error_category: Optional[str] = None
    error_message: Optional[str] = None
    rca_details: Optional[dict[str, Any]] = None
    checked_at: datetime

    model_config = {"from_attributes": True}


# --- Incident Schemas ---

class AcknowledgeRequest(BaseModel):
    by: str

    @field_validator("by")
    @classmethod
    def by_not_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Acknowledging user is required")
        return v


class IncidentUpdate(BaseModel):
    notes: Optional[str] = None


class IncidentResponse(BaseModel):
    id: str
    monitor_id: str
    status: str
    started_at: datetime
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    error_category: Optional[str] = None
    error_message: Optional[str] = None
    rca_details: Optional[dict[str, Any]] = None
    notes: Optional[str] = None

    model_config = {"from_attributes": True}
