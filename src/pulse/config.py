from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    app_name: str = "Pulse"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Database
    database_url: str = "sqlite+aiosqlite:///./pulse.db"

    # Status hysteresis
    degraded_threshold: int = 1  # failures before marking degraded
    down_threshold: int = 3  # failures before marking down and opening an incident

    # Monitoring defaults
    default_interval_seconds: int = 300  # 5 minutes
    default_timeout_ms: int = 30000
    deadline_grace_ms: int = 1000  # slack on top of timeout_ms before a check is killed

    # Check history retention
    check_retention_hours: int = 7 * 24  # 7 days
    prune_interval_seconds: int = 3600

    # HTTP probe
    user_agent: str = "Pulse-Monitor/1.0"
    max_redirects: int = 5
    http_max_connections: int = 100
    http_max_keepalive: int = 20

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "PULSE_"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
