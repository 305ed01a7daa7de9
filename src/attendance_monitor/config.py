"""Runtime configuration loaded from the environment."""

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MonitoringSettings(BaseSettings):
    """Settings for the monitoring services.

    Every field can be set through an ``ATTENDANCE_MONITOR_`` prefixed
    environment variable, e.g. ``ATTENDANCE_MONITOR_CACHE_BACKEND=redis``.
    """

    model_config = SettingsConfigDict(
        env_prefix="ATTENDANCE_MONITOR_",
        env_file=".env",
        extra="ignore",
    )

    cache_backend: Literal["memory", "redis", "sqlite"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    sqlite_cache_path: str = "attendance_cache.db"
    cache_connect_timeout_seconds: float = Field(default=5.0, gt=0)
    default_cache_ttl_seconds: int = Field(default=300, ge=1)

    error_log_capacity: int = Field(default=1000, ge=1)
    attendance_log_capacity: int = Field(default=500, ge=1)
    alert_history_capacity: int = Field(default=1000, ge=1)

    error_cleanup_interval_seconds: float = Field(default=3600, gt=0)
    performance_cleanup_interval_seconds: float = Field(default=3600, gt=0)
    system_sample_interval_seconds: float = Field(default=30, gt=0)
    cache_prune_interval_seconds: float = Field(default=600, gt=0)

    alert_recipients: list[str] = Field(default_factory=lambda: ["admin@school.edu"])
    attendance_path_prefix: str = "/api/attendance"

    log_level: str = "INFO"
    log_json: bool = True
    log_dir: Path | None = None

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()
