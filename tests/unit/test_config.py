"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from attendance_monitor.config import MonitoringSettings


class TestMonitoringSettings:
    """Tests for MonitoringSettings."""

    @pytest.mark.core
    def test_defaults(self) -> None:
        settings = MonitoringSettings(_env_file=None)

        assert settings.cache_backend == "memory"
        assert settings.error_log_capacity == 1000
        assert settings.attendance_log_capacity == 500
        assert settings.default_cache_ttl_seconds == 300
        assert settings.attendance_path_prefix == "/api/attendance"
        assert settings.log_dir is None

    @pytest.mark.core
    def test_reads_prefixed_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ATTENDANCE_MONITOR_CACHE_BACKEND", "sqlite")
        monkeypatch.setenv("ATTENDANCE_MONITOR_ERROR_LOG_CAPACITY", "50")
        monkeypatch.setenv("ATTENDANCE_MONITOR_ALERT_RECIPIENTS", '["ops@school.edu"]')

        settings = MonitoringSettings(_env_file=None)

        assert settings.cache_backend == "sqlite"
        assert settings.error_log_capacity == 50
        assert settings.alert_recipients == ["ops@school.edu"]

    @pytest.mark.core
    def test_log_level_is_uppercased(self) -> None:
        assert MonitoringSettings(log_level="warning", _env_file=None).log_level == "WARNING"

    @pytest.mark.core
    @pytest.mark.parametrize(
        "overrides",
        [
            {"cache_backend": "memcached"},
            {"error_log_capacity": 0},
            {"cache_connect_timeout_seconds": 0},
        ],
    )
    def test_rejects_invalid_values(self, overrides: dict) -> None:
        with pytest.raises(ValidationError):
            MonitoringSettings(_env_file=None, **overrides)
