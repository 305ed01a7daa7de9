"""Protocol conformance and behavior of the concrete adapters."""

import logging

import pytest

from attendance_monitor.adapters.cache.in_process import InProcessCache
from attendance_monitor.adapters.cache.redis import RedisCache, to_match_pattern
from attendance_monitor.adapters.cache.sqlite import SQLiteCache
from attendance_monitor.adapters.notify import LoggingAlertNotifier
from attendance_monitor.adapters.system import PsutilSystemProbe
from attendance_monitor.core.models import Alert, Severity
from attendance_monitor.core.ports import (
    AlertNotifierPort,
    CacheTierPort,
    ExternalCachePort,
    SystemProbePort,
)


class TestPortConformance:
    """Each adapter satisfies the port it is wired into."""

    @pytest.mark.core
    def test_in_process_cache_is_a_tier_but_not_external(self) -> None:
        assert isinstance(InProcessCache(), CacheTierPort)
        assert not isinstance(InProcessCache(), ExternalCachePort)

    @pytest.mark.core
    @pytest.mark.parametrize(
        "external",
        [RedisCache("redis://localhost:6379/0"), SQLiteCache(":memory:")],
        ids=["redis", "sqlite"],
    )
    def test_external_tiers(self, external: object) -> None:
        assert isinstance(external, ExternalCachePort)

    @pytest.mark.core
    def test_notifier(self) -> None:
        assert isinstance(LoggingAlertNotifier(), AlertNotifierPort)

    @pytest.mark.core
    def test_probe(self) -> None:
        assert isinstance(PsutilSystemProbe(), SystemProbePort)


class TestRedisCache:
    """Behavior of RedisCache that needs no server."""

    @pytest.mark.cache
    def test_client_requires_connect(self) -> None:
        with pytest.raises(RuntimeError, match="not connected"):
            RedisCache("redis://localhost:6379/0").client

    @pytest.mark.cache
    async def test_close_before_connect_is_a_noop(self) -> None:
        await RedisCache("redis://localhost:6379/0").close()

    @pytest.mark.cache
    @pytest.mark.parametrize(
        ("pattern", "expected"),
        [
            ("student:*", "student:*"),
            ("student:1?:*", "student:1\\?:*"),
            ("alerts:[c1]:*", "alerts:\\[c1\\]:*"),
        ],
    )
    def test_match_pattern_keeps_only_star_special(self, pattern: str, expected: str) -> None:
        assert to_match_pattern(pattern) == expected


class TestLoggingAlertNotifier:
    """Tests for LoggingAlertNotifier."""

    @pytest.mark.core
    def test_logs_on_security_channel(self, caplog: pytest.LogCaptureFixture) -> None:
        alert = Alert(
            type="critical_error_threshold",
            severity=Severity.CRITICAL,
            timestamp=1_700_000_000.0,
        )

        with caplog.at_level(logging.WARNING, logger="attendance_monitor.security"):
            LoggingAlertNotifier(["ops@school.edu", "head@school.edu"]).notify(alert)

        (record,) = caplog.records
        assert record.name == "attendance_monitor.security"
        assert "critical_error_threshold" in record.getMessage()
        assert record.alert_id == alert.id
        assert record.alert_severity == "critical"
        assert record.recipients == "ops@school.edu,head@school.edu"

    @pytest.mark.core
    def test_default_recipient(self) -> None:
        assert LoggingAlertNotifier().recipients == ["admin@school.edu"]


class TestPsutilSystemProbe:
    """Tests for PsutilSystemProbe."""

    @pytest.mark.core
    def test_samples_current_process(self) -> None:
        snapshot = PsutilSystemProbe(clock=lambda: 42.0).sample()

        assert snapshot.timestamp == 42.0
        assert snapshot.rss_bytes > 0
        assert snapshot.vms_bytes >= snapshot.rss_bytes
        assert snapshot.cpu_user >= 0
