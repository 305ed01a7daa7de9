"""Tests for the pure analytics helpers."""

import pytest

from attendance_monitor.core import analytics
from attendance_monitor.core.models import (
    ErrorEvent,
    ErrorInfo,
    PerformanceThresholds,
    Severity,
)

HOUR = 3600
# 2024-01-01T00:00:00Z
MIDNIGHT = 1_704_067_200.0


def _event(name: str, timestamp: float, severity: Severity = Severity.ERROR, **context) -> ErrorEvent:
    return ErrorEvent(
        timestamp=timestamp,
        error=ErrorInfo(name=name, message=f"{name} happened", code="E"),
        severity=severity,
        context=context,
    )


class TestExtractBrowser:
    """Tests for extract_browser."""

    @pytest.mark.core
    @pytest.mark.parametrize(
        ("user_agent", "browser"),
        [
            ("Mozilla/5.0 Chrome/120.0 Safari/537.36 Edg/120.0", "Edge"),
            ("Mozilla/5.0 AppleWebKit/537.36 Chrome/120.0 Safari/537.36", "Chrome"),
            ("Mozilla/5.0 Gecko/20100101 Firefox/121.0", "Firefox"),
            ("Mozilla/5.0 (Macintosh) Version/17.1 Safari/605.1.15", "Safari"),
            ("curl/8.4.0", "Other"),
            (None, "Other"),
        ],
    )
    def test_browser_families(self, user_agent: str | None, browser: str) -> None:
        assert analytics.extract_browser(user_agent) == browser


class TestAggregations:
    """Tests for top_errors, error_trends and error_contexts."""

    @pytest.mark.core
    def test_top_errors_ranked_by_count(self) -> None:
        events = [
            _event("B", MIDNIGHT + 3),
            _event("A", MIDNIGHT + 2),
            _event("B", MIDNIGHT + 1),
        ]

        ranked = analytics.top_errors(events)

        assert [(e["name"], e["count"]) for e in ranked] == [("B", 2), ("A", 1)]
        assert ranked[0]["last_occurrence"] == MIDNIGHT + 3

    @pytest.mark.core
    def test_top_errors_limit(self) -> None:
        events = [_event(f"E{i}", MIDNIGHT) for i in range(15)]

        assert len(analytics.top_errors(events)) == 10
        assert len(analytics.top_errors(events, limit=3)) == 3

    @pytest.mark.core
    def test_trends_are_utc_hours_sorted(self) -> None:
        events = [
            _event("A", MIDNIGHT + 5 * HOUR),
            _event("A", MIDNIGHT + 1 * HOUR + 30),
            _event("A", MIDNIGHT + 5 * HOUR + 60),
        ]

        assert analytics.error_trends(events) == [
            {"hour": 1, "count": 1},
            {"hour": 5, "count": 2},
        ]

    @pytest.mark.core
    def test_error_contexts(self) -> None:
        events = [
            _event("A", MIDNIGHT, user_role="Teacher", endpoint="/a", ip_address="1.1.1.1"),
            _event("A", MIDNIGHT, user_role="Teacher", user_agent="Firefox/121.0"),
            _event("A", MIDNIGHT),
        ]

        contexts = analytics.error_contexts(events, lambda e: e.context)

        assert contexts == {
            "user_roles": {"Teacher": 2},
            "endpoints": {"/a": 1},
            "user_agents": {"Firefox": 1},
            "ip_addresses": {"1.1.1.1": 1},
        }

    @pytest.mark.core
    def test_severity_breakdown_reports_zero_levels(self) -> None:
        events = [_event("A", MIDNIGHT, Severity.CRITICAL)]

        breakdown = analytics.severity_breakdown(events, [Severity.CRITICAL, Severity.INFO])

        assert breakdown == {"critical": 1, "info": 0}


class TestHealth:
    """Tests for determine_health_status and recommendations."""

    @pytest.mark.core
    @pytest.mark.parametrize(
        ("error_rate", "response_ms", "memory_mb", "status"),
        [
            (0.0, 100, 100, "healthy"),
            (0.06, 100, 100, "warning"),
            (0.0, 2500, 100, "warning"),
            (0.0, 100, 1200, "critical"),
            (0.2, 100, 100, "critical"),
        ],
    )
    def test_determine_health_status(
        self, error_rate: float, response_ms: float, memory_mb: float, status: str
    ) -> None:
        assert (
            analytics.determine_health_status(
                error_rate, response_ms, memory_mb, PerformanceThresholds()
            )
            == status
        )

    @pytest.mark.core
    def test_no_recommendations_when_healthy(self) -> None:
        assert (
            analytics.performance_recommendations([], [], 0.0, 100, PerformanceThresholds())
            == []
        )

    @pytest.mark.core
    def test_memory_recommendation_priority(self) -> None:
        recommendations = analytics.performance_recommendations(
            [], [], 0.0, 1500, PerformanceThresholds()
        )

        assert [(r["type"], r["priority"]) for r in recommendations] == [
            ("memory", "critical")
        ]
