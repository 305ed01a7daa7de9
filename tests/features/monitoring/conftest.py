"""BDD step definitions for monitoring.feature."""

import asyncio
from dataclasses import dataclass, field
from typing import Any

import pytest
from pytest_bdd import given, parsers, then, when
from tests.helpers import FakeClock, RecordingNotifier

from attendance_monitor.adapters.cache.in_process import InProcessCache
from attendance_monitor.adapters.cache.tiered import TieredCache
from attendance_monitor.core.attendance_tracker import AttendanceErrorTracker
from attendance_monitor.core.error_tracker import ErrorTracker
from attendance_monitor.core.errors import AppError
from attendance_monitor.core.models import AttendanceThresholds, ErrorThresholds
from attendance_monitor.core.performance_tracker import PerformanceTracker

run_async = asyncio.run

CACHED_VALUE = {"a": 1}


@dataclass
class MonitoringScenarioContext:
    """State shared between the steps of one scenario."""

    clock: FakeClock = field(default_factory=FakeClock)
    notifier: RecordingNotifier = field(default_factory=RecordingNotifier)
    errors: ErrorTracker | None = None
    attendance: AttendanceErrorTracker | None = None
    performance: PerformanceTracker | None = None
    cache: TieredCache | None = None
    deleted: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@pytest.fixture
def ctx() -> MonitoringScenarioContext:
    """Fresh scenario context for each test."""
    return MonitoringScenarioContext()


# === Error tracker ===
@given(
    parsers.parse(
        "an error tracker allowing {count:d} critical errors per {minutes:d} minutes"
    )
)
def given_error_tracker(ctx: MonitoringScenarioContext, count: int, minutes: int) -> None:
    ctx.errors = ErrorTracker(
        ctx.notifier,
        thresholds=ErrorThresholds(critical_errors=count, time_window_ms=minutes * 60_000),
        clock=ctx.clock,
    )


@when(
    parsers.parse(
        "{n:d} errors with status {status:d} are tracked within {minutes:d} minute"
    )
)
def when_errors_tracked(
    ctx: MonitoringScenarioContext, n: int, status: int, minutes: int
) -> None:
    step = minutes * 60 / n
    for i in range(n):
        ctx.errors.track(AppError(f"failure {i}", status_code=status))
        ctx.clock.advance(step)


@when(parsers.parse("{n:d} more error with status {status:d} is tracked"))
def when_more_errors_tracked(ctx: MonitoringScenarioContext, n: int, status: int) -> None:
    for _ in range(n):
        ctx.errors.track(AppError("failure", status_code=status))


@then(parsers.parse('the alert history holds {n:d} "{alert_type}" alert'))
@then(parsers.parse('the alert history holds {n:d} "{alert_type}" alerts'))
def then_alert_history(ctx: MonitoringScenarioContext, n: int, alert_type: str) -> None:
    matching = [a for a in ctx.errors.alerts if a.type == alert_type]
    assert len(matching) == n
    assert [a.type for a in ctx.notifier.alerts].count(alert_type) == n


# === Cache ===
@given("an in-process cache")
def given_cache(ctx: MonitoringScenarioContext) -> None:
    ctx.cache = TieredCache(memory=InProcessCache(clock=ctx.clock))


@when(parsers.parse('"{key}" is cached with a TTL of {ttl:d} second'))
@when(parsers.parse('"{key}" is cached with a TTL of {ttl:d} seconds'))
def when_cached(ctx: MonitoringScenarioContext, key: str, ttl: int) -> None:
    run_async(ctx.cache.set(key, CACHED_VALUE, ttl))


@when(parsers.parse("{ms:d} milliseconds pass"))
def when_time_passes(ctx: MonitoringScenarioContext, ms: int) -> None:
    ctx.clock.advance(ms / 1000)


@when(parsers.parse('the pattern "{pattern}" is deleted'))
def when_pattern_deleted(ctx: MonitoringScenarioContext, pattern: str) -> None:
    ctx.deleted = run_async(ctx.cache.delete_pattern(pattern))


@then(parsers.parse('reading "{key}" returns the cached value'))
def then_cached_value(ctx: MonitoringScenarioContext, key: str) -> None:
    assert run_async(ctx.cache.get(key)) == CACHED_VALUE


@then(parsers.parse('reading "{key}" returns nothing'))
def then_nothing(ctx: MonitoringScenarioContext, key: str) -> None:
    assert run_async(ctx.cache.get(key)) is None


@then(parsers.parse("{n:d} keys were deleted"))
def then_deleted(ctx: MonitoringScenarioContext, n: int) -> None:
    assert ctx.deleted == n


# === Attendance tracker ===
@given(
    parsers.parse("an attendance tracker with a {ms:d} ms response time threshold")
)
def given_attendance_tracker(ctx: MonitoringScenarioContext, ms: int) -> None:
    ctx.attendance = AttendanceErrorTracker(
        ctx.notifier,
        thresholds=AttendanceThresholds(response_time_threshold_ms=ms),
        clock=ctx.clock,
    )


@when(parsers.parse('a successful "{operation}" operation takes {ms:d} ms'))
def when_successful_operation(
    ctx: MonitoringScenarioContext, operation: str, ms: int
) -> None:
    ctx.attendance.record_successful_operation(operation, {}, ms)


@then(
    parsers.parse(
        'exactly {n:d} "{alert_type}" alert is recorded with a response time of {ms:d}'
    )
)
def then_slow_alert(ctx: MonitoringScenarioContext, n: int, alert_type: str, ms: int) -> None:
    alerts = [a for a in ctx.attendance.alerts if a.type == alert_type]
    assert len(alerts) == n
    assert alerts[0].data["response_time"] == ms
    assert alerts[0].category == "attendance"


# === Performance tracker ===
@given("a performance tracker")
def given_performance_tracker(ctx: MonitoringScenarioContext) -> None:
    ctx.performance = PerformanceTracker(clock=ctx.clock)


@when(parsers.parse('{n:d} "{method}" requests to "{path}" each take {ms:d} ms'))
def when_requests(
    ctx: MonitoringScenarioContext, n: int, method: str, path: str, ms: int
) -> None:
    for _ in range(n):
        ctx.performance.track_api_request(method, path, ms, 200)


@then(parsers.parse('the slow request list for "{endpoint}" is empty'))
def then_no_slow_requests(ctx: MonitoringScenarioContext, endpoint: str) -> None:
    assert ctx.performance.get_endpoint_metrics(endpoint)["slow"] == []
    assert len(ctx.performance.alerts) == 0


@then(
    parsers.parse('"{endpoint}" has been seen {n:d} times with an average of {ms:d} ms')
)
def then_endpoint_stats(ctx: MonitoringScenarioContext, endpoint: str, n: int, ms: int) -> None:
    metrics = ctx.performance.get_endpoint_metrics(endpoint)
    assert metrics["count"] == n
    assert metrics["avg_time"] == pytest.approx(ms)
