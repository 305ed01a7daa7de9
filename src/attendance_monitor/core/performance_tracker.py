"""API, database and process performance tracker.

Keeps running per-endpoint and per-query aggregates, bounded recent and
slow sample lists, and an alert history. Thresholds can be changed at
runtime and apply from the next evaluation.
"""

import asyncio
import functools
import logging
import platform
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, TypeVar

from attendance_monitor.core import analytics
from attendance_monitor.core.errors import ValidationError
from attendance_monitor.core.event_log import BoundedEventLog
from attendance_monitor.core.models import (
    Alert,
    PerformanceThresholds,
    QuerySample,
    RequestSample,
    Severity,
    SystemSnapshot,
    ThresholdBand,
)
from attendance_monitor.core.ports import CacheTierPort, SystemProbePort

if TYPE_CHECKING:
    from attendance_monitor.core.query_optimizer import QueryOptimizer

logger = logging.getLogger(__name__)
performance_logger = logging.getLogger("attendance_monitor.performance")

T = TypeVar("T")

DAY_SECONDS = 24 * 60 * 60
RECENT_CAPACITY = 50
SLOW_CAPACITY = 20
MEMORY_ALERT_COOLDOWN_SECONDS = 5 * 60
ALERT_CACHE_TTL_SECONDS = 3600


@dataclass
class LatencyStats:
    """Running latency aggregate for one endpoint or query type."""

    count: int = 0
    total_time: float = 0.0
    min_time: float = float("inf")
    max_time: float = 0.0
    errors: int = 0
    recent: BoundedEventLog[Any] = field(
        default_factory=lambda: BoundedEventLog(RECENT_CAPACITY)
    )
    slow: BoundedEventLog[Any] = field(
        default_factory=lambda: BoundedEventLog(SLOW_CAPACITY)
    )

    @property
    def avg_time(self) -> float:
        return self.total_time / self.count if self.count else 0.0

    def observe(self, elapsed_ms: float, failed: bool) -> None:
        self.count += 1
        self.total_time += elapsed_ms
        self.min_time = min(self.min_time, elapsed_ms)
        self.max_time = max(self.max_time, elapsed_ms)
        if failed:
            self.errors += 1

    def to_dict(self, key: str, key_name: str = "endpoint") -> dict[str, Any]:
        return {
            key_name: key,
            "count": self.count,
            "total_time": self.total_time,
            "avg_time": self.avg_time,
            "min_time": self.min_time if self.count else 0.0,
            "max_time": self.max_time,
            "errors": self.errors,
            "recent": [s.to_dict() for s in self.recent],
            "slow": [s.to_dict() for s in self.slow],
        }


def _validate_band(
    name: str,
    band: ThresholdBand,
    low: float,
    high_warning: float,
    high_critical: float,
) -> None:
    if not low <= band.warning <= high_warning:
        raise ValidationError(f"{name}.warning must be between {low} and {high_warning}")
    if not low <= band.critical <= high_critical:
        raise ValidationError(f"{name}.critical must be between {low} and {high_critical}")
    if band.warning >= band.critical:
        raise ValidationError(f"{name}.warning must be less than {name}.critical")


_THRESHOLD_LIMITS = {
    "response_time_ms": (100, 30_000, 60_000),
    "error_rate": (0, 1, 1),
    "memory_mb": (100, float("inf"), float("inf")),
    "db_query_time_ms": (10, 30_000, 30_000),
}


class PerformanceTracker:
    """Tracks request and query latency plus process resource usage.

    Args:
        probe: Source of process memory/CPU snapshots for the sampler.
        cache: Optional cache tier that receives a copy of each alert. The
            composition root hands over the in-process tier so alert copies
            stay out of the endpoint cache statistics.
        thresholds: Initial threshold table.
        alert_capacity: Size of the alert history.
        request_log_capacity: Size of the recent request log.
        peak_capacity: Size of the memory and CPU sample lists.
        retention_seconds: Age after which cleanup trims bounded lists.
        clock: Returns the current Unix time in seconds.
    """

    def __init__(
        self,
        probe: SystemProbePort | None = None,
        cache: CacheTierPort | None = None,
        thresholds: PerformanceThresholds | None = None,
        alert_capacity: int = 1000,
        request_log_capacity: int = 1000,
        peak_capacity: int = 100,
        retention_seconds: float = DAY_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.api_stats: dict[str, LatencyStats] = {}
        self.query_stats: dict[str, LatencyStats] = {}
        self.requests: BoundedEventLog[RequestSample] = BoundedEventLog(
            request_log_capacity
        )
        self.alerts: BoundedEventLog[Alert] = BoundedEventLog(alert_capacity)
        self.memory_peaks: BoundedEventLog[SystemSnapshot] = BoundedEventLog(peak_capacity)
        self.cpu_samples: BoundedEventLog[SystemSnapshot] = BoundedEventLog(peak_capacity)
        self.total_requests = 0
        self.total_errors = 0
        self._probe = probe
        self._cache = cache
        self._thresholds = thresholds or PerformanceThresholds()
        self._retention_seconds = retention_seconds
        self._clock = clock
        self._started_at = clock()
        self._last_memory_alert: float | None = None
        self._background: set[asyncio.Task[None]] = set()

    @property
    def thresholds(self) -> PerformanceThresholds:
        return self._thresholds

    def update_thresholds(
        self, partial: dict[str, ThresholdBand | dict[str, float]]
    ) -> PerformanceThresholds:
        """Shallow-merge threshold bands into the live table.

        Args:
            partial: Mapping of threshold name to a band or a
                ``{"warning": x, "critical": y}`` dict. A dict may give
                only one side; the other keeps its current value.

        Raises:
            ValidationError: On unknown names or out-of-range values.
        """
        changes: dict[str, ThresholdBand] = {}
        for name, value in partial.items():
            if name not in _THRESHOLD_LIMITS:
                raise ValidationError(f"Unknown threshold: {name}")
            if not isinstance(value, ThresholdBand) and not set(value) <= {
                "warning",
                "critical",
            }:
                raise ValidationError(f"{name} accepts only warning and critical")
            current: ThresholdBand = getattr(self._thresholds, name)
            band = (
                value
                if isinstance(value, ThresholdBand)
                else replace(current, **value)
            )
            _validate_band(name, band, *_THRESHOLD_LIMITS[name])
            changes[name] = band
        self._thresholds = replace(self._thresholds, **changes)
        performance_logger.info(
            "Performance thresholds updated", extra={"thresholds": self._thresholds.to_dict()}
        )
        return self._thresholds

    def track_api_request(
        self,
        method: str,
        url: str,
        response_time_ms: float,
        status_code: int,
        user_id: str | None = None,
        user_role: str | None = None,
    ) -> None:
        """Record one API request and evaluate the response-time alert."""
        try:
            sample = RequestSample(
                timestamp=self._clock(),
                method=method,
                url=url,
                response_time_ms=response_time_ms,
                status_code=status_code,
                user_id=user_id,
                user_role=user_role,
            )
            failed = status_code >= 400
            stats = self.api_stats.setdefault(sample.endpoint, LatencyStats())
            stats.observe(response_time_ms, failed)
            stats.recent.push(sample)
            self.requests.push(sample)
            self.total_requests += 1
            if failed:
                self.total_errors += 1
            band = self._thresholds.response_time_ms
            if response_time_ms > band.warning:
                stats.slow.push(sample)
                self._fire(
                    "performance",
                    Severity.CRITICAL if response_time_ms > band.critical else Severity.WARNING,
                    {
                        "endpoint": sample.endpoint,
                        "response_time": response_time_ms,
                        "threshold": band.warning,
                    },
                )
        except Exception:
            logger.exception("Failed to track API request")

    def track_database_query(
        self,
        operation: str,
        collection: str,
        execution_time_ms: float,
        query_hash: str | None = None,
        result_count: int | None = None,
        error: str | None = None,
    ) -> None:
        """Record one database query and evaluate the query-time alert."""
        try:
            sample = QuerySample(
                timestamp=self._clock(),
                operation=operation,
                collection=collection,
                execution_time_ms=execution_time_ms,
                query_hash=query_hash,
                result_count=result_count,
                error=error,
            )
            stats = self.query_stats.setdefault(sample.key, LatencyStats())
            stats.observe(execution_time_ms, error is not None)
            stats.recent.push(sample)
            band = self._thresholds.db_query_time_ms
            if execution_time_ms > band.warning:
                stats.slow.push(sample)
                self._fire(
                    "database",
                    Severity.CRITICAL if execution_time_ms > band.critical else Severity.WARNING,
                    {
                        "query": sample.key,
                        "execution_time": execution_time_ms,
                        "threshold": band.warning,
                    },
                )
        except Exception:
            logger.exception("Failed to track database query")

    @asynccontextmanager
    async def observe(
        self,
        operation: str,
        collection: str,
        query: dict[str, Any] | None = None,
        optimizer: "QueryOptimizer | None" = None,
    ) -> AsyncIterator["QueryObservation"]:
        """Time the enclosed query, recording it on success and on failure.

        Exceptions raised inside the block are recorded and re-raised.
        """
        observation = QueryObservation()
        query_hash = (
            optimizer.signature(query or {}, operation, collection)
            if optimizer is not None
            else None
        )
        start = time.perf_counter()
        error: Exception | None = None
        try:
            yield observation
        except Exception as exc:
            error = exc
            raise
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            self.track_database_query(
                operation,
                collection,
                elapsed_ms,
                query_hash=query_hash,
                result_count=observation.result_count,
                error=f"{type(error).__name__}: {error}" if error is not None else None,
            )
            if optimizer is not None:
                optimizer.track_execution(
                    query or {}, operation, collection, elapsed_ms, failed=error is not None
                )

    def sample_system(self) -> SystemSnapshot | None:
        """Take one resource snapshot and evaluate the memory alert."""
        if self._probe is None:
            return None
        try:
            snapshot = self._probe.sample()
        except Exception:
            logger.exception("System sampling failed")
            return None
        self.memory_peaks.push(snapshot)
        self.cpu_samples.push(snapshot)
        band = self._thresholds.memory_mb
        now = self._clock()
        cooled_down = (
            self._last_memory_alert is None
            or now - self._last_memory_alert >= MEMORY_ALERT_COOLDOWN_SECONDS
        )
        if snapshot.rss_mb > band.warning and cooled_down:
            self._last_memory_alert = now
            self._fire(
                "memory",
                Severity.CRITICAL if snapshot.rss_mb > band.critical else Severity.WARNING,
                {"rss_mb": round(snapshot.rss_mb, 2), "threshold": band.warning},
            )
        return snapshot

    def _fire(self, alert_type: str, severity: Severity, data: dict[str, Any]) -> Alert:
        alert = Alert(type=alert_type, severity=severity, timestamp=self._clock(), data=data)
        self.alerts.push(alert)
        log_level = logging.ERROR if severity is Severity.CRITICAL else logging.WARNING
        performance_logger.log(
            log_level,
            "Performance alert: %s",
            alert_type,
            extra={"alert_id": alert.id, "severity": severity.value},
        )
        self._cache_alert(alert)
        return alert

    def _cache_alert(self, alert: Alert) -> None:
        if self._cache is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(
            self._cache.set(f"alert:{alert.id}", alert.to_dict(), ALERT_CACHE_TTL_SECONDS)
        )
        self._background.add(task)
        task.add_done_callback(self._alert_cached)

    def _alert_cached(self, task: "asyncio.Task[None]") -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Failed to cache alert", exc_info=task.exception())

    def _window_alerts(self, time_range_ms: float) -> list[Alert]:
        since = self._clock() - time_range_ms / 1000
        return self.alerts.filter(lambda a: a.timestamp >= since)

    def _slow_endpoints(self) -> list[dict[str, Any]]:
        warning = self._thresholds.response_time_ms.warning
        slow = [
            {"endpoint": key, "avg_time": s.avg_time, "count": s.count, "max_time": s.max_time}
            for key, s in self.api_stats.items()
            if s.avg_time > warning
        ]
        return sorted(slow, key=lambda e: e["avg_time"], reverse=True)[:10]

    def _slow_queries(self) -> list[dict[str, Any]]:
        warning = self._thresholds.db_query_time_ms.warning
        slow = [
            {"query": key, "avg_time": s.avg_time, "count": s.count, "max_time": s.max_time}
            for key, s in self.query_stats.items()
            if s.avg_time > warning
        ]
        return sorted(slow, key=lambda q: q["avg_time"], reverse=True)[:10]

    @property
    def error_rate(self) -> float:
        return self.total_errors / self.total_requests if self.total_requests else 0.0

    def _latest_memory_mb(self) -> float:
        latest = self.memory_peaks.head(1)
        return latest[0].rss_mb if latest else 0.0

    def get_performance_summary(self, time_range_ms: int = 3_600_000) -> dict[str, Any]:
        """Cross-cutting snapshot of API, database, system and alert state."""
        alerts = self._window_alerts(time_range_ms)
        latest = self.memory_peaks.head(1)
        return {
            "api": {
                "total_endpoints": len(self.api_stats),
                "total_requests": self.total_requests,
                "total_errors": self.total_errors,
                "error_rate": self.error_rate,
                "slow_endpoints": self._slow_endpoints(),
            },
            "database": {
                "total_query_types": len(self.query_stats),
                "slow_queries": self._slow_queries(),
            },
            "system": {
                "uptime_seconds": self._clock() - self._started_at,
                "memory": latest[0].to_dict() if latest else None,
                "python_version": platform.python_version(),
                "platform": platform.system(),
            },
            "alerts": {
                "total": len(alerts),
                "critical": sum(1 for a in alerts if a.severity is Severity.CRITICAL),
                "warning": sum(1 for a in alerts if a.severity is Severity.WARNING),
                "recent": [a.to_dict() for a in alerts[:10]],
            },
            "generated_at": self._clock(),
        }

    def get_endpoint_metrics(self, endpoint: str) -> dict[str, Any] | None:
        """Full aggregate for one ``METHOD path`` key, or None."""
        stats = self.api_stats.get(endpoint)
        return stats.to_dict(endpoint) if stats is not None else None

    def api_metrics(self, time_range_ms: int = 3_600_000) -> dict[str, Any]:
        """Request statistics computed from the recent request log."""
        since = self._clock() - time_range_ms / 1000
        window = self.requests.filter(lambda r: r.timestamp >= since)
        total = len(window)
        errors = sum(1 for r in window if r.status_code >= 400)
        endpoints: dict[str, dict[str, Any]] = {}
        for sample in window:
            entry = endpoints.setdefault(
                sample.endpoint,
                {"count": 0, "total_time": 0.0, "errors": 0, "max_time": 0.0},
            )
            entry["count"] += 1
            entry["total_time"] += sample.response_time_ms
            entry["max_time"] = max(entry["max_time"], sample.response_time_ms)
            if sample.status_code >= 400:
                entry["errors"] += 1
        for entry in endpoints.values():
            entry["avg_time"] = entry["total_time"] / entry["count"]
        minutes = time_range_ms / 60_000
        return {
            "summary": {
                "total_requests": total,
                "total_errors": errors,
                "error_rate": errors / total if total else 0.0,
                "average_response_time": (
                    sum(r.response_time_ms for r in window) / total if total else 0.0
                ),
                "requests_per_minute": total / minutes if minutes else 0.0,
            },
            "endpoints": endpoints,
            "status_codes": analytics.count_by(window, lambda r: str(r.status_code)),
            "slowest_requests": [
                r.to_dict()
                for r in sorted(window, key=lambda r: r.response_time_ms, reverse=True)[:10]
            ],
        }

    def database_metrics(self) -> dict[str, Any]:
        """Per-query-type aggregates plus the slow query list."""
        total = sum(s.count for s in self.query_stats.values())
        total_time = sum(s.total_time for s in self.query_stats.values())
        return {
            "summary": {
                "total_query_types": len(self.query_stats),
                "total_queries": total,
                "average_execution_time": total_time / total if total else 0.0,
                "total_errors": sum(s.errors for s in self.query_stats.values()),
            },
            "queries": [s.to_dict(k, "query") for k, s in self.query_stats.items()],
            "slow_queries": self._slow_queries(),
        }

    def system_metrics(self) -> dict[str, Any]:
        """Live resource snapshot plus the recorded sample history."""
        current = self.sample_system()
        return {
            "current": current.to_dict() if current is not None else None,
            "uptime_seconds": self._clock() - self._started_at,
            "memory_peaks": [s.to_dict() for s in self.memory_peaks],
            "cpu_samples": [
                {"timestamp": s.timestamp, "user": s.cpu_user, "system": s.cpu_system}
                for s in self.cpu_samples
            ],
            "python_version": platform.python_version(),
            "platform": platform.system(),
        }

    def health_status(self) -> str:
        average = (
            sum(s.total_time for s in self.api_stats.values()) / self.total_requests
            if self.total_requests
            else 0.0
        )
        return analytics.determine_health_status(
            self.error_rate, average, self._latest_memory_mb(), self._thresholds
        )

    def performance_alerts(self, time_range_ms: int = 3_600_000) -> dict[str, Any]:
        """Alerts in the window plus rule-based recommendations."""
        alerts = self._window_alerts(time_range_ms)
        return {
            "alerts": [a.to_dict() for a in alerts],
            "counts": analytics.count_by(alerts, lambda a: a.severity.value),
            "recommendations": analytics.performance_recommendations(
                self._slow_endpoints(),
                self._slow_queries(),
                self.error_rate,
                self._latest_memory_mb(),
                self._thresholds,
            ),
            "health_status": self.health_status(),
        }

    def cleanup(self) -> int:
        """Trim bounded lists older than the retention window.

        Aggregate counters are kept; only sample lists and alert history
        are trimmed.
        """
        cutoff = self._clock() - self._retention_seconds

        def fresh(item: Any) -> bool:
            return item.timestamp >= cutoff

        removed = 0
        for stats in (*self.api_stats.values(), *self.query_stats.values()):
            removed += stats.recent.retain(fresh)
            removed += stats.slow.retain(fresh)
        for log in (self.requests, self.alerts, self.memory_peaks, self.cpu_samples):
            removed += log.retain(fresh)
        if removed:
            performance_logger.info(
                "Performance data cleanup completed", extra={"removed_samples": removed}
            )
        return removed


@dataclass
class QueryObservation:
    """Handle yielded by ``PerformanceTracker.observe``."""

    result_count: int | None = None


def measured(
    tracker: PerformanceTracker,
    operation: str,
    collection: str,
    query: dict[str, Any] | None = None,
    optimizer: "QueryOptimizer | None" = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorate an async query function so every call is timed.

    Example:
        ```python
        @measured(tracker, "find", "attendance", {"class_id": "c1"})
        async def load_attendance() -> list[dict]:
            return await collection.find({"class_id": "c1"}).to_list()
        ```
    """

    def decorator(query_fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(query_fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            async with tracker.observe(operation, collection, query, optimizer) as obs:
                result = await query_fn(*args, **kwargs)
                if isinstance(result, (list, tuple)):
                    obs.result_count = len(result)
                return result

        return wrapper

    return decorator
