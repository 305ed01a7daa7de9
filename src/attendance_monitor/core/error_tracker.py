"""General application error tracker.

Records errors into a bounded log, keeps per-signature aggregates and
evaluates the critical-burst and error-rate alert rules on every call.
"""

import csv
import io
import json
import logging
import time
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from attendance_monitor.core import analytics
from attendance_monitor.core.errors import ValidationError, describe_error, format_stack
from attendance_monitor.core.event_log import BoundedEventLog
from attendance_monitor.core.models import (
    Alert,
    ErrorEvent,
    ErrorInfo,
    ErrorKind,
    ErrorStat,
    ErrorThresholds,
    Severity,
)
from attendance_monitor.core.ports import AlertNotifierPort

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("attendance_monitor.security")

DAY_SECONDS = 24 * 60 * 60
MAX_STAT_CONTEXTS = 10
CSV_HEADER = ["Error Type", "Error Code", "Count", "Severity", "Last Occurrence"]


def classify_severity(error: ErrorInfo) -> Severity:
    """Map an error to a severity.

    5xx is critical, validation errors are informational, other 4xx are
    warnings and everything else is a plain error.
    """
    status = error.status_code
    if status is not None and status >= 500:
        return Severity.CRITICAL
    if error.kind is ErrorKind.VALIDATION:
        return Severity.INFO
    if status is not None and status >= 400:
        return Severity.WARNING
    return Severity.ERROR


class ErrorTracker:
    """Tracks application errors and raises threshold alerts.

    Args:
        notifier: Receives every fired alert. Delivery failures are logged.
        capacity: Size of the recent error log.
        alert_capacity: Size of the alert history.
        thresholds: Initial alert thresholds.
        retention_seconds: Age after which cleanup drops events and stats.
        clock: Returns the current Unix time in seconds.
    """

    def __init__(
        self,
        notifier: AlertNotifierPort | None = None,
        capacity: int = 1000,
        alert_capacity: int = 1000,
        thresholds: ErrorThresholds | None = None,
        retention_seconds: float = 7 * DAY_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.errors: BoundedEventLog[ErrorEvent] = BoundedEventLog(capacity)
        self.alerts: BoundedEventLog[Alert] = BoundedEventLog(alert_capacity)
        self._stats: dict[str, ErrorStat] = {}
        self._notifier = notifier
        self._thresholds = thresholds or ErrorThresholds()
        self._retention_seconds = retention_seconds
        self._clock = clock
        self.last_cleanup: float | None = None

    @property
    def thresholds(self) -> ErrorThresholds:
        return self._thresholds

    def update_thresholds(
        self,
        error_rate: float | None = None,
        critical_errors: int | None = None,
        time_window_ms: int | None = None,
    ) -> ErrorThresholds:
        """Validate and merge new alert thresholds.

        Raises:
            ValidationError: If any supplied value is out of range.
        """
        if error_rate is not None and not 0 <= error_rate <= 1:
            raise ValidationError("error_rate must be between 0 and 1")
        if critical_errors is not None and critical_errors < 1:
            raise ValidationError("critical_errors must be at least 1")
        if time_window_ms is not None and time_window_ms < 60_000:
            raise ValidationError("time_window_ms must be at least 60000 (1 minute)")
        changes = {
            key: value
            for key, value in {
                "error_rate": error_rate,
                "critical_errors": critical_errors,
                "time_window_ms": time_window_ms,
            }.items()
            if value is not None
        }
        self._thresholds = replace(self._thresholds, **changes)
        logger.info("Error monitoring thresholds updated", extra={"changes": changes})
        return self._thresholds

    def track(
        self, error: BaseException | ErrorInfo, context: dict[str, Any] | None = None
    ) -> ErrorEvent | None:
        """Record an error and evaluate alert rules.

        Never raises: internal failures are logged and None is returned.
        """
        try:
            return self._track(error, dict(context or {}))
        except Exception:
            logger.exception("Failed to track error")
            return None

    def _track(
        self, error: BaseException | ErrorInfo, context: dict[str, Any]
    ) -> ErrorEvent:
        if isinstance(error, ErrorInfo):
            info, stack = error, None
        else:
            info, stack = describe_error(error), format_stack(error)
        event = ErrorEvent(
            timestamp=self._clock(),
            error=info,
            severity=classify_severity(info),
            context=context,
            stack=stack,
        )
        self.errors.push(event)
        self._update_stats(event)
        self._check_alerts(event)
        log_level = logging.ERROR if event.severity is Severity.CRITICAL else logging.WARNING
        logger.log(
            log_level,
            "Error tracked: %s",
            info.message,
            extra={
                "error_name": info.name,
                "error_code": info.code,
                "severity": event.severity.value,
                "endpoint": context.get("endpoint"),
            },
        )
        return event

    def _update_stats(self, event: ErrorEvent) -> None:
        signature = event.error.signature
        stat = self._stats.get(signature)
        if stat is None:
            stat = ErrorStat(
                name=event.error.name,
                code=event.error.code,
                count=0,
                first_occurrence=event.timestamp,
                last_occurrence=event.timestamp,
                severity=event.severity,
            )
            self._stats[signature] = stat
        stat.count += 1
        stat.last_occurrence = event.timestamp
        stat.severity = event.severity
        if len(stat.contexts) < MAX_STAT_CONTEXTS:
            encoded = json.dumps(event.context, sort_keys=True, default=str)
            if encoded not in stat.contexts:
                stat.contexts.append(encoded)

    def _window_events(self, window_seconds: float) -> list[ErrorEvent]:
        since = self._clock() - window_seconds
        return self.errors.filter(lambda e: e.timestamp >= since)

    def _check_alerts(self, event: ErrorEvent) -> None:
        thresholds = self._thresholds
        window_minutes = thresholds.time_window_ms / 60_000
        recent = self._window_events(thresholds.time_window_ms / 1000)

        if event.severity is Severity.CRITICAL:
            critical = [e for e in recent if e.severity is Severity.CRITICAL]
            if len(critical) >= thresholds.critical_errors:
                self._fire(
                    "critical_error_threshold",
                    {
                        "count": len(critical),
                        "time_window_minutes": window_minutes,
                        "errors": [e.to_dict() for e in critical[:5]],
                    },
                )

        per_minute = len(recent) / window_minutes
        if per_minute > thresholds.error_rate * 60:
            self._fire(
                "high_error_rate",
                {
                    "error_rate": per_minute,
                    "time_window_minutes": window_minutes,
                    "total_errors": len(recent),
                },
            )

    def _fire(self, alert_type: str, data: dict[str, Any]) -> Alert:
        alert = Alert(
            type=alert_type, severity=Severity.HIGH, timestamp=self._clock(), data=data
        )
        self.alerts.push(alert)
        security_logger.error(
            "Error monitoring alert: %s", alert_type, extra={"alert_id": alert.id}
        )
        if self._notifier is not None:
            try:
                self._notifier.notify(alert)
            except Exception:
                logger.exception("Alert notification failed", extra={"alert_id": alert.id})
        return alert

    def analytics(
        self, time_range_ms: int = DAY_SECONDS * 1000, include_details: bool = False
    ) -> dict[str, Any]:
        """Aggregate errors recorded within ``time_range_ms``."""
        events = self._window_events(time_range_ms / 1000)
        hours = time_range_ms / 3_600_000
        result: dict[str, Any] = {
            "summary": {
                "total_errors": len(events),
                "time_range_hours": hours,
                "error_rate_per_hour": len(events) / hours if hours else 0,
                "unique_error_types": len({e.error.signature for e in events}),
            },
            "severity_breakdown": analytics.severity_breakdown(
                events,
                [Severity.CRITICAL, Severity.ERROR, Severity.WARNING, Severity.INFO],
            ),
            "top_errors": analytics.top_errors(events),
            "trends": analytics.error_trends(events),
            "contexts": analytics.error_contexts(events, lambda e: e.context),
        }
        if include_details:
            result["recent_errors"] = [e.to_dict() for e in events[:50]]
        return result

    def get_error_stats(self, name: str, code: str | None) -> ErrorStat | None:
        """Return the aggregate for ``name_code``, or None if never seen."""
        return self._stats.get(f"{name}_{code}")

    def health_status(self) -> dict[str, Any]:
        """Coarse health derived from errors inside the alert window."""
        recent = self._window_events(self._thresholds.time_window_ms / 1000)
        critical_count = sum(1 for e in recent if e.severity is Severity.CRITICAL)
        if critical_count > 0:
            status = "critical"
        elif len(recent) > 10:
            status = "warning"
        else:
            status = "healthy"
        return {
            "status": status,
            "recent_error_count": len(recent),
            "critical_error_count": critical_count,
            "memory_usage": {
                "recent_errors": len(self.errors),
                "error_stats": len(self._stats),
            },
            "last_cleanup": self.last_cleanup,
        }

    def export(self, time_range_ms: int = DAY_SECONDS * 1000, fmt: str = "json") -> Any:
        """Export an analytics snapshot as a dict (json) or CSV text.

        Raises:
            ValidationError: If ``fmt`` is not ``json`` or ``csv``.
        """
        data = self.analytics(time_range_ms, include_details=True)
        if fmt == "json":
            return data
        if fmt != "csv":
            raise ValidationError("format must be 'json' or 'csv'")
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(CSV_HEADER)
        for entry in data["top_errors"]:
            writer.writerow(
                [
                    entry["name"],
                    entry["code"],
                    entry["count"],
                    entry["severity"],
                    entry["last_occurrence"],
                ]
            )
        return buffer.getvalue()

    def cleanup(self) -> int:
        """Drop events and aggregates older than the retention window.

        Returns:
            Number of log events and stat entries removed.
        """
        cutoff = self._clock() - self._retention_seconds
        removed = self.errors.retain(lambda e: e.timestamp >= cutoff)
        stale = [k for k, s in self._stats.items() if s.last_occurrence < cutoff]
        for key in stale:
            del self._stats[key]
        self.last_cleanup = self._clock()
        if removed or stale:
            logger.info(
                "Error monitoring cleanup completed",
                extra={"removed_errors": removed, "removed_stats": len(stale)},
            )
        return removed + len(stale)
