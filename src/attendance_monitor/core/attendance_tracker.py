"""Attendance-specific error tracker.

Classifies attendance errors by severity and business impact, keeps
per-operation counters and response times, and raises the
consecutive-failure, failure-rate and slow-response alerts.
"""

import csv
import io
import logging
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

from attendance_monitor.core import analytics
from attendance_monitor.core.errors import ValidationError, describe_error
from attendance_monitor.core.event_log import BoundedEventLog
from attendance_monitor.core.models import (
    Alert,
    AttendanceContext,
    AttendanceErrorEvent,
    AttendanceThresholds,
    ErrorInfo,
    ErrorKind,
    Impact,
    Severity,
)
from attendance_monitor.core.ports import AlertNotifierPort

logger = logging.getLogger(__name__)
attendance_logger = logging.getLogger("attendance_monitor.attendance")

DAY_SECONDS = 24 * 60 * 60
HEALTH_WINDOW_SECONDS = 15 * 60
CONSECUTIVE_WINDOW_SECONDS = 15 * 60
MIN_OPERATIONS_FOR_RATE = 10
CSV_HEADER = ["Operation", "Error Count", "Error Rate", "Average Response Time", "Status"]

HIGH_SEVERITY_KINDS = frozenset(
    {ErrorKind.ATTENDANCE_AUTHORIZATION, ErrorKind.ATTENDANCE_ALREADY_MARKED}
)
MEDIUM_SEVERITY_KINDS = frozenset({ErrorKind.VALIDATION, ErrorKind.NOT_FOUND})


def classify_severity(error: ErrorInfo, context: AttendanceContext) -> Severity:
    """Map an attendance error to a severity, first matching rule wins."""
    status = error.status_code
    if status is not None and status >= 500:
        return Severity.CRITICAL
    if (
        context.operation == "bulk"
        and context.failure_count is not None
        and context.success_count is not None
        and context.failure_count > context.success_count
    ):
        return Severity.CRITICAL
    if error.kind in HIGH_SEVERITY_KINDS or status == 403:
        return Severity.HIGH
    if error.kind in MEDIUM_SEVERITY_KINDS or status in (400, 404):
        return Severity.MEDIUM
    return Severity.LOW


def assess_impact(error: ErrorInfo, context: AttendanceContext) -> Impact:
    """Estimate how many users and operations an error affects.

    The authorization/marking rule overrides the level and business impact
    of a bulk or server-side failure but keeps its affected-user count.
    """
    status = error.status_code
    impact = Impact(
        level="low",
        affected_users=1,
        affected_operations=(context.operation,),
        business_impact="minimal",
    )
    if context.operation == "bulk" or (status is not None and status >= 500):
        impact = replace(
            impact,
            level="high",
            affected_users=context.total_records or 10,
            business_impact="significant",
        )
    if error.kind is ErrorKind.ATTENDANCE_AUTHORIZATION or context.operation == "marking":
        impact = replace(impact, level="medium", business_impact="moderate")
    return impact


@dataclass
class OperationTiming:
    """Running response-time aggregate for one operation."""

    total_time: float = 0.0
    operation_count: int = 0
    max_time: float = 0.0

    @property
    def average_time(self) -> float:
        return self.total_time / self.operation_count if self.operation_count else 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "total_time": self.total_time,
            "operation_count": self.operation_count,
            "average_time": self.average_time,
            "max_time": self.max_time,
        }


@dataclass
class OperationCounts:
    total: int = 0
    errors: int = 0


@dataclass
class RoleImpact:
    error_count: int = 0
    operations: dict[str, int] = field(default_factory=dict)


class AttendanceErrorTracker:
    """Tracks attendance errors, per-operation health and domain alerts.

    Args:
        notifier: Receives every fired alert. Delivery failures are logged.
        capacity: Size of the recent error log.
        alert_capacity: Size of the alert history.
        thresholds: Initial alert thresholds.
        retention_seconds: Age after which cleanup drops events.
        clock: Returns the current Unix time in seconds.
    """

    def __init__(
        self,
        notifier: AlertNotifierPort | None = None,
        capacity: int = 500,
        alert_capacity: int = 1000,
        thresholds: AttendanceThresholds | None = None,
        retention_seconds: float = 7 * DAY_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.errors: BoundedEventLog[AttendanceErrorEvent] = BoundedEventLog(capacity)
        self.alerts: BoundedEventLog[Alert] = BoundedEventLog(alert_capacity)
        self.operation_counts: dict[str, OperationCounts] = defaultdict(OperationCounts)
        self.error_rates: dict[int, int] = defaultdict(int)
        self.timings: dict[str, OperationTiming] = defaultdict(OperationTiming)
        self.user_impact: dict[str, RoleImpact] = defaultdict(RoleImpact)
        self._notifier = notifier
        self._thresholds = thresholds or AttendanceThresholds()
        self._retention_seconds = retention_seconds
        self._clock = clock
        self.last_cleanup: float | None = None

    @property
    def thresholds(self) -> AttendanceThresholds:
        return self._thresholds

    def update_thresholds(
        self,
        marking_failure_rate: float | None = None,
        bulk_operation_failure_rate: float | None = None,
        consecutive_failures: int | None = None,
        response_time_threshold_ms: int | None = None,
    ) -> AttendanceThresholds:
        """Validate and merge new alert thresholds.

        Raises:
            ValidationError: If any supplied value is out of range.
        """
        for name, rate in (
            ("marking_failure_rate", marking_failure_rate),
            ("bulk_operation_failure_rate", bulk_operation_failure_rate),
        ):
            if rate is not None and not 0 <= rate <= 1:
                raise ValidationError(f"{name} must be between 0 and 1")
        if consecutive_failures is not None and consecutive_failures < 1:
            raise ValidationError("consecutive_failures must be at least 1")
        if response_time_threshold_ms is not None and response_time_threshold_ms < 1000:
            raise ValidationError("response_time_threshold_ms must be at least 1000")
        changes = {
            key: value
            for key, value in {
                "marking_failure_rate": marking_failure_rate,
                "bulk_operation_failure_rate": bulk_operation_failure_rate,
                "consecutive_failures": consecutive_failures,
                "response_time_threshold_ms": response_time_threshold_ms,
            }.items()
            if value is not None
        }
        self._thresholds = replace(self._thresholds, **changes)
        attendance_logger.info(
            "Attendance monitoring thresholds updated", extra={"changes": changes}
        )
        return self._thresholds

    def track(
        self,
        error: BaseException | ErrorInfo,
        context: AttendanceContext | dict[str, Any] | None = None,
    ) -> AttendanceErrorEvent | None:
        """Record an attendance error and evaluate alert rules.

        Never raises: internal failures are logged and None is returned.
        """
        try:
            if not isinstance(context, AttendanceContext):
                context = AttendanceContext.from_mapping(context)
            info = error if isinstance(error, ErrorInfo) else describe_error(error)
            return self._track(info, context)
        except Exception:
            logger.exception("Failed to track attendance error")
            return None

    def _track(self, info: ErrorInfo, context: AttendanceContext) -> AttendanceErrorEvent:
        event = AttendanceErrorEvent(
            timestamp=self._clock(),
            error=info,
            context=context,
            severity=classify_severity(info, context),
            impact=assess_impact(info, context),
        )
        self.errors.push(event)
        self._update_metrics(event)
        self._check_alerts(event)
        attendance_logger.warning(
            "Attendance error: %s",
            info.message,
            extra={
                "operation": context.operation,
                "error_code": info.code,
                "severity": event.severity.value,
                "impact": event.impact.level,
                "user_id": context.user_id,
            },
        )
        return event

    def _update_metrics(self, event: AttendanceErrorEvent) -> None:
        operation = event.context.operation
        self.operation_counts[operation].errors += 1
        self.error_rates[int(event.timestamp // 3600) * 3600] += 1
        role = event.context.user_role
        if role:
            impact = self.user_impact[role]
            impact.error_count += 1
            impact.operations[operation] = impact.operations.get(operation, 0) + 1

    def _check_alerts(self, event: AttendanceErrorEvent) -> None:
        operation = event.context.operation
        since = self._clock() - CONSECUTIVE_WINDOW_SECONDS
        same_operation = self.errors.filter(
            lambda e: e.context.operation == operation and e.timestamp >= since
        )
        if len(same_operation) >= self._thresholds.consecutive_failures:
            self._fire(
                "consecutive_failures",
                {
                    "operation": operation,
                    "count": len(same_operation),
                    "time_window_minutes": CONSECUTIVE_WINDOW_SECONDS // 60,
                },
            )

        counts = self.operation_counts[operation]
        if counts.total >= MIN_OPERATIONS_FOR_RATE:
            failure_rate = counts.errors / counts.total
            threshold = (
                self._thresholds.bulk_operation_failure_rate
                if operation == "bulk"
                else self._thresholds.marking_failure_rate
            )
            if failure_rate > threshold:
                self._fire(
                    "high_failure_rate",
                    {
                        "operation": operation,
                        "failure_rate": failure_rate,
                        "threshold": threshold,
                        "total_operations": counts.total,
                    },
                )

    def _fire(self, alert_type: str, data: dict[str, Any]) -> Alert:
        alert = Alert(
            type=alert_type,
            severity=Severity.HIGH,
            timestamp=self._clock(),
            data=data,
            category="attendance",
        )
        self.alerts.push(alert)
        attendance_logger.error(
            "Attendance alert: %s", alert_type, extra={"alert_id": alert.id, **data}
        )
        if self._notifier is not None:
            try:
                self._notifier.notify(alert)
            except Exception:
                logger.exception("Alert notification failed", extra={"alert_id": alert.id})
        return alert

    def record_successful_operation(
        self,
        operation: str,
        context: AttendanceContext | dict[str, Any] | None = None,
        response_time_ms: float = 0,
    ) -> None:
        """Count a successful operation and track its response time."""
        try:
            counts = self.operation_counts[operation]
            counts.total += 1
            timing = self.timings[operation]
            timing.total_time += response_time_ms
            timing.operation_count += 1
            timing.max_time = max(timing.max_time, response_time_ms)
            threshold = self._thresholds.response_time_threshold_ms
            if response_time_ms > threshold:
                self._fire(
                    "slow_response",
                    {
                        "operation": operation,
                        "response_time": response_time_ms,
                        "threshold": threshold,
                    },
                )
        except Exception:
            logger.exception("Failed to record attendance operation")

    def _window_events(
        self, window_seconds: float, operation: str | None = None
    ) -> list[AttendanceErrorEvent]:
        since = self._clock() - window_seconds
        return self.errors.filter(
            lambda e: e.timestamp >= since
            and (operation is None or e.context.operation == operation)
        )

    def analytics(
        self, time_range_ms: int = DAY_SECONDS * 1000, operation: str | None = None
    ) -> dict[str, Any]:
        """Aggregate attendance errors within ``time_range_ms``."""
        events = self._window_events(time_range_ms / 1000, operation)
        return {
            "summary": {
                "total_errors": len(events),
                "time_range_hours": time_range_ms / 3_600_000,
                "operations": sorted({e.context.operation for e in events}),
            },
            "errors_by_operation": analytics.count_by(events, lambda e: e.context.operation),
            "errors_by_severity": analytics.severity_breakdown(
                events,
                [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW],
            ),
            "errors_by_user_role": analytics.count_by(events, lambda e: e.context.user_role),
            "impact_analysis": {
                "total_affected_users": sum(e.impact.affected_users for e in events),
                "high_impact_errors": sum(1 for e in events if e.impact.level == "high"),
                "business_impact": analytics.count_by(
                    events, lambda e: e.impact.business_impact
                ),
            },
            "trends": analytics.error_trends(events),
            "top_errors": analytics.top_errors(
                events, operation=lambda e: e.context.operation
            ),
            "recommendations": self._recommendations(events),
        }

    def _recommendations(self, events: list[AttendanceErrorEvent]) -> list[dict[str, Any]]:
        recommendations: list[dict[str, Any]] = []
        for operation, count in analytics.count_by(
            events, lambda e: e.context.operation
        ).items():
            if count > 5:
                recommendations.append(
                    {
                        "type": "operation_review",
                        "priority": "high",
                        "message": f"High error count for {operation} operation ({count} errors)",
                        "action": f"Review {operation} operation implementation and error handling",
                    }
                )
        authorization = sum(
            1 for e in events if e.error.kind is ErrorKind.ATTENDANCE_AUTHORIZATION
        )
        if authorization > 3:
            recommendations.append(
                {
                    "type": "authorization_review",
                    "priority": "medium",
                    "message": f"Multiple authorization errors detected ({authorization})",
                    "action": "Review teacher assignments and permission configuration",
                }
            )
        validation = sum(1 for e in events if e.error.kind is ErrorKind.VALIDATION)
        if validation > 5:
            recommendations.append(
                {
                    "type": "validation_improvement",
                    "priority": "low",
                    "message": f"Frequent validation errors ({validation})",
                    "action": "Improve client-side validation and input guidance",
                }
            )
        return recommendations

    def operation_health(self) -> dict[str, dict[str, Any]]:
        """Per-operation error rate and response time summary."""
        health: dict[str, dict[str, Any]] = {}
        for operation, counts in self.operation_counts.items():
            rate = counts.errors / counts.total if counts.total else 0.0
            health[operation] = {
                "error_rate": round(rate * 100, 2),
                "total_operations": counts.total,
                "total_errors": counts.errors,
                "average_response_time": self.timings[operation].average_time
                if operation in self.timings
                else 0.0,
                "status": "warning" if rate > 0.1 else "healthy",
            }
        return health

    def health_status(self) -> dict[str, Any]:
        """Coarse health over the last 15 minutes plus per-operation health."""
        recent = self._window_events(HEALTH_WINDOW_SECONDS)
        critical = sum(1 for e in recent if e.severity is Severity.CRITICAL)
        high_impact = sum(1 for e in recent if e.impact.level == "high")
        if critical > 0:
            status = "critical"
        elif high_impact > 2:
            status = "warning"
        elif len(recent) > 10:
            status = "degraded"
        else:
            status = "healthy"
        return {
            "status": status,
            "recent_error_count": len(recent),
            "critical_error_count": critical,
            "high_impact_error_count": high_impact,
            "operation_health": self.operation_health(),
            "last_cleanup": self.last_cleanup,
        }

    def performance_metrics(self) -> dict[str, Any]:
        """Raw per-operation counters and timings."""
        return {
            "operation_counts": {
                op: {"total": c.total, "errors": c.errors}
                for op, c in self.operation_counts.items()
            },
            "performance_metrics": {op: t.to_dict() for op, t in self.timings.items()},
            "error_rates": {str(hour): n for hour, n in sorted(self.error_rates.items())},
            "user_impact": {
                role: {"error_count": i.error_count, "operations": dict(i.operations)}
                for role, i in self.user_impact.items()
            },
        }

    def export_csv(self, time_range_ms: int = DAY_SECONDS * 1000) -> str:
        """Per-operation CSV report for the requested window."""
        data = self.analytics(time_range_ms)
        health = self.operation_health()
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(CSV_HEADER)
        for operation, count in data["errors_by_operation"].items():
            op_health = health.get(operation, {})
            writer.writerow(
                [
                    operation,
                    count,
                    f"{op_health.get('error_rate', 0)}%",
                    op_health.get("average_response_time", 0),
                    op_health.get("status", "unknown"),
                ]
            )
        return buffer.getvalue()

    def cleanup(self) -> int:
        """Drop errors and hourly buckets older than the retention window."""
        now = self._clock()
        cutoff = now - self._retention_seconds
        removed = self.errors.retain(lambda e: e.timestamp >= cutoff)
        for hour in [h for h in self.error_rates if h + 3600 < cutoff]:
            del self.error_rates[hour]
        self.last_cleanup = now
        if removed:
            attendance_logger.info(
                "Attendance monitoring cleanup completed", extra={"removed_errors": removed}
            )
        return removed
