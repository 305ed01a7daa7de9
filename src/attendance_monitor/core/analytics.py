"""Read-only aggregation helpers shared by the trackers.

Every function here is pure: it takes tracker data and returns plain
dicts/lists ready for JSON encoding. Cost is proportional to the size
of the bounded logs passed in.
"""

from collections import Counter
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any, Protocol

from attendance_monitor.core.models import ErrorInfo, PerformanceThresholds, Severity


class TrackedEvent(Protocol):
    """Shape shared by ErrorEvent and AttendanceErrorEvent."""

    timestamp: float
    error: ErrorInfo
    severity: Severity


def extract_browser(user_agent: str | None) -> str:
    """Reduce a User-Agent header to a browser family name."""
    if not user_agent:
        return "Other"
    # Edge and Chrome both advertise "Chrome"; Edge must be checked first.
    if "Edg" in user_agent:
        return "Edge"
    if "Chrome" in user_agent:
        return "Chrome"
    if "Firefox" in user_agent:
        return "Firefox"
    if "Safari" in user_agent:
        return "Safari"
    return "Other"


def count_by(
    items: Iterable[Any], key: Callable[[Any], str | None]
) -> dict[str, int]:
    """Count items per key, skipping items whose key is None."""
    counts: Counter[str] = Counter()
    for item in items:
        value = key(item)
        if value is not None:
            counts[value] += 1
    return dict(counts)


def severity_breakdown(
    events: Iterable[TrackedEvent], levels: Iterable[Severity]
) -> dict[str, int]:
    """Count events per severity, reporting zero for absent levels."""
    breakdown = {level.value: 0 for level in levels}
    for event in events:
        breakdown[event.severity.value] = breakdown.get(event.severity.value, 0) + 1
    return breakdown


def top_errors(
    events: Iterable[TrackedEvent],
    limit: int = 10,
    operation: Callable[[Any], str] | None = None,
) -> list[dict[str, Any]]:
    """Return the most frequent error signatures.

    Args:
        events: Tracked events, newest first.
        limit: Maximum number of signatures returned.
        operation: Optional accessor; when given, each entry lists the
            operations the error occurred in.

    Returns:
        Entries sorted by count descending, ties keeping first-seen order.
    """
    groups: dict[str, dict[str, Any]] = {}
    for event in events:
        signature = event.error.signature
        group = groups.get(signature)
        if group is None:
            group = {
                "signature": signature,
                "name": event.error.name,
                "code": event.error.code,
                "message": event.error.message,
                "count": 0,
                "severity": event.severity.value,
                "last_occurrence": event.timestamp,
            }
            if operation is not None:
                group["operations"] = []
            groups[signature] = group
        group["count"] += 1
        group["last_occurrence"] = max(group["last_occurrence"], event.timestamp)
        if operation is not None:
            op = operation(event)
            if op not in group["operations"]:
                group["operations"].append(op)
    ranked = sorted(groups.values(), key=lambda g: g["count"], reverse=True)
    return ranked[:limit]


def error_trends(events: Iterable[TrackedEvent]) -> list[dict[str, int]]:
    """Hour-of-day histogram (UTC) sorted by hour."""
    hours = Counter(
        datetime.fromtimestamp(event.timestamp, tz=timezone.utc).hour
        for event in events
    )
    return [{"hour": hour, "count": count} for hour, count in sorted(hours.items())]


def error_contexts(
    events: Iterable[Any], context: Callable[[Any], dict[str, Any]]
) -> dict[str, dict[str, int]]:
    """Break events down by user role, endpoint, browser and IP address.

    Args:
        events: Tracked events.
        context: Accessor returning the event's context as a dict.
    """
    contexts = [context(event) for event in events]
    return {
        "user_roles": count_by(contexts, lambda c: c.get("user_role")),
        "endpoints": count_by(contexts, lambda c: c.get("endpoint")),
        "user_agents": count_by(
            contexts,
            lambda c: extract_browser(c["user_agent"]) if c.get("user_agent") else None,
        ),
        "ip_addresses": count_by(contexts, lambda c: c.get("ip_address")),
    }


def optimization_report(
    query_stats: Iterable[dict[str, Any]],
    index_suggestions: Iterable[dict[str, Any]],
    slow_query_ms: float = 1000,
    frequent_count: int = 100,
    error_rate: float = 0.1,
    limit: int = 10,
) -> dict[str, Any]:
    """Summarise query signatures into slow/frequent/error-prone lists.

    Args:
        query_stats: One dict per query signature with at least
            ``count``, ``total_time``, ``avg_time`` and ``errors``.
        index_suggestions: Suggested indexes derived from query shapes.
        slow_query_ms: Average time above which a query is slow.
        frequent_count: Execution count above which a query is frequent.
        error_rate: Error ratio above which a query is error-prone.
        limit: Maximum entries per list.
    """
    stats = list(query_stats)
    total_queries = sum(s["count"] for s in stats)
    total_time = sum(s["total_time"] for s in stats)
    slow = sorted(
        (s for s in stats if s["avg_time"] > slow_query_ms),
        key=lambda s: s["avg_time"],
        reverse=True,
    )
    frequent = sorted(
        (s for s in stats if s["count"] > frequent_count),
        key=lambda s: s["count"],
        reverse=True,
    )
    error_prone = sorted(
        (s for s in stats if s["count"] and s["errors"] / s["count"] > error_rate),
        key=lambda s: s["errors"] / s["count"],
        reverse=True,
    )
    return {
        "summary": {
            "total_queries": total_queries,
            "unique_queries": len(stats),
            "total_execution_time": total_time,
            "average_execution_time": total_time / total_queries if total_queries else 0,
        },
        "slow_queries": slow[:limit],
        "frequent_queries": frequent[:limit],
        "error_prone_queries": error_prone[:limit],
        "index_suggestions": list(index_suggestions),
    }


def determine_health_status(
    error_rate: float,
    average_response_time_ms: float,
    memory_mb: float,
    thresholds: PerformanceThresholds,
) -> str:
    """Collapse headline numbers into ``healthy|warning|critical``."""
    if (
        error_rate > thresholds.error_rate.critical
        or average_response_time_ms > thresholds.response_time_ms.critical
        or memory_mb > thresholds.memory_mb.critical
    ):
        return "critical"
    if (
        error_rate > thresholds.error_rate.warning
        or average_response_time_ms > thresholds.response_time_ms.warning
        or memory_mb > thresholds.memory_mb.warning
    ):
        return "warning"
    return "healthy"


def performance_recommendations(
    slow_endpoints: list[dict[str, Any]],
    slow_queries: list[dict[str, Any]],
    error_rate: float,
    memory_mb: float,
    thresholds: PerformanceThresholds,
) -> list[dict[str, Any]]:
    """Rule-based suggestions for the performance alerts view."""
    recommendations: list[dict[str, Any]] = []
    if slow_endpoints:
        recommendations.append(
            {
                "type": "performance",
                "priority": "high",
                "message": f"{len(slow_endpoints)} endpoint(s) exceed the response time warning threshold",
                "action": "Profile slow endpoints and add caching where responses are reusable",
                "endpoints": [e["endpoint"] for e in slow_endpoints[:5]],
            }
        )
    if slow_queries:
        recommendations.append(
            {
                "type": "database",
                "priority": "high",
                "message": f"{len(slow_queries)} query type(s) exceed the query time warning threshold",
                "action": "Review query plans and add indexes for the filtered fields",
            }
        )
    if error_rate > thresholds.error_rate.warning:
        recommendations.append(
            {
                "type": "reliability",
                "priority": "critical" if error_rate > thresholds.error_rate.critical else "medium",
                "message": f"Error rate {error_rate:.2%} is above the warning threshold",
                "action": "Inspect error analytics for the most frequent failures",
            }
        )
    if memory_mb > thresholds.memory_mb.warning:
        recommendations.append(
            {
                "type": "memory",
                "priority": "critical" if memory_mb > thresholds.memory_mb.critical else "medium",
                "message": f"Resident memory {memory_mb:.0f}MB is above the warning threshold",
                "action": "Check cache sizes and long-lived references",
            }
        )
    return recommendations
