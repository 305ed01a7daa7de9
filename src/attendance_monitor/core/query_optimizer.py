"""Query shape analysis and optimisation suggestions.

Queries are reduced to a type-only shape so that structurally identical
queries with different values share one signature.
"""

import hashlib
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from attendance_monitor.core import analytics

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60
SLOW_QUERY_MS = 1000
FREQUENT_QUERY_COUNT = 100
FREQUENT_QUERY_MIN_MS = 100
ERROR_PRONE_RATE = 0.1
LOGICAL_OPERATORS = ("$and", "$or")


def normalize_query(query: Any) -> Any:
    """Replace every scalar in ``query`` by its type name."""
    if isinstance(query, dict):
        return {key: normalize_query(value) for key, value in sorted(query.items())}
    if isinstance(query, (list, tuple)):
        return [normalize_query(item) for item in query]
    if isinstance(query, (datetime, date)):
        return "Date"
    if query is None:
        return "null"
    return type(query).__name__


def index_fields(query: dict[str, Any], prefix: str = "") -> list[str]:
    """Field paths a query filters on, suitable for an index.

    Operator keys (``$gt``, ``$in`` ...) are skipped, except ``$and`` and
    ``$or`` whose clauses are searched recursively.
    """
    found: list[str] = []
    for key, value in query.items():
        if key in LOGICAL_OPERATORS and isinstance(value, list):
            for clause in value:
                if isinstance(clause, dict):
                    found.extend(f for f in index_fields(clause, prefix) if f not in found)
            continue
        if key.startswith("$"):
            continue
        path = f"{prefix}{key}"
        if path not in found:
            found.append(path)
    return found


def _index_key(suggestion: dict[str, Any]) -> str:
    return f"{suggestion['collection']}:{','.join(suggestion['fields'])}"


@dataclass
class QueryStat:
    """Execution statistics for one query signature."""

    signature: str
    operation: str
    collection: str
    shape: Any
    count: int = 0
    total_time: float = 0.0
    min_time: float = float("inf")
    max_time: float = 0.0
    errors: int = 0
    last_executed: float = 0.0

    @property
    def avg_time(self) -> float:
        return self.total_time / self.count if self.count else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "signature": self.signature,
            "operation": self.operation,
            "collection": self.collection,
            "shape": self.shape,
            "count": self.count,
            "total_time": self.total_time,
            "avg_time": self.avg_time,
            "min_time": self.min_time if self.count else 0.0,
            "max_time": self.max_time,
            "errors": self.errors,
            "last_executed": self.last_executed,
        }


class QueryOptimizer:
    """Collects per-signature query statistics and suggests improvements.

    Args:
        retention_seconds: Signatures idle for longer are dropped by cleanup.
        clock: Returns the current Unix time in seconds.
    """

    def __init__(
        self,
        retention_seconds: float = DAY_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._stats: dict[str, QueryStat] = {}
        self._suggestions: dict[str, list[dict[str, Any]]] = {}
        self._index_suggestions: dict[str, dict[str, Any]] = {}
        self._retention_seconds = retention_seconds
        self._clock = clock

    @staticmethod
    def signature(query: dict[str, Any], operation: str, collection: str) -> str:
        """md5 of the operation, collection and normalised query shape."""
        shape = json.dumps(normalize_query(query), sort_keys=True)
        return hashlib.md5(
            f"{operation}:{collection}:{shape}".encode(), usedforsecurity=False
        ).hexdigest()

    def track_execution(
        self,
        query: dict[str, Any],
        operation: str,
        collection: str,
        execution_time_ms: float,
        failed: bool = False,
    ) -> QueryStat:
        """Record one execution and refresh the signature's suggestions."""
        signature = self.signature(query, operation, collection)
        stat = self._stats.get(signature)
        if stat is None:
            stat = QueryStat(
                signature=signature,
                operation=operation,
                collection=collection,
                shape=normalize_query(query),
            )
            self._stats[signature] = stat
        stat.count += 1
        stat.total_time += execution_time_ms
        stat.min_time = min(stat.min_time, execution_time_ms)
        stat.max_time = max(stat.max_time, execution_time_ms)
        stat.last_executed = self._clock()
        if failed:
            stat.errors += 1
        self._analyze(stat, query)
        return stat

    def _analyze(self, stat: QueryStat, query: dict[str, Any]) -> None:
        suggestions: list[dict[str, Any]] = []
        if stat.avg_time > SLOW_QUERY_MS:
            suggestions.append(
                {
                    "type": "slow_query",
                    "message": f"Average execution time {stat.avg_time:.0f}ms exceeds {SLOW_QUERY_MS}ms",
                    "recommendation": "Add an index on the filtered fields or narrow the projection",
                }
            )
        if stat.count > FREQUENT_QUERY_COUNT and stat.avg_time > FREQUENT_QUERY_MIN_MS:
            suggestions.append(
                {
                    "type": "frequent_query",
                    "message": f"Executed {stat.count} times with {stat.avg_time:.0f}ms average",
                    "recommendation": "Cache the result of this query",
                }
            )
        if stat.errors / stat.count > ERROR_PRONE_RATE:
            suggestions.append(
                {
                    "type": "error_prone_query",
                    "message": f"{stat.errors} of {stat.count} executions failed",
                    "recommendation": "Validate query inputs before execution",
                }
            )
        fields = index_fields(query)
        if fields and stat.avg_time > FREQUENT_QUERY_MIN_MS:
            suggestion = {
                "type": "index_suggestion",
                "collection": stat.collection,
                "fields": fields,
                "index": {name: 1 for name in fields},
            }
            suggestions.append(suggestion)
            self._index_suggestions[_index_key(suggestion)] = suggestion
        if suggestions:
            self._suggestions[stat.signature] = suggestions
        else:
            self._suggestions.pop(stat.signature, None)

    def get_stat(self, signature: str) -> QueryStat | None:
        return self._stats.get(signature)

    def suggestions(self, signature: str) -> list[dict[str, Any]]:
        return list(self._suggestions.get(signature, []))

    def report(self) -> dict[str, Any]:
        """Optimisation report over every tracked signature."""
        report = analytics.optimization_report(
            (s.to_dict() for s in self._stats.values()),
            self._index_suggestions.values(),
            slow_query_ms=SLOW_QUERY_MS,
            frequent_count=FREQUENT_QUERY_COUNT,
            error_rate=ERROR_PRONE_RATE,
        )
        report["suggestions"] = {k: list(v) for k, v in self._suggestions.items()}
        return report

    def cleanup(self) -> int:
        """Drop signatures that have not executed within the retention window.

        Index suggestions no retained signature still makes are dropped too.
        """
        cutoff = self._clock() - self._retention_seconds
        stale = [k for k, s in self._stats.items() if s.last_executed < cutoff]
        for key in stale:
            del self._stats[key]
            self._suggestions.pop(key, None)
        live = {
            _index_key(s)
            for entries in self._suggestions.values()
            for s in entries
            if s["type"] == "index_suggestion"
        }
        for key in [k for k in self._index_suggestions if k not in live]:
            del self._index_suggestions[key]
        if stale:
            logger.info("Query statistics cleanup completed", extra={"removed": len(stale)})
        return len(stale)
