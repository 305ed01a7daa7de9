"""Cache key namespaces, TTL tiers and invalidation rules.

Keys are colon-separated and start with a namespace (``student``,
``class``, ``school``, ...) so whole namespaces can be invalidated with
a glob such as ``student:42:*``.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class CacheTTL(IntEnum):
    """TTL tiers in seconds."""

    SHORT = 300
    MEDIUM = 1800
    LONG = 3600
    VERY_LONG = 86400


@dataclass(frozen=True)
class CacheRequest:
    """The parts of an HTTP request cache keys and rules are derived from.

    Attributes:
        method: HTTP method.
        path_params: Route parameters.
        query_params: Query string parameters.
        body: Parsed JSON body, if any.
        user_id: Authenticated user id.
        school_id: The user's school, if known.
    """

    method: str = "GET"
    path_params: dict[str, Any] = field(default_factory=dict)
    query_params: dict[str, Any] = field(default_factory=dict)
    body: Any = None
    user_id: str | None = None
    school_id: str | None = None

    def body_value(self, name: str) -> Any:
        return self.body.get(name) if isinstance(self.body, dict) else None

    def param(self, name: str) -> Any:
        """Look ``name`` up in the body first, then in the path parameters."""
        return self.body_value(name) or self.path_params.get(name)


class CacheKeys:
    """Key builders for attendance data."""

    @staticmethod
    def student_summary(student_id: str, subject_id: str | None = None) -> str:
        suffix = f":{subject_id}" if subject_id else ""
        return f"student:{student_id}:summary{suffix}"

    @staticmethod
    def class_summary(class_id: str, subject_id: str) -> str:
        return f"class:{class_id}:subject:{subject_id}:summary"

    @staticmethod
    def school_analytics(school_id: str, start_date: str, end_date: str) -> str:
        return f"school:{school_id}:analytics:{start_date}:{end_date}"

    @staticmethod
    def attendance_records(class_id: str, subject_id: str, date: str, session: str) -> str:
        return f"attendance:{class_id}:{subject_id}:{date}:{session}"

    @staticmethod
    def class_students(class_id: str, subject_id: str | None = None) -> str:
        suffix = f":{subject_id}" if subject_id else ""
        return f"class:{class_id}:students{suffix}"

    @staticmethod
    def teacher_assignments(teacher_id: str) -> str:
        return f"teacher:{teacher_id}:assignments"

    @staticmethod
    def attendance_trends(
        student_id: str, subject_id: str, start_date: str, end_date: str
    ) -> str:
        return f"trends:{student_id}:{subject_id}:{start_date}:{end_date}"

    @staticmethod
    def low_attendance_alerts(
        class_id: str, subject_id: str | None = None, threshold: int = 75
    ) -> str:
        subject = f":{subject_id}" if subject_id else ""
        return f"alerts:{class_id}{subject}:{threshold}"


InvalidationRule = Callable[[CacheRequest], str | Iterable[str] | None] | str


def invalidate_student_caches(request: CacheRequest) -> list[str]:
    """Patterns to drop after attendance is marked or edited."""
    patterns: list[str] = []
    bulk = request.body_value("student_attendance")
    if bulk:
        patterns.extend(f"student:{entry['student_id']}:*" for entry in bulk)
    elif student_id := request.param("student_id"):
        patterns.append(f"student:{student_id}:*")
    if class_id := request.param("class_id"):
        patterns.append(f"class:{class_id}:*")
    if request.school_id:
        patterns.append(f"school:{request.school_id}:*")
    patterns.append("alerts:*")
    return patterns


def invalidate_class_caches(request: CacheRequest) -> list[str]:
    """Patterns to drop after students are assigned or transferred."""
    patterns = [
        f"class:{class_id}:*"
        for name in ("target_class_id", "from_class_id", "to_class_id")
        if (class_id := request.body_value(name))
    ]
    if request.school_id:
        patterns.append(f"school:{request.school_id}:*")
    return patterns


def invalidate_teacher_caches(request: CacheRequest) -> list[str]:
    """Patterns to drop after teacher assignments change."""
    patterns: list[str] = []
    if teacher_id := request.body_value("teacher_id"):
        patterns.append(f"teacher:{teacher_id}:*")
    if request.user_id:
        patterns.append(f"teacher:{request.user_id}:*")
    return patterns


def expand_rules(rules: Iterable[InvalidationRule], request: CacheRequest) -> list[str]:
    """Evaluate invalidation rules into a flat list of glob patterns.

    A rule is either a literal pattern or a callable returning one
    pattern, several patterns, or None.
    """
    patterns: list[str] = []
    for rule in rules:
        if isinstance(rule, str):
            patterns.append(rule)
            continue
        produced = rule(request)
        if produced is None:
            continue
        if isinstance(produced, str):
            patterns.append(produced)
        else:
            patterns.extend(produced)
    return patterns
