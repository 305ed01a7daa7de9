"""Core domain models for monitoring data."""

import uuid
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any


class Severity(str, Enum):
    """Seriousness of an event or alert.

    The error trackers use slightly different vocabularies, but every
    member maps onto the same ordinal via ``rank``.
    """

    CRITICAL = "critical"
    HIGH = "high"
    ERROR = "error"
    WARNING = "warning"
    MEDIUM = "medium"
    INFO = "info"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Ordinal where a higher number is more serious."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 3,
    Severity.HIGH: 2,
    Severity.ERROR: 2,
    Severity.WARNING: 1,
    Severity.MEDIUM: 1,
    Severity.INFO: 0,
    Severity.LOW: 0,
}


class ErrorKind(str, Enum):
    """Closed set of error kinds, fixed when an error is constructed."""

    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    DATABASE = "database"
    EXTERNAL_SERVICE = "external_service"
    RATE_LIMIT = "rate_limit"
    ATTENDANCE_AUTHORIZATION = "attendance_authorization"
    ATTENDANCE_ALREADY_MARKED = "attendance_already_marked"
    STUDENT_NOT_ENROLLED = "student_not_enrolled"
    INVALID_SESSION = "invalid_session"
    EDIT_WINDOW_EXPIRED = "edit_window_expired"
    BULK_OPERATION = "bulk_operation"
    INTERNAL = "internal"


@dataclass(frozen=True)
class ErrorInfo:
    """Normalised description of a raised error.

    Attributes:
        name: Exception class name.
        message: Human readable message.
        code: Application error code, if the error carries one.
        status_code: HTTP status associated with the error, if any.
        kind: Error kind assigned at construction time.
    """

    name: str
    message: str
    code: str | None = None
    status_code: int | None = None
    kind: ErrorKind = ErrorKind.INTERNAL

    @property
    def signature(self) -> str:
        """Stable aggregation key for this error type."""
        return f"{self.name}_{self.code}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "message": self.message,
            "code": self.code,
            "status_code": self.status_code,
            "kind": self.kind.value,
        }


@dataclass(frozen=True)
class ErrorEvent:
    """A tracked application error.

    Attributes:
        timestamp: Unix timestamp in seconds.
        error: The normalised error.
        severity: Severity assigned when the error was tracked.
        context: Caller supplied key/value context (user, endpoint, ...).
        stack: Formatted traceback, when one was available.
    """

    timestamp: float
    error: ErrorInfo
    severity: Severity
    context: dict[str, Any] = field(default_factory=dict)
    stack: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "error": self.error.to_dict(),
            "severity": self.severity.value,
            "context": self.context,
        }


@dataclass
class ErrorStat:
    """Running aggregate for one error signature."""

    name: str
    code: str | None
    count: int
    first_occurrence: float
    last_occurrence: float
    severity: Severity
    contexts: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data


@dataclass(frozen=True)
class Alert:
    """A recorded notification that a threshold rule fired.

    Attributes:
        type: Rule identifier, e.g. ``critical_error_threshold``.
        severity: Alert severity.
        timestamp: Unix timestamp in seconds.
        data: Rule specific payload.
        category: Optional grouping such as ``attendance``.
    """

    type: str
    severity: Severity
    timestamp: float
    data: dict[str, Any] = field(default_factory=dict)
    category: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data


@dataclass(frozen=True)
class AttendanceContext:
    """Request context attached to an attendance error or success."""

    operation: str = "unknown"
    user_role: str | None = None
    user_id: str | None = None
    class_id: str | None = None
    subject_id: str | None = None
    teacher_id: str | None = None
    student_id: str | None = None
    date: str | None = None
    session: str | None = None
    total_records: int | None = None
    success_count: int | None = None
    failure_count: int | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    endpoint: str | None = None
    method: str | None = None

    @classmethod
    def from_mapping(cls, mapping: dict[str, Any] | None) -> "AttendanceContext":
        """Build a context from a plain dict, ignoring unknown keys."""
        if not mapping:
            return cls()
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in mapping.items() if k in known and v is not None}
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Impact:
    """Business impact estimate for an attendance error."""

    level: str
    affected_users: int
    affected_operations: tuple[str, ...]
    business_impact: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "affected_users": self.affected_users,
            "affected_operations": list(self.affected_operations),
            "business_impact": self.business_impact,
        }


@dataclass(frozen=True)
class AttendanceErrorEvent:
    """A tracked attendance error with its classification."""

    timestamp: float
    error: ErrorInfo
    context: AttendanceContext
    severity: Severity
    impact: Impact
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "error": self.error.to_dict(),
            "context": self.context.to_dict(),
            "severity": self.severity.value,
            "impact": self.impact.to_dict(),
        }


@dataclass(frozen=True)
class RequestSample:
    """One observed API request."""

    timestamp: float
    method: str
    url: str
    response_time_ms: float
    status_code: int
    user_id: str | None = None
    user_role: str | None = None

    @property
    def endpoint(self) -> str:
        """Aggregation key, ``METHOD path`` with the query string removed."""
        return f"{self.method} {self.url.split('?', 1)[0]}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class QuerySample:
    """One observed database query."""

    timestamp: float
    operation: str
    collection: str
    execution_time_ms: float
    query_hash: str | None = None
    result_count: int | None = None
    error: str | None = None

    @property
    def key(self) -> str:
        return f"{self.operation}_{self.collection}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SystemSnapshot:
    """Process resource usage at one instant.

    Attributes:
        timestamp: Unix timestamp in seconds.
        rss_bytes: Resident set size.
        vms_bytes: Virtual memory size.
        cpu_user: Cumulative user CPU seconds.
        cpu_system: Cumulative system CPU seconds.
    """

    timestamp: float
    rss_bytes: int
    vms_bytes: int
    cpu_user: float
    cpu_system: float

    @property
    def rss_mb(self) -> float:
        return self.rss_bytes / 1024 / 1024

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["rss_mb"] = round(self.rss_mb, 2)
        data["vms_mb"] = round(self.vms_bytes / 1024 / 1024, 2)
        return data


@dataclass(frozen=True)
class ErrorThresholds:
    """Alert thresholds for the general error tracker."""

    error_rate: float = 0.1
    critical_errors: int = 5
    time_window_ms: int = 5 * 60 * 1000


@dataclass(frozen=True)
class AttendanceThresholds:
    """Alert thresholds for the attendance error tracker."""

    marking_failure_rate: float = 0.05
    bulk_operation_failure_rate: float = 0.10
    consecutive_failures: int = 3
    response_time_threshold_ms: int = 5000


@dataclass(frozen=True)
class ThresholdBand:
    """Warning/critical pair for one measured quantity."""

    warning: float
    critical: float


@dataclass(frozen=True)
class PerformanceThresholds:
    """Live threshold table of the performance tracker."""

    response_time_ms: ThresholdBand = ThresholdBand(2000, 5000)
    error_rate: ThresholdBand = ThresholdBand(0.05, 0.10)
    memory_mb: ThresholdBand = ThresholdBand(500, 1000)
    db_query_time_ms: ThresholdBand = ThresholdBand(1000, 3000)

    def to_dict(self) -> dict[str, dict[str, float]]:
        return asdict(self)
