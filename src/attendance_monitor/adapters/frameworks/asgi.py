"""ASGI middleware feeding request timings and failures into the trackers.

Framework-agnostic: works with any ASGI application. FastAPI apps get
it installed by ``create_app``.
"""

import fnmatch
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any

from attendance_monitor.core.attendance_tracker import AttendanceErrorTracker
from attendance_monitor.core.error_tracker import ErrorTracker
from attendance_monitor.core.models import AttendanceContext
from attendance_monitor.core.performance_tracker import PerformanceTracker

logger = logging.getLogger(__name__)

# ASGI type aliases
Scope = dict[str, Any]
Receive = Callable[[], Coroutine[Any, Any, dict[str, Any]]]
Send = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]
ASGIApp = Callable[[Scope, Receive, Send], Coroutine[Any, Any, None]]

USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"


def _get_header(scope: Scope, header_name: str) -> str | None:
    """Return a request header value (case-insensitive), or None."""
    header_bytes = header_name.lower().encode()
    headers: list[tuple[bytes, bytes]] = scope.get("headers", [])
    for name, value in headers:
        if name.lower() == header_bytes:
            return value.decode("utf-8", errors="replace")
    return None


def determine_operation(method: str, path: str) -> str:
    """Classify an attendance request path into an operation name."""
    if "/summary/student/" in path:
        return "student_summary"
    if any(part in path for part in ("/analytics", "/reports", "/statistics")):
        return "analytics"
    if "/bulk" in path or (method == "POST" and "/batch" in path):
        return "bulk"
    if method == "POST" and ("/mark" in path or "/attendance" in path):
        return "marking"
    if method in ("PUT", "PATCH") and "/attendance" in path:
        return "editing"
    if method == "GET" and "/student" in path:
        return "student_retrieval"
    return "generic"


def request_context(scope: Scope) -> dict[str, Any]:
    """Error-tracking context extracted from an ASGI scope."""
    client = scope.get("client")
    return {
        "endpoint": scope.get("path"),
        "method": scope.get("method"),
        "user_agent": _get_header(scope, "User-Agent"),
        "ip_address": client[0] if client else None,
        "user_id": _get_header(scope, USER_ID_HEADER),
        "user_role": _get_header(scope, USER_ROLE_HEADER),
    }


def attendance_context(
    scope: Scope, body: dict[str, Any] | None = None, details: Any = None
) -> AttendanceContext:
    """Attendance context from the scope, the parsed body and error details."""
    context = request_context(scope)
    values: dict[str, Any] = {
        "operation": determine_operation(scope.get("method", "GET"), scope.get("path", "")),
        **context,
    }
    params = scope.get("path_params") or {}
    for name in ("class_id", "subject_id", "student_id"):
        values[name] = params.get(name)
    if isinstance(body, dict):
        for name in ("class_id", "subject_id", "date", "session"):
            values[name] = values.get(name) or body.get(name)
        values["teacher_id"] = body.get("teacher_id") or context["user_id"]
        for records in ("attendance_records", "student_attendance"):
            if isinstance(body.get(records), list):
                values["total_records"] = len(body[records])
    if isinstance(details, dict):
        values.update(details)
    return AttendanceContext.from_mapping(values)


class MonitoringMiddleware:
    """ASGI middleware timing every request into the performance tracker.

    Successful requests under ``attendance_prefix`` are also recorded as
    successful attendance operations. Exceptions escaping the wrapped
    app are tracked and re-raised.
    """

    def __init__(
        self,
        app: ASGIApp,
        performance: PerformanceTracker,
        errors: ErrorTracker | None = None,
        attendance: AttendanceErrorTracker | None = None,
        attendance_prefix: str = "/api/attendance",
        exclude_paths: list[str] | None = None,
    ) -> None:
        """Initialize the middleware with a wrapped app and trackers.

        Args:
            app: The ASGI application to wrap.
            performance: Receives one sample per request.
            errors: Receives exceptions escaping the app.
            attendance: Receives attendance successes and failures.
            attendance_prefix: Path prefix of attendance routes.
            exclude_paths: Paths not recorded. Supports exact matches and
                wildcard patterns (e.g., "/monitoring/*").
        """
        self.app = app
        self.performance = performance
        self.errors = errors
        self.attendance = attendance
        self.attendance_prefix = attendance_prefix
        self.exclude_paths = exclude_paths or []

    def _path_excluded(self, path: str) -> bool:
        """Check if path matches any pattern in exclude_paths."""
        return any(fnmatch.fnmatch(path, pattern) for pattern in self.exclude_paths)

    def _is_attendance(self, path: str) -> bool:
        return path.startswith(self.attendance_prefix)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI callable interface that processes requests through the wrapped app."""
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        captured: dict[str, Any] = {"status": None, "exception": None}

        async def wrapped_send(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                captured["status"] = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, wrapped_send)
        except Exception as e:
            captured["exception"] = e
            captured["status"] = 500

        duration_ms = (time.perf_counter() - start_time) * 1000
        self._record(scope, captured, duration_ms)
        if captured["exception"] is not None:
            raise captured["exception"]

    def _record(self, scope: Scope, captured: dict[str, Any], duration_ms: float) -> None:
        path = scope["path"]
        if self._path_excluded(path):
            return
        status = captured["status"] or 0
        context = request_context(scope)
        self.performance.track_api_request(
            method=scope["method"],
            url=path,
            response_time_ms=duration_ms,
            status_code=status,
            user_id=context["user_id"],
            user_role=context["user_role"],
        )
        exc = captured["exception"]
        if exc is not None:
            if self.errors is not None:
                self.errors.track(exc, context)
            if self.attendance is not None and self._is_attendance(path):
                self.attendance.track(exc, attendance_context(scope))
        elif self.attendance is not None and self._is_attendance(path) and status < 400:
            att = attendance_context(scope)
            self.attendance.record_successful_operation(att.operation, att, duration_ms)
