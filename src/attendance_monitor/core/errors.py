"""Typed application errors.

Every error carries an ``ErrorKind`` chosen by its class, so trackers
classify errors by kind rather than by inspecting class names.
"""

import time
import traceback
from typing import Any

from attendance_monitor.core.models import ErrorInfo, ErrorKind


class AppError(Exception):
    """Base class for errors raised by application code.

    Args:
        message: Human readable message.
        status_code: HTTP status the error maps to.
        code: Stable application error code.
        details: Optional structured details returned to the client.
    """

    kind: ErrorKind = ErrorKind.INTERNAL
    default_status = 500
    default_code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code if status_code is not None else self.default_status
        self.code = code or self.default_code
        self.details = details
        self.timestamp = time.time()

    def to_dict(self) -> dict[str, Any]:
        """Client-facing representation of the error."""
        body: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "timestamp": self.timestamp,
        }
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    kind = ErrorKind.VALIDATION
    default_status = 400
    default_code = "VALIDATION_ERROR"


class AuthenticationError(AppError):
    kind = ErrorKind.AUTHENTICATION
    default_status = 401
    default_code = "AUTHENTICATION_ERROR"

    def __init__(self, message: str = "Authentication required", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class AuthorizationError(AppError):
    kind = ErrorKind.AUTHORIZATION
    default_status = 403
    default_code = "AUTHORIZATION_ERROR"

    def __init__(self, message: str = "Insufficient permissions", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class NotFoundError(AppError):
    kind = ErrorKind.NOT_FOUND
    default_status = 404
    default_code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource", **kwargs: Any) -> None:
        super().__init__(f"{resource} not found", **kwargs)


class ConflictError(AppError):
    kind = ErrorKind.CONFLICT
    default_status = 409
    default_code = "CONFLICT_ERROR"


class DatabaseError(AppError):
    kind = ErrorKind.DATABASE
    default_status = 500
    default_code = "DATABASE_ERROR"

    def __init__(
        self, message: str = "Database operation failed", **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)


class ExternalServiceError(AppError):
    kind = ErrorKind.EXTERNAL_SERVICE
    default_status = 502
    default_code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, message: str | None = None, **kwargs: Any) -> None:
        super().__init__(message or f"{service} service unavailable", **kwargs)
        self.service = service


class RateLimitError(AppError):
    kind = ErrorKind.RATE_LIMIT
    default_status = 429
    default_code = "RATE_LIMIT_ERROR"

    def __init__(self, message: str = "Too many requests", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class AttendanceAuthorizationError(AppError):
    """Raised when a teacher acts on a class or subject they are not assigned to."""

    kind = ErrorKind.ATTENDANCE_AUTHORIZATION
    default_status = 403
    default_code = "ATTENDANCE_UNAUTHORIZED"

    def __init__(
        self,
        message: str = "Not authorized to manage attendance for this class",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)


class AttendanceAlreadyMarkedError(AppError):
    kind = ErrorKind.ATTENDANCE_ALREADY_MARKED
    default_status = 409
    default_code = "ATTENDANCE_ALREADY_MARKED"

    def __init__(
        self,
        message: str = "Attendance already marked for this session",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)


class StudentNotEnrolledError(AppError):
    kind = ErrorKind.STUDENT_NOT_ENROLLED
    default_status = 400
    default_code = "STUDENT_NOT_ENROLLED"

    def __init__(
        self, message: str = "Student is not enrolled in this class", **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)


class InvalidSessionError(AppError):
    kind = ErrorKind.INVALID_SESSION
    default_status = 400
    default_code = "INVALID_SESSION"

    def __init__(self, message: str = "Invalid attendance session", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class AttendanceEditWindowExpiredError(AppError):
    kind = ErrorKind.EDIT_WINDOW_EXPIRED
    default_status = 403
    default_code = "EDIT_WINDOW_EXPIRED"

    def __init__(
        self, message: str = "Attendance edit window has expired", **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)


class BulkOperationError(AppError):
    """Partial failure of a bulk attendance operation (HTTP 207)."""

    kind = ErrorKind.BULK_OPERATION
    default_status = 207
    default_code = "BULK_OPERATION_PARTIAL_FAILURE"

    def __init__(
        self,
        message: str = "Bulk operation partially failed",
        success_count: int = 0,
        failure_count: int = 0,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault(
            "details", {"success_count": success_count, "failure_count": failure_count}
        )
        super().__init__(message, **kwargs)
        self.success_count = success_count
        self.failure_count = failure_count


def describe_error(exc: BaseException) -> ErrorInfo:
    """Normalise any exception into an ErrorInfo.

    Args:
        exc: The exception to describe.

    Returns:
        ErrorInfo. Exceptions outside the AppError hierarchy are reported
        as ``ErrorKind.INTERNAL`` with no code or status.
    """
    if isinstance(exc, AppError):
        return ErrorInfo(
            name=type(exc).__name__,
            message=exc.message,
            code=exc.code,
            status_code=exc.status_code,
            kind=exc.kind,
        )
    return ErrorInfo(name=type(exc).__name__, message=str(exc))


def format_stack(exc: BaseException) -> str | None:
    """Return the formatted traceback of ``exc`` if it has one."""
    if exc.__traceback__ is None:
        return None
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
