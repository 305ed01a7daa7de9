"""FastAPI adapter: monitoring routers, error boundary and role guards."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated, Any

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from attendance_monitor.adapters.cache.tiered import TieredCache
from attendance_monitor.adapters.frameworks.asgi import (
    USER_ID_HEADER,
    USER_ROLE_HEADER,
    attendance_context,
    request_context,
)
from attendance_monitor.core.attendance_tracker import AttendanceErrorTracker
from attendance_monitor.core.error_tracker import ErrorTracker
from attendance_monitor.core.errors import (
    AppError,
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    ValidationError,
)
from attendance_monitor.core.performance_tracker import PerformanceTracker
from attendance_monitor.core.query_optimizer import QueryOptimizer

if TYPE_CHECKING:
    from attendance_monitor.app import MonitoringServices

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
HOUR_MS = 60 * 60 * 1000
MIN_PERFORMANCE_RANGE_MS = 60_000
MAX_PERFORMANCE_RANGE_MS = 7 * DAY_MS


@dataclass(frozen=True)
class Actor:
    """The authenticated caller, as established by the upstream auth layer."""

    id: str
    role: str
    school_id: str | None = None


async def get_actor(request: Request) -> Actor:
    """Default actor dependency reading identity headers.

    Replace with ``app.dependency_overrides[get_actor]`` when the
    upstream auth layer exposes the user differently.

    Raises:
        AuthenticationError: If no identity headers are present.
    """
    user_id = request.headers.get(USER_ID_HEADER)
    role = request.headers.get(USER_ROLE_HEADER)
    if not user_id or not role:
        raise AuthenticationError()
    actor = Actor(id=user_id, role=role, school_id=request.headers.get("X-School-Id"))
    request.state.actor = actor
    return actor


def require_roles(*roles: str) -> Callable[..., Any]:
    """Dependency factory allowing only actors with one of ``roles``."""

    async def dependency(actor: Annotated[Actor, Depends(get_actor)]) -> Actor:
        if actor.role not in roles:
            raise AuthorizationError(
                f"Role {actor.role} is not allowed to access this resource"
            )
        return actor

    return dependency


AdminOnly = Depends(require_roles("Admin"))
AdminOrTeacher = Depends(require_roles("Admin", "Teacher"))


def success(data: Any, message: str | None = None) -> dict[str, Any]:
    """Standard success envelope."""
    body: dict[str, Any] = {"success": True, "data": data}
    if message is not None:
        body["message"] = message
    return body


def _error_response(exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder({"success": False, "error": exc.to_dict()}),
    )


def _attachment(filename: str) -> dict[str, str]:
    return {"Content-Disposition": f'attachment; filename="{filename}"'}


def register_error_handlers(app: FastAPI, services: "MonitoringServices") -> None:
    """Install the error boundary.

    Every AppError and request validation failure is rendered as an
    error envelope and forwarded to the error tracker, and additionally
    to the attendance tracker for attendance routes. Unexpected
    exceptions are tracked by ``MonitoringMiddleware`` and rendered here
    as a generic 500.
    """

    def track(request: Request, exc: AppError) -> None:
        context = request_context(request.scope)
        services.errors.track(exc, context)
        if request.url.path.startswith(services.settings.attendance_path_prefix):
            body = getattr(request.state, "json_body", None)
            services.attendance.track(
                exc, attendance_context(request.scope, body, exc.details)
            )

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        track(request, exc)
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        error = ValidationError(
            "Request validation failed", details=jsonable_encoder(exc.errors())
        )
        track(request, error)
        return _error_response(error)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled error on %s %s",
            request.method,
            request.url.path,
            exc_info=exc,
        )
        return _error_response(AppError("Internal server error"))


class ErrorThresholdsUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    error_rate: float | None = Field(default=None, alias="errorRate")
    critical_errors: int | None = Field(default=None, alias="criticalErrors")
    time_window_ms: int | None = Field(default=None, alias="timeWindow")


class AttendanceThresholdsUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    marking_failure_rate: float | None = Field(default=None, alias="markingFailureRate")
    bulk_operation_failure_rate: float | None = Field(
        default=None, alias="bulkOperationFailureRate"
    )
    consecutive_failures: int | None = Field(default=None, alias="consecutiveFailures")
    response_time_threshold_ms: int | None = Field(
        default=None, alias="responseTimeThreshold"
    )


class Band(BaseModel):
    warning: float | None = None
    critical: float | None = None


class PerformanceThresholdsUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    response_time_ms: Band | None = Field(default=None, alias="responseTime")
    error_rate: Band | None = Field(default=None, alias="errorRate")
    memory_mb: Band | None = Field(default=None, alias="memoryUsage")
    db_query_time_ms: Band | None = Field(default=None, alias="dbQueryTime")


TimeRange = Annotated[int, Query(alias="timeRange", ge=1)]
PerformanceRange = Annotated[
    int,
    Query(alias="timeRange", ge=MIN_PERFORMANCE_RANGE_MS, le=MAX_PERFORMANCE_RANGE_MS),
]


def create_error_monitoring_router(errors: ErrorTracker) -> APIRouter:
    """Create a router exposing error analytics, health and thresholds.

    Args:
        errors: The error tracker to read from and configure.

    Returns:
        APIRouter to be mounted under ``/monitoring``.
    """
    router = APIRouter(tags=["monitoring"])

    @router.get("/analytics", dependencies=[AdminOnly])
    async def get_analytics(
        time_range: TimeRange = DAY_MS,
        include_details: Annotated[bool, Query(alias="includeDetails")] = False,
    ) -> dict[str, Any]:
        """Return error analytics for the requested window."""
        return success(errors.analytics(time_range, include_details))

    @router.get("/health", dependencies=[AdminOnly])
    async def get_health() -> dict[str, Any]:
        return success(errors.health_status())

    @router.get("/stats/{error_name}/{error_code}", dependencies=[AdminOnly])
    async def get_error_stats(error_name: str, error_code: str) -> dict[str, Any]:
        """Return one aggregate entry, 404 if the signature was never seen."""
        stat = errors.get_error_stats(error_name, error_code)
        if stat is None:
            raise NotFoundError("Error statistics")
        return success(stat.to_dict())

    @router.post("/cleanup", dependencies=[AdminOnly])
    async def run_cleanup() -> dict[str, Any]:
        removed = errors.cleanup()
        return success({"removed": removed}, "Error monitoring cleanup completed")

    @router.get("/thresholds", dependencies=[AdminOnly])
    async def get_thresholds() -> dict[str, Any]:
        return success(errors.thresholds)

    @router.put("/thresholds", dependencies=[AdminOnly])
    async def update_thresholds(update: ErrorThresholdsUpdate) -> dict[str, Any]:
        thresholds = errors.update_thresholds(**update.model_dump(exclude_none=True))
        return success(thresholds, "Error monitoring thresholds updated")

    @router.get("/export", dependencies=[AdminOnly])
    async def export(
        time_range: TimeRange = DAY_MS,
        fmt: Annotated[str, Query(alias="format")] = "json",
    ) -> Response:
        """Download the analytics snapshot as JSON or CSV."""
        data = errors.export(time_range, fmt)
        stamp = int(time.time())
        if fmt == "csv":
            return Response(
                content=data,
                media_type="text/csv",
                headers=_attachment(f"error-analytics-{stamp}.csv"),
            )
        return JSONResponse(
            content=jsonable_encoder(data),
            headers=_attachment(f"error-analytics-{stamp}.json"),
        )

    return router


def create_attendance_monitoring_router(attendance: AttendanceErrorTracker) -> APIRouter:
    """Create a router exposing attendance error analytics and thresholds.

    Args:
        attendance: The attendance error tracker.

    Returns:
        APIRouter to be mounted under ``/monitoring/attendance``.
    """
    router = APIRouter(tags=["attendance-monitoring"])

    @router.get("/analytics", dependencies=[AdminOrTeacher])
    async def get_analytics(
        time_range: TimeRange = DAY_MS,
        operation: str | None = None,
    ) -> dict[str, Any]:
        return success(attendance.analytics(time_range, operation))

    @router.get("/health", dependencies=[AdminOrTeacher])
    async def get_health() -> dict[str, Any]:
        return success(attendance.health_status())

    @router.get("/performance", dependencies=[AdminOnly])
    async def get_performance() -> dict[str, Any]:
        return success(attendance.performance_metrics())

    @router.get("/trends", dependencies=[AdminOrTeacher])
    async def get_trends(time_range: TimeRange = 7 * DAY_MS) -> dict[str, Any]:
        """Hourly trend plus breakdowns over a longer default window."""
        data = attendance.analytics(time_range)
        return success(
            {
                "time_range_hours": data["summary"]["time_range_hours"],
                "trends": data["trends"],
                "errors_by_operation": data["errors_by_operation"],
                "errors_by_severity": data["errors_by_severity"],
            }
        )

    @router.get("/thresholds", dependencies=[AdminOnly])
    async def get_thresholds() -> dict[str, Any]:
        return success(attendance.thresholds)

    @router.put("/thresholds", dependencies=[AdminOnly])
    async def update_thresholds(update: AttendanceThresholdsUpdate) -> dict[str, Any]:
        thresholds = attendance.update_thresholds(**update.model_dump(exclude_none=True))
        return success(thresholds, "Attendance monitoring thresholds updated")

    @router.get("/export", dependencies=[AdminOnly])
    async def export(
        time_range: TimeRange = DAY_MS,
        fmt: Annotated[str, Query(alias="format")] = "json",
    ) -> Response:
        stamp = int(time.time())
        if fmt == "csv":
            return Response(
                content=attendance.export_csv(time_range),
                media_type="text/csv",
                headers=_attachment(f"attendance-errors-{stamp}.csv"),
            )
        if fmt != "json":
            raise ValidationError("format must be 'json' or 'csv'")
        return JSONResponse(
            content=jsonable_encoder(attendance.analytics(time_range)),
            headers=_attachment(f"attendance-errors-{stamp}.json"),
        )

    @router.post("/cleanup", dependencies=[AdminOnly])
    async def run_cleanup() -> dict[str, Any]:
        removed = attendance.cleanup()
        return success({"removed": removed}, "Attendance monitoring cleanup completed")

    return router


def create_performance_router(
    performance: PerformanceTracker,
    cache: TieredCache,
    optimizer: QueryOptimizer,
) -> APIRouter:
    """Create a router exposing performance, cache and query statistics.

    Args:
        performance: The performance tracker.
        cache: The tiered cache whose statistics are reported.
        optimizer: The query optimizer producing the optimisation report.

    Returns:
        APIRouter to be mounted under ``/monitoring/performance``.
    """
    router = APIRouter(tags=["performance"], dependencies=[AdminOnly])

    @router.get("/summary")
    async def get_summary(time_range: PerformanceRange = HOUR_MS) -> dict[str, Any]:
        return success(performance.get_performance_summary(time_range))

    @router.get("/api")
    async def get_api_metrics(time_range: PerformanceRange = HOUR_MS) -> dict[str, Any]:
        return success(performance.api_metrics(time_range))

    @router.get("/database")
    async def get_database_metrics() -> dict[str, Any]:
        return success(performance.database_metrics())

    @router.get("/system")
    async def get_system_metrics() -> dict[str, Any]:
        data = performance.system_metrics()
        data["health_status"] = performance.health_status()
        return success(data)

    @router.get("/alerts")
    async def get_alerts(time_range: PerformanceRange = HOUR_MS) -> dict[str, Any]:
        return success(performance.performance_alerts(time_range))

    @router.get("/advanced")
    async def get_advanced(
        time_range: PerformanceRange = HOUR_MS,
        endpoint: str | None = None,
    ) -> dict[str, Any]:
        """Summary plus full aggregates, optionally for one endpoint."""
        data: dict[str, Any] = {
            "summary": performance.get_performance_summary(time_range),
            "thresholds": performance.thresholds.to_dict(),
            "health_status": performance.health_status(),
        }
        if endpoint is not None:
            metrics = performance.get_endpoint_metrics(endpoint)
            if metrics is None:
                raise NotFoundError(f"Endpoint metrics for {endpoint}")
            data["endpoint"] = metrics
        return success(data)

    @router.get("/cache")
    async def get_cache_stats() -> dict[str, Any]:
        return success(cache.get_stats())

    @router.get("/optimization")
    async def get_optimization() -> dict[str, Any]:
        return success(optimizer.report())

    @router.get("/thresholds")
    async def get_thresholds() -> dict[str, Any]:
        return success(performance.thresholds.to_dict())

    @router.put("/thresholds")
    async def update_thresholds(update: PerformanceThresholdsUpdate) -> dict[str, Any]:
        partial = {
            name: band.model_dump(exclude_none=True)
            for name, band in update
            if band is not None
        }
        thresholds = performance.update_thresholds(partial)
        return success(thresholds.to_dict(), "Performance thresholds updated")

    return router
