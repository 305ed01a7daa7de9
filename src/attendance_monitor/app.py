"""Composition root: builds the monitoring services and the FastAPI app.

Each tracker is constructed exactly once here and handed by reference
to the middleware, routers and periodic jobs that use it.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from fastapi import FastAPI

from attendance_monitor.adapters.cache.in_process import InProcessCache
from attendance_monitor.adapters.cache.redis import RedisCache
from attendance_monitor.adapters.cache.sqlite import SQLiteCache
from attendance_monitor.adapters.cache.tiered import TieredCache
from attendance_monitor.adapters.frameworks.asgi import MonitoringMiddleware
from attendance_monitor.adapters.frameworks.fastapi import (
    create_attendance_monitoring_router,
    create_error_monitoring_router,
    create_performance_router,
    register_error_handlers,
)
from attendance_monitor.adapters.logging import configure_logging
from attendance_monitor.adapters.notify import LoggingAlertNotifier
from attendance_monitor.adapters.runtime import MonitoringRuntime, PeriodicJob
from attendance_monitor.adapters.system import PsutilSystemProbe
from attendance_monitor.config import MonitoringSettings
from attendance_monitor.core.attendance_tracker import AttendanceErrorTracker
from attendance_monitor.core.error_tracker import ErrorTracker
from attendance_monitor.core.performance_tracker import PerformanceTracker
from attendance_monitor.core.ports import ExternalCachePort, SystemProbePort
from attendance_monitor.core.query_optimizer import QueryOptimizer

logger = logging.getLogger(__name__)


def _external_cache(settings: MonitoringSettings) -> ExternalCachePort | None:
    if settings.cache_backend == "redis":
        return RedisCache(settings.redis_url, settings.cache_connect_timeout_seconds)
    if settings.cache_backend == "sqlite":
        return SQLiteCache(settings.sqlite_cache_path)
    return None


@dataclass
class MonitoringServices:
    """The per-process monitoring service objects."""

    settings: MonitoringSettings
    errors: ErrorTracker
    attendance: AttendanceErrorTracker
    performance: PerformanceTracker
    optimizer: QueryOptimizer
    cache: TieredCache
    runtime: MonitoringRuntime = field(default_factory=MonitoringRuntime)

    @classmethod
    def build(
        cls,
        settings: MonitoringSettings | None = None,
        probe: SystemProbePort | None = None,
    ) -> "MonitoringServices":
        """Construct every service from settings.

        Args:
            settings: Configuration; read from the environment when omitted.
            probe: System probe for the sampler; psutil based by default.
        """
        settings = settings or MonitoringSettings()
        notifier = LoggingAlertNotifier(settings.alert_recipients)
        cache = TieredCache(
            memory=InProcessCache(settings.default_cache_ttl_seconds),
            external=_external_cache(settings),
            default_ttl_seconds=settings.default_cache_ttl_seconds,
            connect_timeout_seconds=settings.cache_connect_timeout_seconds,
        )
        services = cls(
            settings=settings,
            errors=ErrorTracker(
                notifier,
                capacity=settings.error_log_capacity,
                alert_capacity=settings.alert_history_capacity,
            ),
            attendance=AttendanceErrorTracker(
                notifier,
                capacity=settings.attendance_log_capacity,
                alert_capacity=settings.alert_history_capacity,
            ),
            performance=PerformanceTracker(
                probe=probe if probe is not None else PsutilSystemProbe(),
                cache=cache.memory,
                alert_capacity=settings.alert_history_capacity,
            ),
            optimizer=QueryOptimizer(),
            cache=cache,
        )
        services._schedule_jobs()
        return services

    def _schedule_jobs(self) -> None:
        settings = self.settings
        for job in (
            PeriodicJob("error-cleanup", settings.error_cleanup_interval_seconds, self.errors.cleanup),
            PeriodicJob(
                "attendance-cleanup",
                settings.error_cleanup_interval_seconds,
                self.attendance.cleanup,
            ),
            PeriodicJob(
                "performance-cleanup",
                settings.performance_cleanup_interval_seconds,
                self.performance.cleanup,
            ),
            PeriodicJob(
                "query-cleanup",
                settings.performance_cleanup_interval_seconds,
                self.optimizer.cleanup,
            ),
            PeriodicJob(
                "system-sample",
                settings.system_sample_interval_seconds,
                self.performance.sample_system,
            ),
            PeriodicJob("cache-prune", settings.cache_prune_interval_seconds, self.cache.prune),
        ):
            self.runtime.add_job(job)

    async def start(self) -> None:
        await self.cache.connect()
        await self.runtime.start()

    async def stop(self) -> None:
        await self.runtime.stop()
        await self.cache.close()


def create_app(
    settings: MonitoringSettings | None = None,
    services: MonitoringServices | None = None,
) -> FastAPI:
    """Create the FastAPI application exposing the monitoring endpoints.

    Args:
        settings: Configuration; read from the environment when omitted.
        services: Pre-built services, e.g. with test clocks or probes.

    Returns:
        Configured FastAPI application. The services are available as
        ``app.state.monitoring``.
    """
    if services is None:
        services = MonitoringServices.build(settings)
    configure_logging(services.settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
        """Connect the cache and start periodic jobs."""
        await services.start()
        yield
        await services.stop()

    app = FastAPI(title="Attendance Monitoring", lifespan=lifespan)
    app.state.monitoring = services
    register_error_handlers(app, services)
    app.include_router(create_error_monitoring_router(services.errors), prefix="/monitoring")
    app.include_router(
        create_attendance_monitoring_router(services.attendance),
        prefix="/monitoring/attendance",
    )
    app.include_router(
        create_performance_router(services.performance, services.cache, services.optimizer),
        prefix="/monitoring/performance",
    )
    app.add_middleware(
        MonitoringMiddleware,
        performance=services.performance,
        errors=services.errors,
        attendance=services.attendance,
        attendance_prefix=services.settings.attendance_path_prefix,
    )
    return app
