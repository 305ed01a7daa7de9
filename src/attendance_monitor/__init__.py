"""In-process error, performance and cache monitoring for the attendance service."""

from attendance_monitor.app import MonitoringServices, create_app
from attendance_monitor.config import MonitoringSettings
from attendance_monitor.core.attendance_tracker import AttendanceErrorTracker
from attendance_monitor.core.error_tracker import ErrorTracker
from attendance_monitor.core.performance_tracker import PerformanceTracker
from attendance_monitor.core.query_optimizer import QueryOptimizer

__all__ = [
    "AttendanceErrorTracker",
    "ErrorTracker",
    "MonitoringServices",
    "MonitoringSettings",
    "PerformanceTracker",
    "QueryOptimizer",
    "create_app",
]
