"""Standard library logging setup for the monitoring services.

Records are rendered as one JSON object per line, with any ``extra``
attributes passed to the logging call promoted to top-level fields.
"""

import json
import logging
import traceback
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from attendance_monitor.config import MonitoringSettings

PACKAGE_LOGGER = "attendance_monitor"
SECURITY_LOGGER = "attendance_monitor.security"
PERFORMANCE_LOGGER = "attendance_monitor.performance"
ATTENDANCE_LOGGER = "attendance_monitor.attendance"

# Standard LogRecord attributes that should not be treated as extra fields
_STANDARD_LOGRECORD_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)


class StructuredFormatter(logging.Formatter):
    """Formats log records as JSON lines.

    Args:
        service: Value of the ``service`` field on every line.
    """

    def __init__(self, service: str = "attendance-monitor") -> None:
        super().__init__()
        self._service = service

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self._service,
        }

        # Add any extra attributes passed via logging call
        for key, value in record.__dict__.items():
            if key not in _STANDARD_LOGRECORD_ATTRS and not key.startswith("_"):
                payload[key] = value

        if record.exc_info:
            exc_type, exc_value, exc_tb = record.exc_info
            if exc_type is not None:
                payload["exc_type"] = exc_type.__name__
            if exc_value is not None:
                payload["exc_message"] = str(exc_value)
            if exc_tb is not None:
                payload["exc_traceback"] = "".join(
                    traceback.format_exception(exc_type, exc_value, exc_tb)
                )
        return json.dumps(payload, default=str)


def configure_logging(settings: "MonitoringSettings") -> logging.Logger:
    """Install handlers on the package logger.

    Console output always; ``error.log`` and ``combined.log`` file
    handlers when ``settings.log_dir`` is set. Calling this again
    replaces the handlers installed previously.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(settings.log_level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter: logging.Formatter = (
        StructuredFormatter()
        if settings.log_json
        else logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
    )
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    if settings.log_dir is not None:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        error_file = logging.FileHandler(settings.log_dir / "error.log")
        error_file.setLevel(logging.ERROR)
        error_file.setFormatter(StructuredFormatter())
        logger.addHandler(error_file)
        combined = logging.FileHandler(settings.log_dir / "combined.log")
        combined.setFormatter(StructuredFormatter())
        logger.addHandler(combined)

    logger.propagate = False
    return logger
