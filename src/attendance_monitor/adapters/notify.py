"""Alert delivery stub.

Real delivery (email, chat) is outside this service; alerts are logged
on the security channel with their intended recipients.
"""

import logging

from attendance_monitor.core.models import Alert

security_logger = logging.getLogger("attendance_monitor.security")


class LoggingAlertNotifier:
    """AlertNotifierPort implementation that only logs.

    Args:
        recipients: Addresses the alert would be delivered to.
    """

    def __init__(self, recipients: list[str] | None = None) -> None:
        self.recipients = list(recipients or ["admin@school.edu"])

    def notify(self, alert: Alert) -> None:
        security_logger.warning(
            "Administrator notification: %s",
            alert.type,
            extra={
                "alert_id": alert.id,
                "alert_severity": alert.severity.value,
                "alert_category": alert.category,
                "recipients": ",".join(self.recipients),
            },
        )
