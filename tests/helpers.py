"""Test doubles shared by unit, integration and feature tests."""

from dataclasses import dataclass

from attendance_monitor.core.models import Alert, SystemSnapshot

START_TIME = 1_700_000_000.0
MB = 1024 * 1024


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = START_TIME) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class StaticProbe:
    """SystemProbePort returning a fixed resident memory size."""

    rss_mb: float = 100.0
    clock: FakeClock | None = None

    def sample(self) -> SystemSnapshot:
        return SystemSnapshot(
            timestamp=self.clock() if self.clock is not None else START_TIME,
            rss_bytes=int(self.rss_mb * MB),
            vms_bytes=int(self.rss_mb * 2 * MB),
            cpu_user=1.5,
            cpu_system=0.5,
        )


class RecordingNotifier:
    """AlertNotifierPort collecting delivered alerts."""

    def __init__(self) -> None:
        self.alerts: list[Alert] = []

    def notify(self, alert: Alert) -> None:
        self.alerts.append(alert)


class FailingNotifier:
    """AlertNotifierPort whose delivery always fails."""

    def notify(self, alert: Alert) -> None:
        raise ConnectionError("mail relay down")
