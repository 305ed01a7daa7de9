"""Process resource probe backed by psutil."""

import time
from collections.abc import Callable

import psutil

from attendance_monitor.core.models import SystemSnapshot


class PsutilSystemProbe:
    """SystemProbePort reading the current process via psutil."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._process = psutil.Process()
        self._clock = clock

    def sample(self) -> SystemSnapshot:
        memory = self._process.memory_info()
        cpu = self._process.cpu_times()
        return SystemSnapshot(
            timestamp=self._clock(),
            rss_bytes=memory.rss,
            vms_bytes=memory.vms,
            cpu_user=cpu.user,
            cpu_system=cpu.system,
        )
