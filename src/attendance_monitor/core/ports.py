"""Port interfaces for monitoring adapters.

These protocols define the contracts adapters must implement. The
trackers and the tiered cache depend only on these interfaces.
"""

from typing import Any, Protocol, runtime_checkable

from attendance_monitor.core.models import Alert, SystemSnapshot


@runtime_checkable
class CacheTierPort(Protocol):
    """Port for one cache tier.

    Examples: InProcessCache, RedisCache, SQLiteCache.
    """

    name: str

    async def get(self, key: str) -> Any | None:
        """Return the stored value, or None if absent or expired."""
        ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""
        ...

    async def delete(self, key: str) -> int:
        """Delete one key. Returns the number of keys removed (0 or 1)."""
        ...

    async def delete_pattern(self, pattern: str) -> list[str]:
        """Delete every key matching the glob ``pattern``.

        Returns:
            The keys that were removed.
        """
        ...

    async def exists(self, key: str) -> bool:
        """Return True if ``key`` holds an unexpired value."""
        ...

    async def clear(self) -> None:
        """Remove every key from the tier."""
        ...


@runtime_checkable
class ExternalCachePort(CacheTierPort, Protocol):
    """A cache tier living outside the process, with a connection lifecycle."""

    async def connect(self) -> None:
        """Open the connection, raising if the backend is unreachable."""
        ...

    async def close(self) -> None:
        """Release the connection."""
        ...


@runtime_checkable
class AlertNotifierPort(Protocol):
    """Port for delivering alerts to administrators."""

    def notify(self, alert: Alert) -> None:
        """Deliver an alert. May raise; callers log and drop failures."""
        ...


@runtime_checkable
class SystemProbePort(Protocol):
    """Port for reading current process resource usage."""

    def sample(self) -> SystemSnapshot:
        """Return a snapshot of memory and CPU usage."""
        ...
