"""Two-tier cache: optional external tier in front of an in-process tier.

The in-process tier is always written and is the source of truth for
availability. The external tier is advisory; any failure there is
logged, counted and never propagated.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from attendance_monitor.adapters.cache.in_process import InProcessCache
from attendance_monitor.core.ports import ExternalCachePort

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheStats:
    """Cumulative cache counters."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        """``hits / (hits + misses)``, or 0 before any lookup."""
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class TieredCache:
    """Cache facade trying the external tier first, then the in-process tier.

    Args:
        memory: The in-process tier.
        external: Optional external tier (Redis, SQLite).
        default_ttl_seconds: TTL used when ``set`` is given none.
        connect_timeout_seconds: Bound on the external connection attempt.
    """

    name = "tiered"

    def __init__(
        self,
        memory: InProcessCache | None = None,
        external: ExternalCachePort | None = None,
        default_ttl_seconds: int = 300,
        connect_timeout_seconds: float = 5.0,
    ) -> None:
        self.memory = (
            memory if memory is not None else InProcessCache(default_ttl_seconds)
        )
        self.external = external
        self.stats = CacheStats()
        self._default_ttl = default_ttl_seconds
        self._connect_timeout = connect_timeout_seconds
        self._external_connected = False

    @property
    def external_available(self) -> bool:
        return self.external is not None and self._external_connected

    async def connect(self) -> bool:
        """Try to connect the external tier once.

        Returns:
            True if the external tier is usable. On failure the cache keeps
            running in-process only until the next ``connect``.
        """
        if self.external is None:
            return False
        try:
            await asyncio.wait_for(self.external.connect(), timeout=self._connect_timeout)
        except Exception:
            self._external_connected = False
            logger.warning(
                "External cache unavailable, using in-process cache only",
                exc_info=True,
                extra={"backend": self.external.name},
            )
            return False
        self._external_connected = True
        return True

    async def close(self) -> None:
        if self.external is not None and self._external_connected:
            self._external_connected = False
            try:
                await self.external.close()
            except Exception:
                logger.warning("Error closing external cache", exc_info=True)

    async def _external_call(
        self, operation: str, call: Callable[[ExternalCachePort], Awaitable[T]]
    ) -> tuple[bool, T | None]:
        """Run ``call`` against the external tier, absorbing failures."""
        if self.external is None or not self._external_connected:
            return False, None
        try:
            return True, await call(self.external)
        except Exception:
            self.stats.errors += 1
            logger.warning("External cache %s failed", operation, exc_info=True)
            return False, None

    async def get(self, key: str) -> Any | None:
        """Return the cached value from the first tier that has it."""
        ok, value = await self._external_call("get", lambda tier: tier.get(key))
        if ok and value is not None:
            self.stats.hits += 1
            return value
        value = await self.memory.get(key)
        if value is not None:
            self.stats.hits += 1
            return value
        self.stats.misses += 1
        return None

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        """Write to both tiers; succeeds if the in-process write succeeds."""
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        await self._external_call("set", lambda tier: tier.set(key, value, ttl))
        await self.memory.set(key, value, ttl)
        self.stats.sets += 1
        return True

    async def delete(self, key: str) -> int:
        """Delete ``key`` from both tiers. Returns 1 if any tier held it."""
        _, external_removed = await self._external_call(
            "delete", lambda tier: tier.delete(key)
        )
        removed = await self.memory.delete(key)
        deleted = 1 if removed or external_removed else 0
        self.stats.deletes += deleted
        return deleted

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching ``pattern`` in both tiers.

        Returns:
            Number of distinct keys removed across tiers.
        """
        _, external_keys = await self._external_call(
            "delete_pattern", lambda tier: tier.delete_pattern(pattern)
        )
        memory_keys = await self.memory.delete_pattern(pattern)
        deleted = len(set(memory_keys) | set(external_keys or []))
        self.stats.deletes += deleted
        if deleted:
            logger.debug(
                "Cache pattern invalidated", extra={"pattern": pattern, "deleted": deleted}
            )
        return deleted

    async def exists(self, key: str) -> bool:
        ok, found = await self._external_call("exists", lambda tier: tier.exists(key))
        if ok and found:
            return True
        return await self.memory.exists(key)

    async def clear(self) -> None:
        await self._external_call("clear", lambda tier: tier.clear())
        await self.memory.clear()

    def prune(self) -> int:
        """Drop expired in-process entries."""
        return self.memory.prune()

    def get_stats(self) -> dict[str, Any]:
        return {
            "hits": self.stats.hits,
            "misses": self.stats.misses,
            "sets": self.stats.sets,
            "deletes": self.stats.deletes,
            "errors": self.stats.errors,
            "hit_rate": self.stats.hit_rate,
            "memory_keys": len(self.memory),
            "external": {
                "backend": self.external.name if self.external is not None else None,
                "connected": self.external_available,
            },
        }
