"""In-process cache tier with per-key TTL."""

import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Translate a cache glob into a regex for ``fullmatch``.

    Only ``*`` is a wildcard on every tier; ``?`` and ``[`` match literally.
    """
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")))


@dataclass(frozen=True)
class CacheEntry:
    """A stored value and its expiry bookkeeping.

    Attributes:
        value: The cached value.
        ttl_seconds: Lifetime of the entry.
        inserted_at: Clock reading when the entry was written.
    """

    value: Any
    ttl_seconds: float
    inserted_at: float

    def expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl_seconds


class InProcessCache:
    """Dictionary-backed cache tier.

    Expired entries are treated as absent on read and physically removed
    either lazily or by ``prune``.

    Args:
        default_ttl_seconds: TTL used when ``set`` is given none.
        clock: Monotonic time source in seconds.
    """

    name = "memory"

    def __init__(
        self,
        default_ttl_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._default_ttl = default_ttl_seconds
        self._clock = clock

    def _live(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    async def get(self, key: str) -> Any | None:
        entry = self._live(key)
        return entry.value if entry is not None else None

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        self._entries[key] = CacheEntry(value, ttl, self._clock())

    async def delete(self, key: str) -> int:
        entry = self._entries.pop(key, None)
        return 1 if entry is not None and not entry.expired(self._clock()) else 0

    async def delete_pattern(self, pattern: str) -> list[str]:
        """Remove live keys matching ``pattern``; expired matches are dropped silently."""
        regex = compile_pattern(pattern)
        now = self._clock()
        matched: list[str] = []
        for key in [k for k in self._entries if regex.fullmatch(k)]:
            if not self._entries.pop(key).expired(now):
                matched.append(key)
        return matched

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[str]:
        """Keys currently held, including any not yet pruned."""
        return list(self._entries)

    def prune(self) -> int:
        """Physically remove expired entries. Returns the number removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
