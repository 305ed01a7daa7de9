"""Redis cache tier.

Values are stored as JSON strings with a server-side TTL. Pattern
deletion uses ``SCAN MATCH`` so large keyspaces are not blocked.
"""

import asyncio
import json
import logging
import re
from typing import Any

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

_MATCH_SPECIALS = re.compile(r"([\\?\[\]])")


def to_match_pattern(pattern: str) -> str:
    """Escape everything but ``*`` so SCAN MATCH agrees with the other tiers."""
    return _MATCH_SPECIALS.sub(r"\\\1", pattern)


class RedisCache:
    """External cache tier backed by Redis.

    Args:
        url: Redis connection URL, e.g. ``redis://localhost:6379/0``.
        connect_timeout_seconds: Bound on the initial connection attempt.
    """

    name = "redis"

    def __init__(self, url: str, connect_timeout_seconds: float = 5.0) -> None:
        self._url = url
        self._connect_timeout = connect_timeout_seconds
        self._client: aioredis.Redis | None = None

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            raise RuntimeError("RedisCache is not connected")
        return self._client

    async def connect(self) -> None:
        """Open the client and verify the server answers PING."""
        client = aioredis.from_url(
            self._url,
            decode_responses=True,
            socket_connect_timeout=self._connect_timeout,
        )
        try:
            await asyncio.wait_for(client.ping(), timeout=self._connect_timeout)
        except Exception:
            await client.aclose()
            raise
        self._client = client
        logger.info("Connected to Redis cache", extra={"url": self._url})

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get(self, key: str) -> Any | None:
        raw = await self.client.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self.client.setex(key, ttl_seconds, json.dumps(value, default=str))

    async def delete(self, key: str) -> int:
        return int(await self.client.delete(key))

    async def delete_pattern(self, pattern: str) -> list[str]:
        keys = [key async for key in self.client.scan_iter(match=to_match_pattern(pattern))]
        if keys:
            await self.client.delete(*keys)
        return keys

    async def exists(self, key: str) -> bool:
        return bool(await self.client.exists(key))

    async def clear(self) -> None:
        await self.client.flushdb()
