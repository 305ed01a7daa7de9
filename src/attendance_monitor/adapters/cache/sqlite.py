"""SQLite cache tier.

A file-backed alternative to Redis for single-host deployments. Expiry
is stored as an absolute Unix time; expired rows are ignored on read and
removed by ``prune``. Pattern deletion uses SQL ``GLOB``.
"""

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import aiosqlite

logger = logging.getLogger(__name__)


def to_glob(pattern: str) -> str:
    """Bracket ``?`` and ``[`` so GLOB treats only ``*`` as a wildcard."""
    return "".join(f"[{char}]" if char in "?[" else char for char in pattern)


SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    expires_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_cache_expires_at ON cache_entries(expires_at);
"""


class AsyncConnectionManager:
    """Manages aiosqlite connections and one-time schema setup.

    For :memory: databases a single persistent connection is kept, since
    SQLite in-memory databases are connection-scoped.
    """

    def __init__(self, db_path: str, schema: str) -> None:
        self._db_path = db_path
        self._schema = schema
        self._initialized = False
        self._init_lock: asyncio.Lock | None = None
        self._persistent_conn: aiosqlite.Connection | None = None

    def _get_lock(self) -> asyncio.Lock:
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        return self._init_lock

    async def initialize(self) -> None:
        """Create the schema once."""
        if self._initialized:
            return
        async with self._get_lock():
            if self._initialized:
                return
            if self._db_path == ":memory:":
                self._persistent_conn = await aiosqlite.connect(":memory:")
                await self._persistent_conn.executescript(self._schema)
            else:
                async with aiosqlite.connect(self._db_path) as db:
                    await db.execute("PRAGMA journal_mode=WAL")
                    await db.executescript(self._schema)
            self._initialized = True

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield a connection, closing it afterwards for file databases."""
        await self.initialize()
        if self._persistent_conn is not None:
            yield self._persistent_conn
            return
        db = await aiosqlite.connect(self._db_path)
        try:
            yield db
        finally:
            await db.close()

    async def close(self) -> None:
        if self._persistent_conn is not None:
            await self._persistent_conn.close()
            self._persistent_conn = None
        self._initialized = False


class SQLiteCache:
    """External cache tier backed by an SQLite file.

    Args:
        db_path: Database file path, or ``:memory:``.
        clock: Returns the current Unix time in seconds.
    """

    name = "sqlite"

    def __init__(self, db_path: str, clock: Callable[[], float] = time.time) -> None:
        self._manager = AsyncConnectionManager(db_path, SCHEMA)
        self._clock = clock

    async def connect(self) -> None:
        await self._manager.initialize()

    async def close(self) -> None:
        await self._manager.close()

    async def get(self, key: str) -> Any | None:
        async with self._manager.connection() as db:
            async with db.execute(
                "SELECT value FROM cache_entries WHERE key = ? AND expires_at > ?",
                (key, self._clock()),
            ) as cursor:
                row = await cursor.fetchone()
        return json.loads(row[0]) if row else None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        async with self._manager.connection() as db:
            await db.execute(
                "INSERT OR REPLACE INTO cache_entries (key, value, expires_at) "
                "VALUES (?, ?, ?)",
                (key, json.dumps(value, default=str), self._clock() + ttl_seconds),
            )
            await db.commit()

    async def delete(self, key: str) -> int:
        async with self._manager.connection() as db:
            cursor = await db.execute(
                "DELETE FROM cache_entries WHERE key = ? AND expires_at > ?",
                (key, self._clock()),
            )
            await db.commit()
            return cursor.rowcount

    async def delete_pattern(self, pattern: str) -> list[str]:
        async with self._manager.connection() as db:
            async with db.execute(
                "SELECT key FROM cache_entries WHERE key GLOB ? AND expires_at > ?",
                (to_glob(pattern), self._clock()),
            ) as cursor:
                keys = [row[0] async for row in cursor]
            if keys:
                await db.executemany(
                    "DELETE FROM cache_entries WHERE key = ?", [(k,) for k in keys]
                )
                await db.commit()
        return keys

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def clear(self) -> None:
        async with self._manager.connection() as db:
            await db.execute("DELETE FROM cache_entries")
            await db.commit()

    async def prune(self) -> int:
        """Delete expired rows. Returns the number removed."""
        async with self._manager.connection() as db:
            cursor = await db.execute(
                "DELETE FROM cache_entries WHERE expires_at <= ?", (self._clock(),)
            )
            await db.commit()
            removed = cursor.rowcount
        if removed:
            logger.debug("Pruned expired cache rows", extra={"removed": removed})
        return removed
