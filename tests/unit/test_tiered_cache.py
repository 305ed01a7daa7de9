"""Tests for the two-tier cache."""

import asyncio
import logging
from typing import Any

import pytest
from hypothesis import given
from hypothesis import strategies as st
from tests.helpers import FakeClock

from attendance_monitor.adapters.cache.in_process import InProcessCache
from attendance_monitor.adapters.cache.tiered import CacheStats, TieredCache
from attendance_monitor.core.ports import ExternalCachePort


class FakeExternalCache(InProcessCache):
    """External tier double backed by a dict."""

    name = "fake"

    def __init__(self, clock: FakeClock | None = None) -> None:
        super().__init__(clock=clock or FakeClock())
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False


class BrokenExternalCache(FakeExternalCache):
    """External tier whose every call fails after connecting."""

    async def get(self, key: str) -> Any | None:
        raise ConnectionError("connection reset")

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        raise ConnectionError("connection reset")

    async def delete(self, key: str) -> int:
        raise ConnectionError("connection reset")

    async def delete_pattern(self, pattern: str) -> list[str]:
        raise ConnectionError("connection reset")


class UnreachableExternalCache(FakeExternalCache):
    async def connect(self) -> None:
        raise ConnectionRefusedError("redis://localhost:6379")


class HangingExternalCache(FakeExternalCache):
    async def connect(self) -> None:
        await asyncio.sleep(60)


@pytest.fixture
def memory(clock: FakeClock) -> InProcessCache:
    return InProcessCache(clock=clock)


@pytest.fixture
async def connected(memory: InProcessCache) -> tuple[TieredCache, FakeExternalCache]:
    external = FakeExternalCache()
    cache = TieredCache(memory=memory, external=external)
    assert await cache.connect() is True
    return cache, external


class TestCacheStats:
    """Tests for CacheStats.hit_rate."""

    @pytest.mark.cache
    def test_hit_rate_is_zero_without_lookups(self) -> None:
        assert CacheStats().hit_rate == 0.0

    @pytest.mark.cache
    @given(
        keys=st.lists(st.sampled_from(["a", "b", "c", "d"]), max_size=30),
        lookups=st.lists(st.sampled_from(["a", "b", "c", "d", "e"]), max_size=60),
    )
    def test_hit_rate_matches_counters(self, keys: list[str], lookups: list[str]) -> None:
        """hit_rate == hits / (hits + misses) after any sequence of gets."""

        async def scenario() -> TieredCache:
            cache = TieredCache()
            for key in keys:
                await cache.set(key, key, 60)
            for key in lookups:
                await cache.get(key)
            return cache

        cache = asyncio.run(scenario())

        stats = cache.stats
        assert stats.hits == sum(1 for key in lookups if key in set(keys))
        assert stats.hits + stats.misses == len(lookups)
        expected = stats.hits / len(lookups) if lookups else 0.0
        assert cache.get_stats()["hit_rate"] == pytest.approx(expected)


class TestInProcessOnly:
    """Tests for a TieredCache without an external tier."""

    @pytest.mark.cache
    async def test_get_set_roundtrip_and_stats(self) -> None:
        cache = TieredCache()

        assert await cache.set("k", {"a": 1}) is True
        assert await cache.get("k") == {"a": 1}
        assert await cache.get("missing") is None

        stats = cache.get_stats()
        assert (stats["hits"], stats["misses"], stats["sets"]) == (1, 1, 1)
        assert stats["external"] == {"backend": None, "connected": False}

    @pytest.mark.cache
    async def test_connect_without_external_tier(self) -> None:
        assert await TieredCache().connect() is False

    @pytest.mark.cache
    async def test_empty_memory_tier_is_used(self, memory: InProcessCache) -> None:
        cache = TieredCache(memory=memory)

        await cache.set("k", 1)

        assert memory.keys() == ["k"]

    @pytest.mark.cache
    async def test_ttl_expiry(self, memory: InProcessCache, clock: FakeClock) -> None:
        cache = TieredCache(memory=memory)
        await cache.set("k", {"a": 1}, 1)
        assert await cache.get("k") == {"a": 1}

        clock.advance(1.1)

        assert await cache.get("k") is None

    @pytest.mark.cache
    async def test_delete_pattern_without_match_changes_nothing(
        self, memory: InProcessCache
    ) -> None:
        cache = TieredCache(memory=memory)
        await cache.set("class:1:students", ["s1"])

        assert await cache.delete_pattern("student:*") == 0
        assert memory.keys() == ["class:1:students"]
        assert cache.stats.deletes == 0

    @pytest.mark.cache
    async def test_delete_pattern_ignores_expired_keys(
        self, memory: InProcessCache, clock: FakeClock
    ) -> None:
        cache = TieredCache(memory=memory)
        await cache.set("attendance:c1", [], ttl_seconds=10)
        clock.advance(11)

        assert await cache.delete_pattern("attendance:*") == 0
        assert cache.stats.deletes == 0

    @pytest.mark.cache
    async def test_delete_pattern_counts_matches(self) -> None:
        cache = TieredCache()
        for key in ("student:1:summary", "student:2:summary", "class:1:students"):
            await cache.set(key, 1)

        assert await cache.delete_pattern("student:*") == 2
        assert await cache.exists("class:1:students")

    @pytest.mark.cache
    async def test_prune(self, memory: InProcessCache, clock: FakeClock) -> None:
        cache = TieredCache(memory=memory)
        await cache.set("k", 1, 1)
        clock.advance(5)

        assert cache.prune() == 1
        assert cache.get_stats()["memory_keys"] == 0


class TestWithExternalTier:
    """Tests for the external-first read order and failure absorption."""

    @pytest.mark.cache
    def test_fake_satisfies_external_port(self) -> None:
        assert isinstance(FakeExternalCache(), ExternalCachePort)

    @pytest.mark.cache
    async def test_set_writes_both_tiers(
        self, connected: tuple[TieredCache, FakeExternalCache], memory: InProcessCache
    ) -> None:
        cache, external = connected

        await cache.set("k", "v", 30)

        assert await external.get("k") == "v"
        assert await memory.get("k") == "v"

    @pytest.mark.cache
    async def test_external_tier_answers_first(
        self, connected: tuple[TieredCache, FakeExternalCache], memory: InProcessCache
    ) -> None:
        cache, external = connected
        await memory.set("k", "memory", 30)
        await external.set("k", "external", 30)

        assert await cache.get("k") == "external"

    @pytest.mark.cache
    async def test_falls_back_to_memory(
        self, connected: tuple[TieredCache, FakeExternalCache], memory: InProcessCache
    ) -> None:
        cache, _ = connected
        await memory.set("k", "memory", 30)

        assert await cache.get("k") == "memory"
        assert cache.stats.hits == 1

    @pytest.mark.cache
    async def test_delete_pattern_counts_distinct_keys(
        self, connected: tuple[TieredCache, FakeExternalCache], memory: InProcessCache
    ) -> None:
        cache, external = connected
        await cache.set("student:1:summary", 1)
        await external.set("student:2:summary", 2, 30)

        assert await cache.delete_pattern("student:*") == 2
        assert external.keys() == []

    @pytest.mark.cache
    async def test_delete_reports_single_key(
        self, connected: tuple[TieredCache, FakeExternalCache]
    ) -> None:
        cache, _ = connected
        await cache.set("k", 1)

        assert await cache.delete("k") == 1
        assert await cache.delete("k") == 0

    @pytest.mark.cache
    async def test_close_disconnects(
        self, connected: tuple[TieredCache, FakeExternalCache]
    ) -> None:
        cache, external = connected

        await cache.close()

        assert external.connected is False
        assert cache.external_available is False


class TestExternalFailures:
    """External tier failures degrade to the in-process tier."""

    @pytest.mark.cache
    async def test_broken_tier_is_absorbed(
        self, memory: InProcessCache, caplog: pytest.LogCaptureFixture
    ) -> None:
        cache = TieredCache(memory=memory, external=BrokenExternalCache())
        await cache.connect()

        with caplog.at_level(logging.WARNING):
            assert await cache.set("student:1:summary", {"rate": 90}) is True
            assert await cache.get("student:1:summary") == {"rate": 90}
            assert await cache.delete_pattern("student:*") == 1

        assert cache.stats.errors == 3
        assert "External cache get failed" in caplog.text

    @pytest.mark.cache
    async def test_unreachable_tier_runs_in_process_only(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        cache = TieredCache(external=UnreachableExternalCache())

        with caplog.at_level(logging.WARNING):
            assert await cache.connect() is False

        assert "External cache unavailable" in caplog.text
        await cache.set("k", 1)
        assert await cache.get("k") == 1
        assert cache.stats.errors == 0
        assert cache.get_stats()["external"] == {"backend": "fake", "connected": False}

    @pytest.mark.cache
    async def test_connect_is_bounded_by_timeout(self) -> None:
        cache = TieredCache(external=HangingExternalCache(), connect_timeout_seconds=0.05)

        assert await cache.connect() is False
        assert cache.external_available is False
