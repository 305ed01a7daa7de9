"""Cache tiers implementing CacheTierPort."""

from attendance_monitor.adapters.cache.in_process import InProcessCache
from attendance_monitor.adapters.cache.keys import (
    CacheKeys,
    CacheRequest,
    CacheTTL,
    invalidate_class_caches,
    invalidate_student_caches,
    invalidate_teacher_caches,
)
from attendance_monitor.adapters.cache.redis import RedisCache
from attendance_monitor.adapters.cache.sqlite import SQLiteCache
from attendance_monitor.adapters.cache.tiered import CacheStats, TieredCache

__all__ = [
    "CacheKeys",
    "CacheRequest",
    "CacheStats",
    "CacheTTL",
    "InProcessCache",
    "RedisCache",
    "SQLiteCache",
    "TieredCache",
    "invalidate_class_caches",
    "invalidate_student_caches",
    "invalidate_teacher_caches",
]
