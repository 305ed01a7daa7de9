"""Bounded, newest-first event log used by every tracker.

Each tracker keeps its recent events in one of these instead of an
unbounded list. When the log is full the oldest event is dropped.
"""

from collections import deque
from collections.abc import Callable, Iterator
from typing import Generic, TypeVar

T = TypeVar("T")


class BoundedEventLog(Generic[T]):
    """Fixed-capacity event log ordered newest first.

    Args:
        capacity: Maximum number of events kept. Must be positive.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._events: deque[T] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        """Maximum number of events the log holds."""
        return self._events.maxlen or 0

    def push(self, event: T) -> None:
        """Prepend an event, silently dropping the oldest when full."""
        self._events.appendleft(event)

    def all(self) -> list[T]:
        """Return every event, newest first."""
        return list(self._events)

    def filter(self, predicate: Callable[[T], bool]) -> list[T]:
        """Return matching events, newest first, without mutating the log."""
        return [event for event in self._events if predicate(event)]

    def head(self, n: int) -> list[T]:
        """Return the ``n`` newest events."""
        return [event for _, event in zip(range(n), self._events)]

    def retain(self, predicate: Callable[[T], bool]) -> int:
        """Keep only events matching ``predicate``.

        Returns:
            Number of events removed.
        """
        kept = [event for event in self._events if predicate(event)]
        removed = len(self._events) - len(kept)
        if removed:
            self._events.clear()
            self._events.extend(kept)
        return removed

    def clear(self) -> None:
        """Drop every event."""
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[T]:
        return iter(self._events)

    def __bool__(self) -> bool:
        return bool(self._events)
