from __future__ import annotations

import time
from collections import deque
from typing import Callable, Deque, Generic, Iterator, List, TypeVar

T = TypeVar("T")

RATE_WINDOW_SEC = 60.0


class RingBuffer(Generic[T]):
    """Fixed-capacity FIFO; pushing into a full buffer evicts the oldest item."""

    __slots__ = ("_items", "_capacity")

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("RingBuffer capacity must be a positive number")
        self._capacity = int(capacity)
        self._items: Deque[T] = deque(maxlen=self._capacity)

    def push(self, item: T) -> None:
        self._items.append(item)

    def to_list(self) -> List[T]:
        return list(self._items)

    def last(self, count: int) -> List[T]:
        if count <= 0:
            return []
        return list(self._items)[-count:]

    @property
    def capacity(self) -> int:
        return self._capacity

    def is_full(self) -> bool:
        return len(self._items) == self._capacity

    def is_empty(self) -> bool:
        return not self._items

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))


class RollingCounter:
    """Occurrences within a trailing window, backed by a timestamp ring."""

    def __init__(
        self,
        capacity: int = 1000,
        window: float = RATE_WINDOW_SEC,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._stamps: RingBuffer[float] = RingBuffer(capacity)
        self.window = window
        self._clock = clock

    def add(self, ts: float | None = None) -> int:
        stamp = self._clock() if ts is None else ts
        self._stamps.push(stamp)
        return self.count(stamp)

    def count(self, now: float | None = None) -> int:
        current = self._clock() if now is None else now
        cutoff = current - self.window
        return sum(1 for stamp in self._stamps if stamp > cutoff)


__all__ = ["RATE_WINDOW_SEC", "RingBuffer", "RollingCounter"]
