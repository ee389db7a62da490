from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Literal

Aggregation = Literal["last", "average", "max", "min"]


@dataclass(slots=True, frozen=True)
class SamplePoint:
    timestamp: float
    value: float


class DataSampler:
    """Down-samples a time series into at most `max_points` equal-width buckets.

    Buckets older than `max_points` widths before now are dropped on insert.
    """

    def __init__(
        self,
        max_points: int,
        time_range: float,
        aggregation: Aggregation = "last",
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_points <= 0:
            raise ValueError("max_points must be positive")
        if time_range <= 0:
            raise ValueError("time_range must be positive")
        self.max_points = max_points
        self.aggregation = aggregation
        self.bucket_size = time_range / max_points
        self._buckets: Dict[int, List[float]] = {}
        self._clock = clock

    def add(self, timestamp: float, value: float) -> None:
        key = math.floor(timestamp / self.bucket_size)
        self._buckets.setdefault(key, []).append(value)
        self._cleanup()

    def extend(self, points: Iterable[SamplePoint]) -> None:
        for point in points:
            self.add(point.timestamp, point.value)

    def sampled(self) -> List[SamplePoint]:
        result: List[SamplePoint] = []
        for key in sorted(self._buckets):
            values = self._buckets[key]
            if not values:
                continue
            midpoint = key * self.bucket_size + self.bucket_size / 2
            result.append(SamplePoint(timestamp=midpoint, value=self._aggregate(values)))
        return result

    def _aggregate(self, values: List[float]) -> float:
        if self.aggregation == "average":
            return sum(values) / len(values)
        if self.aggregation == "max":
            return max(values)
        if self.aggregation == "min":
            return min(values)
        return values[-1]

    def _cleanup(self) -> None:
        now = self._clock()
        oldest = math.floor((now - self.bucket_size * self.max_points) / self.bucket_size)
        for key in [k for k in self._buckets if k < oldest]:
            del self._buckets[key]


__all__ = ["Aggregation", "DataSampler", "SamplePoint"]
