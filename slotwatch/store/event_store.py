from __future__ import annotations

import math
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional

from ..schemas import PoolCreatedEvent, PoolReservesEvent, SwapQuoteEvent
from .ring_buffer import RingBuffer, RollingCounter
from .sampler import Aggregation, DataSampler, SamplePoint


@dataclass(slots=True, frozen=True)
class PriceUpdate:
    pair_key: str
    pair_label: str
    price: float
    dex: str = ""
    slot: Optional[int] = None


@dataclass(slots=True, frozen=True)
class PriceData:
    pair_key: str
    pair_label: str
    price: float
    dex: str = ""
    slot: Optional[int] = None
    change_pct: Optional[float] = None
    updated_at: float = 0.0


@dataclass(slots=True, frozen=True)
class PricePoint:
    price: float
    timestamp: float


@dataclass(slots=True)
class DashboardStats:
    total_swaps: int = 0
    total_swap_alerts: int = 0
    total_notional_usd: float = 0.0
    swaps_per_minute: int = 0
    alerts_per_minute: int = 0
    largest_swap_usd: Optional[float] = None


class BoundedEventStore:
    """In-memory aggregation of the live event flow.

    Every collection is capacity bounded: rings evict oldest-first and the
    keyed maps hold one latest entry per pair or pool.
    """

    def __init__(
        self,
        *,
        price_history_length: int = 300,
        swap_history_length: int = 1000,
        pool_history_length: int = 100,
        rate_window_capacity: int = 1000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._clock = clock
        self._price_history_length = price_history_length
        self._prices: Dict[str, PriceData] = {}
        self._price_history: Dict[str, RingBuffer[PricePoint]] = {}
        self._swaps: RingBuffer[SwapQuoteEvent] = RingBuffer(swap_history_length)
        self._alerts: RingBuffer[SwapQuoteEvent] = RingBuffer(swap_history_length)
        self._pools: RingBuffer[PoolCreatedEvent] = RingBuffer(pool_history_length)
        self._reserves: Dict[str, PoolReservesEvent] = {}
        self._swap_rate = RollingCounter(rate_window_capacity, clock=clock)
        self._alert_rate = RollingCounter(rate_window_capacity, clock=clock)
        self._stats = DashboardStats()

    # -----------------------------------------------------------------
    # Prices
    # -----------------------------------------------------------------

    def update_price(self, update: PriceUpdate) -> PriceData:
        now = self._clock()
        previous = self._prices.get(update.pair_key)
        change_pct: Optional[float] = None
        if previous is not None and previous.price > 0:
            change_pct = (update.price - previous.price) / previous.price * 100
        data = PriceData(
            pair_key=update.pair_key,
            pair_label=update.pair_label,
            price=update.price,
            dex=update.dex,
            slot=update.slot,
            change_pct=change_pct,
            updated_at=now,
        )
        self._prices[update.pair_key] = data

        history = self._price_history.get(update.pair_key)
        if history is None:
            history = self._price_history[update.pair_key] = RingBuffer(self._price_history_length)
        history.push(PricePoint(price=update.price, timestamp=now))
        return data

    def get_price(self, pair_key: str) -> Optional[PriceData]:
        return self._prices.get(pair_key)

    def get_price_history(self, pair_key: str) -> List[PricePoint]:
        history = self._price_history.get(pair_key)
        return history.to_list() if history is not None else []

    def all_prices(self) -> List[PriceData]:
        return list(self._prices.values())

    def sampled_history(
        self,
        pair_key: str,
        max_points: int,
        time_range: float,
        aggregation: Aggregation = "last",
    ) -> List[SamplePoint]:
        sampler = DataSampler(max_points, time_range, aggregation, clock=self._clock)
        for point in self.get_price_history(pair_key):
            sampler.add(point.timestamp, point.price)
        return sampler.sampled()

    # -----------------------------------------------------------------
    # Swaps
    # -----------------------------------------------------------------

    def add_swap_quote(self, swap: SwapQuoteEvent) -> None:
        self._swaps.push(swap)
        self._stats.total_swaps += 1
        notional = swap.notional_usd
        if notional is not None and math.isfinite(notional):
            self._stats.total_notional_usd += notional
            if self._stats.largest_swap_usd is None or notional > self._stats.largest_swap_usd:
                self._stats.largest_swap_usd = notional
        self._stats.swaps_per_minute = self._swap_rate.add()

    def add_swap_alert(self, swap: SwapQuoteEvent) -> None:
        self._alerts.push(swap)
        self._stats.total_swap_alerts += 1
        self._stats.alerts_per_minute = self._alert_rate.add()

    def recent_swaps(self, count: int = 50) -> List[SwapQuoteEvent]:
        return self._swaps.last(count)

    def recent_alerts(self, count: int = 50) -> List[SwapQuoteEvent]:
        return self._alerts.last(count)

    # -----------------------------------------------------------------
    # Pools
    # -----------------------------------------------------------------

    def add_pool(self, pool: PoolCreatedEvent) -> None:
        self._pools.push(pool)

    def recent_pools(self, count: int = 20) -> List[PoolCreatedEvent]:
        return self._pools.last(count)

    def update_reserves(self, reserves: PoolReservesEvent) -> None:
        self._reserves[reserves.pool] = reserves

    def get_reserves(self, pool: str) -> Optional[PoolReservesEvent]:
        return self._reserves.get(pool)

    def all_reserves(self) -> List[PoolReservesEvent]:
        return list(self._reserves.values())

    # -----------------------------------------------------------------
    # Stats
    # -----------------------------------------------------------------

    def stats(self) -> DashboardStats:
        return replace(self._stats)


__all__ = ["BoundedEventStore", "DashboardStats", "PriceData", "PricePoint", "PriceUpdate"]
