"""
Session manager: owns every StreamSession and drains their event queues.

Domain events go to the BoundedEventStore, control and charge events to the
SpendLedger, and lease tokens to the WatchlistCoordinator. Sessions connect
independently; one failing stream never stops the others.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Set

import websockets

from ..amounts import format_decimal_amount
from ..config import MINT_FILTERED_STREAMS, RESERVE_POOL_STREAMS, SWAP_POOL_STREAMS, ClientConfig
from ..errors import SlotwatchError
from ..ledger import SpendLedger
from ..mints import MintRegistry, pair_key
from ..payments.authority import ChargePreview, PaymentAuthority
from ..schemas import (
    ErrorFrame,
    PoolCreatedEvent,
    PoolReservesEvent,
    StatusEvent,
    StreamId,
    SwapQuoteEvent,
    TickerEvent,
)
from ..store import BoundedEventStore, PriceData, PriceUpdate
from ..watchlist import WatchlistCoordinator
from .session import (
    Connected,
    ControlReceived,
    Disconnected,
    DomainReceived,
    LeaseUpdated,
    SchemaCharged,
    SessionError,
    SessionEvent,
    StatusReceived,
    StreamSession,
    WsConnect,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StreamRuntime:
    stream_id: StreamId
    enabled: bool
    connected: bool = False
    last_error: Optional[str] = None
    status: Optional[StatusEvent] = None


@dataclass(slots=True, frozen=True)
class ChargeRow:
    stream: StreamId
    amount: Optional[int]
    asset: Optional[str]
    display: str


@dataclass(slots=True, frozen=True)
class ChargeSummary:
    rows: List[ChargeRow]
    total: str


class SessionManager:
    def __init__(
        self,
        config: ClientConfig,
        authority: PaymentAuthority,
        coordinator: WatchlistCoordinator,
        registry: MintRegistry,
        *,
        store: Optional[BoundedEventStore] = None,
        ledger: Optional[SpendLedger] = None,
        ws_connect: WsConnect = websockets.connect,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.authority = authority
        self.coordinator = coordinator
        self.registry = registry
        self.store = store or BoundedEventStore(
            price_history_length=config.store.price_history_length,
            swap_history_length=config.store.swap_history_length,
            pool_history_length=config.store.pool_history_length,
            rate_window_capacity=config.store.rate_window_capacity,
            clock=clock,
        )
        self.ledger = ledger or SpendLedger()
        self.sessions: Dict[StreamId, StreamSession] = {}
        self._runtime: Dict[StreamId, StreamRuntime] = {}
        self._drain_tasks: Dict[StreamId, asyncio.Task[None]] = {}
        self._pending_task: Optional[asyncio.Task[List[str]]] = None
        self._paused = False
        self._sol_price_usd: Optional[float] = None
        self._pair_filters: Set[str] = set(config.pair_filters)
        self._watch_mints: Set[str] = set()

        swap_pairs: List[str] = []
        reserve_pairs: List[str] = []
        for spec in config.streams:
            self._runtime[spec.stream_id] = StreamRuntime(spec.stream_id, enabled=spec.enabled)
            if not spec.enabled:
                continue
            if spec.stream_id in SWAP_POOL_STREAMS or spec.stream_id in RESERVE_POOL_STREAMS:
                split = coordinator.split_inputs(spec.watch_accounts)
                spec = spec.model_copy(update={"watch_accounts": split.ids})
                target = swap_pairs if spec.stream_id in SWAP_POOL_STREAMS else reserve_pairs
                target.extend(split.pairs)
            if spec.stream_id in MINT_FILTERED_STREAMS:
                self._watch_mints.update(spec.watch_mints)
            self.sessions[spec.stream_id] = StreamSession(spec, authority, config.x402, ws_connect=ws_connect)

        if swap_pairs:
            coordinator.defer_pairs(self._group(SWAP_POOL_STREAMS), swap_pairs)
        if reserve_pairs:
            coordinator.defer_pairs(self._group(RESERVE_POOL_STREAMS), reserve_pairs)

    def _group(self, streams: Iterable[StreamId]) -> List[StreamSession]:
        return [self.sessions[s] for s in sorted(streams, key=lambda s: s.value) if s in self.sessions]

    # -----------------------------------------------------------------
    # Charge previews
    # -----------------------------------------------------------------

    async def preview_charges(self) -> ChargeSummary:
        decimals = self.config.x402.asset_decimals
        sessions = list(self.sessions.values())
        previews = await asyncio.gather(*(self._preview(session) for session in sessions))
        rows: List[ChargeRow] = []
        for session, preview in zip(sessions, previews):
            if preview.amount is not None and preview.asset:
                display = f"{format_decimal_amount(preview.amount, decimals)} {self.registry.format_asset(preview.asset)}"
            else:
                display = "unknown"
            rows.append(ChargeRow(session.stream_id, preview.amount, preview.asset, display))
        return ChargeSummary(rows=rows, total=self._charge_total(rows, decimals))

    async def _preview(self, session: StreamSession) -> ChargePreview:
        try:
            return await self.authority.preview_charge(session.schema_path)
        except SlotwatchError as exc:
            logger.warning("Charge preview for %s failed: %s", session.stream_id.value, exc)
            return ChargePreview()

    def _charge_total(self, rows: List[ChargeRow], decimals: int) -> str:
        total = 0
        asset: Optional[str] = None
        for row in rows:
            if row.amount is None or not row.asset:
                return "unknown"
            if asset is None:
                asset = row.asset
            elif asset != row.asset:
                return "mixed"
            total += row.amount
        if asset is None:
            return "unknown"
        return f"{format_decimal_amount(total, decimals)} {self.registry.format_asset(asset)}"

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    async def start(self) -> Dict[StreamId, SlotwatchError]:
        """Connect every session; returns the streams that failed to connect."""
        for stream_id, session in self.sessions.items():
            if stream_id not in self._drain_tasks:
                self._drain_tasks[stream_id] = asyncio.create_task(self._drain(session))

        results = await asyncio.gather(*(self._connect(session) for session in self.sessions.values()))
        failures = {session.stream_id: exc for session, exc in zip(self.sessions.values(), results) if exc}

        if self.coordinator.has_pending and self._pending_task is None:
            self._pending_task = asyncio.create_task(self.coordinator.resolve_pending())
        return failures

    async def _connect(self, session: StreamSession) -> Optional[SlotwatchError]:
        try:
            await session.connect()
        except SlotwatchError as exc:
            logger.error("Stream %s failed to connect: %s", session.stream_id.value, exc)
            self._runtime[session.stream_id].last_error = str(exc)
            return exc
        return None

    async def stop(self) -> None:
        self.coordinator.close()
        if self._pending_task is not None:
            self._pending_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._pending_task
            self._pending_task = None
        for session in self.sessions.values():
            await session.close()
        for stream_id, task in list(self._drain_tasks.items()):
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            self._flush(self.sessions[stream_id])
        self._drain_tasks.clear()

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    @property
    def paused(self) -> bool:
        return self._paused

    # -----------------------------------------------------------------
    # Event routing
    # -----------------------------------------------------------------

    async def _drain(self, session: StreamSession) -> None:
        while True:
            event = await session.events.get()
            self.handle_event(event)

    def _flush(self, session: StreamSession) -> None:
        while not session.events.empty():
            self.handle_event(session.events.get_nowait())

    def handle_event(self, event: SessionEvent) -> None:
        runtime = self._runtime.get(event.stream)
        if isinstance(event, DomainReceived):
            if not self._paused:
                self._route_domain(event)
        elif isinstance(event, ControlReceived):
            self.ledger.observe(event.stream, event.frame)
            if isinstance(event.frame, ErrorFrame) and runtime is not None:
                runtime.last_error = event.frame.message
        elif isinstance(event, SchemaCharged):
            self.ledger.record_charge(event.stream, event.amount, event.asset)
        elif isinstance(event, LeaseUpdated):
            self.coordinator.update_lease_token(event.lease.value)
        elif isinstance(event, StatusReceived):
            if runtime is not None:
                runtime.status = event.status
        elif isinstance(event, Connected):
            if runtime is not None:
                runtime.connected = True
                runtime.last_error = None
        elif isinstance(event, Disconnected):
            if runtime is not None:
                runtime.connected = False
        elif isinstance(event, SessionError):
            if runtime is not None:
                runtime.last_error = str(event.error)

    def _route_domain(self, received: DomainReceived) -> None:
        event = received.event
        if isinstance(event, TickerEvent):
            self.route_ticker(event)
        elif isinstance(event, SwapQuoteEvent):
            if event.is_alert:
                self.store.add_swap_alert(event)
            else:
                self.store.add_swap_quote(event)
        elif isinstance(event, PoolCreatedEvent):
            self.store.add_pool(event)
        elif isinstance(event, PoolReservesEvent):
            self.store.update_reserves(event)

    def route_ticker(self, event: TickerEvent) -> List[PriceData]:
        """Turn one ticker into USD-denominated price updates.

        USDC-quoted pairs pass through, USDC/SOL is inverted into SOL/USDC,
        and SOL-quoted pairs are converted with the last known SOL price.
        """
        usdc, sol = self.registry.usdc, self.registry.sol
        base, quote, price = event.base_mint, event.quote_mint, event.price
        updates: List[PriceUpdate] = []

        def track(b: str, q: str, value: float) -> None:
            key = pair_key(b, q)
            if self._should_track(key, b, q):
                updates.append(PriceUpdate(key, self.registry.format_pair(b, q), value, event.dex, event.slot))

        if quote == usdc or pair_key(base, quote) in self._pair_filters:
            track(base, quote, price)

        if base == usdc and quote == sol and price > 0:
            self._sol_price_usd = 1 / price
            track(sol, usdc, self._sol_price_usd)

        if quote == sol and base != usdc and self._sol_price_usd:
            usd_price = price * self._sol_price_usd
            if math.isfinite(usd_price) and usd_price > 0:
                track(base, usdc, usd_price)

        return [self.store.update_price(update) for update in updates]

    def _should_track(self, key: str, base: str, quote: str) -> bool:
        if self._pair_filters and key not in self._pair_filters:
            return False
        if not self._watch_mints:
            return True
        return base in self._watch_mints or quote in self._watch_mints

    # -----------------------------------------------------------------
    # Live watch-set edits
    # -----------------------------------------------------------------

    async def add_swap_pools(self, values: Iterable[str]) -> List[str]:
        return await self.coordinator.add_accounts(self._group(SWAP_POOL_STREAMS), values)

    async def remove_swap_pools(self, values: Iterable[str]) -> List[str]:
        return await self.coordinator.remove_accounts(self._group(SWAP_POOL_STREAMS), values)

    async def add_reserve_pools(self, values: Iterable[str]) -> List[str]:
        return await self.coordinator.add_accounts(self._group(RESERVE_POOL_STREAMS), values)

    async def remove_reserve_pools(self, values: Iterable[str]) -> List[str]:
        return await self.coordinator.remove_accounts(self._group(RESERVE_POOL_STREAMS), values)

    async def add_mints(self, values: Iterable[str]) -> List[str]:
        added = await self.coordinator.add_mints(self._group(MINT_FILTERED_STREAMS), values)
        self._watch_mints.update(added)
        return added

    async def remove_mints(self, values: Iterable[str]) -> List[str]:
        removed = await self.coordinator.remove_mints(self._group(MINT_FILTERED_STREAMS), values)
        self._watch_mints.difference_update(removed)
        return removed

    # -----------------------------------------------------------------
    # Introspection
    # -----------------------------------------------------------------

    def runtime_state(self) -> Dict[StreamId, Dict[str, object]]:
        state: Dict[StreamId, Dict[str, object]] = {}
        for stream_id, runtime in self._runtime.items():
            session = self.sessions.get(stream_id)
            state[stream_id] = {
                "enabled": runtime.enabled,
                "connected": runtime.connected,
                "last_error": runtime.last_error,
                "status": runtime.status,
                "watched_accounts": len(session.watched_accounts) if session else 0,
                "watched_mints": len(session.watched_mints) if session else 0,
            }
        return state


__all__ = ["ChargeRow", "ChargeSummary", "SessionManager", "StreamRuntime"]
