"""
One paid stream connection.

A session authenticates with a paid schema fetch, opens the socket named by
the schema, and then keeps its lease alive while dispatching frames. Every
observable change is put on `session.events`; nothing is delivered through
callbacks.

States: IDLE -> AUTHENTICATING -> CONNECTING -> OPEN <-> RENEWING -> CLOSED
"""
from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..config import StreamSpec, X402Settings
from ..errors import AuthenticationError, ProtocolShapeError, SlotwatchError, TransientNetworkError
from ..payments.authority import PaymentAuthority
from ..payments.protocol import build_renew_url, build_schema_path, parse_schema_version
from ..schemas import (
    ControlFrame,
    DomainEvent,
    ErrorFrame,
    HelloFrame,
    PaymentRequiredFrame,
    RenewalReminderFrame,
    RenewedFrame,
    StatusEvent,
    StreamId,
    decode_frame,
)
from ..watchlist import WatchlistCoordinator, normalize
from .renewal import RenewalStrategy, build_renewal

logger = logging.getLogger(__name__)

WsConnect = Callable[[str], Awaitable[Any]]


class SessionState(str, Enum):
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    CONNECTING = "connecting"
    OPEN = "open"
    RENEWING = "renewing"
    CLOSED = "closed"


@dataclass(slots=True, frozen=True)
class LeaseToken:
    value: str
    expires_at: Optional[str] = None
    slice_seconds: Optional[int] = None


# ---------------------------------------------------------------------
# Session events
# ---------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class SessionEvent:
    stream: StreamId


@dataclass(slots=True, frozen=True)
class Connected(SessionEvent):
    pass


@dataclass(slots=True, frozen=True)
class Disconnected(SessionEvent):
    reason: Optional[str] = None


@dataclass(slots=True, frozen=True)
class LeaseUpdated(SessionEvent):
    lease: LeaseToken


@dataclass(slots=True, frozen=True)
class ControlReceived(SessionEvent):
    frame: ControlFrame


@dataclass(slots=True, frozen=True)
class StatusReceived(SessionEvent):
    status: StatusEvent


@dataclass(slots=True, frozen=True)
class DomainReceived(SessionEvent):
    event: DomainEvent


@dataclass(slots=True, frozen=True)
class SchemaCharged(SessionEvent):
    amount: str
    asset: str


@dataclass(slots=True, frozen=True)
class SessionError(SessionEvent):
    error: Exception


class StreamSession:
    def __init__(
        self,
        spec: StreamSpec,
        authority: PaymentAuthority,
        settings: X402Settings,
        *,
        ws_connect: WsConnect = websockets.connect,
    ) -> None:
        self.stream_id = spec.stream_id
        self.authority = authority
        self.schema_path = spec.schema_path or build_schema_path(spec.stream_id, settings.schema_version)
        self.schema_version = parse_schema_version(self.schema_path)
        self.renew_url = build_renew_url(settings.http_base, spec.stream_id, self.schema_version)
        self.renewal: RenewalStrategy = build_renewal(
            settings.renew_method, authority, self.renew_url, self.schema_version
        )
        self.options = spec.options
        self.events: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self.state = SessionState.IDLE
        self.lease: Optional[LeaseToken] = None

        self._accounts: Set[str] = set(normalize(spec.watch_accounts))
        self._programs: List[str] = normalize(spec.watch_programs)
        self._mints: Set[str] = set(normalize(spec.watch_mints))
        self._ws_connect = ws_connect
        self._ws: Any = None
        self._send_lock = asyncio.Lock()
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._renewal_task: Optional[asyncio.Task[None]] = None

    @property
    def connected(self) -> bool:
        return self.state in (SessionState.OPEN, SessionState.RENEWING)

    @property
    def watched_accounts(self) -> List[str]:
        return sorted(self._accounts)

    @property
    def watched_mints(self) -> List[str]:
        return sorted(self._mints)

    @property
    def watched_programs(self) -> List[str]:
        return list(self._programs)

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    async def connect(self) -> None:
        """Pay for the schema, open the socket and push the initial watch-sets.

        Raises AuthenticationError if the schema fetch fails and
        TransientNetworkError if the socket cannot be opened. Neither is retried.
        A `close()` that lands mid-connect wins: the attempt is abandoned and
        any socket it opened is closed.
        """
        if self.state not in (SessionState.IDLE, SessionState.CLOSED):
            return

        self.state = SessionState.AUTHENTICATING
        try:
            grant = await self.authority.request_stream_schema(self.schema_path, self.stream_id)
        except BaseException:
            self._abandon_connect(SessionState.AUTHENTICATING)
            raise
        if grant.charge is not None:
            self._emit(SchemaCharged(self.stream_id, grant.charge.amount_raw, grant.charge.asset))
        if self.state is not SessionState.AUTHENTICATING:
            logger.info("Stream %s closed while authenticating", self.stream_id.value)
            return
        self._set_lease(LeaseToken(grant.token))

        self.state = SessionState.CONNECTING
        try:
            ws = await self._ws_connect(grant.ws_url)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            self._abandon_connect(SessionState.CONNECTING)
            raise TransientNetworkError(f"{self.stream_id.value} socket failed to open: {exc}") from exc
        except BaseException:
            self._abandon_connect(SessionState.CONNECTING)
            raise
        if self.state is not SessionState.CONNECTING:
            logger.info("Stream %s closed while connecting", self.stream_id.value)
            with contextlib.suppress(ConnectionClosed, OSError):
                await ws.close()
            return
        self._ws = ws

        self.state = SessionState.OPEN
        logger.info("Stream %s connected", self.stream_id.value)
        self._emit(Connected(self.stream_id))
        await self._apply_watchlists()
        await self.send({"op": "getState"})
        if self._ws is not None:
            self._reader_task = asyncio.create_task(self._read_loop())

    def _abandon_connect(self, expected: SessionState) -> None:
        # Leave the state alone if close() already took over.
        if self.state is expected:
            self.state = SessionState.CLOSED
            self.lease = None

    async def close(self) -> None:
        if self.state == SessionState.CLOSED and self._ws is None:
            return
        self.state = SessionState.CLOSED
        await self._cancel(self._reader_task)
        self._reader_task = None
        await self._cancel(self._renewal_task)
        self._renewal_task = None
        await self._close_socket()
        self.lease = None
        logger.info("Stream %s closed", self.stream_id.value)
        self._emit(Disconnected(self.stream_id, "closed"))

    async def send(self, message: Dict[str, Any]) -> bool:
        ws = self._ws
        if ws is None or not self.connected:
            return False
        try:
            async with self._send_lock:
                await ws.send(json.dumps(message))
        except ConnectionClosed as exc:
            logger.debug("Send on closed %s socket dropped: %s", self.stream_id.value, exc)
            return False
        return True

    async def _apply_watchlists(self) -> None:
        if self.options is not None:
            await self.send({"op": "setOptions", **self.options.to_wire()})
        if self._accounts:
            await self.send({"op": "setAccounts", "accounts": self.watched_accounts})
        if self._programs:
            await self.send({"op": "setPrograms", "programs": self.watched_programs})
        if self._mints:
            await self.send({"op": "setMints", "mints": self.watched_mints})

    @staticmethod
    async def _cancel(task: Optional[asyncio.Task[None]]) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _close_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        with contextlib.suppress(ConnectionClosed, OSError):
            await ws.close()

    # -----------------------------------------------------------------
    # Inbound frames
    # -----------------------------------------------------------------

    async def _read_loop(self) -> None:
        error: Exception
        try:
            async for raw in self._ws:
                self._dispatch(raw)
        except ConnectionClosed as exc:
            error = TransientNetworkError(f"{self.stream_id.value} socket dropped: {exc}")
        except Exception as exc:
            logger.exception("Reader loop for %s failed", self.stream_id.value)
            error = exc
        else:
            error = TransientNetworkError(f"{self.stream_id.value} socket closed by server")
        await self._on_drop(error)

    async def _on_drop(self, error: Exception) -> None:
        if self.state == SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        logger.warning("Stream %s disconnected: %s", self.stream_id.value, error)
        self._emit(SessionError(self.stream_id, error))
        await self._cancel(self._renewal_task)
        self._renewal_task = None
        await self._close_socket()
        self.lease = None
        self._emit(Disconnected(self.stream_id, str(error)))

    def _dispatch(self, raw: Any) -> None:
        try:
            frame = decode_frame(raw)
        except ProtocolShapeError as exc:
            logger.debug("Dropping malformed frame on %s: %s", self.stream_id.value, exc)
            return
        if frame is None:
            return
        if isinstance(frame, ControlFrame):
            self._handle_control(frame)
        elif isinstance(frame, StatusEvent):
            self._emit(StatusReceived(self.stream_id, frame))
        else:
            self._emit(DomainReceived(self.stream_id, frame))

    def _handle_control(self, frame: ControlFrame) -> None:
        self._emit(ControlReceived(self.stream_id, frame))
        if isinstance(frame, (RenewalReminderFrame, PaymentRequiredFrame)):
            self._start_renewal()
        elif isinstance(frame, RenewedFrame):
            self._on_renewed(frame)
        elif isinstance(frame, HelloFrame):
            if self.lease is not None:
                self._set_lease(
                    replace(
                        self.lease,
                        expires_at=frame.expires_at or self.lease.expires_at,
                        slice_seconds=frame.slice_seconds or self.lease.slice_seconds,
                    )
                )
        elif isinstance(frame, ErrorFrame):
            logger.warning("Stream %s reported error: %s", self.stream_id.value, frame.message)

    def _on_renewed(self, frame: RenewedFrame) -> None:
        if self.lease is not None:
            if frame.token:
                self._set_lease(LeaseToken(frame.token, frame.expires_at, frame.slice_seconds))
            else:
                self._set_lease(
                    replace(
                        self.lease,
                        expires_at=frame.expires_at or self.lease.expires_at,
                        slice_seconds=frame.slice_seconds or self.lease.slice_seconds,
                    )
                )
        self._finish_renewal()

    # -----------------------------------------------------------------
    # Renewal
    # -----------------------------------------------------------------

    def _renewal_in_flight(self) -> bool:
        return self._renewal_task is not None and not self._renewal_task.done()

    def _start_renewal(self) -> None:
        if self.lease is None or not self.connected:
            return
        if self._renewal_in_flight():
            logger.debug("Renewal already in flight for %s", self.stream_id.value)
            return
        self.state = SessionState.RENEWING
        self._renewal_task = asyncio.create_task(self._renew(self.lease))

    async def _renew(self, lease: LeaseToken) -> None:
        try:
            outcome = await self.renewal.renew(lease.value)
        except SlotwatchError as exc:
            logger.warning("Lease renewal failed for %s: %s", self.stream_id.value, exc)
            self._emit(SessionError(self.stream_id, exc))
            self._finish_renewal()
            return
        except Exception as exc:
            logger.exception("Lease renewal for %s raised unexpectedly", self.stream_id.value)
            self._emit(SessionError(self.stream_id, exc))
            self._finish_renewal()
            return

        if self.lease is None or self.lease.value != lease.value:
            logger.info("Discarding stale renewal for %s", self.stream_id.value)
            self._finish_renewal()
            return
        if outcome.token:
            self._set_lease(LeaseToken(outcome.token, outcome.expires_at, outcome.slice_seconds))
        await self.send(outcome.message)
        # In-band renewal completes when the `renewed` frame arrives.
        if outcome.token:
            self._finish_renewal()

    def _finish_renewal(self) -> None:
        if self.state == SessionState.RENEWING:
            self.state = SessionState.OPEN

    def _set_lease(self, lease: LeaseToken) -> None:
        self.lease = lease
        self._emit(LeaseUpdated(self.stream_id, lease))

    def _emit(self, event: SessionEvent) -> None:
        self.events.put_nowait(event)

    # -----------------------------------------------------------------
    # Watch-set deltas
    # -----------------------------------------------------------------

    async def add_accounts(self, values: Iterable[str]) -> List[str]:
        added = WatchlistCoordinator.merge(self._accounts, normalize(values))
        if added:
            await self.send({"op": "addAccounts", "accounts": added})
        return added

    async def remove_accounts(self, values: Iterable[str]) -> List[str]:
        removed = WatchlistCoordinator.diff(self._accounts, normalize(values))
        if removed:
            await self.send({"op": "removeAccounts", "accounts": removed})
        return removed

    async def add_mints(self, values: Iterable[str]) -> List[str]:
        added = WatchlistCoordinator.merge(self._mints, normalize(values))
        if added:
            await self.send({"op": "addMints", "mints": added})
        return added

    async def remove_mints(self, values: Iterable[str]) -> List[str]:
        removed = WatchlistCoordinator.diff(self._mints, normalize(values))
        if removed:
            await self.send({"op": "removeMints", "mints": removed})
        return removed


__all__ = [
    "Connected",
    "ControlReceived",
    "Disconnected",
    "DomainReceived",
    "LeaseToken",
    "LeaseUpdated",
    "SchemaCharged",
    "SessionError",
    "SessionEvent",
    "SessionState",
    "StatusReceived",
    "StreamSession",
]
