from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .errors import ProtocolShapeError

# ---------------------------------------------------------------------
# Stream identities
# ---------------------------------------------------------------------


class StreamId(str, Enum):
    MEMPOOL_SNIFF = "mempool-sniff"
    NEW_MINTS = "new-mints"
    WHALE_ALERT = "whale-alert"
    SMART_MONEY = "smart-money"
    WALLET_BALANCE = "wallet-balance"
    TOKEN_TICKER = "token-ticker"
    SWAP_QUOTES = "swap-quotes"
    SWAP_ALERTS = "swap-alerts"
    LIQUIDITY_CHANGES = "liquidity-changes"
    INFRASTRUCTURE_PULSE = "infrastructure-pulse"
    SNIPER_FEED = "sniper-feed"
    POOL_CREATIONS = "pool-creations"
    RUG_DETECTION = "rug-detection"
    MARKET_DEPTH = "market-depth"
    POOL_RESERVES = "pool-reserves"
    TOKEN2022_EXTENSIONS = "token2022-extensions"
    PROGRAM_LOGS = "program-logs"
    PROGRAM_ERRORS = "program-errors"
    TRENDING_LEADERBOARD = "trending-leaderboard"
    ACCOUNT_DATA = "account-data"


def parse_stream_id(value: Any) -> Optional[StreamId]:
    if isinstance(value, StreamId):
        return value
    try:
        return StreamId(value)
    except ValueError:
        return None


class ControlOp(str, Enum):
    HELLO = "hello"
    RENEWAL_REMINDER = "renewal_reminder"
    PAYMENT_REQUIRED = "payment_required"
    RENEWED = "renewed"
    ERROR = "error"


# ---------------------------------------------------------------------
# Domain events
# ---------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class StreamEvent:
    slot: int

    def to_wire(self) -> Dict[str, Any]:
        d = asdict(self)
        for key, value in list(d.items()):
            if isinstance(value, Enum):
                d[key] = value.value
        return d


@dataclass(slots=True, frozen=True, kw_only=True)
class TickerEvent(StreamEvent):
    base_mint: str
    quote_mint: str
    price: float
    dex: str
    signature: str = ""


@dataclass(slots=True, frozen=True, kw_only=True)
class SwapQuoteEvent(StreamEvent):
    stream: StreamId
    dex: str
    pool: str
    base_mint: str
    quote_mint: str
    base_amount: str
    quote_amount: str
    signature: str = ""
    router: Optional[str] = None
    base_amount_ui: Optional[str] = None
    quote_amount_ui: Optional[str] = None
    token_in: Optional[str] = None
    token_out: Optional[str] = None
    amount_in: Optional[str] = None
    amount_out: Optional[str] = None
    price: Optional[float] = None
    execution_price: Optional[float] = None
    notional_usd: Optional[float] = None

    @property
    def is_alert(self) -> bool:
        return self.stream == StreamId.SWAP_ALERTS


@dataclass(slots=True, frozen=True, kw_only=True)
class PoolCreatedEvent(StreamEvent):
    dex: str
    pool: str
    base_mint: str
    quote_mint: str
    base_vault: str
    quote_vault: str
    signature: str = ""


@dataclass(slots=True, frozen=True, kw_only=True)
class PoolReservesEvent(StreamEvent):
    dex: str
    pool: str
    base_mint: str
    quote_mint: str
    base_amount: str
    quote_amount: str
    base_amount_ui: Optional[str] = None
    quote_amount_ui: Optional[str] = None
    price: Optional[float] = None
    txn_signature: Optional[str] = None


@dataclass(slots=True, frozen=True)
class StatusEvent:
    now: str
    grpc_connected: bool = False
    node_healthy: bool = False
    watched_accounts: int = 0
    watched_mints: int = 0
    client_id: Optional[str] = None
    processed_head_slot: Optional[int] = None
    confirmed_head_slot: Optional[int] = None


DomainEvent = Union[TickerEvent, SwapQuoteEvent, PoolCreatedEvent, PoolReservesEvent]


# ---------------------------------------------------------------------
# Lease control frames
# ---------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class RenewHints:
    http_price_hint: Optional[str] = None
    inband_price_hint: Optional[str] = None

    @property
    def price_hint(self) -> Optional[str]:
        return self.http_price_hint or self.inband_price_hint


@dataclass(slots=True, frozen=True)
class ControlFrame:
    op: ControlOp


@dataclass(slots=True, frozen=True, kw_only=True)
class HelloFrame(ControlFrame):
    op: ControlOp = field(init=False, default=ControlOp.HELLO)
    client_id: Optional[str] = None
    expires_at: Optional[str] = None
    slice_seconds: Optional[int] = None


@dataclass(slots=True, frozen=True, kw_only=True)
class RenewalReminderFrame(ControlFrame):
    op: ControlOp = field(init=False, default=ControlOp.RENEWAL_REMINDER)
    expires_at: Optional[str] = None
    ms_until_expiry: Optional[int] = None
    renew: RenewHints = field(default_factory=RenewHints)


@dataclass(slots=True, frozen=True, kw_only=True)
class PaymentRequiredFrame(ControlFrame):
    op: ControlOp = field(init=False, default=ControlOp.PAYMENT_REQUIRED)
    reason: Optional[str] = None
    renew: RenewHints = field(default_factory=RenewHints)


@dataclass(slots=True, frozen=True, kw_only=True)
class RenewedFrame(ControlFrame):
    op: ControlOp = field(init=False, default=ControlOp.RENEWED)
    expires_at: Optional[str] = None
    method: Optional[str] = None
    token: Optional[str] = None
    slice_seconds: Optional[int] = None


@dataclass(slots=True, frozen=True, kw_only=True)
class ErrorFrame(ControlFrame):
    op: ControlOp = field(init=False, default=ControlOp.ERROR)
    message: str = ""


Frame = Union[ControlFrame, StatusEvent, TickerEvent, SwapQuoteEvent, PoolCreatedEvent, PoolReservesEvent]


# ---------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------


def _is_record(value: Any) -> bool:
    return isinstance(value, dict)


def _opt_str(msg: Dict[str, Any], key: str) -> Optional[str]:
    value = msg.get(key)
    return value if isinstance(value, str) else None


def _req_str(msg: Dict[str, Any], key: str) -> str:
    value = msg.get(key)
    if not isinstance(value, str):
        raise ProtocolShapeError(f"field '{key}' must be a string")
    return value


def _opt_num(msg: Dict[str, Any], key: str) -> Optional[float]:
    value = msg.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _req_num(msg: Dict[str, Any], key: str) -> float:
    value = _opt_num(msg, key)
    if value is None:
        raise ProtocolShapeError(f"field '{key}' must be a finite number")
    return value


def _opt_int(msg: Dict[str, Any], key: str) -> Optional[int]:
    value = msg.get(key)
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _req_slot(msg: Dict[str, Any]) -> int:
    slot = _opt_int(msg, "slot")
    if slot is None or slot < 0:
        raise ProtocolShapeError("field 'slot' must be a non-negative integer")
    return slot


def _renew_hints(msg: Dict[str, Any]) -> RenewHints:
    renew = msg.get("renew")
    if not _is_record(renew):
        return RenewHints()
    http = renew.get("http") if _is_record(renew.get("http")) else {}
    inband = renew.get("inband") if _is_record(renew.get("inband")) else {}
    return RenewHints(
        http_price_hint=_opt_str(http, "priceHint"),
        inband_price_hint=_opt_str(inband, "priceHint"),
    )


# ---------------------------------------------------------------------
# Variant decoders (fixed priority: control, status, domain)
# ---------------------------------------------------------------------


def decode_control(msg: Dict[str, Any]) -> Optional[ControlFrame]:
    op = msg.get("op")
    if not isinstance(op, str):
        return None
    try:
        control_op = ControlOp(op)
    except ValueError:
        return None
    if control_op == ControlOp.HELLO:
        return HelloFrame(
            client_id=_opt_str(msg, "clientId"),
            expires_at=_opt_str(msg, "expiresAt"),
            slice_seconds=_opt_int(msg, "sliceSeconds"),
        )
    if control_op == ControlOp.RENEWAL_REMINDER:
        return RenewalReminderFrame(
            expires_at=_opt_str(msg, "expiresAt"),
            ms_until_expiry=_opt_int(msg, "msUntilExpiry"),
            renew=_renew_hints(msg),
        )
    if control_op == ControlOp.PAYMENT_REQUIRED:
        return PaymentRequiredFrame(reason=_opt_str(msg, "reason"), renew=_renew_hints(msg))
    if control_op == ControlOp.RENEWED:
        return RenewedFrame(
            expires_at=_opt_str(msg, "expiresAt"),
            method=_opt_str(msg, "method"),
            token=_opt_str(msg, "token"),
            slice_seconds=_opt_int(msg, "sliceSeconds"),
        )
    return ErrorFrame(message=_opt_str(msg, "message") or "")


def decode_status(msg: Dict[str, Any]) -> Optional[StatusEvent]:
    if msg.get("type") != "status" or not isinstance(msg.get("now"), str):
        return None
    return StatusEvent(
        now=msg["now"],
        grpc_connected=bool(msg.get("grpcConnected")),
        node_healthy=bool(msg.get("nodeHealthy")),
        watched_accounts=_opt_int(msg, "watchedAccounts") or 0,
        watched_mints=_opt_int(msg, "watchedMints") or 0,
        client_id=_opt_str(msg, "clientId"),
        processed_head_slot=_opt_int(msg, "processedHeadSlot"),
        confirmed_head_slot=_opt_int(msg, "confirmedHeadSlot"),
    )


def _decode_ticker(msg: Dict[str, Any]) -> TickerEvent:
    return TickerEvent(
        slot=_req_slot(msg),
        base_mint=_req_str(msg, "baseMint"),
        quote_mint=_req_str(msg, "quoteMint"),
        price=_req_num(msg, "price"),
        dex=_opt_str(msg, "dex") or "",
        signature=_opt_str(msg, "signature") or "",
    )


def _decode_swap_quote(msg: Dict[str, Any]) -> SwapQuoteEvent:
    stream = parse_stream_id(msg.get("stream"))
    if stream not in (StreamId.SWAP_QUOTES, StreamId.SWAP_ALERTS):
        raise ProtocolShapeError(f"swap-quote from unexpected stream {msg.get('stream')!r}")
    return SwapQuoteEvent(
        slot=_req_slot(msg),
        stream=stream,
        dex=_opt_str(msg, "dex") or "",
        pool=_req_str(msg, "pool"),
        base_mint=_req_str(msg, "baseMint"),
        quote_mint=_req_str(msg, "quoteMint"),
        base_amount=_req_str(msg, "baseAmount"),
        quote_amount=_req_str(msg, "quoteAmount"),
        signature=_opt_str(msg, "signature") or "",
        router=_opt_str(msg, "router"),
        base_amount_ui=_opt_str(msg, "baseAmountUi"),
        quote_amount_ui=_opt_str(msg, "quoteAmountUi"),
        token_in=_opt_str(msg, "tokenIn"),
        token_out=_opt_str(msg, "tokenOut"),
        amount_in=_opt_str(msg, "amountIn"),
        amount_out=_opt_str(msg, "amountOut"),
        price=_opt_num(msg, "price"),
        execution_price=_opt_num(msg, "executionPrice"),
        notional_usd=_opt_num(msg, "notionalUsd"),
    )


def _decode_pool_created(msg: Dict[str, Any]) -> PoolCreatedEvent:
    return PoolCreatedEvent(
        slot=_req_slot(msg),
        dex=_opt_str(msg, "dex") or "",
        pool=_req_str(msg, "pool"),
        base_mint=_req_str(msg, "baseMint"),
        quote_mint=_req_str(msg, "quoteMint"),
        base_vault=_opt_str(msg, "baseVault") or "",
        quote_vault=_opt_str(msg, "quoteVault") or "",
        signature=_opt_str(msg, "signature") or "",
    )


def _decode_pool_reserves(msg: Dict[str, Any]) -> PoolReservesEvent:
    return PoolReservesEvent(
        slot=_req_slot(msg),
        dex=_opt_str(msg, "dex") or "",
        pool=_req_str(msg, "pool"),
        base_mint=_req_str(msg, "baseMint"),
        quote_mint=_req_str(msg, "quoteMint"),
        base_amount=_req_str(msg, "baseAmount"),
        quote_amount=_req_str(msg, "quoteAmount"),
        base_amount_ui=_opt_str(msg, "baseAmountUi"),
        quote_amount_ui=_opt_str(msg, "quoteAmountUi"),
        price=_opt_num(msg, "price"),
        txn_signature=_opt_str(msg, "txnSignature"),
    )


_DOMAIN_DECODERS = {
    "ticker": _decode_ticker,
    "swap-quote": _decode_swap_quote,
    "pool-created": _decode_pool_created,
    "pool-reserves": _decode_pool_reserves,
}


def decode_domain(msg: Dict[str, Any]) -> Optional[DomainEvent]:
    """Decode a typed domain event.

    Unknown `type` values return None. Known types with a broken shape raise
    ProtocolShapeError so the caller can log and drop the message.
    """
    decoder = _DOMAIN_DECODERS.get(msg.get("type"))  # type: ignore[arg-type]
    if decoder is None:
        return None
    return decoder(msg)


def decode_frame(raw: Union[str, bytes, bytearray, memoryview, List[bytes]]) -> Optional[Frame]:
    """Classify one inbound socket frame.

    Returns a control frame, a status event, a domain event, or None for
    anything unrecognized (including non-JSON payloads).
    """
    if isinstance(raw, list):
        if not all(isinstance(part, (bytes, bytearray)) for part in raw):
            return None
        raw = b"".join(raw)
    if isinstance(raw, memoryview):
        raw = raw.tobytes()
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    try:
        msg = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not _is_record(msg):
        return None
    control = decode_control(msg)
    if control is not None:
        return control
    status = decode_status(msg)
    if status is not None:
        return status
    return decode_domain(msg)
