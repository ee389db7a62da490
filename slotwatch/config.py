"""
Client configuration.

Environment defaults are read once at import (same convention as the rest of
the runtime); `load_config()` turns them into immutable pydantic models that
are passed explicitly to the components that need them.
"""
from __future__ import annotations

import os
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from .mints import parse_list
from .payments.protocol import SchemaVersion, build_schema_path
from .schemas import StreamId

RenewMethod = Literal["http", "inband"]
EventFormat = Literal["raw", "enhanced"]

PUBLIC_HTTP_BASE_URL = os.getenv("PUBLIC_HTTP_BASE_URL", "http://localhost:3000")
RENEW_METHOD = os.getenv("RENEW_METHOD", "http")
X402_SCHEMA_VERSION = os.getenv("X402_SCHEMA_VERSION", "v2")
X402_ASSET_DECIMALS = os.getenv("X402_ASSET_DECIMALS", "6")
MAX_SWAP_HISTORY = os.getenv("MAX_SWAP_HISTORY", "1000")
MAX_POOL_HISTORY = os.getenv("MAX_POOL_HISTORY", "100")
SLOTWATCH_LOG_LEVEL = os.getenv("SLOTWATCH_LOG_LEVEL", "INFO")
SLOTWATCH_SIGNER = os.getenv("SLOTWATCH_SIGNER", "")

# Streams whose watched accounts are pool addresses (pair inputs allowed).
SWAP_POOL_STREAMS = frozenset({StreamId.SWAP_QUOTES, StreamId.SWAP_ALERTS})
RESERVE_POOL_STREAMS = frozenset({StreamId.POOL_RESERVES})
MINT_FILTERED_STREAMS = frozenset({StreamId.SWAP_QUOTES, StreamId.SWAP_ALERTS, StreamId.POOL_CREATIONS})


def parse_int(value: Optional[str], fallback: int) -> int:
    if not value:
        return fallback
    try:
        return int(value.strip())
    except ValueError:
        return fallback


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class ClientOptions(FrozenModel):
    """Server-side formatting options pushed with `setOptions`."""

    include_accounts: Optional[bool] = Field(None, alias="includeAccounts")
    include_token_balance_changes: Optional[bool] = Field(None, alias="includeTokenBalanceChanges")
    include_logs: Optional[bool] = Field(None, alias="includeLogs")
    include_instructions: Optional[bool] = Field(None, alias="includeInstructions")
    event_format: Optional[EventFormat] = Field(None, alias="eventFormat")
    filter_token_balances: Optional[bool] = Field(None, alias="filterTokenBalances")

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_wire(self) -> Dict[str, object]:
        return self.model_dump(by_alias=True, exclude_none=True)


class X402Settings(FrozenModel):
    http_base: str = PUBLIC_HTTP_BASE_URL
    renew_method: RenewMethod = "http"
    schema_version: SchemaVersion = "v2"
    asset_decimals: int = Field(6, ge=0)


class StreamSpec(FrozenModel):
    stream_id: StreamId
    schema_path: str = ""
    enabled: bool = True
    watch_accounts: List[str] = Field(default_factory=list)
    watch_programs: List[str] = Field(default_factory=list)
    watch_mints: List[str] = Field(default_factory=list)
    options: Optional[ClientOptions] = None

    def with_schema_path(self, version: SchemaVersion) -> "StreamSpec":
        if self.schema_path:
            return self
        return self.model_copy(update={"schema_path": build_schema_path(self.stream_id, version)})


class StoreSettings(FrozenModel):
    price_history_length: int = Field(300, gt=0)
    swap_history_length: int = Field(1000, gt=0)
    pool_history_length: int = Field(100, gt=0)
    rate_window_capacity: int = Field(1000, gt=0)


class ClientConfig(FrozenModel):
    x402: X402Settings = Field(default_factory=X402Settings)
    streams: List[StreamSpec] = Field(default_factory=list)
    pool_lookup_base: Optional[str] = None
    pairs: List[str] = Field(default_factory=list)
    pair_filters: List[str] = Field(default_factory=list)
    store: StoreSettings = Field(default_factory=StoreSettings)

    @field_validator("streams")
    @classmethod
    def _fill_schema_paths(cls, streams: List[StreamSpec], info: ValidationInfo) -> List[StreamSpec]:
        x402 = info.data.get("x402")
        version: SchemaVersion = x402.schema_version if x402 is not None else "v2"
        return [spec.with_schema_path(version) for spec in streams]

    @property
    def lookup_base(self) -> str:
        return self.pool_lookup_base or self.x402.http_base


def load_config(
    *,
    watch_swap_pools: Optional[List[str]] = None,
    watch_reserve_pools: Optional[List[str]] = None,
    watch_mints: Optional[List[str]] = None,
    pairs: Optional[List[str]] = None,
    pair_filters: Optional[List[str]] = None,
) -> ClientConfig:
    """Build the default five-stream configuration from the environment.

    Watch lists are passed in already resolved (mint labels applied) by the
    caller; anything left as None falls back to the raw environment value.
    """
    renew_method: RenewMethod = "inband" if RENEW_METHOD == "inband" else "http"
    version: SchemaVersion = "v1" if X402_SCHEMA_VERSION == "v1" else "v2"
    env_pools = os.getenv("WATCH_POOLS")
    swap_pools = watch_swap_pools if watch_swap_pools is not None else parse_list(os.getenv("WATCH_SWAP_POOLS"))
    reserve_pools = (
        watch_reserve_pools
        if watch_reserve_pools is not None
        else parse_list(os.getenv("WATCH_RESERVE_POOLS") or env_pools)
    )
    mints = watch_mints if watch_mints is not None else parse_list(os.getenv("WATCH_MINTS"))
    programs = parse_list(os.getenv("WATCH_PROGRAMS"))

    streams = [
        StreamSpec(stream_id=StreamId.TOKEN_TICKER),
        StreamSpec(stream_id=StreamId.SWAP_QUOTES, watch_accounts=swap_pools, watch_mints=mints),
        StreamSpec(stream_id=StreamId.SWAP_ALERTS, watch_accounts=swap_pools, watch_mints=mints),
        StreamSpec(stream_id=StreamId.POOL_CREATIONS, watch_mints=mints, watch_programs=programs),
        StreamSpec(stream_id=StreamId.POOL_RESERVES, watch_accounts=reserve_pools, enabled=False),
    ]

    return ClientConfig(
        x402=X402Settings(
            http_base=PUBLIC_HTTP_BASE_URL,
            renew_method=renew_method,
            schema_version=version,
            asset_decimals=parse_int(X402_ASSET_DECIMALS, 6),
        ),
        streams=streams,
        pool_lookup_base=os.getenv("POOL_LOOKUP_HTTP_BASE_URL"),
        pairs=pairs or [],
        pair_filters=pair_filters or [],
        store=StoreSettings(
            swap_history_length=max(1, parse_int(MAX_SWAP_HISTORY, 1000)),
            pool_history_length=max(1, parse_int(MAX_POOL_HISTORY, 100)),
        ),
    )


__all__ = [
    "ClientConfig",
    "ClientOptions",
    "MINT_FILTERED_STREAMS",
    "RESERVE_POOL_STREAMS",
    "RenewMethod",
    "SWAP_POOL_STREAMS",
    "StoreSettings",
    "StreamSpec",
    "X402Settings",
    "load_config",
    "parse_int",
]
