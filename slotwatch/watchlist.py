"""
Watch-set coordination.

Sessions own their account/mint sets; this module holds the set algebra they
use to compute deltas, resolves `BASE/QUOTE` pair inputs to pool addresses,
and fans live edits out to groups of sessions that share an input.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Protocol, Sequence, Set, Tuple

from .errors import LookupFailure
from .mints import MintRegistry, is_pair_input
from .pool_lookup import PoolLookupClient

logger = logging.getLogger(__name__)


class WatchTarget(Protocol):
    async def add_accounts(self, values: Iterable[str]) -> List[str]:
        ...

    async def remove_accounts(self, values: Iterable[str]) -> List[str]:
        ...

    async def add_mints(self, values: Iterable[str]) -> List[str]:
        ...

    async def remove_mints(self, values: Iterable[str]) -> List[str]:
        ...


@dataclass(slots=True)
class SplitInputs:
    ids: List[str] = field(default_factory=list)
    pairs: List[str] = field(default_factory=list)


def normalize(values: Iterable[str]) -> List[str]:
    """Trim, drop empties and de-duplicate while keeping first-seen order."""
    return list(dict.fromkeys(v.strip() for v in values if v and v.strip()))


class WatchlistCoordinator:
    def __init__(self, registry: MintRegistry, lookup: Optional[PoolLookupClient] = None) -> None:
        self.registry = registry
        self.lookup = lookup
        self._lease_token: Optional[str] = None
        self._lease_ready = asyncio.Event()
        self._closed = False
        self._pending: List[Tuple[Tuple[WatchTarget, ...], List[str]]] = []

    # -----------------------------------------------------------------
    # Set algebra
    # -----------------------------------------------------------------

    @staticmethod
    def split_inputs(values: Iterable[str]) -> SplitInputs:
        split = SplitInputs()
        for value in normalize(values):
            if is_pair_input(value):
                split.pairs.append(value)
            else:
                split.ids.append(value)
        return split

    @staticmethod
    def merge(target: Set[str], incoming: Iterable[str]) -> List[str]:
        """Add `incoming` to `target` in place and return only what was new."""
        added: List[str] = []
        for item in incoming:
            if item not in target:
                target.add(item)
                added.append(item)
        return added

    @staticmethod
    def diff(target: Set[str], incoming: Iterable[str]) -> List[str]:
        """Remove `incoming` from `target` in place and return only what was present."""
        removed: List[str] = []
        for item in incoming:
            if item in target:
                target.discard(item)
                removed.append(item)
        return removed

    # -----------------------------------------------------------------
    # Lease distribution
    # -----------------------------------------------------------------

    @property
    def lease_token(self) -> Optional[str]:
        return self._lease_token

    def update_lease_token(self, token: Optional[str]) -> None:
        if not token:
            return
        self._lease_token = token
        if self.lookup is not None:
            self.lookup.set_lease_token(token)
        self._lease_ready.set()

    async def wait_for_lease_token(self) -> Optional[str]:
        """Wait once for the first lease token. Returns None if closed first."""
        if self._lease_token:
            return self._lease_token
        if self._closed:
            return None
        await self._lease_ready.wait()
        return None if self._closed else self._lease_token

    def close(self) -> None:
        self._closed = True
        self._pending.clear()
        self._lease_ready.set()

    # -----------------------------------------------------------------
    # Pair resolution
    # -----------------------------------------------------------------

    async def resolve_pairs(self, pairs: Iterable[str]) -> List[str]:
        resolved = [pair for pair in (self.registry.resolve_pair(p) for p in pairs) if pair]
        if not resolved:
            return []
        lookup = self.lookup
        if lookup is None:
            logger.warning("Pool lookup is not configured; dropping %d pair input(s)", len(resolved))
            return []
        if not self._lease_token:
            if await self.wait_for_lease_token() is None:
                return []

        results = await asyncio.gather(*(self._lookup_one(lookup, base, quote) for base, quote in resolved))
        return normalize(pool for pools in results for pool in pools)

    async def _lookup_one(self, lookup: PoolLookupClient, base_mint: str, quote_mint: str) -> List[str]:
        try:
            result = await lookup.lookup_pair(base_mint, quote_mint)
        except LookupFailure as exc:
            logger.warning("Pool lookup for %s failed: %s", self.registry.format_pair(base_mint, quote_mint), exc)
            return []
        if not result.pools:
            logger.info("No pools found for %s", self.registry.format_pair(base_mint, quote_mint))
        return result.pool_ids

    async def resolve_inputs(self, values: Iterable[str]) -> List[str]:
        split = self.split_inputs(values)
        if not split.pairs:
            return split.ids
        return normalize([*split.ids, *await self.resolve_pairs(split.pairs)])

    def defer_pairs(self, sessions: Sequence[WatchTarget], pairs: Iterable[str]) -> None:
        pending = normalize(pairs)
        if pending and not self._closed:
            self._pending.append((tuple(sessions), pending))

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    async def resolve_pending(self) -> List[str]:
        """Resolve deferred startup pairs once a lease exists and push the pools."""
        if not self._pending:
            return []
        if await self.wait_for_lease_token() is None:
            return []
        pending, self._pending = self._pending, []
        pushed: List[str] = []
        for sessions, pairs in pending:
            pools = await self.resolve_pairs(pairs)
            if not pools:
                continue
            for session in sessions:
                await session.add_accounts(pools)
            pushed.extend(pools)
        return normalize(pushed)

    # -----------------------------------------------------------------
    # Live edits
    # -----------------------------------------------------------------

    async def add_accounts(self, sessions: Sequence[WatchTarget], values: Iterable[str]) -> List[str]:
        accounts = await self.resolve_inputs(values)
        added: List[str] = []
        for session in sessions:
            added.extend(await session.add_accounts(accounts))
        return normalize(added)

    async def remove_accounts(self, sessions: Sequence[WatchTarget], values: Iterable[str]) -> List[str]:
        accounts = await self.resolve_inputs(values)
        removed: List[str] = []
        for session in sessions:
            removed.extend(await session.remove_accounts(accounts))
        return normalize(removed)

    async def add_mints(self, sessions: Sequence[WatchTarget], values: Iterable[str]) -> List[str]:
        mints = normalize(self.registry.resolve(v) for v in values)
        added: List[str] = []
        for session in sessions:
            added.extend(await session.add_mints(mints))
        return normalize(added)

    async def remove_mints(self, sessions: Sequence[WatchTarget], values: Iterable[str]) -> List[str]:
        mints = normalize(self.registry.resolve(v) for v in values)
        removed: List[str] = []
        for session in sessions:
            removed.extend(await session.remove_mints(mints))
        return normalize(removed)


__all__ = ["SplitInputs", "WatchTarget", "WatchlistCoordinator", "normalize"]
