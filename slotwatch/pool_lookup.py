from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .errors import LookupFailure
from .payments.authority import DEFAULT_HTTP_TIMEOUT

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class PoolMatch:
    pool: str
    dex: str = ""
    base_mint: str = ""
    quote_mint: str = ""
    base_vault: str = ""
    quote_vault: str = ""


@dataclass(slots=True, frozen=True)
class PoolLookupResult:
    base_mint: str
    quote_mint: str
    pools: List[PoolMatch]

    @property
    def pool_ids(self) -> List[str]:
        return [match.pool for match in self.pools]


def _text(entry: Dict[str, Any], key: str) -> str:
    value = entry.get(key)
    return value if isinstance(value, str) else ""


class PoolLookupClient:
    """Resolves base/quote mint pairs to pool addresses via `/pools/lookup`.

    The lookup endpoint is gated by a live lease token, which the watchlist
    coordinator hands over read-only as sessions renew.
    """

    def __init__(self, base_url: str, *, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self.base_url = base_url
        self._client = http_client or httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT)
        self._owns_client = http_client is None
        self._lease_token: Optional[str] = None

    @property
    def lease_token(self) -> Optional[str]:
        return self._lease_token

    def set_lease_token(self, token: Optional[str]) -> None:
        trimmed = token.strip() if token else ""
        self._lease_token = trimmed or None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def lookup_pair(
        self,
        base_mint: str,
        quote_mint: str,
        *,
        dexes: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> PoolLookupResult:
        params: Dict[str, str] = {"baseMint": base_mint, "quoteMint": quote_mint}
        if dexes:
            params["dex"] = ",".join(dexes)
        if limit is not None and limit > 0:
            params["limit"] = str(int(limit))
        if self._lease_token:
            params["t"] = self._lease_token

        url = str(httpx.URL(self.base_url).join("/pools/lookup"))
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise LookupFailure(f"pool lookup failed: {exc}") from exc
        if not response.is_success:
            raise LookupFailure(f"pool lookup failed: {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise LookupFailure("pool lookup invalid response") from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("pools"), list):
            raise LookupFailure("pool lookup invalid response")

        matches: List[PoolMatch] = []
        for entry in payload["pools"]:
            if not isinstance(entry, dict) or not _text(entry, "pool"):
                logger.debug("Skipping malformed pool lookup entry: %r", entry)
                continue
            matches.append(
                PoolMatch(
                    pool=_text(entry, "pool"),
                    dex=_text(entry, "dex"),
                    base_mint=_text(entry, "baseMint"),
                    quote_mint=_text(entry, "quoteMint"),
                    base_vault=_text(entry, "baseVault"),
                    quote_vault=_text(entry, "quoteVault"),
                )
            )
        return PoolLookupResult(
            base_mint=_text(payload, "baseMint") or base_mint,
            quote_mint=_text(payload, "quoteMint") or quote_mint,
            pools=matches,
        )


__all__ = ["PoolLookupClient", "PoolLookupResult", "PoolMatch"]
