from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .payments.authority import DEFAULT_HTTP_TIMEOUT

logger = logging.getLogger(__name__)

_MINT_KEYS = ("address", "mint", "tokenAddress")
_LABEL_KEYS = ("symbol", "name")


def _clean(value: Any) -> Optional[str]:
    if isinstance(value, str):
        trimmed = value.strip()
        return trimmed or None
    return None


def _entries(payload: Any) -> List[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("tokens", "data"):
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


def parse_token_list(payload: Any) -> Dict[str, str]:
    """Extract mint -> label pairs from a token-list document.

    Accepts a bare list or an object with a `tokens`/`data` list. Entries
    without both a mint and a label are skipped.
    """
    labels: Dict[str, str] = {}
    for entry in _entries(payload):
        if not isinstance(entry, dict):
            continue
        mint = next((m for m in (_clean(entry.get(k)) for k in _MINT_KEYS) if m), None)
        label = next((lbl for lbl in (_clean(entry.get(k)) for k in _LABEL_KEYS) if lbl), None)
        if mint and label:
            labels[mint] = label
    return labels


async def load_token_labels(
    urls: Iterable[str] = (),
    paths: Iterable[str] = (),
    *,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, str]:
    """Merge labels from token-list URLs, then files. Failed sources are logged and skipped."""
    labels: Dict[str, str] = {}
    urls = list(urls)
    if urls:
        client = http_client or httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT)
        try:
            for url in urls:
                try:
                    response = await client.get(url)
                    response.raise_for_status()
                    labels.update(parse_token_list(response.json()))
                except (httpx.HTTPError, ValueError) as exc:
                    logger.warning("Token list %s failed to load: %s", url, exc)
        finally:
            if http_client is None:
                await client.aclose()

    for path in paths:
        try:
            payload = json.loads(Path(path).expanduser().resolve().read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Token list %s failed to load: %s", path, exc)
            continue
        labels.update(parse_token_list(payload))

    return labels


__all__ = ["load_token_labels", "parse_token_list"]
