from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

DEFAULT_KNOWN_MINTS: Mapping[str, str] = MappingProxyType(
    {
        "SOL": "So11111111111111111111111111111111111111112",
        "SOL_NATIVE": "So11111111111111111111111111111111111111111",
        "USDC": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
        "RAY": "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R",
        "PUMP": "pumpCmXqMfrsAkQ5r49WcJnRayYRqmXz6ae8H7H9Dfn",
        "JUP": "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN",
        "MET": "METvsvVRapdj9cFLzq4Tr43xK4tAjQfwX76z3n6mWQL",
    }
)

PAIR_SEPARATORS = ("/", ":")

_LIST_SPLIT = re.compile(r"[\s,]+")
_PAIR_SPLIT = re.compile(r"[/:]")
_ENV_MAP_SPLIT = re.compile(r"[,;\n]+")


def parse_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in _LIST_SPLIT.split(value) if item.strip()]


def is_pair_input(value: str) -> bool:
    return any(sep in value for sep in PAIR_SEPARATORS)


def split_pair(entry: str) -> Optional[Tuple[str, str]]:
    parts = [part.strip() for part in _PAIR_SPLIT.split(entry)]
    if len(parts) < 2 or not parts[0] or not parts[1]:
        return None
    return parts[0], parts[1]


def parse_pair_list(value: Optional[str]) -> List[Tuple[str, str]]:
    pairs: List[Tuple[str, str]] = []
    for entry in parse_list(value):
        pair = split_pair(entry)
        if pair:
            pairs.append(pair)
    return pairs


def parse_env_map(value: Optional[str]) -> Dict[str, str]:
    """Parse `KEY=value` / `KEY:value` entries separated by `,`, `;` or newlines."""
    if not value:
        return {}
    result: Dict[str, str] = {}
    for entry in _ENV_MAP_SPLIT.split(value):
        entry = entry.strip()
        if not entry:
            continue
        if "=" in entry:
            sep = "="
        elif ":" in entry:
            sep = ":"
        else:
            continue
        key, _, val = entry.partition(sep)
        key, val = key.strip(), val.strip()
        if key and val:
            result[key] = val
    return result


def parse_known_mint_overrides(value: Optional[str]) -> Dict[str, str]:
    overrides: Dict[str, str] = {}
    for key, val in parse_env_map(value).items():
        upper = key.upper()
        if upper in DEFAULT_KNOWN_MINTS:
            overrides[upper] = val
    return overrides


def parse_mint_labels(value: Optional[str]) -> Dict[str, str]:
    """`LABEL=mint` entries, returned as mint -> label."""
    return {mint: label for label, mint in parse_env_map(value).items()}


def pair_key(base_mint: str, quote_mint: str) -> str:
    return f"{base_mint}/{quote_mint}"


def parse_pair_key(value: str) -> Optional[Tuple[str, str]]:
    parts = value.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    return parts[0], parts[1]


@dataclass(frozen=True)
class MintRegistry:
    """Known mints and mint labels, built once at startup and never mutated."""

    known: Mapping[str, str] = field(default_factory=lambda: DEFAULT_KNOWN_MINTS)
    labels: Mapping[str, str] = field(default_factory=dict)
    _label_index: Mapping[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        known = MappingProxyType({**DEFAULT_KNOWN_MINTS, **dict(self.known)})
        labels: Dict[str, str] = {
            known["SOL"]: "SOL",
            known["SOL_NATIVE"]: "SOL",
            known["USDC"]: "USDC",
            known["RAY"]: "RAY",
            known["PUMP"]: "PUMP",
            known["JUP"]: "JUP",
            known["MET"]: "MET",
        }
        labels.update(self.labels)
        index: Dict[str, str] = {}
        for mint, label in labels.items():
            key = label.strip().upper()
            if key and key not in index:
                index[key] = mint
        object.__setattr__(self, "known", known)
        object.__setattr__(self, "labels", MappingProxyType(labels))
        object.__setattr__(self, "_label_index", MappingProxyType(index))

    @classmethod
    def from_env(
        cls,
        known_mints: Optional[str],
        mint_labels: Optional[str],
        extra_labels: Optional[Mapping[str, str]] = None,
    ) -> "MintRegistry":
        labels = dict(parse_mint_labels(mint_labels))
        if extra_labels:
            labels.update(extra_labels)
        return cls(known=parse_known_mint_overrides(known_mints), labels=labels)

    def with_labels(self, labels: Mapping[str, str]) -> "MintRegistry":
        """Return a new registry with `labels` (mint -> label) layered on top."""
        if not labels:
            return self
        return MintRegistry(known=self.known, labels={**self.labels, **labels})

    def mint(self, name: str) -> str:
        return self.known[name]

    @property
    def usdc(self) -> str:
        return self.known["USDC"]

    @property
    def sol(self) -> str:
        return self.known["SOL"]

    def resolve(self, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            return ""
        return self._label_index.get(trimmed.upper(), trimmed)

    def format_mint(self, mint: str) -> str:
        if not mint:
            return ""
        return self.labels.get(mint) or f"{mint[:4]}..{mint[-4:]}"

    def format_pair(self, base_mint: str, quote_mint: str) -> str:
        return f"{self.format_mint(base_mint)}/{self.format_mint(quote_mint)}"

    def format_asset(self, asset: str) -> str:
        trimmed = asset.strip()
        if not trimmed:
            return "USDC"
        if len(trimmed) <= 8 and ":" not in trimmed:
            return trimmed.upper()
        return self.format_mint(trimmed)

    def resolve_pair(self, entry: str) -> Optional[Tuple[str, str]]:
        pair = split_pair(entry)
        if pair is None:
            return None
        base, quote = self.resolve(pair[0]), self.resolve(pair[1])
        if not base or not quote:
            return None
        return base, quote

    def default_pairs(self) -> List[str]:
        usdc = self.usdc
        return [pair_key(self.known[name], usdc) for name in ("SOL", "PUMP", "JUP", "RAY", "MET")]


__all__ = [
    "DEFAULT_KNOWN_MINTS",
    "MintRegistry",
    "is_pair_input",
    "pair_key",
    "parse_env_map",
    "parse_known_mint_overrides",
    "parse_list",
    "parse_mint_labels",
    "parse_pair_key",
    "parse_pair_list",
    "split_pair",
]
