from __future__ import annotations

from typing import Any, Optional


def parse_amount(value: Any) -> Optional[int]:
    """Parse an integer amount in the smallest asset unit.

    Only ints and base-10 integer strings are accepted; floats and anything
    with a fractional part return None so the charge can be discarded.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    digits = cleaned[1:] if cleaned[0] in "+-" else cleaned
    if not (digits.isascii() and digits.isdigit()):
        return None
    return int(cleaned)


def format_decimal_amount(raw: int, decimals: Optional[int]) -> str:
    if decimals is None or decimals <= 0:
        return str(raw)
    negative = raw < 0
    base = str(abs(raw)).rjust(decimals + 1, "0")
    integer = base[:-decimals]
    fraction = base[-decimals:].rstrip("0")
    value = f"{integer}.{fraction}" if fraction else integer
    return f"-{value}" if negative else value
