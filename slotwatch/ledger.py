from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from .amounts import format_decimal_amount, parse_amount
from .schemas import ControlFrame, PaymentRequiredFrame, RenewalReminderFrame, RenewedFrame, StreamId

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Charge:
    amount: int
    asset: str


@dataclass(slots=True, frozen=True)
class SpendTotal:
    amount: int
    asset: str


def parse_price_hint(hint: Optional[str]) -> Optional[Charge]:
    """Parse `"amount=500 asset=USDC"` style hints (`maxAmount` is accepted too)."""
    if not hint:
        return None
    amount: Optional[str] = None
    asset: Optional[str] = None
    for part in hint.split():
        key, sep, value = part.partition("=")
        if not sep or not key or not value:
            continue
        if key in ("amount", "maxAmount"):
            amount = value
        elif key == "asset":
            asset = value
    if amount is None or asset is None:
        return None
    parsed = parse_amount(amount)
    if parsed is None:
        return None
    return Charge(amount=parsed, asset=asset)


class SpendLedger:
    """Confirmed and pending x402 spend per stream.

    Amounts stay in the asset's smallest unit; decimals are applied only when
    formatting for display.
    """

    def __init__(self) -> None:
        self._totals: Dict[StreamId, SpendTotal] = {}
        self._pending: Dict[StreamId, Charge] = {}

    def observe(self, stream: StreamId, frame: ControlFrame) -> None:
        if isinstance(frame, (RenewalReminderFrame, PaymentRequiredFrame)):
            charge = parse_price_hint(frame.renew.price_hint)
            if charge is None:
                if frame.renew.price_hint:
                    logger.debug("Discarding unparsable price hint for %s: %r", stream.value, frame.renew.price_hint)
                return
            self._pending[stream] = charge
            self._totals.setdefault(stream, SpendTotal(0, charge.asset))
            return

        if isinstance(frame, RenewedFrame):
            pending = self._pending.pop(stream, None)
            if pending is None:
                return
            self._add(stream, pending)

    def record_charge(self, stream: StreamId, amount: object, asset: Optional[str]) -> bool:
        parsed = parse_amount(amount)
        if parsed is None or not asset:
            logger.debug("Discarding charge for %s with amount %r", stream.value, amount)
            return False
        self._add(stream, Charge(parsed, asset))
        return True

    def _add(self, stream: StreamId, charge: Charge) -> None:
        current = self._totals.get(stream)
        total = (current.amount if current else 0) + charge.amount
        asset = current.asset if current else charge.asset
        self._totals[stream] = SpendTotal(total, asset)

    def totals(self) -> Dict[StreamId, SpendTotal]:
        return dict(self._totals)

    def pending(self) -> Dict[StreamId, Charge]:
        return dict(self._pending)

    def total_for(self, stream: StreamId) -> Optional[SpendTotal]:
        return self._totals.get(stream)

    def display_total(self, stream: StreamId, decimals: Optional[int]) -> Optional[str]:
        total = self._totals.get(stream)
        if total is None:
            return None
        return f"{format_decimal_amount(total.amount, decimals)} {total.asset}"

    def forget(self, stream: StreamId) -> None:
        self._pending.pop(stream, None)
        self._totals.pop(stream, None)


__all__ = ["Charge", "SpendLedger", "SpendTotal", "parse_price_hint"]
