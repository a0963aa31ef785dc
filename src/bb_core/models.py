"""Venue-facing records exchanged between the gateway and the bots.

All timestamps are epoch seconds (float). The Bybit binding converts the
venue's millisecond strings on the way in and out.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal, Optional

Side = Literal["Buy", "Sell"]


def opposite_side(side: Side) -> Side:
    return "Sell" if side == "Buy" else "Buy"


def parse_number(value: Any) -> Optional[float]:
    """Return ``value`` as a finite float, or None when it is missing/garbage."""

    if value is None or value == "":
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) else None


def parse_funding_time(value: Any) -> Optional[float]:
    """Resolve a venue funding timestamp to epoch seconds.

    Numeric strings with 10 digits are taken as seconds, any other numeric
    value as milliseconds; anything else is tried as ISO-8601.
    """

    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    num = parse_number(text)
    if num is not None:
        digits = text.lstrip("+-").split(".", 1)[0]
        return num if len(digits) == 10 else num / 1000.0
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def _positive(*candidates: Optional[float]) -> Optional[float]:
    for value in candidates:
        if value is not None and value > 0:
            return value
    return None


@dataclass(frozen=True)
class InstrumentSnapshot:
    """Latest funding/price state of one perpetual instrument.

    Attributes
    ----------
    symbol:
        Venue symbol, e.g. ``BTCUSDT``.
    funding_rate:
        Signed rate for the next funding event (0.005 == 0.5%).
    funding_rate_abs:
        ``abs(funding_rate)``, kept for ranking.
    next_funding_time:
        Epoch seconds of the next funding event, None when unresolvable.
    funding_interval:
        Venue funding interval as reported (minutes, may be None).
    """

    symbol: str
    funding_rate: float
    funding_rate_abs: float
    mark_price: Optional[float] = None
    last_price: Optional[float] = None
    bid_price: Optional[float] = None
    ask_price: Optional[float] = None
    next_funding_time: Optional[float] = None
    funding_interval: Optional[str] = None
    turnover_24h: Optional[float] = None
    volume_24h: Optional[float] = None

    def reference_price(self) -> Optional[float]:
        """Entry reference: first positive of mark, last, bid, ask."""

        return _positive(self.mark_price, self.last_price, self.bid_price, self.ask_price)

    def close_reference_price(
        self, close_side: Side, fallback: Optional[float] = None
    ) -> Optional[float]:
        """Price to cross the book with when closing.

        A buy-to-close leans on the ask, a sell-to-close on the bid; both fall
        back through mark and last, then ``fallback`` (usually the entry price).
        """

        touch = self.ask_price if close_side == "Buy" else self.bid_price
        return _positive(touch, self.mark_price, self.last_price, fallback)


@dataclass(frozen=True)
class InstrumentFilters:
    min_order_qty: Decimal
    qty_step: Decimal
    price_step: Decimal


@dataclass(frozen=True)
class OrderAck:
    """Accepted order; ``qty``/``price`` are the conformed values sent."""

    order_ref: str
    qty: float
    price: float
    order_id: Optional[str] = None


@dataclass(frozen=True)
class Fill:
    fee: float
    realized_pnl: float


@dataclass(frozen=True)
class FundingAccrual:
    time: float
    fee: float


@dataclass(frozen=True)
class AccountEquity:
    coin: str
    total: float
    available: float
    wallet_balance: float = 0.0


__all__ = [
    "Side",
    "opposite_side",
    "parse_number",
    "parse_funding_time",
    "InstrumentSnapshot",
    "InstrumentFilters",
    "OrderAck",
    "Fill",
    "FundingAccrual",
    "AccountEquity",
]
