# src/bb_core/gateway.py
"""Capability interface every exchange binding must provide.

Every coroutine may raise :class:`bb_core.errors.GatewayError`; the bots
catch at the call site and treat the failure as "no progress".
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from .models import (
    AccountEquity,
    Fill,
    FundingAccrual,
    InstrumentSnapshot,
    OrderAck,
    Side,
)


class ExchangeGateway(Protocol):
    async def list_instrument_snapshots(self) -> list[InstrumentSnapshot]:
        """All linear instruments that carry a parseable funding rate."""
        ...

    async def get_snapshot(self, symbol: str) -> Optional[InstrumentSnapshot]:
        ...

    async def place_limit_order(
        self,
        symbol: str,
        side: Side,
        price: float,
        qty: float,
        reduce_only: bool = False,
    ) -> OrderAck:
        """Conform price/qty to the venue steps and submit a GTC limit order.

        Raises ``SizingError`` when the conformed qty is below the venue
        minimum and ``GatewayRejectedError`` carrying the venue message when
        the order is refused.
        """
        ...

    async def get_open_quantity(self, symbol: str) -> float:
        ...

    async def get_fills_and_fees(self, order_ref: str) -> Sequence[Fill]:
        ...

    async def get_funding_accruals(
        self, symbol: str, start: float, end: float
    ) -> Sequence[FundingAccrual]:
        ...

    async def get_account_equity(self, coin: str) -> AccountEquity:
        ...

    async def aclose(self) -> None:
        ...


__all__ = ["ExchangeGateway"]
