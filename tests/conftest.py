# Shared fakes for the fundarb suites, plus certifi-backed SSL env vars.
import asyncio
import os
from typing import Optional

import certifi
import pytest

from bb_core.errors import GatewayTransportError, SizingError
from bb_core.models import AccountEquity, Fill, FundingAccrual, InstrumentSnapshot, OrderAck

# Use certifi for OpenSSL-based libraries (httpx etc.).
os.environ.setdefault("SSL_CERT_FILE", certifi.where())
os.environ.setdefault("REQUESTS_CA_BUNDLE", certifi.where())


class FakeClock:
    """Settable epoch-seconds clock."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway:
    """In-memory ExchangeGateway with scripted answers.

    ``sizes[symbol]`` is consumed one value per query; the last value repeats.
    ``fail`` holds method names that raise GatewayTransportError.
    """

    def __init__(self) -> None:
        self.snapshots: dict[str, InstrumentSnapshot] = {}
        self.sizes: dict[str, list[float]] = {}
        self.fills: dict[str, list[Fill]] = {}
        self.accruals: list[FundingAccrual] = []
        self.funding_queries: list[tuple[str, float, float]] = []
        self.equity: list[float] = [1000.0]
        self.orders: list[dict] = []
        self.fail: set[str] = set()
        self.sizing_error = False
        self.closed = False

    def _check(self, name: str) -> None:
        if name in self.fail:
            raise GatewayTransportError(f"{name} unavailable")

    @staticmethod
    def _next(script: list[float], default: float) -> float:
        if not script:
            return default
        if len(script) > 1:
            return script.pop(0)
        return script[0]

    async def list_instrument_snapshots(self) -> list[InstrumentSnapshot]:
        self._check("list_instrument_snapshots")
        return list(self.snapshots.values())

    async def get_snapshot(self, symbol: str) -> Optional[InstrumentSnapshot]:
        self._check("get_snapshot")
        return self.snapshots.get(symbol)

    async def place_limit_order(self, symbol, side, price, qty, reduce_only=False) -> OrderAck:
        self._check("place_limit_order")
        if self.sizing_error:
            raise SizingError(symbol, 0.0, 1.0)
        ref = f"ref-{len(self.orders) + 1}"
        self.orders.append(
            {"symbol": symbol, "side": side, "price": price, "qty": qty, "reduce_only": reduce_only, "ref": ref}
        )
        return OrderAck(order_ref=ref, qty=qty, price=price)

    async def get_open_quantity(self, symbol: str) -> float:
        self._check("get_open_quantity")
        return self._next(self.sizes.get(symbol, []), 0.0)

    async def get_fills_and_fees(self, order_ref: str) -> list[Fill]:
        self._check("get_fills_and_fees")
        return list(self.fills.get(order_ref, []))

    async def get_funding_accruals(self, symbol: str, start: float, end: float) -> list[FundingAccrual]:
        self._check("get_funding_accruals")
        self.funding_queries.append((symbol, start, end))
        return list(self.accruals)

    async def get_account_equity(self, coin: str) -> AccountEquity:
        self._check("get_account_equity")
        total = self._next(self.equity, 0.0)
        return AccountEquity(coin=coin, total=total, available=total, wallet_balance=total)

    async def aclose(self) -> None:
        self.closed = True

    def close_orders(self, symbol: Optional[str] = None) -> list[dict]:
        return [o for o in self.orders if o["reduce_only"] and (symbol is None or o["symbol"] == symbol)]


def snapshot(
    symbol: str,
    rate: float,
    funding_time: Optional[float],
    *,
    mark: Optional[float] = 100.0,
    last: Optional[float] = None,
    bid: Optional[float] = None,
    ask: Optional[float] = None,
) -> InstrumentSnapshot:
    return InstrumentSnapshot(
        symbol=symbol,
        funding_rate=rate,
        funding_rate_abs=abs(rate),
        mark_price=mark,
        last_price=last,
        bid_price=bid,
        ask_price=ask,
        next_funding_time=funding_time,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def make_snapshot():
    return snapshot


@pytest.fixture
def no_sleep():
    """Records requested delays and only yields to the loop."""

    calls: list[float] = []

    async def _sleep(delay: float) -> None:
        calls.append(delay)
        await asyncio.sleep(0)

    _sleep.calls = calls  # type: ignore[attr-defined]
    return _sleep
