from __future__ import annotations

import secrets
import time
from typing import Any, Callable, Dict, Optional

import httpx

from bb_core.api import BybitHTTPClient
from bb_core.config import Settings
from bb_core.errors import GatewayTransportError
from bb_core.models import (
    AccountEquity,
    Fill,
    FundingAccrual,
    InstrumentFilters,
    InstrumentSnapshot,
    OrderAck,
    Side,
    parse_funding_time,
    parse_number,
)
from bb_core.utils.logger import get_logger
from bb_core.utils.precision import conform_price, conform_qty, format_decimal, to_decimal

# Bybit v5 linear-perp binding of bb_core.gateway.ExchangeGateway.
# - public market data needs no credentials
# - orders / positions / executions / wallet are signed

logger = get_logger("bb_core.api.http")

CATEGORY = "linear"


def _base36(n: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = digits[r] + out
        if n == 0:
            return out


def make_order_link_id(now_ms: int) -> str:
    """Client order reference: ``fund-<base36 ms>-<8 hex>``."""
    return f"fund-{_base36(now_ms)}-{secrets.token_hex(4)}"


def parse_ticker(raw: Dict[str, Any]) -> Optional[InstrumentSnapshot]:
    """Ticker row → snapshot; rows without a usable funding rate are dropped."""
    rate = parse_number(raw.get("fundingRate"))
    symbol = raw.get("symbol")
    if rate is None or not symbol:
        return None
    return InstrumentSnapshot(
        symbol=str(symbol),
        funding_rate=rate,
        funding_rate_abs=abs(rate),
        mark_price=parse_number(raw.get("markPrice")),
        last_price=parse_number(raw.get("lastPrice")),
        bid_price=parse_number(raw.get("bid1Price", raw.get("bidPrice"))),
        ask_price=parse_number(raw.get("ask1Price", raw.get("askPrice"))),
        next_funding_time=parse_funding_time(raw.get("nextFundingTime")),
        funding_interval=str(raw["fundingInterval"]) if raw.get("fundingInterval") else None,
        turnover_24h=parse_number(raw.get("turnover24h")),
        volume_24h=parse_number(raw.get("volume24h")),
    )


class BybitGateway:
    """Async Bybit v5 gateway over :class:`BybitHTTPClient`."""

    def __init__(
        self,
        client: BybitHTTPClient,
        *,
        account_type: str = "UNIFIED",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cli = client
        self.account_type = account_type
        self._clock = clock
        self._filters: Dict[str, InstrumentFilters] = {}

    @classmethod
    def from_settings(
        cls, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> "BybitGateway":
        client = BybitHTTPClient(
            settings.base_url,
            settings.api_key,
            settings.api_secret,
            transport=transport,
        )
        return cls(client, account_type=settings.account_type)

    # ─────────────── market data ───────────────

    async def list_instrument_snapshots(self) -> list[InstrumentSnapshot]:
        result = await self._cli.get("/v5/market/tickers", {"category": CATEGORY})
        rows = result.get("list")
        if not isinstance(rows, list):
            raise GatewayTransportError("tickers response without list")
        snaps = (parse_ticker(r) for r in rows if isinstance(r, dict))
        return [s for s in snaps if s is not None]

    async def get_snapshot(self, symbol: str) -> Optional[InstrumentSnapshot]:
        result = await self._cli.get(
            "/v5/market/tickers", {"category": CATEGORY, "symbol": symbol}
        )
        rows = result.get("list") or []
        return parse_ticker(rows[0]) if rows and isinstance(rows[0], dict) else None

    async def get_instrument_filters(self, symbol: str) -> InstrumentFilters:
        cached = self._filters.get(symbol)
        if cached is not None:
            return cached
        result = await self._cli.get(
            "/v5/market/instruments-info", {"category": CATEGORY, "symbol": symbol}
        )
        rows = result.get("list") or []
        if not rows:
            raise GatewayTransportError(f"{symbol}: no instrument info returned")
        lot = rows[0].get("lotSizeFilter") or {}
        px = rows[0].get("priceFilter") or {}
        min_qty = parse_number(lot.get("minOrderQty"))
        qty_step = parse_number(lot.get("qtyStep"))
        tick = parse_number(px.get("tickSize"))
        if not min_qty or not qty_step or not tick:
            raise GatewayTransportError(f"{symbol}: incomplete instrument filters")
        filters = InstrumentFilters(
            min_order_qty=to_decimal(lot["minOrderQty"]),
            qty_step=to_decimal(lot["qtyStep"]),
            price_step=to_decimal(px["tickSize"]),
        )
        self._filters[symbol] = filters
        return filters

    # ─────────────── trading ───────────────

    async def place_limit_order(
        self,
        symbol: str,
        side: Side,
        price: float,
        qty: float,
        reduce_only: bool = False,
    ) -> OrderAck:
        filters = await self.get_instrument_filters(symbol)
        conf_qty = conform_qty(symbol, qty, filters, round_up_to_min=reduce_only)
        conf_px = conform_price(price, filters.price_step)
        link_id = make_order_link_id(int(self._clock() * 1000))
        body = {
            "category": CATEGORY,
            "symbol": symbol,
            "side": side,
            "orderType": "Limit",
            "qty": format_decimal(conf_qty, filters.qty_step),
            "price": format_decimal(conf_px, filters.price_step),
            "timeInForce": "GTC",
            "reduceOnly": bool(reduce_only),
            "orderLinkId": link_id,
        }
        logger.info(
            "place_limit_order: try symbol=%s side=%s price=%s qty=%s reduce_only=%s",
            symbol,
            side,
            body["price"],
            body["qty"],
            reduce_only,
        )
        result = await self._cli.post("/v5/order/create", body)
        ack = OrderAck(
            order_ref=link_id,
            order_id=str(result["orderId"]) if result.get("orderId") else None,
            qty=float(conf_qty),
            price=float(conf_px),
        )
        logger.info("place_limit_order: ok symbol=%s ref=%s id=%s", symbol, ack.order_ref, ack.order_id)
        return ack

    async def get_open_quantity(self, symbol: str) -> float:
        result = await self._cli.get(
            "/v5/position/list", {"category": CATEGORY, "symbol": symbol}, signed=True
        )
        rows = result.get("list") or []
        size = parse_number(rows[0].get("size")) if rows else None
        return abs(size) if size is not None else 0.0

    async def get_fills_and_fees(self, order_ref: str) -> list[Fill]:
        result = await self._cli.get(
            "/v5/execution/list", {"category": CATEGORY, "orderLinkId": order_ref}, signed=True
        )
        fills: list[Fill] = []
        for row in result.get("list") or []:
            fee = parse_number(row.get("execFee")) or 0.0
            pnl = parse_number(row.get("execPnl")) if row.get("execType") == "Trade" else None
            fills.append(Fill(fee=fee, realized_pnl=pnl or 0.0))
        return fills

    async def get_funding_accruals(
        self, symbol: str, start: float, end: float
    ) -> list[FundingAccrual]:
        result = await self._cli.get(
            "/v5/account/funding/history",
            {
                "category": CATEGORY,
                "symbol": symbol,
                "startTime": int(start * 1000),
                "endTime": int(end * 1000),
            },
            signed=True,
        )
        out: list[FundingAccrual] = []
        for row in result.get("list") or []:
            ts = parse_number(row.get("execTime", row.get("timestamp")))
            fee = parse_number(row.get("fundingFee", row.get("funding")))
            if ts is None or fee is None:
                continue
            out.append(FundingAccrual(time=ts / 1000.0, fee=fee))
        return out

    async def get_account_equity(self, coin: str) -> AccountEquity:
        result = await self._cli.get(
            "/v5/account/wallet-balance",
            {"accountType": self.account_type, "coin": coin},
            signed=True,
        )
        accounts = result.get("list") or []
        if not accounts:
            raise GatewayTransportError("wallet balance response without accounts")
        coins = accounts[0].get("coin") or []
        target = next((c for c in coins if c.get("coin") == coin), coins[0] if coins else None)
        if target is None:
            raise GatewayTransportError(f"wallet balance for {coin} not available")

        def _num(*keys: str) -> Optional[float]:
            for k in keys:
                v = parse_number(target.get(k))
                if v is not None:
                    return v
            return None

        total = _num("equity", "walletBalance", "totalEquity") or 0.0
        wallet = _num("walletBalance", "wallet")
        wallet = total if wallet is None else wallet
        available = _num("availableToWithdraw", "availableBalance", "available")
        return AccountEquity(
            coin=str(target.get("coin") or coin),
            total=total,
            available=wallet if available is None else available,
            wallet_balance=wallet,
        )

    async def aclose(self) -> None:
        await self._cli.close()


__all__ = ["BybitGateway", "parse_ticker", "make_order_link_id"]
