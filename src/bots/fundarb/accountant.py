# PnL & risk accounting for closed trades.
# - summarize(): entry + close executions, funding accrued over the holding
#   window, fresh equity read -> ClosedTradeSummary
# - evaluate(): breach check after each finalized trade; flips the one-way
#   trading latch on RiskState exactly once per process

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from bb_core.gateway import ExchangeGateway

from .config import FundArbConfig
from .state import OpenPosition

logger = logging.getLogger("bots.fundarb.accountant")


def net_pnl(gross_pnl: float, fees: float, funding_fee: float) -> float:
    return gross_pnl - fees - funding_fee


def format_usd(value: float) -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


@dataclass(frozen=True)
class ClosedTradeSummary:
    symbol: str
    gross_pnl: float
    fees: float
    funding_fee: float
    equity: Optional[float] = None
    equity_change: Optional[float] = None
    drawdown: Optional[float] = None
    residual_qty: float = 0.0

    @property
    def net_pnl(self) -> float:
        return net_pnl(self.gross_pnl, self.fees, self.funding_fee)

    def as_fields(self) -> dict:
        return {
            "gross_pnl": self.gross_pnl,
            "fees": self.fees,
            "funding_fee": self.funding_fee,
            "net_pnl": self.net_pnl,
            "equity": self.equity,
            "equity_change": self.equity_change,
            "drawdown": self.drawdown,
            "residual_qty": self.residual_qty,
        }


class RiskState:
    """Write-once starting equity plus the one-way trading latch."""

    def __init__(self, drawdown_limit_pct: float) -> None:
        self.drawdown_limit_pct = float(drawdown_limit_pct)
        self._starting_equity: Optional[float] = None
        self._trading_enabled = True
        self.halt_reason: Optional[str] = None

    @property
    def starting_equity(self) -> Optional[float]:
        return self._starting_equity

    def capture_starting_equity(self, equity: float) -> bool:
        if self._starting_equity is not None:
            return False
        self._starting_equity = float(equity)
        return True

    @property
    def drawdown_limit_usd(self) -> float:
        if self._starting_equity is None:
            return 0.0
        return self._starting_equity * self.drawdown_limit_pct

    @property
    def trading_enabled(self) -> bool:
        return self._trading_enabled

    def halt(self, reason: str) -> bool:
        """Latch trading off. True only for the call that actually flipped it."""
        if not self._trading_enabled:
            return False
        self._trading_enabled = False
        self.halt_reason = reason
        return True


class PnLAccountant:
    def __init__(
        self,
        gateway: ExchangeGateway,
        cfg: FundArbConfig,
        risk: RiskState,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._gw = gateway
        self._risk = risk
        self._clock = clock
        self.model = cfg.risk.model
        self.coin = cfg.risk.account_coin
        self.stop_loss_usd = -(cfg.trade.notional_usd * cfg.risk.stop_loss_pct)
        self.history_pad_s = cfg.funding.history_pad_s
        self.open_lookback_s = cfg.funding.open_lookback_s
        self.close_grace_s = cfg.funding.close_grace_s
        self.cumulative_pnl = 0.0
        self.trades = 0

    @property
    def risk(self) -> RiskState:
        return self._risk

    # ─────────────── gathering ───────────────

    async def _executions(self, order_refs: Iterable[str]) -> tuple[float, float]:
        """(trade pnl, fees) over the distinct refs; a failing ref contributes zero."""
        unique = list(dict.fromkeys(r for r in order_refs if r))
        if not unique:
            return 0.0, 0.0

        async def _one(ref: str) -> tuple[float, float]:
            try:
                fills = await self._gw.get_fills_and_fees(ref)
            except Exception as e:
                logger.error("executions for %s unavailable: %s", ref, e)
                return 0.0, 0.0
            return (
                sum(f.realized_pnl for f in fills),
                sum(abs(f.fee) for f in fills),
            )

        parts = await asyncio.gather(*(_one(ref) for ref in unique))
        return sum(p for p, _ in parts), sum(f for _, f in parts)

    async def funding_fee(self, symbol: str, start: float, end: float) -> float:
        """Funding accrued in [start, end + grace], fetched with a wide pad either side."""
        try:
            accruals = await self._gw.get_funding_accruals(
                symbol, start - self.history_pad_s, end + self.history_pad_s
            )
        except Exception as e:
            logger.error("%s: funding history unavailable: %s", symbol, e)
            return 0.0
        upper = end + self.close_grace_s
        return sum(a.fee for a in accruals if start <= a.time <= upper)

    async def summarize(
        self, position: OpenPosition, *, closed_at: Optional[float] = None, residual_qty: float = 0.0
    ) -> ClosedTradeSummary:
        closed_at = self._clock() if closed_at is None else closed_at
        entry_pnl, entry_fee = await self._executions([position.entry_order_ref])
        close_pnl, close_fee = await self._executions(position.close_order_refs)
        funding = await self.funding_fee(
            position.symbol, position.opened_at - self.open_lookback_s, closed_at
        )

        equity = change = drawdown = None
        try:
            balance = await self._gw.get_account_equity(self.coin)
            equity = balance.total
            start = self._risk.starting_equity
            if start is not None:
                change = equity - start
                drawdown = start - equity
        except Exception as e:
            logger.error("%s: equity refresh after close failed: %s", position.symbol, e)

        return ClosedTradeSummary(
            symbol=position.symbol,
            gross_pnl=entry_pnl + close_pnl,
            fees=entry_fee + close_fee,
            funding_fee=funding,
            equity=equity,
            equity_change=change,
            drawdown=drawdown,
            residual_qty=residual_qty,
        )

    # ─────────────── breaker ───────────────

    def evaluate(self, summary: ClosedTradeSummary) -> bool:
        """Account one finalized trade. True when this trade tripped the breaker."""
        self.trades += 1
        self.cumulative_pnl += summary.net_pnl

        reason: Optional[str] = None
        if self.model == "cumulative_pnl":
            if self.cumulative_pnl <= self.stop_loss_usd:
                reason = (
                    f"cumulative PnL {format_usd(self.cumulative_pnl)} breached "
                    f"stop-loss {format_usd(self.stop_loss_usd)}"
                )
        else:
            limit = self._risk.drawdown_limit_usd
            start = self._risk.starting_equity
            if summary.drawdown is not None and start is not None and summary.drawdown >= limit:
                reason = (
                    f"max drawdown reached: starting {format_usd(start)}, "
                    f"current {format_usd(summary.equity or 0.0)}, drawdown "
                    f"{format_usd(summary.drawdown)} (limit {format_usd(limit)})"
                )

        if reason is None:
            return False
        flipped = self._risk.halt(reason)
        if flipped:
            logger.critical("%s. Halting strategy.", reason)
        return flipped


__all__ = ["ClosedTradeSummary", "RiskState", "PnLAccountant", "net_pnl", "format_usd"]
