"""Position lifecycle: entry on fire, timed exit, retry-until-flat close, finalize.

Per symbol the order is strict: entry -> close timer armed -> close retry
loop -> finalize (record cleared) -> breach check. Across symbols nothing
is ordered. The ``opening`` marker plus the position record are the only
mutual exclusion; a second close request for a symbol joins the one already
running instead of starting another.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from bb_core.errors import SizingError
from bb_core.gateway import ExchangeGateway
from bb_core.models import Side, opposite_side
from bb_core.utils.journal import TradeJournal

from .accountant import ClosedTradeSummary, PnLAccountant, format_usd
from .config import FundArbConfig
from .poller import MarketPoller
from .state import OpenPosition, SymbolBook
from .timers import CancellableTimer

logger = logging.getLogger("bots.fundarb.lifecycle")

HaltHandler = Callable[[str], Awaitable[None]]


class PositionManager:
    def __init__(
        self,
        gateway: ExchangeGateway,
        book: SymbolBook,
        poller: MarketPoller,
        accountant: PnLAccountant,
        cfg: FundArbConfig,
        *,
        is_enabled: Callable[[], bool],
        on_halt: HaltHandler,
        journal: Optional[TradeJournal] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._gw = gateway
        self._book = book
        self._poller = poller
        self._accountant = accountant
        self._is_enabled = is_enabled
        self._on_halt = on_halt
        self._journal = journal or TradeJournal()
        self._clock = clock
        self._sleep = sleep

        self.threshold = cfg.schedule.funding_threshold
        self.post_offset_s = cfg.schedule.post_offset_s
        self.min_close_delay_s = cfg.schedule.min_close_delay_s
        self.notional_usd = cfg.trade.notional_usd
        self.max_close_attempts = cfg.close.max_attempts
        self.close_retry_delay_s = cfg.close.retry_delay_s
        self.size_error_delay_s = cfg.close.size_error_delay_s

        self._open_tasks: dict[str, asyncio.Task] = {}
        self._close_tasks: dict[str, asyncio.Task[Optional[ClosedTradeSummary]]] = {}

    # ─────────────── open ───────────────

    async def open_position(self, symbol: str, funding_time: float) -> Optional[OpenPosition]:
        if not self._is_enabled():
            return None
        if self._book.is_busy(symbol):
            logger.debug("%s: open ignored, already opening or open", symbol)
            return None

        self._book.opening.add(symbol)
        task = asyncio.current_task()
        if task is not None:
            self._open_tasks[symbol] = task
        try:
            return await self._open(symbol, funding_time)
        finally:
            self._book.opening.discard(symbol)
            self._open_tasks.pop(symbol, None)

    async def settle_openings(self) -> None:
        """Wait for entries already in flight so their positions can be closed."""
        current = asyncio.current_task()
        pending = [t for t in self._open_tasks.values() if t is not current]
        if pending:
            await asyncio.gather(*(asyncio.shield(t) for t in pending), return_exceptions=True)

    async def _open(self, symbol: str, funding_time: float) -> Optional[OpenPosition]:
        snap = await self._poller.refresh(symbol)
        if snap is None:
            logger.warning("%s: no snapshot available, skipping open", symbol)
            return None
        if snap.funding_rate_abs < self.threshold:
            logger.warning(
                "%s: funding %.4f%% below threshold at fire time, skipping",
                symbol,
                snap.funding_rate * 100,
            )
            return None

        side: Side = "Sell" if snap.funding_rate > 0 else "Buy"
        ref_price = snap.reference_price()
        if ref_price is None:
            logger.error("%s: no reference price, cannot open", symbol)
            return None

        raw_qty = self.notional_usd / ref_price
        try:
            ack = await self._gw.place_limit_order(symbol, side, ref_price, raw_qty, reduce_only=False)
        except SizingError as e:
            logger.warning("%s: entry skipped: %s", symbol, e)
            return None
        except Exception as e:
            logger.error("%s: open failed: %s", symbol, e)
            return None

        now = self._clock()
        if self._is_enabled():
            delay = max(funding_time + self.post_offset_s - now, self.min_close_delay_s)
        else:
            # halted while the order was in flight: do not leave it behind
            delay = 0.0
        timer = CancellableTimer(delay, lambda: self._close_quietly(symbol), name=f"close:{symbol}")
        position = OpenPosition(
            symbol=symbol,
            side=side,
            qty=ack.qty,
            entry_price=ack.price,
            funding_time=funding_time,
            opened_at=now,
            entry_order_ref=ack.order_ref,
            close_timer=timer,
        )
        self._book.positions[symbol] = position
        self._journal.record(
            "open",
            symbol,
            side=side,
            qty=ack.qty,
            price=ack.price,
            order_ref=ack.order_ref,
            funding_time=funding_time,
            close_in_s=round(delay, 3),
        )
        logger.info(
            "%s: opened %s @ %s (qty %s), close scheduled in %.0fs",
            symbol,
            side,
            ack.price,
            ack.qty,
            delay,
        )
        return position

    # ─────────────── close ───────────────

    async def _close_quietly(self, symbol: str) -> None:
        try:
            await self.close_position(symbol)
        except Exception:
            logger.exception("%s: scheduled close failed", symbol)

    async def close_position(self, symbol: str) -> Optional[ClosedTradeSummary]:
        """Run (or join) the close procedure for ``symbol`` to completion."""
        task = self._close_tasks.get(symbol)
        if task is None:
            position = self._book.positions.get(symbol)
            if position is None:
                return None
            if position.close_timer is not None:
                position.close_timer.cancel()
            task = asyncio.create_task(self._close_and_finalize(position), name=f"closing:{symbol}")
            self._close_tasks[symbol] = task
            self._book.closing.add(symbol)
            task.add_done_callback(lambda _t: self._close_done(symbol, _t))
        return await asyncio.shield(task)

    def _close_done(self, symbol: str, task: asyncio.Task) -> None:
        if self._close_tasks.get(symbol) is task:
            del self._close_tasks[symbol]
        self._book.closing.discard(symbol)

    async def _close_and_finalize(self, position: OpenPosition) -> Optional[ClosedTradeSummary]:
        residual = await self._close_until_flat(position)
        summary = await self._finalize(position, residual)
        if summary is not None and self._accountant.evaluate(summary):
            reason = self._accountant.risk.halt_reason or "risk breach"
            self._journal.record("breach", position.symbol, reason=reason)
            await self._on_halt(reason)
        return summary

    async def _close_until_flat(self, position: OpenPosition) -> float:
        """Reduce-only limits until flat or out of attempts. Returns the last seen size."""
        symbol = position.symbol
        close_side = opposite_side(position.side)
        last_size: Optional[float] = None

        for attempt in range(1, self.max_close_attempts + 1):
            try:
                size = await self._gw.get_open_quantity(symbol)
            except Exception as e:
                logger.error("%s: failed to read position size (attempt %d): %s", symbol, attempt, e)
                await self._sleep(self.size_error_delay_s)
                continue

            last_size = size
            if size <= 0:
                logger.info("%s: flat after %d attempt(s)", symbol, attempt - 1)
                return 0.0

            snap = self._poller.latest.get(symbol)
            if snap is not None:
                price = snap.close_reference_price(close_side, fallback=position.entry_price)
            else:
                price = position.entry_price if position.entry_price > 0 else None
            if price is None:
                logger.error("%s: missing price reference to close", symbol)
                break

            try:
                ack = await self._gw.place_limit_order(symbol, close_side, price, size, reduce_only=True)
                position.close_order_refs.append(ack.order_ref)
                self._journal.record(
                    "close_attempt",
                    symbol,
                    attempt=attempt,
                    side=close_side,
                    price=ack.price,
                    qty=ack.qty,
                    order_ref=ack.order_ref,
                )
                logger.info(
                    "%s: close attempt %d/%d sent @ %s (qty %s)",
                    symbol,
                    attempt,
                    self.max_close_attempts,
                    price,
                    size,
                )
            except Exception as e:
                logger.error("%s: close attempt %d failed: %s", symbol, attempt, e)

            await self._sleep(self.close_retry_delay_s)

        residual = last_size or 0.0
        if residual > 0:
            logger.warning(
                "%s: still %s open after %d close attempts; finalizing anyway",
                symbol,
                residual,
                self.max_close_attempts,
            )
        return residual

    # ─────────────── finalize ───────────────

    async def _finalize(self, position: OpenPosition, residual: float) -> Optional[ClosedTradeSummary]:
        symbol = position.symbol
        try:
            summary = await self._accountant.summarize(
                position, closed_at=self._clock(), residual_qty=residual
            )
            self._report(summary)
            return summary
        except Exception:
            logger.exception("%s: failed to finalize position", symbol)
            return None
        finally:
            if self._book.positions.get(symbol) is position:
                del self._book.positions[symbol]

    def _report(self, summary: ClosedTradeSummary) -> None:
        parts = [
            f"Gross {format_usd(summary.gross_pnl)}",
            f"Fees {format_usd(-summary.fees)}",
            f"Funding {format_usd(summary.funding_fee)}",
            f"Net {format_usd(summary.net_pnl)}",
        ]
        if summary.equity is not None:
            parts.append(f"Equity {format_usd(summary.equity)}")
        if summary.equity_change is not None:
            parts.append(f"Change {format_usd(summary.equity_change)}")
        if summary.drawdown is not None:
            parts.append(f"Drawdown {format_usd(summary.drawdown)}")
        logger.info("%s: closed · %s", summary.symbol, " · ".join(parts))
        self._journal.record("closed", summary.symbol, **summary.as_fields())


__all__ = ["PositionManager"]
