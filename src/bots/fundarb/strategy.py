"""Funding-event strategy orchestrator and CLI.

Wires poller -> scheduler -> lifecycle -> accountant around one SymbolBook,
runs the poll and monitor loops, and owns the orderly halt.

    python -m bots.fundarb.strategy --config configs/fundarb.toml
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import time
from typing import Any, Awaitable, Callable, Optional

from bb_core.api.http import BybitGateway
from bb_core.config import load_settings, mask_secret, require_credentials
from bb_core.errors import ConfigError, GatewayError
from bb_core.gateway import ExchangeGateway
from bb_core.utils.journal import TradeJournal
from bb_core.utils.logger import setup_logger
from bb_core.utils.notify import discord_notify
from bb_core.utils.retry import retry_async

from .accountant import PnLAccountant, RiskState, format_usd
from .config import FundArbConfig, load_fundarb_config
from .lifecycle import PositionManager
from .poller import MarketPoller
from .scheduler import EventScheduler
from .state import SymbolBook
from .timers import TaskSpawner

logger = logging.getLogger("bots.fundarb")


class FundingArbStrategy:
    def __init__(
        self,
        cfg: FundArbConfig,
        gateway: ExchangeGateway,
        *,
        journal: Optional[TradeJournal] = None,
        discord_webhook: Optional[str] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.cfg = cfg
        self.gw = gateway
        self.journal = journal or TradeJournal(clock=clock)
        self.discord_webhook = discord_webhook
        self._clock = clock

        self.book = SymbolBook()
        self.risk = RiskState(cfg.risk.max_drawdown_pct)
        self.spawner = TaskSpawner()
        self.poller = MarketPoller(gateway, cfg)
        self.accountant = PnLAccountant(gateway, cfg, self.risk, clock=clock)
        self.positions = PositionManager(
            gateway,
            self.book,
            self.poller,
            self.accountant,
            cfg,
            is_enabled=lambda: self.risk.trading_enabled,
            on_halt=self._on_breach,
            journal=self.journal,
            clock=clock,
            sleep=sleep,
        )
        self.scheduler = EventScheduler(
            self.book,
            cfg,
            self._on_fire,
            is_enabled=lambda: self.risk.trading_enabled,
            spawner=self.spawner,
            clock=clock,
        )

        self._tasks: list[asyncio.Task] = []
        self._shutdown_started = False
        self._stopped = asyncio.Event()

    # ─────────────── startup ───────────────

    async def capture_starting_equity(self) -> float:
        @retry_async(max_attempts=3, base_delay=1.0, retry_on=(GatewayError,))
        async def _fetch() -> float:
            balance = await self.gw.get_account_equity(self.cfg.risk.account_coin)
            return balance.total

        equity = await _fetch()
        self.risk.capture_starting_equity(equity)
        logger.info(
            "starting equity %s %s, drawdown limit %s (%.1f%%)",
            format_usd(equity),
            self.cfg.risk.account_coin,
            format_usd(self.risk.drawdown_limit_usd),
            self.risk.drawdown_limit_pct * 100,
        )
        return equity

    async def start(self) -> None:
        await self.capture_starting_equity()
        await self.poll_once()
        self._tasks.append(asyncio.create_task(self._poll_loop(), name="poll_loop"))
        self._tasks.append(asyncio.create_task(self._monitor_loop(), name="monitor_loop"))
        logger.info(
            "fundarb started: top %d, threshold %.3f%%, notional %s, risk model %s",
            self.cfg.poll.top_n,
            self.cfg.schedule.funding_threshold * 100,
            format_usd(self.cfg.trade.notional_usd),
            self.cfg.risk.model,
        )

    # ─────────────── loops ───────────────

    async def poll_once(self) -> None:
        if not self.risk.trading_enabled:
            return
        selection = await self.poller.poll()
        if selection is None:
            return
        self.scheduler.sync(selection)

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("poll cycle failed")
            await asyncio.sleep(self.cfg.poll.interval_s)

    def log_high_funding(self) -> int:
        now = self._clock()
        hits = self.poller.high_funding(self.cfg.schedule.funding_threshold)
        for snap in hits:
            if snap.next_funding_time is None:
                eta = "unknown"
            else:
                eta = f"{(snap.next_funding_time - now) / 60:.1f}m"
            logger.info(
                "high funding %s: %.4f%% (next event in %s)",
                snap.symbol,
                snap.funding_rate * 100,
                eta,
            )
        return len(hits)

    async def _monitor_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cfg.poll.monitor_interval_s)
            try:
                self.log_high_funding()
            except Exception:
                logger.exception("monitor cycle failed")

    # ─────────────── callbacks ───────────────

    async def _on_fire(self, symbol: str, funding_time: float) -> None:
        await self.positions.open_position(symbol, funding_time)

    async def _on_breach(self, reason: str) -> None:
        if self.discord_webhook:
            self.spawner.spawn(
                discord_notify(f"fundarb halted: {reason}", self.discord_webhook), name="halt_alert"
            )
        await self.shutdown(reason)

    # ─────────────── halt ───────────────

    async def shutdown(self, reason: str = "shutdown requested") -> None:
        """Halt and flatten. Later callers wait for the first halt to finish.

        The breach path calls this from inside a close task; it is always the
        first caller, since a breach can only flip the latch while trading is
        still enabled.
        """
        if self._shutdown_started:
            await self._stopped.wait()
            return
        self._shutdown_started = True
        self.risk.halt(reason)
        logger.warning("shutting down: %s", reason)

        try:
            current = asyncio.current_task()
            loops = [t for t in self._tasks if t is not current]
            for t in loops:
                t.cancel()
            await asyncio.gather(*loops, return_exceptions=True)

            self.scheduler.disarm_all(reason="shutdown")
            await self.positions.settle_openings()

            for symbol in list(self.book.positions):
                phase = self.book.phase(symbol).value
                try:
                    await self.positions.close_position(symbol)
                except Exception:
                    logger.exception("%s: close during shutdown failed (was %s)", symbol, phase)
        finally:
            self.journal.record("halt", reason=reason)
            logger.info("strategy halted")
            self._stopped.set()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    async def wait_stopped(self) -> None:
        await self._stopped.wait()


# ─────────────── CLI ───────────────


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="fundarb", description="Bybit funding-event bot")
    p.add_argument("--config", default=None, help="path to strategy config (TOML/JSON/YAML)")
    p.add_argument("--log-level", default=None, help="logging level (default: LOG_LEVEL or INFO)")
    p.add_argument("--log-root", default="logs", help="directory for CSV logs")
    p.add_argument("--journal", default=None, help="path to JSONL trade journal (optional)")
    return p.parse_args(argv)


async def _run(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    settings = load_settings()
    level = args.log_level or settings.log_level
    setup_logger("fundarb", console_level=level, file_level=level, log_root=args.log_root)

    try:
        cfg = load_fundarb_config(args.config)
        require_credentials(settings)
    except ConfigError as e:
        logger.error("%s", e)
        return 1
    logger.info(
        "credentials: key=%s secret=%s base_url=%s",
        mask_secret(settings.api_key),
        mask_secret(settings.api_secret),
        settings.base_url,
    )

    gateway = BybitGateway.from_settings(settings)
    journal = TradeJournal(filepath=args.journal)
    strat = FundingArbStrategy(
        cfg, gateway, journal=journal, discord_webhook=settings.discord_webhook
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _set_stop(*_: Any) -> None:
        stop.set()

    for s in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(s, _set_stop)
        except NotImplementedError:
            pass

    try:
        try:
            await strat.start()
        except GatewayError as e:
            logger.error("startup failed: %s", e)
            return 1
        stop_task = asyncio.create_task(stop.wait(), name="signal_wait")
        halted_task = asyncio.create_task(strat.wait_stopped(), name="halt_wait")
        await asyncio.wait({stop_task, halted_task}, return_when=asyncio.FIRST_COMPLETED)
        for t in (stop_task, halted_task):
            t.cancel()
        await strat.shutdown("signal received" if stop.is_set() else "risk halt")
        await strat.wait_stopped()
        await strat.spawner.join()
    finally:
        await gateway.aclose()
    return 0


def main(argv: Optional[list[str]] = None) -> None:
    try:
        code = asyncio.run(_run(argv))
    except KeyboardInterrupt:
        code = 130
    except Exception as e:
        logger.exception("runner failed: %s", e)
        code = 1
    raise SystemExit(code)


if __name__ == "__main__":
    main(sys.argv[1:])
