"""Event scheduler: arms / disarms one timed entry per selected symbol.

UNARMED -> ARMED (timer set) -> FIRED (hand-off to the entry handler)
-> UNARMED. A symbol is only armed when its funding rate clears the
threshold and the fire time (event - pre_offset) lies in the future but no
more than one pre_offset window away; further out we wait for a fresher
estimate instead of committing to it.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable

from bb_core.models import InstrumentSnapshot

from .config import FundArbConfig
from .state import ScheduledEntry, SymbolBook
from .timers import CancellableTimer, TaskSpawner

logger = logging.getLogger("bots.fundarb.scheduler")

EntryHandler = Callable[[str, float], Awaitable[None]]


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class EventScheduler:
    def __init__(
        self,
        book: SymbolBook,
        cfg: FundArbConfig,
        on_fire: EntryHandler,
        *,
        is_enabled: Callable[[], bool],
        spawner: TaskSpawner,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._book = book
        self._on_fire = on_fire
        self._is_enabled = is_enabled
        self._spawner = spawner
        self._clock = clock
        self.threshold = cfg.schedule.funding_threshold
        self.pre_offset_s = cfg.schedule.pre_offset_s
        self.selected: set[str] = set()

    # ─────────────── poll-cycle entry point ───────────────

    def sync(self, selection: Iterable[InstrumentSnapshot]) -> None:
        """Apply one poll cycle's selection: (re)arm members, disarm leavers."""
        snaps = list(selection)
        self.selected = {s.symbol for s in snaps}
        for snap in snaps:
            self.consider(snap)
        for symbol in list(self._book.schedules):
            if symbol not in self.selected:
                self.disarm(symbol, reason="no longer in top selection")

    def consider(self, snap: InstrumentSnapshot) -> None:
        symbol = snap.symbol
        if not self._is_enabled():
            self.disarm(symbol, reason="trading disabled")
            return

        now = self._clock()
        funding_time = snap.next_funding_time
        if funding_time is None or funding_time <= now:
            self.disarm(symbol, reason="no future funding event")
            return
        if snap.funding_rate_abs < self.threshold:
            self.disarm(symbol, reason=f"funding {snap.funding_rate:.4%} below threshold")
            return
        if self._book.is_busy(symbol):
            return

        existing = self._book.schedules.get(symbol)
        if existing is not None and existing.funding_time == funding_time:
            return
        if existing is not None:
            self.disarm(symbol, reason="funding time estimate changed")

        wait = (funding_time - self.pre_offset_s) - now
        if wait > self.pre_offset_s:
            return

        if wait <= 0:
            logger.info(
                "%s: funding window reached; attempting immediate open (funding @ %s)",
                symbol,
                _iso(funding_time),
            )
            self._spawner.spawn(self._fire_now(symbol, funding_time), name=f"open:{symbol}")
            return

        entry = ScheduledEntry(symbol=symbol, funding_time=funding_time)
        entry.timer = CancellableTimer(wait, lambda: self._fire(entry), name=f"entry:{symbol}")
        self._book.schedules[symbol] = entry
        logger.info(
            "%s: scheduled for funding @ %s (open in %.1fs, rate %.4f%%)",
            symbol,
            _iso(funding_time),
            wait,
            snap.funding_rate * 100,
        )

    # ─────────────── disarm ───────────────

    def disarm(self, symbol: str, *, reason: str = "") -> bool:
        entry = self._book.schedules.pop(symbol, None)
        if entry is None:
            return False
        if entry.timer is not None:
            entry.timer.cancel()
        logger.info("%s: unscheduled (%s)", symbol, reason or "disarm")
        return True

    def disarm_all(self, *, reason: str = "") -> int:
        return sum(self.disarm(symbol, reason=reason) for symbol in list(self._book.schedules))

    def is_armed(self, symbol: str) -> bool:
        return symbol in self._book.schedules

    # ─────────────── fire paths ───────────────

    def _still_wanted(self, symbol: str) -> bool:
        if not self._is_enabled():
            logger.info("%s: entry dropped, trading disabled", symbol)
            return False
        if symbol not in self.selected:
            logger.info("%s: entry dropped, left the selection", symbol)
            return False
        return True

    async def _fire(self, entry: ScheduledEntry) -> None:
        # a replaced or disarmed record means this timer is stale
        if self._book.schedules.get(entry.symbol) is not entry:
            logger.debug("%s: stale entry timer ignored", entry.symbol)
            return
        del self._book.schedules[entry.symbol]
        if not self._still_wanted(entry.symbol):
            return
        await self._on_fire(entry.symbol, entry.funding_time)

    async def _fire_now(self, symbol: str, funding_time: float) -> None:
        if not self._still_wanted(symbol):
            return
        await self._on_fire(symbol, funding_time)


__all__ = ["EventScheduler"]
