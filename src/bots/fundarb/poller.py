"""Market snapshot poller.

Pulls every instrument snapshot once per cycle, keeps the latest one per
symbol (last write wins, no merging) and ranks the top-N selection by
absolute funding rate, ties broken by the earlier funding event.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Optional

from bb_core.gateway import ExchangeGateway
from bb_core.models import InstrumentSnapshot

from .config import FundArbConfig

logger = logging.getLogger("bots.fundarb.poller")


def select_top(snapshots: Iterable[InstrumentSnapshot], top_n: int) -> list[InstrumentSnapshot]:
    """Snapshots with a known event time, by (-|rate|, event time), capped at ``top_n``."""

    timed = [s for s in snapshots if s.next_funding_time is not None]
    timed.sort(key=lambda s: (-s.funding_rate_abs, s.next_funding_time))
    return timed[: max(0, int(top_n))]


class MarketPoller:
    def __init__(self, gateway: ExchangeGateway, cfg: FundArbConfig) -> None:
        self._gw = gateway
        self.top_n = cfg.poll.top_n
        self.latest: dict[str, InstrumentSnapshot] = {}

    async def poll(self) -> Optional[list[InstrumentSnapshot]]:
        """One poll cycle. Returns the selection, or None when the fetch failed."""
        try:
            snapshots = await self._gw.list_instrument_snapshots()
        except Exception as e:
            logger.error("snapshot poll failed, skipping cycle: %s", e)
            return None

        usable = [s for s in snapshots if math.isfinite(s.funding_rate)]
        for snap in usable:
            self.latest[snap.symbol] = snap
        selection = select_top(usable, self.top_n)
        logger.debug(
            "polled %d snapshots, selection=%s",
            len(usable),
            [s.symbol for s in selection],
        )
        return selection

    async def refresh(self, symbol: str) -> Optional[InstrumentSnapshot]:
        """Re-read one symbol right before acting; falls back to the cached snapshot."""
        try:
            snap = await self._gw.get_snapshot(symbol)
        except Exception as e:
            logger.error("%s: snapshot refresh failed: %s", symbol, e)
            return self.latest.get(symbol)
        if snap is None:
            return self.latest.get(symbol)
        self.latest[symbol] = snap
        return snap

    def high_funding(self, threshold: float) -> list[InstrumentSnapshot]:
        hits = [s for s in self.latest.values() if s.funding_rate_abs >= threshold]
        hits.sort(key=lambda s: s.funding_rate_abs, reverse=True)
        return hits


__all__ = ["MarketPoller", "select_top"]
