"""
Funding-event bot for Bybit linear perpetuals.

Components (one asyncio loop, one SymbolBook shared between them):
1. MarketPoller      : snapshot poll, top-N by |funding rate|
2. EventScheduler    : one timed entry per qualifying funding event
3. PositionManager   : entry, timed exit, retry-until-flat close, finalize
4. PnLAccountant     : gross / fees / funding per trade, breach check
5. FundingArbStrategy: loops, wiring, orderly halt

Venue access goes through ``bb_core``.
"""

from .strategy import FundingArbStrategy, main

__all__: list[str] = ["FundingArbStrategy", "main"]
