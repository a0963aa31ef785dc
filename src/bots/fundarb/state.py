"""Per-symbol engine records and the table that owns them.

The orchestrator creates one :class:`SymbolBook` and hands it to the
scheduler (``schedules``) and the lifecycle manager (``opening``,
``positions``, ``closing``). Nothing else mutates it. A symbol is never in
``schedules`` and ``positions`` at the same time.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional

from bb_core.models import Side

from .timers import CancellableTimer


class SymbolPhase(enum.Enum):
    UNARMED = "unarmed"
    ARMED = "armed"
    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"


@dataclass
class ScheduledEntry:
    symbol: str
    funding_time: float
    timer: Optional[CancellableTimer] = None


@dataclass(frozen=True)
class OpenPosition:
    """An entered position. Only ``close_order_refs`` grows after creation."""

    symbol: str
    side: Side
    qty: float
    entry_price: float
    funding_time: float
    opened_at: float
    entry_order_ref: str
    close_timer: Optional[CancellableTimer] = None
    close_order_refs: list[str] = field(default_factory=list)


class SymbolBook:
    def __init__(self) -> None:
        self.schedules: dict[str, ScheduledEntry] = {}
        self.positions: dict[str, OpenPosition] = {}
        self.opening: set[str] = set()
        self.closing: set[str] = set()

    def phase(self, symbol: str) -> SymbolPhase:
        if symbol in self.closing:
            return SymbolPhase.CLOSING
        if symbol in self.positions:
            return SymbolPhase.OPEN
        if symbol in self.opening:
            return SymbolPhase.OPENING
        if symbol in self.schedules:
            return SymbolPhase.ARMED
        return SymbolPhase.UNARMED

    def is_busy(self, symbol: str) -> bool:
        """True while an entry is in flight or a position exists."""
        return symbol in self.opening or symbol in self.positions


__all__ = ["SymbolPhase", "ScheduledEntry", "OpenPosition", "SymbolBook"]
