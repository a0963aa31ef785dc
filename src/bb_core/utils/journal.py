# Trade journal: one JSON record per lifecycle event (open / close_attempt /
# closed / halt), kept in a ring buffer and optionally appended to a JSONL file.

from __future__ import annotations

import json
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

from bb_core.utils.logger import get_logger

logger = get_logger("bb_core.journal")


class TradeJournal:
    """Keeps the most recent lifecycle events in memory, mirrors them to disk."""

    def __init__(
        self,
        maxlen: int = 5000,
        filepath: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._buf: Deque[Dict[str, Any]] = deque(maxlen=maxlen)
        self._path = filepath
        self._clock = clock

    def record(self, event: str, symbol: Optional[str] = None, **fields: Any) -> Dict[str, Any]:
        rec: Dict[str, Any] = {"t": self._clock(), "event": str(event)}
        if symbol is not None:
            rec["symbol"] = symbol
        rec.update(fields)
        self._buf.append(rec)
        if self._path:
            try:
                with open(self._path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(rec, ensure_ascii=False, default=str) + "\n")
            except OSError as e:
                logger.warning("journal write failed (%s): %s", self._path, e)
        return rec

    def latest(self, n: int = 100, event: Optional[str] = None) -> List[Dict[str, Any]]:
        """Last ``n`` records, optionally only those of one event type."""
        if n <= 0:
            return []
        rows = [r for r in self._buf if event is None or r["event"] == event]
        return rows[-n:]


__all__ = ["TradeJournal"]
