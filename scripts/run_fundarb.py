# scripts/run_fundarb.py
# Launch the funding-event bot from a checkout without installing it.
# SIGINT/SIGTERM trigger the orderly halt (open positions are closed first).

from __future__ import annotations

import sys
from pathlib import Path

SRC = Path(__file__).resolve().parents[1] / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from bots.fundarb.strategy import main  # noqa: E402

if __name__ == "__main__":
    main(sys.argv[1:])
