# src/bb_core/utils/logger.py
from __future__ import annotations

import copy
import csv
import datetime as _dt
import io
import logging
import logging.handlers
import os
import time as _time
from pathlib import Path
from typing import Final, Optional

from colorama import Fore, Style, init as _color_init

# ────────────────────────────────────────────────────────────
# constants
# ────────────────────────────────────────────────────────────
_TZ: Final = _dt.timezone.utc
_DATE_FMT: Final = "%Y-%m-%d %H:%M:%S"
_LOG_FMT: Final = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_CSV_FIELDS: Final = ("asctime", "levelname", "process", "name", "message")
_LEVEL_COLOR: Final = {
    logging.DEBUG: Fore.CYAN,
    logging.INFO: Fore.GREEN,
    logging.WARNING: Fore.YELLOW,
    logging.ERROR: Fore.RED,
    logging.CRITICAL: Fore.MAGENTA,
}

_NOISY_NETWORK_LOGGERS: Final = (
    "httpx",
    "httpcore",
    "asyncio",
)

_LOGGER_CONFIGURED = False


def _utc_converter(timestamp: float | None) -> _time.struct_time:
    ts = 0.0 if timestamp is None else float(timestamp)
    return _dt.datetime.fromtimestamp(ts, tz=_TZ).timetuple()


class _ColorFormatter(logging.Formatter):
    """Console formatter that colours the message by level."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        record = copy.copy(record)
        color = _LEVEL_COLOR.get(record.levelno, "")
        if color:
            record.msg = f"{color}{record.msg}{Style.RESET_ALL}"
        return super().format(record)


class _CsvFormatter(logging.Formatter):
    """One CSV row per record; tracebacks follow on their own lines."""

    def __init__(self, *, fields: tuple[str, ...], datefmt: str | None = None) -> None:
        super().__init__(None, datefmt)
        self._fields = fields

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        record = copy.copy(record)
        record.message = record.getMessage()
        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)

        buffer = io.StringIO()
        writer = csv.writer(buffer)
        row: list[str] = []
        for field in self._fields:
            if field == "asctime":
                row.append(self.formatTime(record, self.datefmt))
            elif field == "message":
                row.append(record.message)
            else:
                value = getattr(record, field, "")
                row.append(str(value) if value is not None else "")
        writer.writerow(row)
        output = buffer.getvalue().rstrip("\r\n")
        if record.exc_text:
            output = f"{output}\n{record.exc_text}"
        return output


def create_csv_formatter() -> logging.Formatter:
    return _CsvFormatter(fields=_CSV_FIELDS, datefmt=_DATE_FMT)


def _coerce_level(value: str | int | None, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return default
    if text.isdecimal():
        return int(text)
    numeric = logging.getLevelName(text.upper())
    if isinstance(numeric, int):
        return numeric
    raise ValueError(f"Unknown log level: {value!r}")


# ────────────────────────────────────────────────────────────
# public API
# ────────────────────────────────────────────────────────────
def setup_logger(
    bot_name: Optional[str] = None,
    *,
    console_level: str | int | None = None,
    file_level: str | int | None = None,
    log_root: Path | str = "logs",
) -> Path:
    """
    Configure the root logger once per process.

    ```python
    from bb_core.utils.logger import setup_logger

    setup_logger(bot_name="fundarb")
    logger = get_logger(__name__)
    ```

    Handlers: coloured console, ``logs/<bot>/<bot>.csv`` rotated at midnight
    (7 generations) and ``logs/<bot>/error.csv`` for WARNING and above. Levels
    default to ``LOG_LEVEL`` (``INFO`` when unset). Calling again only
    re-applies levels. Returns the directory the CSV files are written to.
    """
    global _LOGGER_CONFIGURED

    default_level = _coerce_level(os.getenv("LOG_LEVEL"), default=logging.INFO)
    console_value = _coerce_level(console_level, default=default_level)
    file_value = _coerce_level(file_level, default=default_level)
    root_level = min(console_value, file_value)

    target_dir = Path(log_root).resolve() / (bot_name or "common")
    root_logger = logging.getLogger()

    if not _LOGGER_CONFIGURED:
        target_dir.mkdir(parents=True, exist_ok=True)
        _color_init(strip=False)

        ch = logging.StreamHandler()
        ch.setFormatter(_ColorFormatter(_LOG_FMT, datefmt=_DATE_FMT))
        root_logger.addHandler(ch)

        fh = logging.handlers.TimedRotatingFileHandler(
            filename=str(target_dir / f"{bot_name or 'common'}.csv"),
            when="midnight",
            interval=1,
            backupCount=7,
            encoding="utf-8",
            utc=True,
        )
        fh.setFormatter(create_csv_formatter())
        root_logger.addHandler(fh)

        eh = logging.FileHandler(str(target_dir / "error.csv"), encoding="utf-8")
        eh.setLevel(logging.WARNING)
        eh.setFormatter(create_csv_formatter())
        root_logger.addHandler(eh)

        logging.Formatter.converter = staticmethod(_utc_converter)  # type: ignore[assignment]
        _LOGGER_CONFIGURED = True

    root_logger.setLevel(root_level)
    for handler in root_logger.handlers:
        if isinstance(handler, logging.handlers.TimedRotatingFileHandler):
            handler.setLevel(file_value)
        elif type(handler) is logging.StreamHandler:
            handler.setLevel(console_value)
    for name in _NOISY_NETWORK_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root_level))
    return target_dir


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a named logger; records propagate to the root handlers."""

    return logging.getLogger(name)


__all__ = ["setup_logger", "get_logger", "create_csv_formatter"]
