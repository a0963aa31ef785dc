# Strategy parameters for the funding-event bot, as attribute-access dataclasses.
# - coerce_fundarb_config(data): dict / object -> FundArbConfig (missing keys keep defaults)
# - load_fundarb_config(path): TOML / JSON / YAML file -> FundArbConfig

from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from bb_core.errors import ConfigError

# ───────────── sections ─────────────


@dataclass
class PollCfg:
    """Snapshot polling cadence and selection size."""

    interval_s: float = 1.0
    monitor_interval_s: float = 60.0
    top_n: int = 10


@dataclass
class ScheduleCfg:
    """When entries are armed relative to a funding event."""

    funding_threshold: float = 0.005  # 0.5%
    pre_offset_s: float = 5.0
    post_offset_s: float = 5.0
    min_close_delay_s: float = 0.5


@dataclass
class TradeCfg:
    notional_usd: float = 500.0


@dataclass
class CloseCfg:
    """Retry-until-flat exit loop."""

    max_attempts: int = 5
    retry_delay_s: float = 1.0
    size_error_delay_s: float = 0.5


@dataclass
class RiskCfg:
    """Circuit breaker; ``model`` is ``drawdown`` or ``cumulative_pnl``."""

    model: str = "drawdown"
    max_drawdown_pct: float = 0.03
    stop_loss_pct: float = 0.10  # of per-trade notional, cumulative_pnl model only
    account_coin: str = "USDT"


@dataclass
class FundingCfg:
    """Funding-fee attribution window around a holding period."""

    history_pad_s: float = 12 * 3600.0
    open_lookback_s: float = 30 * 60.0
    close_grace_s: float = 5 * 60.0


@dataclass
class FundArbConfig:
    poll: PollCfg = field(default_factory=PollCfg)
    schedule: ScheduleCfg = field(default_factory=ScheduleCfg)
    trade: TradeCfg = field(default_factory=TradeCfg)
    close: CloseCfg = field(default_factory=CloseCfg)
    risk: RiskCfg = field(default_factory=RiskCfg)
    funding: FundingCfg = field(default_factory=FundingCfg)


_RISK_MODELS = {"drawdown", "cumulative_pnl"}

# ───────────── helpers ─────────────


def _sec(raw: Any, name: str) -> Any:
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return raw.get(name) or {}
    return getattr(raw, name, {}) or {}


def _val(sec: Any, key: str, default: Any) -> Any:
    if isinstance(sec, Mapping):
        return sec.get(key, default)
    return getattr(sec, key, default)


def _build(cls: type, sec: Any) -> Any:
    """Instantiate a section dataclass, casting each value to its default's type."""
    defaults = cls()
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        default = getattr(defaults, f.name)
        value = _val(sec, f.name, default)
        try:
            kwargs[f.name] = type(default)(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{cls.__name__}.{f.name}: invalid value {value!r}") from exc
    return cls(**kwargs)


# ───────────── entry points ─────────────


def coerce_fundarb_config(data: Any = None) -> FundArbConfig:
    """Turn a raw mapping (or object with the same attributes) into FundArbConfig."""

    cfg = FundArbConfig(
        poll=_build(PollCfg, _sec(data, "poll")),
        schedule=_build(ScheduleCfg, _sec(data, "schedule")),
        trade=_build(TradeCfg, _sec(data, "trade")),
        close=_build(CloseCfg, _sec(data, "close")),
        risk=_build(RiskCfg, _sec(data, "risk")),
        funding=_build(FundingCfg, _sec(data, "funding")),
    )
    cfg.risk.model = cfg.risk.model.strip().lower()
    cfg.risk.account_coin = cfg.risk.account_coin.strip().upper()
    if cfg.risk.model not in _RISK_MODELS:
        raise ConfigError(f"risk.model must be one of {sorted(_RISK_MODELS)}, got {cfg.risk.model!r}")
    if cfg.poll.top_n <= 0:
        raise ConfigError("poll.top_n must be positive")
    if cfg.close.max_attempts <= 0:
        raise ConfigError("close.max_attempts must be positive")
    return cfg


def _read_raw(path: Path) -> Any:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"config file not found: {path}") from exc

    suffix = path.suffix.lower()
    try:
        if suffix == ".toml":
            return tomllib.loads(text)
        if suffix == ".json":
            return json.loads(text)
        if suffix in {".yaml", ".yml"}:
            return yaml.safe_load(text) or {}
    except (tomllib.TOMLDecodeError, json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"invalid config {path}: {exc}") from exc
    raise ConfigError(f"unsupported config extension: {path.suffix}")


def load_fundarb_config(path: Optional[str | Path]) -> FundArbConfig:
    """Load ``path`` (TOML/JSON/YAML); ``None`` yields the built-in defaults."""

    if path is None:
        return coerce_fundarb_config({})
    raw = _read_raw(Path(path))
    if not isinstance(raw, Mapping):
        raise ConfigError("config must define a mapping at the top level")
    return coerce_fundarb_config(raw)
