# src/bb_core/errors.py
"""Error taxonomy shared by the venue core and the bots.

Only :class:`CredentialsError` is fatal (raised at startup). Gateway and
sizing errors are caught at the call site, logged, and the step is skipped.
"""

from __future__ import annotations


class FundArbError(Exception):
    """Base class for every error raised by this project."""


class ConfigError(FundArbError):
    """Raised when a configuration file cannot be loaded or parsed."""


class CredentialsError(ConfigError):
    """Raised when API credentials are missing; aborts startup."""


class GatewayError(FundArbError):
    """Raised by the exchange gateway on any failed call."""


class GatewayTransportError(GatewayError):
    """The venue was unreachable or answered with a malformed payload."""


class GatewayRejectedError(GatewayError):
    """The venue answered but refused the request (``retCode != 0``)."""

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class SizingError(FundArbError):
    """A conformed order quantity fell below the venue minimum."""

    def __init__(self, symbol: str, qty: float, min_qty: float) -> None:
        super().__init__(
            f"{symbol}: conformed qty {qty} is below venue minimum {min_qty}"
        )
        self.symbol = symbol
        self.qty = qty
        self.min_qty = min_qty


__all__ = [
    "FundArbError",
    "ConfigError",
    "CredentialsError",
    "GatewayError",
    "GatewayTransportError",
    "GatewayRejectedError",
    "SizingError",
]
