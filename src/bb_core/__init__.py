"""Shared Bybit venue core used by the bots under ``bots``.

Settings, error types, venue records, the gateway protocol and the signed
REST binding live here so strategy packages never talk HTTP directly.
"""

__all__: list[str] = ["api", "config", "errors", "gateway", "models", "utils"]
