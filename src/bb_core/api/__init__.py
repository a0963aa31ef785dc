# src/bb_core/api/__init__.py
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import ssl
import time
from typing import Any, Callable, Optional
from urllib.parse import urlencode

import httpx

from bb_core.errors import GatewayRejectedError, GatewayTransportError

logger = logging.getLogger(__name__)

RECV_WINDOW = "5000"


def sign_payload(api_secret: str, timestamp: str, api_key: str, payload: str) -> str:
    """Bybit v5 signature: HMAC-SHA256 over ``ts + key + recv_window + payload``."""

    message = f"{timestamp}{api_key}{RECV_WINDOW}{payload}"
    return hmac.new(api_secret.encode(), message.encode(), hashlib.sha256).hexdigest()


class BybitHTTPClient:
    """
    Thin Bybit v5 REST wrapper.

    Every response is unwrapped to its ``result`` object; transport problems
    and non-2xx answers raise :class:`GatewayTransportError`, a non-zero
    ``retCode`` raises :class:`GatewayRejectedError` carrying ``retMsg``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        *,
        timeout: float = 10.0,
        verify: bool | str | ssl.SSLContext = True,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._api_secret = api_secret
        self._clock = clock
        self._cli = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            verify=verify,
            transport=transport,
        )
        logger.debug("BybitHTTPClient initialised: %s", self.base_url)

    def _auth_headers(self, payload: str) -> dict[str, str]:
        if not self.api_key or not self._api_secret:
            raise GatewayRejectedError("signed request without API credentials")
        timestamp = str(int(self._clock() * 1000))
        return {
            "X-BAPI-API-KEY": self.api_key,
            "X-BAPI-TIMESTAMP": timestamp,
            "X-BAPI-SIGN": sign_payload(self._api_secret, timestamp, self.api_key, payload),
            "X-BAPI-RECV-WINDOW": RECV_WINDOW,
        }

    async def get(
        self, path: str, params: dict[str, Any] | None = None, *, signed: bool = False
    ) -> dict[str, Any]:
        """GET ``path`` and return the ``result`` object.

        e.g. ``await cli.get("/v5/market/tickers", {"category": "linear"})``
        """
        url = f"/{path.lstrip('/')}"
        query = urlencode({k: str(v) for k, v in (params or {}).items() if v is not None})
        headers = self._auth_headers(query) if signed else {}
        if query:
            url = f"{url}?{query}"
        return await self._send("GET", url, headers=headers)

    async def post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """Signed POST with a JSON body (the signature covers the exact bytes sent)."""
        url = f"/{path.lstrip('/')}"
        raw = json.dumps(body, separators=(",", ":"))
        headers = {"Content-Type": "application/json", **self._auth_headers(raw)}
        return await self._send("POST", url, content=raw, headers=headers)

    async def _send(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = await self._cli.request(method, url, **kwargs)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as exc:
            raise GatewayTransportError(
                f"{method} {url} -> {exc.response.status_code} {exc.response.text[:200]}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise GatewayTransportError(f"{method} {url} failed: {exc}") from exc

        if not isinstance(payload, dict):
            raise GatewayTransportError(f"{method} {url}: unexpected payload shape")
        code = payload.get("retCode")
        if code != 0:
            raise GatewayRejectedError(
                str(payload.get("retMsg") or f"{method} {url} rejected"),
                code=code if isinstance(code, int) else None,
            )
        result = payload.get("result")
        return result if isinstance(result, dict) else {}

    async def close(self) -> None:
        await self._cli.aclose()


__all__ = ["BybitHTTPClient", "sign_payload", "RECV_WINDOW"]
