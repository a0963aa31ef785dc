"""
Bounded retry with exponential back-off for coroutines.

    @retry_async(max_attempts=3, base_delay=1.0, retry_on=(GatewayError,))
    async def snapshot_equity(...):
        ...

Only used where a failure is fatal anyway (startup); runtime paths do not
retry in-cycle.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, TypeVar

_T = TypeVar("_T")

logger = logging.getLogger("bb_core.retry")


def retry_async(
    max_attempts: int = 5,
    base_delay: float = 0.5,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> Callable[[Callable[..., Awaitable[_T]]], Callable[..., Awaitable[_T]]]:
    def decorator(func: Callable[..., Awaitable[_T]]) -> Callable[..., Awaitable[_T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> _T:
            for n in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except retry_on as exc:
                    if n == max_attempts:
                        raise
                    delay = base_delay * 2 ** (n - 1)
                    logger.warning(
                        "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                        func.__name__,
                        n,
                        max_attempts,
                        exc,
                        delay,
                    )
                    await asyncio.sleep(delay)
            raise RuntimeError("unreachable")  # pragma: no cover

        return wrapper

    return decorator


__all__ = ["retry_async"]
