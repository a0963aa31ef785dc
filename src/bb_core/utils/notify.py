import logging
from typing import Optional

import httpx

LOGGER = logging.getLogger(__name__)


async def discord_notify(msg: str, webhook: Optional[str]) -> bool:
    """
    Post ``msg`` to a Discord incoming webhook. Never raises.
    """
    if not webhook:
        LOGGER.debug("Discord webhook not set; skip notify: %s", msg)
        return False
    try:
        async with httpx.AsyncClient(timeout=10) as cli:
            resp = await cli.post(webhook, json={"content": msg})
            resp.raise_for_status()
        return True
    except httpx.HTTPError as e:
        LOGGER.warning("Discord notify error: %s", e)
        return False
