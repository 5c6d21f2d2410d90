"""HEAD-based reachability checks for recipe images."""
from __future__ import annotations

from typing import Optional

import httpx
import structlog

LOGGER = structlog.get_logger(__name__)


async def check_image(
    url: Optional[str],
    *,
    timeout: float = 5.0,
    client: Optional[httpx.AsyncClient] = None,
) -> bool:
    """Return True when a HEAD request to ``url`` answers with a 2xx status."""
    if not url:
        return False
    try:
        if client is not None:
            response = await client.head(url, timeout=timeout, follow_redirects=True)
        else:
            async with httpx.AsyncClient(timeout=timeout) as own_client:
                response = await own_client.head(url, follow_redirects=True)
    except (httpx.HTTPError, ValueError) as exc:
        LOGGER.info("image_check_failed", image=url, error=str(exc))
        return False
    return response.is_success
