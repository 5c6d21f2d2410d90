"""Page fetching with a per-session retry budget."""
from __future__ import annotations

import asyncio
import time
from typing import Optional

import httpx
import structlog

from harvester.fetch.robots import RobotsCache
from harvester.fetch.session import FetchSession
from harvester.observability.metrics import MetricsRegistry
from harvester.observability.tracing import log_fetch_result, log_retry, span

LOGGER = structlog.get_logger(__name__)


async def _do_fetch(
    session: FetchSession,
    url: str,
    *,
    timeout: float,
    max_retries: int,
    metrics: MetricsRegistry,
    retry_delay: float,
) -> httpx.Response:
    delay = retry_delay
    attempts = max_retries + 1
    for attempt in range(1, attempts + 1):
        try:
            with span(name="fetch", url=url):
                start = time.perf_counter()
                response = await session.fetch(url, timeout=timeout)
            log_fetch_result(
                url=url,
                status=response.status_code,
                bytes_read=len(response.content or b""),
                elapsed_ms=int((time.perf_counter() - start) * 1000),
            )
            if response.status_code < 500 or attempt == attempts:
                return response
            reason = f"HTTP {response.status_code}"
        except httpx.HTTPError as exc:
            if attempt == attempts:
                raise
            reason = str(exc) or exc.__class__.__name__
        metrics.incr("retries")
        log_retry(attempt=attempt, url=url, reason=reason)
        await asyncio.sleep(delay)
        delay *= 2
    raise RuntimeError("unreachable")  # pragma: no cover


async def fetch_page(
    *,
    session: FetchSession,
    url: str,
    metrics: MetricsRegistry,
    robots: Optional[RobotsCache] = None,
    timeout: float = 30.0,
    max_retries: int = 3,
    retry_delay: float = 1.0,
) -> Optional[httpx.Response]:
    """Fetch a page respecting robots.txt.

    Returns None when robots.txt disallows the URL. Blocking statuses
    (403/429) are returned untouched so the caller can decide to cool down;
    5xx responses left after the retry budget raise ``httpx.HTTPStatusError``.
    """
    if robots is not None and not await robots.allowed(url):
        LOGGER.info("robots_disallow", target=url)
        metrics.incr("robots_disallow")
        return None

    response = await _do_fetch(
        session,
        url,
        timeout=timeout,
        max_retries=max_retries,
        metrics=metrics,
        retry_delay=retry_delay,
    )
    metrics.record_status(response.status_code)
    if response.status_code >= 500:
        response.raise_for_status()
    return response
