"""Robots.txt helper utilities."""
from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

import httpx
import structlog

LOGGER = structlog.get_logger(__name__)

FAILURE_RETRY_SECONDS = 300.0


class RobotsCache:
    """Caches one robots.txt parser per host and answers allow checks.

    A 4xx robots.txt means "no rules". A 5xx or an unreachable host
    disallows the host only until ``failure_retry_seconds`` have passed,
    after which robots.txt is fetched again.
    """

    def __init__(
        self,
        *,
        user_agent: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        failure_retry_seconds: float = FAILURE_RETRY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._user_agent = user_agent
        self._timeout = timeout
        self._transport = transport
        self._failure_retry_seconds = failure_retry_seconds
        self._clock = clock
        # host -> (parser, expiry); successful loads never expire
        self._parsers: Dict[str, Tuple[RobotFileParser, Optional[float]]] = {}
        self._lock = asyncio.Lock()

    async def _load(self, scheme: str, host: str) -> Tuple[RobotFileParser, bool]:
        """Return the parser and whether robots.txt was actually read."""
        robots_url = f"{scheme}://{host}/robots.txt"
        parser = RobotFileParser(robots_url)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(robots_url, follow_redirects=True)
        except httpx.HTTPError as exc:
            LOGGER.warning("robots_unreachable", host=host, error=str(exc))
            parser.disallow_all = True
            return parser, False
        if response.status_code >= 500:
            LOGGER.warning("robots_server_error", host=host, status=response.status_code)
            parser.disallow_all = True
            return parser, False
        if response.status_code >= 400:
            parser.allow_all = True
        else:
            parser.parse(response.text.splitlines())
        return parser, True

    async def allowed(self, url: str) -> bool:
        """Return whether the supplied URL is permitted for the crawler."""
        parsed = urlparse(url)
        if parsed.scheme == "file":
            return True
        async with self._lock:
            entry = self._parsers.get(parsed.netloc)
            if entry is None or (entry[1] is not None and self._clock() >= entry[1]):
                parser, loaded = await self._load(parsed.scheme, parsed.netloc)
                expires_at = None if loaded else self._clock() + self._failure_retry_seconds
                entry = (parser, expires_at)
                self._parsers[parsed.netloc] = entry
        return entry[0].can_fetch(self._user_agent, url)

    def crawl_delay(self, url: str) -> Optional[float]:
        """Crawl-delay declared for our user agent, when robots.txt was already loaded."""
        entry = self._parsers.get(urlparse(url).netloc)
        if entry is None:
            return None
        delay = entry[0].crawl_delay(self._user_agent)
        return float(delay) if delay is not None else None
