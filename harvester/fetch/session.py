"""Factories for httpx-backed fetch sessions."""
from __future__ import annotations

import contextlib
from pathlib import Path
from typing import AsyncIterator, Dict, Optional
from urllib.parse import urlparse

import httpx


class FetchSession:
    """Thin wrapper over an ``httpx.AsyncClient`` that also serves ``file://`` URLs."""

    def __init__(self, client: Optional[httpx.AsyncClient]) -> None:
        self._client = client

    async def fetch(self, url: str, *, headers: Optional[Dict[str, str]] = None, timeout: float = 30.0) -> httpx.Response:
        """GET a URL returning an HTTPX response object."""
        parsed = urlparse(url)
        if parsed.scheme == "file":
            location = (parsed.netloc + parsed.path) or parsed.path
            target = Path(location)
            if not target.is_absolute():
                target = Path.cwd() / target
            html = target.read_text(encoding="utf-8")
            return httpx.Response(200, text=html, request=httpx.Request("GET", url))
        if self._client is None:
            raise RuntimeError("No fetch session available")
        return await self._client.get(url, headers=headers, timeout=timeout, follow_redirects=True)


@contextlib.asynccontextmanager
async def create_fetch_session(
    *,
    user_agent: str,
    timeout: float,
    max_connections: int,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AsyncIterator[FetchSession]:
    """Yield a configured `FetchSession` for the duration of the context."""
    headers = {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    }
    limits = httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections)
    async with httpx.AsyncClient(headers=headers, limits=limits, timeout=timeout, transport=transport) as client:
        yield FetchSession(client)
