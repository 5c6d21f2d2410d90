"""Anti-bot and rate-limit detection for fetched pages."""
from __future__ import annotations

from typing import Optional

from bs4 import BeautifulSoup

BLOCKING_STATUSES = frozenset({403, 429})
TITLE_SIGNATURES = ("Access Denied", "Just a moment...")
BODY_SIGNATURES = ("Access Denied",)


def detect_block(status_code: int, html: Optional[str]) -> Optional[str]:
    """Return a human readable reason when the response looks like a block."""
    if status_code in BLOCKING_STATUSES:
        return f"HTTP {status_code}"
    if not html:
        return None
    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.get_text() if soup.title else ""
    if any(signature in title for signature in TITLE_SIGNATURES):
        return "Anti-bot page"
    body = soup.body.get_text(" ") if soup.body else ""
    if any(signature in body for signature in BODY_SIGNATURES):
        return "Anti-bot page"
    return None
