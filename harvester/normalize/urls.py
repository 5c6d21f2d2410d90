"""URL canonicalisation shared by the crawler, stores and submit boundary."""
from __future__ import annotations

import re
from urllib.parse import urlsplit, urlunsplit

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def normalize_url(url: str) -> str:
    """Strip query string, fragment and trailing slashes from ``url``."""
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url
    cleaned = urlunsplit((parts.scheme.lower(), parts.netloc.lower(), parts.path, "", ""))
    return cleaned.rstrip("/")


def ensure_scheme(url: str) -> str:
    """Prefix ``https://`` when the URL carries no http(s) scheme."""
    url = url.strip()
    if _SCHEME_RE.match(url):
        return url
    return f"https://{url}"


def same_host(url: str, other: str) -> bool:
    return urlsplit(url).netloc.lower() == urlsplit(other).netloc.lower()
