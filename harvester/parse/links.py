"""Link discovery for the crawl frontier."""
from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatch
from typing import Iterable, List, Sequence, Tuple
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from harvester.normalize.urls import normalize_url, same_host

_ASSET_SUFFIXES = (
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".pdf", ".zip",
    ".css", ".js", ".xml", ".mp4", ".mp3",
)


@dataclass
class LinkRules:
    excluded_paths: Sequence[str] = field(
        default_factory=lambda: ("about", "contact", "privacy-policy", "login", "cart")
    )
    priority_globs: Sequence[str] = field(default_factory=lambda: ("**/recipe/**", "**/*recipe*"))
    priority_selector: str = "a.entry-title-link, .entry-title a, article a, .post-summary a, .pagination a"


def _excluded(url: str, rules: LinkRules) -> bool:
    path = urlsplit(url).path.lower()
    if path.endswith(_ASSET_SUFFIXES):
        return True
    segments = [segment for segment in path.split("/") if segment]
    return bool(segments) and segments[-1] in rules.excluded_paths


def _resolve(hrefs: Iterable[str], base_url: str, rules: LinkRules) -> List[str]:
    urls: List[str] = []
    seen = set()
    for href in hrefs:
        href = href.strip()
        if not href or href.startswith(("#", "mailto:", "tel:", "javascript:")):
            continue
        absolute = urljoin(base_url, href)
        if urlsplit(absolute).scheme not in {"http", "https"}:
            continue
        if not same_host(absolute, base_url) or _excluded(absolute, rules):
            continue
        url = normalize_url(absolute)
        if url not in seen:
            seen.add(url)
            urls.append(url)
    return urls


def discover_links(html: str, base_url: str, rules: LinkRules | None = None) -> Tuple[List[str], List[str]]:
    """Return ``(priority, broad)`` same-host links found on the page.

    Priority links match recipe/pagination selectors or URL globs and should
    be visited before the broad set.
    """
    rules = rules or LinkRules()
    soup = BeautifulSoup(html, "html.parser")
    broad = _resolve((anchor.get("href", "") for anchor in soup.find_all("a", href=True)), base_url, rules)
    selected = _resolve(
        (anchor.get("href", "") for anchor in soup.select(rules.priority_selector) if anchor.get("href")),
        base_url,
        rules,
    )
    priority = list(selected)
    for url in broad:
        if url not in priority and any(fnmatch(url, pattern) for pattern in rules.priority_globs):
            priority.append(url)
    chosen = set(priority)
    return priority, [url for url in broad if url not in chosen]
