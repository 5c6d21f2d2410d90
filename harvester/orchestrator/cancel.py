"""Per-job cancellation created when a worker claims a job."""
from __future__ import annotations

from typing import Optional


class CancelToken:
    """Set once; checked by the crawl session before every page."""

    def __init__(self) -> None:
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "stopped") -> None:
        if self.reason is None:
            self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self.reason is not None
