"""Exception hierarchy shared across the crawler, auditor and nutrition engine."""
from __future__ import annotations

from datetime import datetime


class HarvesterError(Exception):
    """Base class for all errors raised by the harvester."""


class StoreError(HarvesterError):
    """A Job Store, Recipe Store or cache operation failed."""


class ProviderError(HarvesterError):
    """A nutrition provider returned an unusable response."""


class CrawlBlocked(HarvesterError):
    """The target site refused the crawler; the job has been put into cool-down."""

    def __init__(self, reason: str, next_retry_at: datetime) -> None:
        super().__init__(reason)
        self.reason = reason
        self.next_retry_at = next_retry_at


class CrawlCancelled(HarvesterError):
    """The job's cancel token was triggered while the session was running."""
