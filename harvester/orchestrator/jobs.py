"""Definitions for crawl jobs and their lifecycle."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    # Kept for compatibility with stored rows; blocking is recorded as COOLING_DOWN.
    BLOCKED = "blocked"
    COOLING_DOWN = "cooling_down"


LIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.COOLING_DOWN)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CrawlJob:
    """One crawl attempt for one seed URL."""

    id: int
    url: str
    status: JobStatus = JobStatus.PENDING
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None
    recipes_found: int = 0
    log: Optional[str] = None
    is_archived: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

