"""Helpers that turn URLs into crawl jobs: external submissions and auditor repairs."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog

from harvester.normalize.urls import ensure_scheme, normalize_url
from harvester.orchestrator.jobs import CrawlJob, JobStatus
from harvester.storage.job_store import JobStore

LOGGER = structlog.get_logger(__name__)

REPAIR_LOG = "Auto-repair triggered by Auditor (Low Quality Score)"


def submit_crawl(store: JobStore, url: str) -> CrawlJob:
    """Queue a crawl for ``url``; an already-live job for the URL is returned instead."""
    target = normalize_url(ensure_scheme(url))
    existing = store.find_live(target)
    if existing is not None:
        LOGGER.info("crawl_already_queued", job_id=existing.id, target=target)
        return existing
    job = store.insert(target)
    LOGGER.info("crawl_queued", job_id=job.id, target=target)
    return job


@dataclass
class RepairDecision:
    scheduled: Optional[CrawlJob] = None
    attempt: int = 0
    live_job: Optional[CrawlJob] = None
    exhausted: bool = False
    last_failed: bool = False


def schedule_repair(store: JobStore, url: str, *, repair_cap: int) -> RepairDecision:
    """Originate a repair crawl unless one is live or the cap is reached.

    Only *completed* jobs count toward the cap; a URL whose latest job
    failed is reported through ``last_failed`` but treated the same way.
    """
    live = store.find_live(url)
    if live is not None:
        return RepairDecision(live_job=live)
    last_completed = store.latest(url, JobStatus.COMPLETED)
    last_any = store.latest(url)
    retry_count = last_completed.retry_count if last_completed else 0
    last_failed = last_any is not None and last_any.status == JobStatus.FAILED
    if retry_count >= repair_cap:
        return RepairDecision(attempt=retry_count, exhausted=True, last_failed=last_failed)
    job = store.insert(url, status=JobStatus.PENDING, retry_count=retry_count + 1, log=REPAIR_LOG)
    return RepairDecision(scheduled=job, attempt=retry_count + 1, last_failed=last_failed)


def archive_job(store: JobStore, job_id: int) -> bool:
    """Soft-delete one job; its URL becomes free for a new submission."""
    archived = store.archive(job_id) == 1
    LOGGER.info("job_archived", job_id=job_id, archived=archived)
    return archived


def archive_all(store: JobStore) -> int:
    count = store.archive()
    LOGGER.info("jobs_archived", count=count)
    return count
