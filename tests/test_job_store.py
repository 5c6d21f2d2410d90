from datetime import timedelta

import pytest

from harvester.errors import StoreError
from harvester.orchestrator.jobs import JobStatus, utcnow
from harvester.orchestrator.scheduler import archive_all, archive_job, submit_crawl


def test_submit_normalises_and_refuses_duplicates(job_store):
    job = submit_crawl(job_store, "cook.test/recipes/?page=2")
    assert job.url == "https://cook.test/recipes"
    assert job.status == JobStatus.PENDING
    again = submit_crawl(job_store, "https://cook.test/recipes/")
    assert again.id == job.id


def test_live_url_uniqueness_is_enforced_by_the_store(job_store):
    job_store.insert("https://cook.test/a")
    with pytest.raises(StoreError):
        job_store.insert("https://cook.test/a")


def test_completed_job_url_can_be_requeued(job_store):
    job = job_store.insert("https://cook.test/a")
    job_store.update_status(job.id, JobStatus.COMPLETED, recipes_found=2)
    second = submit_crawl(job_store, "https://cook.test/a")
    assert second.id != job.id


def test_next_claimable_orders_by_creation_and_respects_cooldown(job_store):
    first = job_store.insert("https://cook.test/first")
    second = job_store.insert("https://cook.test/second")
    job_store.update_status(first.id, JobStatus.COOLING_DOWN, next_retry_at=utcnow() + timedelta(hours=24))
    assert job_store.next_claimable(utcnow()).id == second.id
    later = utcnow() + timedelta(hours=25)
    job_store.update_status(second.id, JobStatus.COMPLETED)
    assert job_store.next_claimable(later).id == first.id


def test_claim_is_a_compare_and_set(job_store):
    job = job_store.insert("https://cook.test/a")
    stale_copy = job_store.get(job.id)
    assert job_store.claim(job) is True
    assert job_store.claim(stale_copy) is False
    claimed = job_store.get(job.id)
    assert claimed.status == JobStatus.PROCESSING
    assert claimed.retry_count == 0


def test_claiming_a_cooled_down_job_increments_retry_count(job_store):
    job = job_store.insert("https://cook.test/a")
    job_store.update_status(job.id, JobStatus.COOLING_DOWN, next_retry_at=utcnow() - timedelta(seconds=1))
    cooling = job_store.next_claimable(utcnow())
    assert cooling.status == JobStatus.COOLING_DOWN
    assert job_store.claim(cooling) is True
    claimed = job_store.get(job.id)
    assert claimed.retry_count == 1
    assert claimed.next_retry_at is None


def test_progress_never_decreases(job_store):
    job = job_store.insert("https://cook.test/a")
    job_store.update_progress(job.id, 5)
    job_store.update_progress(job.id, 3)
    assert job_store.get(job.id).recipes_found == 5


def test_archive_one_and_all(job_store):
    one = job_store.insert("https://cook.test/a")
    two = job_store.insert("https://cook.test/b")
    assert archive_job(job_store, one.id) is True
    archived = job_store.get(one.id)
    assert archived.is_archived
    assert archived.status == JobStatus.FAILED
    assert archived.log == "Archived/Stopped by user"
    assert job_store.next_claimable(utcnow()).id == two.id
    assert archive_all(job_store) == 1
    assert job_store.next_claimable(utcnow()) is None
    assert len(job_store.list_jobs(archived=True)) == 2
