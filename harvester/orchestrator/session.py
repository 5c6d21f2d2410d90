"""Crawl session: drives one claimed job from its seed URL to a terminal status."""
from __future__ import annotations

import asyncio
import itertools
import random
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Set

import httpx
import structlog

from harvester.errors import CrawlBlocked, CrawlCancelled, StoreError
from harvester.fetch.blocking import detect_block
from harvester.fetch.fetcher import fetch_page
from harvester.fetch.robots import RobotsCache
from harvester.fetch.session import FetchSession
from harvester.observability.metrics import MetricsRegistry
from harvester.observability.tracing import clear_context, set_context
from harvester.orchestrator.cancel import CancelToken
from harvester.orchestrator.checkpoint import (
    FrontierCheckpoint,
    clear_checkpoint,
    load_checkpoint,
    save_checkpoint,
)
from harvester.orchestrator.jobs import CrawlJob, JobStatus, utcnow
from harvester.parse.dom import DomRules
from harvester.parse.extractor import extract_recipes
from harvester.parse.links import LinkRules, discover_links
from harvester.quality.scoring import calculate_score
from harvester.settings import Settings
from harvester.storage.job_store import JobStore
from harvester.storage.models import Recipe
from harvester.storage.recipe_store import RecipeStore

LOGGER = structlog.get_logger(__name__)

PRIORITY_LINK = 0
BROAD_LINK = 1


def cooldown_delay(retry_count: int, hours_per_attempt: float = 24.0) -> timedelta:
    """Cool-down grows linearly: attempt ``n`` waits ``n * 24h``."""
    return timedelta(hours=hours_per_attempt * (retry_count + 1))


class CrawlSession:
    """Runs one crawl job; every exit path leaves the job row in a final or cool-down state."""

    def __init__(
        self,
        job: CrawlJob,
        *,
        job_store: JobStore,
        recipe_store: RecipeStore,
        fetch_session: FetchSession,
        settings: Settings,
        metrics: MetricsRegistry,
        cancel_token: Optional[CancelToken] = None,
        is_retry: bool = False,
        robots: Optional[RobotsCache] = None,
        dom_rules: Optional[DomRules] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.job = job
        self._jobs = job_store
        self._recipes = recipe_store
        self._fetch = fetch_session
        self._settings = settings
        self._crawl = settings.crawl
        self._metrics = metrics
        self._cancel = cancel_token or CancelToken()
        self._is_retry = is_retry
        self._robots = robots
        self._dom_rules = dom_rules
        self._link_rules = LinkRules(
            excluded_paths=tuple(self._crawl.excluded_paths),
            priority_globs=tuple(self._crawl.priority_globs),
            priority_selector=self._crawl.priority_selector,
        )
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock
        self._queue: asyncio.PriorityQueue = asyncio.PriorityQueue()
        self._order = itertools.count()
        self._seen: Dict[str, None] = {}
        self._visited: Set[str] = set()
        self._progress_lock = asyncio.Lock()
        self.recipes_found = 0
        self.errors: List[str] = []

    @property
    def concurrency(self) -> int:
        return self._crawl.retry_concurrency if self._is_retry else self._crawl.concurrency

    @property
    def max_request_retries(self) -> int:
        return self._crawl.retry_max_request_retries if self._is_retry else self._crawl.max_request_retries

    def _checkpoint_root(self):
        return self._settings.app.checkpoint_dir

    def _enqueue(self, url: str, priority: int) -> None:
        if url in self._seen or len(self._seen) >= self._crawl.max_pages:
            return
        self._seen[url] = None
        self._queue.put_nowait((priority, next(self._order), url))

    def _seed(self) -> None:
        checkpoint = load_checkpoint(self._checkpoint_root(), self.job.id) if self._is_retry else None
        if checkpoint is not None and checkpoint.pending:
            LOGGER.info("frontier_resumed", pending=len(checkpoint.pending), visited=len(checkpoint.visited))
            self._visited.update(checkpoint.visited)
            self._seen.update(dict.fromkeys(checkpoint.visited))
            self.recipes_found = checkpoint.recipes_found
            for url in checkpoint.pending:
                self._enqueue(url, PRIORITY_LINK)
            return
        self._enqueue(self.job.url, PRIORITY_LINK)

    async def _polite_delay(self, url: str) -> None:
        delay = self._rng.uniform(self._crawl.min_delay_seconds, self._crawl.max_delay_seconds)
        if self._robots is not None:
            delay = max(delay, self._robots.crawl_delay(url) or 0.0)
        if self._is_retry:
            delay += self._crawl.retry_extra_delay_seconds
        await self._sleep(delay)

    def _blocked(self, reason: str, url: str) -> CrawlBlocked:
        delay = cooldown_delay(self.job.retry_count, self._crawl.cooldown_hours)
        hours = delay.total_seconds() / 3600
        message = f"Blocked: {reason} at {url}. Retrying in {hours:g} hours."
        return CrawlBlocked(message, self._clock() + delay)

    async def _save_recipe(self, candidate: Dict[str, object]) -> None:
        score = calculate_score(candidate)
        if score < self._settings.quality.ingestion_threshold:
            LOGGER.info("recipe_skipped_low_quality", name=candidate.get("name"), score=score)
            self._metrics.incr("recipes_rejected_low_quality")
            return
        recipe = Recipe.model_validate({**candidate, "quality_score": score})
        try:
            self._recipes.upsert(recipe)
        except StoreError as exc:
            LOGGER.error("recipe_save_failed", name=recipe.name, error=str(exc))
            self._metrics.incr("store_errors")
            return
        async with self._progress_lock:
            self.recipes_found += 1
            self._metrics.incr("recipes_saved")
            try:
                self._jobs.update_progress(self.job.id, self.recipes_found)
            except StoreError as exc:
                LOGGER.error("progress_update_failed", error=str(exc))
                self._metrics.incr("store_errors")
        LOGGER.info("recipe_saved", name=recipe.name, score=score)

    async def _handle(self, url: str) -> None:
        if self._cancel.cancelled:
            raise CrawlCancelled(f"Crawl aborted: {url}")
        await self._polite_delay(url)
        LOGGER.info("page_processing", page=url)
        try:
            response = await fetch_page(
                session=self._fetch,
                url=url,
                metrics=self._metrics,
                robots=self._robots if self._crawl.respect_robots else None,
                timeout=self._settings.fetch.timeout_seconds,
                max_retries=self.max_request_retries,
            )
        except httpx.HTTPError as exc:
            self._metrics.incr("fetch_failures")
            self.errors.append(f"Request failed {url}: {exc}")
            return
        if response is None:
            self.errors.append(f"Robots disallowed {url}")
            return

        html = response.text
        reason = detect_block(response.status_code, html)
        if reason:
            self._metrics.incr("blocked")
            LOGGER.warning("access_denied", page=url, reason=reason)
            raise self._blocked(reason, url)
        if response.status_code >= 400:
            self.errors.append(f"Request failed {url}: HTTP {response.status_code}")
            return

        priority, broad = discover_links(html, str(response.url), self._link_rules)
        for link in priority:
            self._enqueue(link, PRIORITY_LINK)
        for link in broad:
            self._enqueue(link, BROAD_LINK)

        candidates = extract_recipes(html, url, self._dom_rules)
        if not candidates:
            LOGGER.info("no_recipes_on_page", page=url)
        for candidate in candidates:
            await self._save_recipe(candidate)

    async def _worker(self) -> None:
        while True:
            _, _, url = await self._queue.get()
            try:
                await self._handle(url)
                self._visited.add(url)
            finally:
                self._queue.task_done()

    async def _run_frontier(self) -> None:
        self._seed()
        workers = [asyncio.create_task(self._worker()) for _ in range(self.concurrency)]
        drained = asyncio.create_task(self._queue.join())
        try:
            done, _ = await asyncio.wait([drained, *workers], return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (*workers, drained):
                task.cancel()
            await asyncio.gather(*workers, drained, return_exceptions=True)
        for task in done:
            if task is not drained and task.exception() is not None:
                raise task.exception()

    def _checkpoint(self) -> None:
        pending = [url for url in self._seen if url not in self._visited]
        save_checkpoint(
            self._checkpoint_root(),
            FrontierCheckpoint(
                job_id=self.job.id,
                pending=pending,
                visited=sorted(self._visited),
                recipes_found=self.recipes_found,
            ),
        )

    async def run(self) -> JobStatus:
        """Crawl until the frontier is exhausted, the site blocks us, or the job fails."""
        set_context(job_id=str(self.job.id), url=self.job.url, worker=self._settings.instance_id)
        try:
            return await self._execute()
        finally:
            clear_context()

    async def _execute(self) -> JobStatus:
        try:
            await self._run_frontier()
        except CrawlBlocked as blocked:
            LOGGER.warning("job_cooling_down", reason=blocked.reason, next_retry_at=blocked.next_retry_at.isoformat())
            self._metrics.incr("jobs_cooling_down")
            self._checkpoint()
            self._jobs.update_status(
                self.job.id,
                JobStatus.COOLING_DOWN,
                recipes_found=self.recipes_found,
                log=blocked.reason,
                next_retry_at=blocked.next_retry_at,
            )
            return JobStatus.COOLING_DOWN
        except Exception as exc:
            LOGGER.error("job_failed", error=str(exc), exc_info=not isinstance(exc, CrawlCancelled))
            self._metrics.incr("jobs_failed")
            clear_checkpoint(self._checkpoint_root(), self.job.id)
            self._jobs.update_status(
                self.job.id, JobStatus.FAILED, recipes_found=self.recipes_found, log=str(exc) or repr(exc)
            )
            return JobStatus.FAILED

        self._metrics.incr("jobs_completed")
        clear_checkpoint(self._checkpoint_root(), self.job.id)
        self._jobs.update_status(
            self.job.id,
            JobStatus.COMPLETED,
            recipes_found=self.recipes_found,
            log="\n".join(self.errors) if self.errors else None,
        )
        LOGGER.info("job_completed", recipes_found=self.recipes_found, errors=len(self.errors))
        return JobStatus.COMPLETED
