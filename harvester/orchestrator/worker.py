"""Worker loop: poll the Job Store, claim one job, run its crawl session, repeat."""
from __future__ import annotations

import asyncio
import enum
import random
from typing import Awaitable, Callable, Optional

import httpx
import structlog

from harvester.errors import StoreError
from harvester.fetch.robots import RobotsCache
from harvester.fetch.session import create_fetch_session
from harvester.observability.metrics import MetricsRegistry
from harvester.orchestrator.cancel import CancelToken
from harvester.orchestrator.jobs import JobStatus, utcnow
from harvester.orchestrator.session import CrawlSession
from harvester.parse.dom import DomRules, load_dom_rules
from harvester.settings import Settings, WorkerSettings
from harvester.storage.job_store import JobStore
from harvester.storage.recipe_store import RecipeStore

LOGGER = structlog.get_logger(__name__)


class IdleBackoff:
    """Poll interval that grows by ``factor`` while idle and resets on work."""

    def __init__(
        self,
        *,
        base: float,
        cap: float,
        factor: float = 1.5,
        max_jitter: float = 2.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.base = base
        self.cap = cap
        self.factor = factor
        self.max_jitter = max_jitter
        self.current = base
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings: WorkerSettings, rng: Optional[random.Random] = None) -> "IdleBackoff":
        return cls(
            base=settings.base_poll_seconds,
            cap=settings.max_poll_seconds,
            factor=settings.backoff_factor,
            max_jitter=settings.max_jitter_seconds,
            rng=rng,
        )

    def next_delay(self) -> float:
        """Return the sleep for this idle cycle and grow the interval for the next one."""
        delay = self.current + self._rng.uniform(0, self.max_jitter)
        self.current = min(self.current * self.factor, self.cap)
        return delay

    def reset(self) -> None:
        self.current = self.base


class CycleOutcome(enum.Enum):
    EXECUTED = "executed"
    IDLE = "idle"
    LOST_RACE = "lost_race"
    STORE_ERROR = "store_error"


class Worker:
    """Single-job-at-a-time worker; run several processes for parallelism."""

    def __init__(
        self,
        *,
        job_store: JobStore,
        recipe_store: RecipeStore,
        settings: Settings,
        metrics: Optional[MetricsRegistry] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._jobs = job_store
        self._recipes = recipe_store
        self._settings = settings
        self._metrics = metrics or MetricsRegistry()
        self._transport = transport
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.backoff = IdleBackoff.from_settings(settings.worker, self._rng)
        self._dom_rules: DomRules = load_dom_rules(settings.crawl.dom_rules_path)
        self._robots = (
            RobotsCache(user_agent=settings.fetch.user_agent, transport=transport)
            if settings.crawl.respect_robots
            else None
        )
        self._current_token: Optional[CancelToken] = None
        self._stopping = False

    def stop_all(self, reason: str = "stop requested") -> None:
        """Coarse kill-switch: cancel whichever job this worker is running."""
        if self._current_token is not None:
            self._current_token.cancel(reason)

    def shutdown(self) -> None:
        """Abort the running job and leave the loop after the current cycle."""
        self._stopping = True
        self.stop_all("shutdown requested")

    async def _execute(self, job, *, is_retry: bool) -> JobStatus:
        token = CancelToken()
        self._current_token = token
        concurrency = self._settings.crawl.retry_concurrency if is_retry else self._settings.crawl.concurrency
        try:
            async with create_fetch_session(
                user_agent=self._settings.fetch.user_agent,
                timeout=self._settings.fetch.timeout_seconds,
                max_connections=concurrency,
                transport=self._transport,
            ) as fetch_session:
                session = CrawlSession(
                    job,
                    job_store=self._jobs,
                    recipe_store=self._recipes,
                    fetch_session=fetch_session,
                    settings=self._settings,
                    metrics=self._metrics,
                    cancel_token=token,
                    is_retry=is_retry,
                    robots=self._robots,
                    dom_rules=self._dom_rules,
                    sleep=self._sleep,
                    rng=self._rng,
                )
                return await session.run()
        finally:
            self._current_token = None

    async def run_once(self) -> CycleOutcome:
        """Perform at most one claim-and-execute cycle."""
        try:
            job = self._jobs.next_claimable(utcnow())
        except StoreError as exc:
            LOGGER.error("job_fetch_failed", error=str(exc))
            return CycleOutcome.STORE_ERROR
        if job is None:
            return CycleOutcome.IDLE

        is_retry = job.status == JobStatus.COOLING_DOWN
        try:
            claimed = self._jobs.claim(job, utcnow())
            refreshed = self._jobs.get(job.id) if claimed else None
        except StoreError as exc:
            LOGGER.error("job_claim_failed", job_id=job.id, error=str(exc))
            self._metrics.incr("claims_lost")
            return CycleOutcome.LOST_RACE
        if not claimed or refreshed is None:
            LOGGER.info("job_claim_lost", job_id=job.id)
            self._metrics.incr("claims_lost")
            return CycleOutcome.LOST_RACE

        self._metrics.incr("jobs_claimed")
        LOGGER.info("job_claimed", job_id=refreshed.id, target=refreshed.url, retry=is_retry)
        try:
            status = await self._execute(refreshed, is_retry=is_retry)
        except Exception as exc:  # the session records its own failures; this guards the loop
            LOGGER.exception("job_execution_error", job_id=refreshed.id, error=str(exc))
        else:
            LOGGER.info("job_finished", job_id=refreshed.id, status=status.value)
        return CycleOutcome.EXECUTED

    async def run(self, *, max_cycles: Optional[int] = None) -> None:
        """Poll forever, or for ``max_cycles`` iterations."""
        LOGGER.info("worker_started", worker=self._settings.instance_id)
        cycle = 0
        while not self._stopping and (max_cycles is None or cycle < max_cycles):
            cycle += 1
            outcome = await self.run_once()
            if outcome is CycleOutcome.EXECUTED:
                self.backoff.reset()
            elif outcome is CycleOutcome.IDLE:
                delay = self.backoff.next_delay()
                LOGGER.info("no_jobs_waiting", seconds=round(delay, 1))
                await self._sleep(delay)
            elif outcome is CycleOutcome.STORE_ERROR:
                await self._sleep(self.backoff.base)
