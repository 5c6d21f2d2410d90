import asyncio
import random
from datetime import datetime, timedelta, timezone

import httpx

from conftest import FIXTURES

from harvester.fetch.robots import RobotsCache
from harvester.fetch.session import create_fetch_session
from harvester.observability.metrics import MetricsRegistry
from harvester.orchestrator.cancel import CancelToken
from harvester.orchestrator.checkpoint import load_checkpoint
from harvester.orchestrator.jobs import JobStatus
from harvester.orchestrator.session import CrawlSession, cooldown_delay
from harvester.storage.models import QAStatus

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

INDEX = """
<html><body>
  <article><a href="/recipe/lemon-pancakes/">Pancakes</a></article>
  <a href="/recipe/dry-toast">Toast</a>
  <a href="/about">About</a>
</body></html>
"""

THIN_RECIPE = """
<script type="application/ld+json">
{"@type": "Recipe", "name": "Dry Toast", "recipeIngredient": ["1 slice bread"]}
</script>
"""


def _site(pages):
    def handler(request):
        body = pages.get(request.url.path)
        if body is None:
            return httpx.Response(404, text="not found")
        if isinstance(body, int):
            return httpx.Response(body, text="blocked")
        return httpx.Response(200, text=body)

    return httpx.MockTransport(handler)


def _claimed(job_store, url="https://cook.test"):
    job = job_store.insert(url)
    assert job_store.claim(job)
    return job_store.get(job.id)


def _run_session(job, *, job_store, recipe_store, settings, transport, sleep, **kwargs):
    async def _run():
        async with create_fetch_session(
            user_agent="test-agent", timeout=5, max_connections=2, transport=transport
        ) as fetch_session:
            session = CrawlSession(
                job,
                job_store=job_store,
                recipe_store=recipe_store,
                fetch_session=fetch_session,
                settings=settings,
                metrics=kwargs.pop("metrics", MetricsRegistry()),
                sleep=sleep,
                rng=random.Random(7),
                clock=lambda: NOW,
                **kwargs,
            )
            status = await session.run()
            return session, status

    return asyncio.run(_run())


def test_cooldown_delay_grows_linearly():
    assert cooldown_delay(0) == timedelta(hours=24)
    assert cooldown_delay(1) == timedelta(hours=48)
    assert cooldown_delay(2, hours_per_attempt=12) == timedelta(hours=36)


def test_crawl_completes_and_applies_quality_gate(job_store, recipe_store, settings, fake_sleep):
    pancakes = (FIXTURES / "recipe_graph.html").read_text(encoding="utf-8")
    transport = _site({"/": INDEX, "/recipe/lemon-pancakes": pancakes, "/recipe/dry-toast": THIN_RECIPE})
    metrics = MetricsRegistry()
    job = _claimed(job_store)

    session, status = _run_session(
        job,
        job_store=job_store,
        recipe_store=recipe_store,
        settings=settings,
        transport=transport,
        sleep=fake_sleep,
        metrics=metrics,
    )

    assert status == JobStatus.COMPLETED
    stored = job_store.get(job.id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.recipes_found == 1
    assert "HTTP 404" in stored.log
    recipe = recipe_store.get_by_url("https://cook.test/recipe/lemon-pancakes")
    assert recipe is not None
    assert recipe.quality_score == 95
    assert recipe.qa_status == QAStatus.PENDING
    assert recipe_store.get_by_url("https://cook.test/recipe/dry-toast") is None
    assert metrics.get("recipes_rejected_low_quality") == 1
    assert metrics.get("jobs_completed") == 1
    assert fake_sleep.calls and all(1.0 <= delay < 3.0 for delay in fake_sleep.calls)
    assert load_checkpoint(settings.app.checkpoint_dir, job.id) is None


def test_block_puts_job_into_cooldown_and_resume_completes(job_store, recipe_store, settings, fake_sleep):
    pancakes = (FIXTURES / "recipe_graph.html").read_text(encoding="utf-8")
    job = _claimed(job_store)

    _, status = _run_session(
        job,
        job_store=job_store,
        recipe_store=recipe_store,
        settings=settings,
        transport=_site({"/": INDEX, "/recipe/lemon-pancakes": 403, "/recipe/dry-toast": 403}),
        sleep=fake_sleep,
    )

    assert status == JobStatus.COOLING_DOWN
    cooled = job_store.get(job.id)
    assert cooled.status == JobStatus.COOLING_DOWN
    assert cooled.next_retry_at == NOW + timedelta(hours=24)
    assert cooled.log.startswith("Blocked: HTTP 403 at https://cook.test/recipe/")
    assert cooled.log.endswith("Retrying in 24 hours.")
    checkpoint = load_checkpoint(settings.app.checkpoint_dir, job.id)
    assert "https://cook.test/recipe/lemon-pancakes" in checkpoint.pending
    assert "https://cook.test" in checkpoint.visited

    assert job_store.claim(cooled)
    retry = job_store.get(job.id)
    assert retry.retry_count == 1
    retry_sleep = type(fake_sleep)()
    _, status = _run_session(
        retry,
        job_store=job_store,
        recipe_store=recipe_store,
        settings=settings,
        transport=_site({"/recipe/lemon-pancakes": pancakes, "/recipe/dry-toast": THIN_RECIPE}),
        sleep=retry_sleep,
        is_retry=True,
    )

    assert status == JobStatus.COMPLETED
    assert job_store.get(job.id).recipes_found == 1
    assert recipe_store.get_by_url("https://cook.test/recipe/lemon-pancakes") is not None
    # retry sessions wait an extra five seconds per page
    assert all(delay >= 6.0 for delay in retry_sleep.calls)
    assert load_checkpoint(settings.app.checkpoint_dir, job.id) is None


def test_second_block_doubles_the_cooldown(job_store, recipe_store, settings, fake_sleep):
    job = job_store.insert("https://cook.test", retry_count=1)
    assert job_store.claim(job)
    job = job_store.get(job.id)

    _, status = _run_session(
        job,
        job_store=job_store,
        recipe_store=recipe_store,
        settings=settings,
        transport=_site({"/": 429}),
        sleep=fake_sleep,
    )

    assert status == JobStatus.COOLING_DOWN
    cooled = job_store.get(job.id)
    assert cooled.next_retry_at == NOW + timedelta(hours=48)
    assert cooled.log == "Blocked: HTTP 429 at https://cook.test. Retrying in 48 hours."


def test_anti_bot_page_counts_as_block(job_store, recipe_store, settings, fake_sleep):
    challenge = (FIXTURES / "challenge.html").read_text(encoding="utf-8")
    job = _claimed(job_store)

    _, status = _run_session(
        job,
        job_store=job_store,
        recipe_store=recipe_store,
        settings=settings,
        transport=_site({"/": challenge}),
        sleep=fake_sleep,
    )

    assert status == JobStatus.COOLING_DOWN
    assert job_store.get(job.id).log.startswith("Blocked: Anti-bot page at https://cook.test.")


def test_cancelled_token_fails_the_job(job_store, recipe_store, settings, fake_sleep):
    token = CancelToken()
    token.cancel("operator stop")
    job = _claimed(job_store)

    _, status = _run_session(
        job,
        job_store=job_store,
        recipe_store=recipe_store,
        settings=settings,
        transport=_site({"/": INDEX}),
        sleep=fake_sleep,
        cancel_token=token,
    )

    assert status == JobStatus.FAILED
    failed = job_store.get(job.id)
    assert failed.status == JobStatus.FAILED
    assert failed.log == "Crawl aborted: https://cook.test"
    assert fake_sleep.calls == []


def test_max_pages_caps_the_frontier(job_store, recipe_store, settings, fake_sleep):
    settings.crawl.max_pages = 2
    links = "".join(f'<a href="/page/{n}">{n}</a>' for n in range(10))
    pages = {"/": f"<html><body>{links}</body></html>"}
    pages.update({f"/page/{n}": "<html></html>" for n in range(10)})
    job = _claimed(job_store)

    _run_session(
        job,
        job_store=job_store,
        recipe_store=recipe_store,
        settings=settings,
        transport=_site(pages),
        sleep=fake_sleep,
    )

    assert len(fake_sleep.calls) == 2


def test_robots_disallowed_pages_are_logged_on_the_job(job_store, recipe_store, settings, fake_sleep):
    settings.crawl.respect_robots = True

    def robots_handler(request):
        return httpx.Response(200, text="User-agent: *\nDisallow: /\n")

    robots = RobotsCache(user_agent="test-agent", transport=httpx.MockTransport(robots_handler))
    job = _claimed(job_store)

    _, status = _run_session(
        job,
        job_store=job_store,
        recipe_store=recipe_store,
        settings=settings,
        transport=_site({"/": INDEX}),
        sleep=fake_sleep,
        robots=robots,
    )

    assert status == JobStatus.COMPLETED
    finished = job_store.get(job.id)
    assert finished.recipes_found == 0
    assert finished.log == "Robots disallowed https://cook.test"
