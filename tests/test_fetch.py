import asyncio

import httpx
import pytest

from conftest import FIXTURES

from harvester.fetch.blocking import detect_block
from harvester.fetch.fetcher import fetch_page
from harvester.fetch.image_check import check_image
from harvester.fetch.robots import RobotsCache
from harvester.fetch.session import FetchSession, create_fetch_session
from harvester.observability.metrics import MetricsRegistry


def _session(handler):
    return create_fetch_session(
        user_agent="test-agent", timeout=5, max_connections=1, transport=httpx.MockTransport(handler)
    )


def test_fetch_page_file_scheme():
    async def _run():
        metrics = MetricsRegistry()
        session = FetchSession(client=None)
        response = await fetch_page(
            session=session, url=f"file://{FIXTURES / 'recipe_dom.html'}", metrics=metrics
        )
        assert response is not None
        assert "Beef Stew" in response.text
        assert metrics.get("pages_fetched") == 1
        assert metrics.get("http_2xx") == 1

    asyncio.run(_run())


def test_blocking_status_is_returned_without_retry():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(429, text="slow down")

    async def _run():
        metrics = MetricsRegistry()
        async with _session(handler) as session:
            response = await fetch_page(session=session, url="https://cook.test/a", metrics=metrics, max_retries=3)
        assert response.status_code == 429
        assert calls == ["/a"]
        assert metrics.get("retries") == 0

    asyncio.run(_run())


def test_server_errors_are_retried_then_raised():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(503)

    async def _run():
        metrics = MetricsRegistry()
        async with _session(handler) as session:
            with pytest.raises(httpx.HTTPStatusError):
                await fetch_page(
                    session=session, url="https://cook.test/a", metrics=metrics, max_retries=2, retry_delay=0
                )
        assert len(calls) == 3
        assert metrics.get("retries") == 2

    asyncio.run(_run())


def test_robots_disallow_skips_page():
    def handler(request):
        if request.url.path == "/robots.txt":
            return httpx.Response(200, text="User-agent: *\nDisallow: /private\nCrawl-delay: 4\n")
        return httpx.Response(200, text="<html></html>")

    async def _run():
        metrics = MetricsRegistry()
        robots = RobotsCache(user_agent="test-agent", transport=httpx.MockTransport(handler))
        async with _session(handler) as session:
            blocked = await fetch_page(session=session, url="https://cook.test/private/x", metrics=metrics, robots=robots)
            allowed = await fetch_page(session=session, url="https://cook.test/public", metrics=metrics, robots=robots)
        assert blocked is None
        assert allowed is not None
        assert metrics.get("robots_disallow") == 1
        assert robots.crawl_delay("https://cook.test/public") == 4.0

    asyncio.run(_run())


def test_robots_server_error_disallows_host():
    def handler(request):
        return httpx.Response(500)

    async def _run():
        robots = RobotsCache(user_agent="test-agent", transport=httpx.MockTransport(handler))
        assert await robots.allowed("https://cook.test/anything") is False

    asyncio.run(_run())


def test_detect_block():
    assert detect_block(403, "") == "HTTP 403"
    assert detect_block(429, None) == "HTTP 429"
    challenge = (FIXTURES / "challenge.html").read_text(encoding="utf-8")
    assert detect_block(200, challenge) == "Anti-bot page"
    assert detect_block(200, "<html><body><h1>Access Denied</h1></body></html>") == "Anti-bot page"
    assert detect_block(200, "<html><title>Soup</title><body>Tasty</body></html>") is None


def test_check_image():
    def handler(request):
        assert request.method == "HEAD"
        return httpx.Response(200 if request.url.path == "/ok.jpg" else 404)

    async def _run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            assert await check_image("https://cook.test/ok.jpg", client=client) is True
            assert await check_image("https://cook.test/missing.jpg", client=client) is False
            assert await check_image(None, client=client) is False

    asyncio.run(_run())


def test_unreachable_robots_is_retried_after_the_failure_window():
    calls = []
    now = [0.0]

    def handler(request):
        calls.append(request.url.path)
        if len(calls) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(404)

    async def _run():
        robots = RobotsCache(
            user_agent="test-agent",
            transport=httpx.MockTransport(handler),
            failure_retry_seconds=60,
            clock=lambda: now[0],
        )
        assert await robots.allowed("https://cook.test/a") is False
        assert await robots.allowed("https://cook.test/b") is False
        assert len(calls) == 1
        now[0] = 61.0
        assert await robots.allowed("https://cook.test/a") is True
        now[0] = 10_000.0
        assert await robots.allowed("https://cook.test/c") is True
        assert len(calls) == 2

    asyncio.run(_run())
