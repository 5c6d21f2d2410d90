"""Tracing helpers for fetch and crawl stages."""
from __future__ import annotations

import contextlib
import time
from typing import Iterator, Optional

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars

_logger = structlog.get_logger("harvester.trace")


def set_context(*, job_id: str, url: str, worker: str) -> None:
    bind_contextvars(job_id=job_id, url=url, worker=worker)
    _logger.debug("trace_context", job_id=job_id, url=url, worker=worker)


def clear_context() -> None:
    clear_contextvars()


@contextlib.contextmanager
def span(*, name: str, url: Optional[str] = None) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        _logger.debug("trace_span", span=name, target=url, elapsed_ms=elapsed_ms)


def log_retry(attempt: int, *, url: str, reason: str) -> None:
    _logger.warning("fetch_retry", attempt=attempt, target=url, reason=reason)


def log_fetch_result(*, url: str, status: int, bytes_read: int, elapsed_ms: int) -> None:
    _logger.info(
        "fetch_result",
        target=url,
        status=status,
        bytes=bytes_read,
        elapsed_ms=elapsed_ms,
    )
