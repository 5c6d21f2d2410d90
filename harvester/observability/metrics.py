"""Per-process counters for crawl, worker, nutrition and auditor activity."""
from __future__ import annotations

import contextlib
import time
from collections import Counter
from pathlib import Path
from typing import Dict, Iterator, Tuple

import orjson
import structlog

LOGGER = structlog.get_logger(__name__)

FETCH_COUNTERS = (
    "pages_fetched", "http_2xx", "http_3xx", "http_4xx", "http_5xx",
    "retries", "fetch_failures", "robots_disallow", "blocked",
)
SESSION_COUNTERS = (
    "recipes_saved", "recipes_rejected_low_quality", "store_errors",
    "jobs_completed", "jobs_failed", "jobs_cooling_down",
)
WORKER_COUNTERS = ("jobs_claimed", "claims_lost")
NUTRITION_COUNTERS = ("cache_hits", "provider_hits", "provider_misses")
AUDIT_COUNTERS = ("recipes_audited", "recipes_quarantined", "repairs_scheduled", "repairs_exhausted")

DEFAULT_COUNTERS: Tuple[str, ...] = (
    FETCH_COUNTERS + SESSION_COUNTERS + WORKER_COUNTERS + NUTRITION_COUNTERS + AUDIT_COUNTERS
)


class MetricsRegistry:
    """Counters start at zero so an export always lists every known metric."""

    def __init__(self) -> None:
        self._counters: Counter = Counter(dict.fromkeys(DEFAULT_COUNTERS, 0))

    def incr(self, name: str, value: int = 1) -> None:
        self._counters[name] += value

    def record_status(self, status_code: int) -> None:
        """Count a response under its ``http_Nxx`` class."""
        self.incr("pages_fetched")
        self.incr(f"http_{status_code // 100}xx")

    def get(self, name: str) -> int:
        return self._counters.get(name, 0)

    def snapshot(self) -> Dict[str, int]:
        return dict(self._counters)

    def export(self, directory: Path, *, label: str, run_id: str) -> Path:
        """Write ``<label>_<run_id>.json`` into ``directory`` and return its path."""
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{label}_{run_id}.json"
        payload = {
            "run_id": run_id,
            "label": label,
            "counters": self.snapshot(),
            "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }
        path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
        LOGGER.info("metrics_exported", path=str(path))
        return path


@contextlib.contextmanager
def record_duration(registry: MetricsRegistry, metric_name: str) -> Iterator[None]:
    """Add the block's wall time in milliseconds to ``metric_name``."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        registry.incr(metric_name, elapsed_ms)
        LOGGER.info("timer_stop", metric=metric_name, duration_ms=elapsed_ms)
