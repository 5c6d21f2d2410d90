"""Command-line entrypoints for the recipe harvester."""
from __future__ import annotations

import argparse
import asyncio
import json
import signal
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import httpx
from dotenv import load_dotenv

from harvester.errors import StoreError
from harvester.nutrition.cache import IngredientCache
from harvester.nutrition.engine import NutritionEngine
from harvester.nutrition.providers.base import build_providers, create_provider_client
from harvester.nutrition.providers.fatsecret import FatSecretProvider
from harvester.observability.log import configure_logging
from harvester.observability.metrics import MetricsRegistry, record_duration
from harvester.orchestrator.auditor import Auditor
from harvester.orchestrator.scheduler import archive_all, archive_job, submit_crawl
from harvester.orchestrator.worker import Worker
from harvester.settings import DEFAULT_SETTINGS_PATH, Settings, load_settings
from harvester.storage.db import connect
from harvester.storage.job_store import JobStore
from harvester.storage.recipe_store import RecipeStore


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="recipe-harvester", description="Recipe crawler and nutrition pipeline")
    parser.add_argument("--config", type=Path, default=DEFAULT_SETTINGS_PATH, help="Path to settings.toml")
    sub = parser.add_subparsers(dest="command", required=True)

    worker = sub.add_parser("worker", help="Claim and run crawl jobs")
    worker.add_argument("--max-cycles", type=int, help="Stop after this many poll cycles")

    audit = sub.add_parser("audit", help="Run the recipe auditor")
    audit.add_argument("--max-batches", type=int, help="Stop after this many batches")

    submit = sub.add_parser("submit", help="Queue a crawl for a URL")
    submit.add_argument("url")

    analyze = sub.add_parser("analyze", help="Compute nutrition for ingredient lines")
    analyze.add_argument("lines", nargs="+", help="Ingredient lines, e.g. '2 cups flour'")

    jobs = sub.add_parser("jobs", help="List crawl jobs")
    jobs.add_argument("--archived", action="store_true", help="Show archived jobs instead")
    jobs.add_argument("--limit", type=int, default=20)

    archive = sub.add_parser("archive", help="Archive a job, or all jobs")
    archive.add_argument("job_id", nargs="?", type=int)
    archive.add_argument("--all", action="store_true", help="Archive every unarchived job")

    sub.add_parser("clear-cache", help="Empty the ingredient cache")
    return parser


def _run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")


async def run_worker(args: argparse.Namespace, settings: Settings) -> None:
    connection = connect(settings.app.database)
    metrics = MetricsRegistry()
    worker = Worker(
        job_store=JobStore(connection),
        recipe_store=RecipeStore(connection),
        settings=settings,
        metrics=metrics,
    )
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, worker.shutdown)
        except NotImplementedError:  # pragma: no cover - windows event loops
            pass
    try:
        with record_duration(metrics, "worker_duration_ms"):
            await worker.run(max_cycles=args.max_cycles)
    finally:
        connection.close()
        metrics.export(settings.app.metrics_dir, label="worker", run_id=_run_id())


async def run_auditor(args: argparse.Namespace, settings: Settings) -> None:
    connection = connect(settings.app.database)
    metrics = MetricsRegistry()
    headers = {"User-Agent": settings.fetch.user_agent}
    try:
        async with create_provider_client(settings.nutrition) as provider_client, httpx.AsyncClient(
            headers=headers, timeout=settings.fetch.image_timeout_seconds
        ) as image_client:
            auditor = Auditor(
                recipe_store=RecipeStore(connection),
                job_store=JobStore(connection),
                settings=settings,
                nutrition_lookup=FatSecretProvider.from_settings(settings.nutrition, provider_client),
                http_client=image_client,
                metrics=metrics,
            )
            await auditor.run(max_batches=args.max_batches)
    finally:
        connection.close()
        metrics.export(settings.app.metrics_dir, label="audit", run_id=_run_id())


async def run_analyze(args: argparse.Namespace, settings: Settings) -> dict:
    connection = connect(settings.app.database)
    try:
        async with create_provider_client(settings.nutrition) as client:
            engine = NutritionEngine(
                providers=build_providers(settings.nutrition, client),
                cache=IngredientCache(connection, settings.nutrition.cache_schema_version),
            )
            return await engine.analyze(args.lines)
    finally:
        connection.close()


def _job_summary(job) -> dict:
    return {
        "id": job.id,
        "url": job.url,
        "status": job.status.value,
        "retry_count": job.retry_count,
        "recipes_found": job.recipes_found,
        "next_retry_at": job.next_retry_at.isoformat() if job.next_retry_at else None,
        "log": job.log,
    }


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    if args.command == "archive" and (args.job_id is None) == (not args.all):
        parser.error("archive takes either a job id or --all")
    settings = load_settings(args.config)
    configure_logging(Path("config/logging.yaml"))

    if args.command == "worker":
        asyncio.run(run_worker(args, settings))
        return

    if args.command == "audit":
        asyncio.run(run_auditor(args, settings))
        return

    if args.command == "analyze":
        print(json.dumps(asyncio.run(run_analyze(args, settings)), indent=2))
        return

    connection = connect(settings.app.database)
    try:
        store = JobStore(connection)
        if args.command == "submit":
            job = submit_crawl(store, args.url)
            print(json.dumps(_job_summary(job), indent=2))
        elif args.command == "jobs":
            jobs = store.list_jobs(archived=args.archived, limit=args.limit)
            print(json.dumps([_job_summary(job) for job in jobs], indent=2))
        elif args.command == "archive":
            count = archive_all(store) if args.all else int(archive_job(store, args.job_id))
            print(json.dumps({"archived": count}))
        elif args.command == "clear-cache":
            removed = IngredientCache(connection).clear()
            print(json.dumps({"removed": removed}))
    except StoreError as exc:
        raise SystemExit(f"Store error: {exc}")
    finally:
        connection.close()


if __name__ == "__main__":
    main()
