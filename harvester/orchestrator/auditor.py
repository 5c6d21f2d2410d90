"""Auditor loop: re-checks stored recipes, backfills nutrition and schedules repair crawls."""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

import httpx
import orjson
import structlog

from harvester.errors import StoreError
from harvester.fetch.image_check import check_image
from harvester.observability.metrics import MetricsRegistry
from harvester.orchestrator.jobs import utcnow
from harvester.orchestrator.scheduler import schedule_repair
from harvester.quality.scoring import calculate_score
from harvester.settings import Settings
from harvester.storage.job_store import JobStore
from harvester.storage.models import QAStatus, Recipe
from harvester.storage.recipe_store import RecipeStore

LOGGER = structlog.get_logger(__name__)

ImageChecker = Callable[..., Awaitable[bool]]


class RecipeNutritionLookup(Protocol):
    async def find_nutrition_for_recipe(self, recipe_name: str) -> Optional[Dict[str, str]]:
        ...


def repair_image_field(image: Optional[str]) -> Optional[str]:
    """Extract ``url``/``contentUrl`` when an image field holds a serialised ImageObject."""
    if not image or not image.strip().startswith("{"):
        return None
    try:
        payload = orjson.loads(image)
    except orjson.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    extracted = payload.get("url") or payload.get("contentUrl")
    return extracted if isinstance(extracted, str) and extracted else None


class Auditor:
    def __init__(
        self,
        *,
        recipe_store: RecipeStore,
        job_store: JobStore,
        settings: Settings,
        nutrition_lookup: Optional[RecipeNutritionLookup] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        image_checker: ImageChecker = check_image,
        metrics: Optional[MetricsRegistry] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._recipes = recipe_store
        self._jobs = job_store
        self._settings = settings
        self._nutrition = nutrition_lookup
        self._client = http_client
        self._check_image = image_checker
        self._metrics = metrics or MetricsRegistry()
        self._sleep = sleep
        self._clock = clock

    async def _backfill_nutrition(self, recipe: Recipe, logs: List[str]) -> Optional[Dict[str, str]]:
        nutrition = None
        if self._nutrition is not None and recipe.name:
            LOGGER.info("nutrition_backfill", name=recipe.name)
            nutrition = await self._nutrition.find_nutrition_for_recipe(recipe.name)
        if nutrition:
            logs.append("Enriched nutrition via FatSecret API.")
        else:
            logs.append("Missing nutrition (Lookup failed or no API key).")
        return nutrition

    def _repair(self, recipe: Recipe, logs: List[str]) -> None:
        if not recipe.url:
            logs.append("Cannot auto-repair: No source URL.")
            return
        decision = schedule_repair(self._jobs, recipe.url, repair_cap=self._settings.quality.repair_cap)
        if decision.last_failed:
            LOGGER.warning("repair_starvation_suspected", target=recipe.url)
        if decision.live_job is not None:
            LOGGER.info("repair_already_queued", target=recipe.url, job_id=decision.live_job.id)
        elif decision.exhausted:
            self._metrics.incr("repairs_exhausted")
            logs.append("Auto-repair exhausted. Human review required.")
        elif decision.scheduled is not None:
            self._metrics.incr("repairs_scheduled")
            LOGGER.info("repair_scheduled", target=recipe.url, attempt=decision.attempt)
            logs.append(f"Scheduled auto-repair crawl (Attempt {decision.attempt}).")

    async def audit_recipe(self, recipe: Recipe) -> QAStatus:
        """Audit one recipe and persist the result in a single update."""
        logs: List[str] = []
        status = QAStatus.VERIFIED

        image = recipe.image
        staged_image = repair_image_field(image)
        if staged_image:
            image = staged_image
            logs.append("Auto-repaired image URL from JSON object.")
        if image:
            valid = await self._check_image(
                image, timeout=self._settings.fetch.image_timeout_seconds, client=self._client
            )
            if not valid:
                logs.append(f"Image URL failed validation: {image}")
                status = QAStatus.FLAGGED
        else:
            logs.append("Missing image.")
            status = QAStatus.FLAGGED

        if not recipe.recipe_instructions:
            logs.append("Missing instructions.")
            status = QAStatus.FLAGGED

        staged_nutrition = None
        if not recipe.nutrition:
            staged_nutrition = await self._backfill_nutrition(recipe, logs)

        candidate = recipe.model_copy(
            update={"image": image, "nutrition": staged_nutrition or recipe.nutrition}
        )
        score = calculate_score(candidate)

        if score < self._settings.quality.standing_threshold:
            status = QAStatus.QUARANTINED
            self._metrics.incr("recipes_quarantined")
            logs.append(f"Quarantined: Low quality score ({score}/100).")
            self._repair(recipe, logs)

        self._recipes.apply_audit(
            recipe.id,
            qa_status=status,
            quality_score=score,
            audit_log=logs,
            audited_at=self._clock(),
            nutrition=staged_nutrition,
            image=staged_image,
        )
        self._metrics.incr("recipes_audited")
        LOGGER.info("recipe_audited", recipe_id=recipe.id, status=status.value, score=score)
        return status

    def _mark_failed(self, recipe: Recipe, exc: Exception) -> None:
        try:
            self._recipes.apply_audit(
                recipe.id,
                qa_status=QAStatus.FLAGGED,
                quality_score=recipe.quality_score,
                audit_log=[f"Audit error: {exc}"],
                audited_at=self._clock(),
            )
        except StoreError as store_exc:
            LOGGER.error("audit_error_not_recorded", recipe_id=recipe.id, error=str(store_exc))

    async def run_batch(self) -> Optional[int]:
        """Audit one batch; returns the batch size, or None when it could not be read."""
        try:
            recipes = self._recipes.pending_audit(self._settings.auditor.batch_size)
        except StoreError as exc:
            LOGGER.error("audit_batch_read_failed", error=str(exc))
            return None
        if recipes:
            LOGGER.info("audit_batch_started", size=len(recipes))
        for recipe in recipes:
            try:
                await self.audit_recipe(recipe)
            except Exception as exc:  # one bad recipe must not stall the batch
                LOGGER.exception("recipe_audit_failed", recipe_id=recipe.id, error=str(exc))
                self._mark_failed(recipe, exc)
        return len(recipes)

    async def run(self, *, max_batches: Optional[int] = None) -> None:
        LOGGER.info("auditor_started", worker=self._settings.instance_id)
        batches = 0
        while max_batches is None or batches < max_batches:
            batches += 1
            audited = await self.run_batch()
            if not audited:
                if audited == 0:
                    LOGGER.info("no_pending_recipes")
                await self._sleep(self._settings.auditor.poll_interval_seconds)
