"""Nutrition engine: ingredient lines in, per-line breakdown and recipe totals out."""
from __future__ import annotations

import asyncio
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from harvester.errors import StoreError
from harvester.nutrition.cache import IngredientCache
from harvester.nutrition.models import MACRO_FIELDS, MICRO_FIELDS, NUTRIENT_FIELDS, NutrientRecord
from harvester.nutrition.normalizer import (
    clean_ingredient_term,
    parse_ingredient_line,
    portion_grams,
    unit_to_grams,
)
from harvester.nutrition.providers.base import NutritionProvider
from harvester.observability.metrics import MetricsRegistry

LOGGER = structlog.get_logger(__name__)

Resolution = Tuple[NutrientRecord, str]


def round_half_up(value: float, places: int = 0) -> float:
    """Round halves away from zero, so 2.5 becomes 3."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def _round_totals(totals: Dict[str, float]) -> Dict[str, float]:
    rounded: Dict[str, float] = {name: int(round_half_up(totals[name])) for name in MACRO_FIELDS}
    rounded.update({name: round_half_up(totals[name], 1) for name in MICRO_FIELDS})
    return rounded


class NutritionEngine:
    """Resolves each ingredient through cache -> providers in order, first hit wins."""

    def __init__(
        self,
        *,
        providers: Sequence[NutritionProvider],
        cache: Optional[IngredientCache] = None,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._providers = list(providers)
        self._cache = cache
        self._metrics = metrics or MetricsRegistry()
        self._pending_writes: List[asyncio.Task] = []

    def _cached(self, term: str) -> Optional[Resolution]:
        if self._cache is None:
            return None
        try:
            return self._cache.get(term)
        except StoreError as exc:
            LOGGER.warning("cache_read_failed", term=term, error=str(exc))
            return None

    async def _write_back(self, term: str, record: NutrientRecord, source: str) -> None:
        try:
            self._cache.put(term, record, source)
        except StoreError as exc:
            LOGGER.warning("cache_write_failed", term=term, error=str(exc))

    async def resolve(self, term: str) -> Optional[Resolution]:
        """Return ``(record, source)`` where source is ``cache`` or a provider name."""
        cached = self._cached(term)
        if cached is not None:
            self._metrics.incr("cache_hits")
            return cached[0], "cache"
        for provider in self._providers:
            record = await provider.lookup(term)
            if record is None:
                self._metrics.incr("provider_misses")
                continue
            self._metrics.incr("provider_hits")
            if self._cache is not None:
                self._pending_writes.append(asyncio.create_task(self._write_back(term, record, provider.name)))
            return record, provider.name
        return None

    async def analyze(self, lines: Sequence[str]) -> Dict[str, Any]:
        totals = dict.fromkeys(NUTRIENT_FIELDS, 0.0)
        breakdown: List[Dict[str, Any]] = []
        resolved: Dict[str, Resolution] = {}
        try:
            for line in lines:
                parsed = parse_ingredient_line(line)
                term = clean_ingredient_term(parsed.name)
                if not term:
                    breakdown.append({"ingredient": line, "status": "not_found"})
                    continue
                hit = resolved.get(term)
                if hit is None:
                    hit = await self.resolve(term)
                if hit is None:
                    LOGGER.info("ingredient_not_found", ingredient=line, term=term)
                    breakdown.append({"ingredient": line, "status": "not_found"})
                    continue
                resolved[term] = (hit[0], "cache")
                record, source = hit
                grams = portion_grams(parsed.unit, parsed.quantity, record.portions)
                if grams is None:
                    grams = unit_to_grams(parsed.unit, parsed.quantity, parsed.name)
                stats = record.scaled(grams)
                for name, value in stats.items():
                    totals[name] += value
                breakdown.append(
                    {
                        "ingredient": line,
                        "parsed": {
                            "name": term,
                            "quantity": parsed.quantity,
                            "unit": parsed.unit,
                            "grams": round_half_up(grams, 1),
                        },
                        "stats": {name: round_half_up(value, 2) for name, value in stats.items()},
                        "source": source,
                    }
                )
        finally:
            await self.flush()
        return {"total": _round_totals(totals), "breakdown": breakdown}

    async def flush(self) -> None:
        """Wait for outstanding cache writes."""
        pending, self._pending_writes = self._pending_writes, []
        if pending:
            await asyncio.gather(*pending)
