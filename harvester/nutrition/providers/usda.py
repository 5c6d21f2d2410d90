"""USDA FoodData Central provider: search, rank candidates, fetch portions."""
from __future__ import annotations

import re
from typing import List, Optional

import httpx
import pydantic
import structlog

from harvester.errors import ProviderError
from harvester.nutrition.models import NutrientRecord, UsdaFood, normalize_food
from harvester.nutrition.providers.base import decode_json

LOGGER = structlog.get_logger(__name__)

PROCESSING_WORDS = (
    "canned", "frozen", "dried", "dehydrated", "fried", "breaded", "prepared",
    "sweetened", "smoked", "powder", "instant", "babyfood", "baby food",
    "fast foods", "restaurant", "imitation", "pickled",
)

LOW_CALORIE_FOODS = (
    "water", "tea", "coffee", "salt", "pepper", "spice", "spices", "vinegar",
    "baking soda", "baking powder", "herb", "herbs", "seasoning", "zero",
)

_WORD_RE = re.compile(r"[a-z]+")


def _words(text: str) -> set:
    return set(_WORD_RE.findall(text.lower()))


def score_candidate(query: str, food: UsdaFood) -> float:
    """Rank a search hit for ``query``; higher is better."""
    q = query.lower().strip()
    description = food.description.lower().strip()
    query_words = _words(q)
    description_words = _words(description)

    score = 0.0
    if description == q:
        score += 100
    elif description.startswith(q):
        score += 50
    if query_words:
        score += 30 * len(query_words & description_words) / len(query_words)
    score -= len(description_words - query_words)

    if food.data_type == "Branded":
        score -= 40
    elif food.data_type in ("Foundation", "SR Legacy"):
        score += 10

    for word in PROCESSING_WORDS:
        if word in description and word not in q:
            score -= 15

    if food.calories == 0 and not any(term in q for term in LOW_CALORIE_FOODS):
        score -= 50
    return score


class UsdaProvider:
    """Primary provider; values are per 100 g with portions from the detail record."""

    name = "usda"

    def __init__(
        self,
        *,
        api_key: Optional[str],
        client: httpx.AsyncClient,
        base_url: str = "https://api.nal.usda.gov/fdc/v1",
        page_size: int = 25,
    ) -> None:
        self._api_key = api_key
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._page_size = page_size

    async def search(self, term: str) -> List[UsdaFood]:
        response = await self._client.get(
            f"{self._base_url}/foods/search",
            params={"api_key": self._api_key, "query": term, "pageSize": self._page_size},
        )
        payload = decode_json(response)
        foods = []
        for item in payload.get("foods") or []:
            if "fdcId" in item:
                foods.append(UsdaFood.from_payload(item))
        return foods

    async def details(self, candidate: UsdaFood) -> UsdaFood:
        """Fetch ``/food/{fdcId}`` for portions; falls back to the search hit."""
        try:
            response = await self._client.get(
                f"{self._base_url}/food/{candidate.fdc_id}", params={"api_key": self._api_key}
            )
            detailed = UsdaFood.from_payload(decode_json(response))
        except (httpx.HTTPError, ProviderError, KeyError, pydantic.ValidationError) as exc:
            LOGGER.warning("usda_details_failed", fdc_id=candidate.fdc_id, error=str(exc))
            return candidate
        if not detailed.nutrients:
            detailed = detailed.model_copy(update={"nutrients": candidate.nutrients})
        if not detailed.description:
            detailed = detailed.model_copy(update={"description": candidate.description})
        return detailed

    async def lookup(self, term: str) -> Optional[NutrientRecord]:
        if not self._api_key:
            LOGGER.warning("usda_api_key_missing")
            return None
        try:
            candidates = await self.search(term)
        except (httpx.HTTPError, ProviderError, AttributeError, pydantic.ValidationError) as exc:
            LOGGER.warning("usda_search_failed", term=term, error=str(exc))
            return None
        if not candidates:
            LOGGER.info("usda_no_match", term=term)
            return None
        best = max(candidates, key=lambda food: score_candidate(term, food))
        LOGGER.debug("usda_best_candidate", term=term, fdc_id=best.fdc_id, description=best.description)
        return normalize_food(await self.details(best))
