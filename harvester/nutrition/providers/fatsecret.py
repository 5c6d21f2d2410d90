"""FatSecret Platform provider (OAuth2 client credentials)."""
from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

import httpx
import structlog

from harvester.errors import ProviderError
from harvester.nutrition.models import FatSecretServing, NutrientRecord, normalize_food
from harvester.nutrition.providers.base import decode_json
from harvester.settings import NutritionSettings

LOGGER = structlog.get_logger(__name__)

TOKEN_EXPIRY_MARGIN_SECONDS = 60.0


class FatSecretProvider:
    """Secondary ingredient provider, also used by the auditor for whole-recipe lookups."""

    name = "fatsecret"

    def __init__(
        self,
        *,
        client_id: Optional[str],
        client_secret: Optional[str],
        client: httpx.AsyncClient,
        token_url: str = "https://oauth.fatsecret.com/connect/token",
        api_url: str = "https://platform.fatsecret.com/rest/server.api",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._client = client
        self._token_url = token_url
        self._api_url = api_url
        self._clock = clock
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    @classmethod
    def from_settings(cls, settings: NutritionSettings, client: httpx.AsyncClient) -> "FatSecretProvider":
        return cls(
            client_id=settings.fatsecret_client_id,
            client_secret=settings.fatsecret_client_secret,
            client=client,
            token_url=settings.fatsecret_token_url,
            api_url=settings.fatsecret_api_url,
        )

    async def access_token(self) -> Optional[str]:
        """Return a cached bearer token, refreshing it one minute before expiry."""
        if self._token and self._clock() < self._token_expires_at:
            return self._token
        if not self._client_id or not self._client_secret:
            LOGGER.warning("fatsecret_credentials_missing")
            return None
        try:
            response = await self._client.post(
                self._token_url,
                auth=(self._client_id, self._client_secret),
                data={"grant_type": "client_credentials", "scope": "basic"},
            )
            payload = decode_json(response)
            token = payload["access_token"]
            expires_in = float(payload.get("expires_in", 0))
        except (httpx.HTTPError, ProviderError, KeyError, TypeError, ValueError) as exc:
            LOGGER.error("fatsecret_auth_failed", error=str(exc))
            return None
        self._token = token
        self._token_expires_at = self._clock() + expires_in - TOKEN_EXPIRY_MARGIN_SECONDS
        return token

    async def _call(self, token: str, params: Dict[str, str]) -> Dict[str, Any]:
        response = await self._client.post(
            self._api_url,
            headers={"Authorization": f"Bearer {token}"},
            data={**params, "format": "json"},
        )
        return decode_json(response)

    async def best_serving(self, expression: str, *, prefer_metric: bool = True) -> Optional[FatSecretServing]:
        """``foods.search`` for the top hit, then ``food.get.v2`` for one of its servings.

        With ``prefer_metric`` a gram (ideally 100 g) or millilitre serving is
        chosen; otherwise the first listed serving is used.
        """
        token = await self.access_token()
        if not token:
            return None
        try:
            found = await self._call(
                token, {"method": "foods.search", "search_expression": expression, "max_results": "1"}
            )
            food = (found.get("foods") or {}).get("food")
            # single results come back as an object rather than a list
            if isinstance(food, list):
                food = food[0] if food else None
            if not isinstance(food, dict) or "food_id" not in food:
                LOGGER.info("fatsecret_no_match", term=expression)
                return None
            details = await self._call(token, {"method": "food.get.v2", "food_id": str(food["food_id"])})
        except (httpx.HTTPError, ProviderError, AttributeError) as exc:
            LOGGER.warning("fatsecret_request_failed", term=expression, error=str(exc))
            return None
        detail_food = details.get("food") if isinstance(details, dict) else None
        if not isinstance(detail_food, dict):
            return None
        return FatSecretServing.from_payload(detail_food, prefer_metric=prefer_metric)

    async def lookup(self, term: str) -> Optional[NutrientRecord]:
        serving = await self.best_serving(term)
        if serving is None:
            return None
        if serving.reference_grams is None:
            LOGGER.info("fatsecret_no_metric_serving", term=term, serving=serving.serving_description)
            return None
        return normalize_food(serving)

    async def find_nutrition_for_recipe(self, recipe_name: str) -> Optional[Dict[str, str]]:
        """Whole-recipe lookup rendered as Schema.org ``NutritionInformation``."""
        serving = await self.best_serving(recipe_name, prefer_metric=False)
        if serving is None:
            return None
        return serving.to_schema_org()
