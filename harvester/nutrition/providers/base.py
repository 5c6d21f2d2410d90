"""Provider protocol and the factory that builds the configured provider chain."""
from __future__ import annotations

import contextlib
from typing import Any, AsyncIterator, List, Optional, Protocol

import httpx
import orjson
import structlog

from harvester.errors import ProviderError
from harvester.nutrition.models import NutrientRecord
from harvester.settings import NutritionSettings

LOGGER = structlog.get_logger(__name__)


class NutritionProvider(Protocol):
    name: str

    async def lookup(self, term: str) -> Optional[NutrientRecord]:
        ...


def decode_json(response: httpx.Response) -> Any:
    """Decode a provider response body, raising ``ProviderError`` for HTTP or JSON failures."""
    if response.is_error:
        raise ProviderError(f"HTTP {response.status_code} from {response.request.url}")
    try:
        return orjson.loads(response.content)
    except orjson.JSONDecodeError as exc:
        raise ProviderError(f"invalid JSON from {response.request.url}: {exc}") from exc


@contextlib.asynccontextmanager
async def create_provider_client(
    settings: NutritionSettings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=settings.timeout_seconds, transport=transport) as client:
        yield client


def build_providers(settings: NutritionSettings, client: httpx.AsyncClient) -> List[NutritionProvider]:
    """Instantiate providers in ``settings.providers`` order; unknown names are skipped."""
    # imported here to keep the provider modules free of a cycle through this factory
    from harvester.nutrition.providers.fatsecret import FatSecretProvider
    from harvester.nutrition.providers.usda import UsdaProvider

    chain: List[NutritionProvider] = []
    for name in settings.providers:
        if name == "usda":
            chain.append(
                UsdaProvider(
                    api_key=settings.usda_api_key,
                    base_url=settings.usda_base_url,
                    page_size=settings.usda_page_size,
                    client=client,
                )
            )
        elif name == "fatsecret":
            chain.append(FatSecretProvider.from_settings(settings, client))
        else:
            LOGGER.warning("unknown_nutrition_provider", provider=name)
    return chain
