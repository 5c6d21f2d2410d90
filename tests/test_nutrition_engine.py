import asyncio

from harvester.nutrition.cache import IngredientCache
from harvester.nutrition.engine import NutritionEngine, round_half_up
from harvester.nutrition.models import NutrientRecord, Portion
from harvester.observability.metrics import MetricsRegistry

CHICKEN = NutrientRecord(
    description="Chicken, broiler, breast, meat only, raw",
    calories=165,
    protein=31,
    fat=3.6,
    iron_mg=1.04,
)


class FakeProvider:
    def __init__(self, name, records):
        self.name = name
        self.records = records
        self.calls = []

    async def lookup(self, term):
        self.calls.append(term)
        return self.records.get(term)


def test_single_ingredient_totals():
    provider = FakeProvider("usda", {"chicken breast": CHICKEN})
    result = asyncio.run(NutritionEngine(providers=[provider]).analyze(["100 g chicken breast"]))

    assert result["total"]["calories"] == 165
    assert result["total"]["protein"] == 31
    assert result["total"]["fat"] == 4
    assert result["total"]["iron_mg"] == 1.0
    entry = result["breakdown"][0]
    assert entry["ingredient"] == "100 g chicken breast"
    assert entry["parsed"] == {"name": "chicken breast", "quantity": 100.0, "unit": "g", "grams": 100.0}
    assert entry["stats"]["calories"] == 165
    assert entry["source"] == "usda"


def test_repeated_terms_resolve_once_per_run():
    provider = FakeProvider("usda", {"chicken breast": CHICKEN})
    result = asyncio.run(
        NutritionEngine(providers=[provider]).analyze(["100 g chicken breast", "200 g chicken breast"])
    )
    assert provider.calls == ["chicken breast"]
    assert [entry["source"] for entry in result["breakdown"]] == ["usda", "cache"]
    assert result["total"]["calories"] == 495


def test_cache_serves_later_runs(connection):
    cache = IngredientCache(connection)
    provider = FakeProvider("usda", {"chicken breast": CHICKEN})
    metrics = MetricsRegistry()

    asyncio.run(NutritionEngine(providers=[provider], cache=cache, metrics=metrics).analyze(["100 g chicken breast"]))
    second = asyncio.run(
        NutritionEngine(providers=[provider], cache=cache, metrics=metrics).analyze(["50 g chicken breast"])
    )

    assert provider.calls == ["chicken breast"]
    assert second["breakdown"][0]["source"] == "cache"
    assert second["total"]["calories"] == 83
    assert metrics.get("provider_hits") == 1
    assert metrics.get("cache_hits") == 1
    record, source = cache.get("chicken breast")
    assert source == "usda"
    assert record.calories == 165


def test_cache_entries_from_another_schema_version_are_ignored(connection):
    IngredientCache(connection, schema_version=1).put("chicken breast", CHICKEN, "usda")
    assert IngredientCache(connection, schema_version=2).get("chicken breast") is None
    assert IngredientCache(connection, schema_version=1).clear() == 1


def test_providers_are_tried_in_order():
    first = FakeProvider("usda", {})
    second = FakeProvider("fatsecret", {"chicken breast": CHICKEN})
    metrics = MetricsRegistry()
    result = asyncio.run(
        NutritionEngine(providers=[first, second], metrics=metrics).analyze(["100 g chicken breast"])
    )
    assert first.calls == second.calls == ["chicken breast"]
    assert result["breakdown"][0]["source"] == "fatsecret"
    assert metrics.get("provider_misses") == 1


def test_unresolved_and_empty_lines_are_not_found():
    provider = FakeProvider("usda", {})
    result = asyncio.run(NutritionEngine(providers=[provider]).analyze(["1 cup unobtainium", ""]))
    assert result["breakdown"] == [
        {"ingredient": "1 cup unobtainium", "status": "not_found"},
        {"ingredient": "", "status": "not_found"},
    ]
    assert result["total"]["calories"] == 0
    assert provider.calls == ["unobtainium"]


def test_provider_portions_take_precedence_over_density():
    rice = NutrientRecord(description="Rice, white, raw", calories=365, portions=[Portion(measure="cup", grams=185)])
    provider = FakeProvider("usda", {"rice white raw": rice})
    result = asyncio.run(NutritionEngine(providers=[provider]).analyze(["1 cup rice"]))
    entry = result["breakdown"][0]
    assert entry["parsed"]["grams"] == 185.0
    assert result["total"]["calories"] == round(365 * 1.85)


def test_halves_round_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(0.25, 1) == 0.3
    assert round_half_up(1.005, 2) == 1.01

    butter = NutrientRecord(description="Butter, salted", calories=717, fat=5, iron_mg=0.5)
    provider = FakeProvider("usda", {"butter salted": butter})
    result = asyncio.run(NutritionEngine(providers=[provider]).analyze(["50 g butter"]))
    assert result["total"]["fat"] == 3
    assert result["total"]["iron_mg"] == 0.3
    assert result["total"]["calories"] == 359
