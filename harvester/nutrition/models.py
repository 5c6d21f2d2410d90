"""Canonical nutrient record plus the provider-specific payloads it is built from."""
from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field

MACRO_FIELDS = ("calories", "protein", "fat", "carbs", "fiber", "sugar")
MICRO_FIELDS = ("calcium_mg", "iron_mg", "vitamin_a_mcg", "vitamin_c_mg")
NUTRIENT_FIELDS = MACRO_FIELDS + MICRO_FIELDS


class Portion(BaseModel):
    measure: str
    grams: float = Field(gt=0)


class NutrientRecord(BaseModel):
    """Nutrients per ``serving_size_g`` grams of one food."""

    description: Optional[str] = None
    calories: float = 0.0
    protein: float = 0.0
    fat: float = 0.0
    carbs: float = 0.0
    fiber: float = 0.0
    sugar: float = 0.0
    calcium_mg: float = 0.0
    iron_mg: float = 0.0
    vitamin_a_mcg: float = 0.0
    vitamin_c_mg: float = 0.0
    serving_size_g: float = Field(default=100.0, gt=0)
    portions: List[Portion] = Field(default_factory=list)

    def scaled(self, grams: float) -> Dict[str, float]:
        ratio = grams / self.serving_size_g
        return {name: getattr(self, name) * ratio for name in NUTRIENT_FIELDS}


# FoodData Central nutrient ids; several ids can carry the same value depending on data type.
USDA_NUTRIENT_IDS: Dict[str, tuple] = {
    "calories": (1008, 2047, 2048),
    "protein": (1003,),
    "fat": (1004,),
    "carbs": (1005,),
    "fiber": (1079,),
    "sugar": (2000, 1063),
    "calcium_mg": (1087,),
    "iron_mg": (1089,),
    "vitamin_a_mcg": (1106,),
    "vitamin_c_mg": (1162,),
}


class UsdaFood(BaseModel):
    """A FoodData Central food, from ``/foods/search`` or ``/food/{fdcId}``."""

    provider: Literal["usda"] = "usda"
    fdc_id: int
    description: str = ""
    data_type: Optional[str] = None
    nutrients: Dict[int, float] = Field(default_factory=dict)
    portions: List[Portion] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "UsdaFood":
        nutrients: Dict[int, float] = {}
        for item in payload.get("foodNutrients") or []:
            # search results are flat, detail records nest the nutrient
            nested = item.get("nutrient") or {}
            nutrient_id = item.get("nutrientId") or nested.get("id")
            value = item.get("value", item.get("amount"))
            if nutrient_id is None or value is None:
                continue
            try:
                nutrients[int(nutrient_id)] = float(value)
            except (TypeError, ValueError):
                continue
        portions: List[Portion] = []
        for item in payload.get("foodPortions") or []:
            grams = item.get("gramWeight")
            if not grams:
                continue
            measure = item.get("portionDescription") or item.get("modifier") or ""
            unit = (item.get("measureUnit") or {}).get("name")
            if unit and unit.lower() != "undetermined":
                measure = f"{unit} {measure}".strip()
            if measure:
                portions.append(Portion(measure=measure.lower(), grams=float(grams)))
        return cls(
            fdc_id=payload["fdcId"],
            description=payload.get("description") or "",
            data_type=payload.get("dataType"),
            nutrients=nutrients,
            portions=portions,
        )

    @property
    def calories(self) -> float:
        return self._value("calories")

    def _value(self, name: str) -> float:
        for nutrient_id in USDA_NUTRIENT_IDS[name]:
            if nutrient_id in self.nutrients:
                return self.nutrients[nutrient_id]
        return 0.0

    def to_record(self) -> NutrientRecord:
        values = {name: self._value(name) for name in USDA_NUTRIENT_IDS}
        return NutrientRecord(description=self.description, serving_size_g=100.0, portions=self.portions, **values)


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _metric(serving: Dict[str, Any]) -> Tuple[Optional[float], str]:
    amount = serving.get("metric_serving_amount")
    unit = (serving.get("metric_serving_unit") or "").strip().lower()
    value = _number(amount) if amount is not None else 0.0
    return (value if value > 0 else None), unit


def _serving_rank(serving: Dict[str, Any]) -> int:
    """Lower is better: 100 g, any grams, millilitres, then everything else."""
    amount, unit = _metric(serving)
    if amount is None:
        return 3
    if unit == "g":
        return 0 if amount == 100 else 1
    if unit == "ml":
        return 2
    return 3


class FatSecretServing(BaseModel):
    """The preferred serving of a FatSecret ``food.get.v2`` response."""

    provider: Literal["fatsecret"] = "fatsecret"
    food_name: str = ""
    serving_description: Optional[str] = None
    metric_serving_amount: Optional[float] = None
    metric_serving_unit: Optional[str] = None
    calories: float = 0.0
    protein: float = 0.0
    fat: float = 0.0
    carbohydrate: float = 0.0
    fiber: float = 0.0
    sugar: float = 0.0
    calcium: float = 0.0
    iron: float = 0.0
    vitamin_a: float = 0.0
    vitamin_c: float = 0.0

    @classmethod
    def from_payload(cls, food: Dict[str, Any], *, prefer_metric: bool = True) -> Optional["FatSecretServing"]:
        servings = (food.get("servings") or {}).get("serving")
        # a single serving comes back as an object rather than a list
        if isinstance(servings, dict):
            servings = [servings]
        candidates = [item for item in servings or [] if isinstance(item, dict)]
        if not candidates:
            return None
        serving = min(candidates, key=_serving_rank) if prefer_metric else candidates[0]
        amount, unit = _metric(serving)
        return cls(
            food_name=food.get("food_name") or "",
            serving_description=serving.get("serving_description"),
            metric_serving_amount=amount,
            metric_serving_unit=unit or None,
            calories=_number(serving.get("calories")),
            protein=_number(serving.get("protein")),
            fat=_number(serving.get("fat")),
            carbohydrate=_number(serving.get("carbohydrate")),
            fiber=_number(serving.get("fiber")),
            sugar=_number(serving.get("sugar")),
            calcium=_number(serving.get("calcium")),
            iron=_number(serving.get("iron")),
            vitamin_a=_number(serving.get("vitamin_a")),
            vitamin_c=_number(serving.get("vitamin_c")),
        )

    @property
    def reference_grams(self) -> Optional[float]:
        """Grams the nutrient values refer to; None when the serving has no metric size."""
        if not self.metric_serving_amount:
            return None
        if self.metric_serving_unit == "g":
            return self.metric_serving_amount
        if self.metric_serving_unit == "ml":
            # imported here, the normalizer depends on this module
            from harvester.nutrition.normalizer import density_for

            return self.metric_serving_amount * density_for(self.food_name)
        return None

    def to_record(self) -> NutrientRecord:
        grams = self.reference_grams
        if grams is None:
            raise ValueError(f"serving {self.serving_description!r} of {self.food_name!r} has no metric size")
        portions = []
        if self.serving_description:
            portions.append(Portion(measure=self.serving_description.lower(), grams=grams))
        return NutrientRecord(
            description=self.food_name,
            calories=self.calories,
            protein=self.protein,
            fat=self.fat,
            carbs=self.carbohydrate,
            fiber=self.fiber,
            sugar=self.sugar,
            calcium_mg=self.calcium,
            iron_mg=self.iron,
            vitamin_a_mcg=self.vitamin_a,
            vitamin_c_mg=self.vitamin_c,
            serving_size_g=grams,
            portions=portions,
        )

    def to_schema_org(self) -> Dict[str, str]:
        """Render as a Schema.org ``NutritionInformation`` object."""
        return {
            "@type": "NutritionInformation",
            "calories": f"{self.calories:g} kcal",
            "carbohydrateContent": f"{self.carbohydrate:g} g",
            "proteinContent": f"{self.protein:g} g",
            "fatContent": f"{self.fat:g} g",
            "fiberContent": f"{self.fiber:g} g",
            "sugarContent": f"{self.sugar:g} g",
        }


ProviderFood = Annotated[Union[UsdaFood, FatSecretServing], Field(discriminator="provider")]


def normalize_food(food: ProviderFood) -> NutrientRecord:
    """Collapse a provider variant into the canonical record."""
    return food.to_record()
