"""Completeness scoring for recipe records."""
from __future__ import annotations

from typing import Any, Mapping, Union

from pydantic import BaseModel

RecipeLike = Union[Mapping[str, Any], BaseModel]

TIME_FIELDS = ("prep_time", "cook_time", "total_time")


def _as_mapping(recipe: RecipeLike) -> Mapping[str, Any]:
    if isinstance(recipe, BaseModel):
        return recipe.model_dump()
    return recipe


def _text_longer_than(value: object, length: int) -> bool:
    return isinstance(value, str) and len(value) > length


def _non_empty_list(value: object) -> bool:
    return isinstance(value, (list, tuple)) and len(value) > 0


def calculate_score(recipe: RecipeLike) -> int:
    """Return the 0-100 completeness score for a recipe-like record.

    Points: name 10, description 10, image 20, ingredients 25,
    instructions 25, any time field 5, nutrition 5.
    """
    data = _as_mapping(recipe)
    score = 0
    if _text_longer_than(data.get("name"), 3):
        score += 10
    if _text_longer_than(data.get("description"), 10):
        score += 10
    if _text_longer_than(data.get("image"), 10):
        score += 20
    if _non_empty_list(data.get("recipe_ingredients")):
        score += 25
    if _non_empty_list(data.get("recipe_instructions")):
        score += 25
    if any(data.get(field) for field in TIME_FIELDS):
        score += 5
    if data.get("nutrition"):
        score += 5
    return score
