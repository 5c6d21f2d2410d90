"""Parsers for Schema.org Recipe payloads embedded as JSON-LD."""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

import orjson
from bs4 import BeautifulSoup


def _flatten_graph(payload: object) -> Iterable[Dict[str, object]]:
    if isinstance(payload, dict):
        if "@graph" in payload and isinstance(payload["@graph"], list):
            for node in payload["@graph"]:
                yield from _flatten_graph(node)
        elif "@list" in payload and isinstance(payload["@list"], list):
            for node in payload["@list"]:
                yield from _flatten_graph(node)
        else:
            yield payload
    elif isinstance(payload, list):
        for item in payload:
            yield from _flatten_graph(item)


def _types(node: Dict[str, object]) -> List[str]:
    raw = node.get("@type")
    if isinstance(raw, list):
        return [item for item in raw if isinstance(item, str)]
    if isinstance(raw, str):
        return [raw]
    return []


def is_recipe_node(node: Dict[str, object]) -> bool:
    return "Recipe" in _types(node)


def _clean(value: object) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def normalize_image(raw: object) -> Optional[str]:
    """Collapse a bare string, an array or an ImageObject into one URL."""
    if isinstance(raw, str):
        return raw.strip() or None
    if isinstance(raw, list):
        for item in raw:
            image = normalize_image(item)
            if image:
                return image
        return None
    if isinstance(raw, dict):
        return _clean(raw.get("url")) or _clean(raw.get("contentUrl"))
    return None


def _step_text(step: Dict[str, object]) -> Optional[str]:
    return _clean(step.get("text")) or _clean(step.get("name"))


def flatten_instructions(raw: object) -> List[str]:
    """Flatten strings, HowToStep and HowToSection structures into step text."""
    if isinstance(raw, str):
        return [raw.strip()] if raw.strip() else []
    steps: List[str] = []
    if not isinstance(raw, list):
        return steps
    for item in raw:
        if isinstance(item, str):
            if item.strip():
                steps.append(item.strip())
            continue
        if not isinstance(item, dict):
            continue
        kinds = _types(item)
        if "HowToSection" in kinds:
            steps.extend(flatten_instructions(item.get("itemListElement") or []))
        elif "HowToStep" in kinds:
            text = _step_text(item)
            if text:
                steps.append(text)
    return steps


def _string_list(raw: object) -> List[str]:
    if isinstance(raw, str):
        return [raw.strip()] if raw.strip() else []
    if isinstance(raw, list):
        return [item.strip() for item in raw if isinstance(item, str) and item.strip()]
    return []


def _joined(raw: object) -> Optional[str]:
    if isinstance(raw, list):
        parts = [item.strip() for item in raw if isinstance(item, str) and item.strip()]
        return ", ".join(parts) or None
    return _clean(raw)


def _recipe_yield(raw: object) -> Optional[str]:
    if isinstance(raw, list):
        for item in raw:
            value = _clean(item)
            if value:
                return value
        return None
    return _clean(raw)


def recipe_payload(node: Dict[str, object]) -> Dict[str, object]:
    """Map a Schema.org Recipe node onto Recipe Store field names."""
    nutrition = node.get("nutrition")
    return {
        "name": _clean(node.get("name")),
        "description": _clean(node.get("description")),
        "image": normalize_image(node.get("image")),
        "prep_time": _clean(node.get("prepTime")),
        "cook_time": _clean(node.get("cookTime")),
        "total_time": _clean(node.get("totalTime")),
        "recipe_yield": _recipe_yield(node.get("recipeYield")),
        "recipe_ingredients": _string_list(node.get("recipeIngredient") or node.get("ingredients")),
        "recipe_instructions": flatten_instructions(node.get("recipeInstructions")),
        "recipe_category": _joined(node.get("recipeCategory")),
        "recipe_cuisine": _joined(node.get("recipeCuisine")),
        "nutrition": nutrition if isinstance(nutrition, dict) and nutrition else None,
    }


def extract_recipes_from_jsonld(html: str) -> List[Dict[str, object]]:
    """Extract Recipe payloads from every JSON-LD block in ``html``."""
    soup = BeautifulSoup(html, "html.parser")
    results: List[Dict[str, object]] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text() or ""
        if not raw.strip():
            continue
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError:
            continue
        for node in _flatten_graph(data):
            if is_recipe_node(node):
                results.append(recipe_payload(node))
    return results
