"""Heuristic DOM fallback for pages without usable structured data."""
from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from bs4 import BeautifulSoup


@dataclass
class DomRules:
    """CSS hooks used by common recipe plugins and blog themes."""

    name: str = ".wprm-recipe-name, .entry-title, h1"
    description: str = ".wprm-recipe-summary, .entry-content p"
    ingredients: str = ".wprm-recipe-ingredient, .wprm-recipe-ingredient-name, li.ingredient"
    instructions: str = ".wprm-recipe-instruction-text, .wprm-recipe-instruction, .instructions li"
    image: str = ".wprm-recipe-image img, .wprm-recipe-image-container img, .entry-content img"


def load_dom_rules(path: Optional[Path]) -> DomRules:
    if path is None or not path.exists():
        return DomRules()
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    selectors = data.get("selectors", {})
    defaults = DomRules()
    return DomRules(**{item.name: selectors.get(item.name, getattr(defaults, item.name)) for item in fields(DomRules)})


def _first_text(soup: BeautifulSoup, selector: str) -> Optional[str]:
    element = soup.select_one(selector)
    if element is None:
        return None
    text = element.get_text(" ", strip=True)
    return text or None


def _texts(soup: BeautifulSoup, selector: str) -> List[str]:
    # Plugins nest e.g. ingredient-name inside ingredient; keep the outermost match.
    matched = soup.select(selector)
    matched_ids = {id(element) for element in matched}
    values: List[str] = []
    for element in matched:
        if any(id(parent) in matched_ids for parent in element.parents):
            continue
        text = element.get_text(" ", strip=True)
        if text:
            values.append(text)
    return values


def scrape_from_dom(html: str, rules: Optional[DomRules] = None) -> Dict[str, object]:
    """Scrape recipe fields straight from the markup."""
    rules = rules or DomRules()
    soup = BeautifulSoup(html, "html.parser")
    image = soup.select_one(rules.image)
    return {
        "name": _first_text(soup, rules.name),
        "description": _first_text(soup, rules.description),
        "recipe_ingredients": _texts(soup, rules.ingredients),
        "recipe_instructions": _texts(soup, rules.instructions),
        "image": (image.get("src") or image.get("data-src")) if image is not None else None,
    }
