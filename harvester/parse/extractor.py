"""Recipe extraction orchestrator combining JSON-LD and DOM fallbacks."""
from __future__ import annotations

from typing import Dict, List, Optional

import structlog

from harvester.normalize.urls import normalize_url
from harvester.parse.dom import DomRules, scrape_from_dom
from harvester.parse.jsonld import extract_recipes_from_jsonld

LOGGER = structlog.get_logger(__name__)


def _dom_is_recipe(dom: Dict[str, object]) -> bool:
    return bool(dom.get("name")) and bool(dom.get("recipe_ingredients") or dom.get("recipe_instructions"))


def extract_recipes(html: str, url: str, rules: Optional[DomRules] = None) -> List[Dict[str, object]]:
    """Extract candidate recipes for ``url``, preferring structured data."""
    page_url = normalize_url(url)
    candidates = extract_recipes_from_jsonld(html)
    dom: Optional[Dict[str, object]] = None

    if not candidates:
        dom = scrape_from_dom(html, rules)
        if _dom_is_recipe(dom):
            LOGGER.info("recipe_found_via_dom", name=dom.get("name"))
            candidates = [dict(dom)]

    for candidate in candidates:
        if not candidate.get("recipe_instructions") or not candidate.get("recipe_ingredients"):
            if dom is None:
                dom = scrape_from_dom(html, rules)
            for key in ("recipe_instructions", "recipe_ingredients"):
                if not candidate.get(key) and dom.get(key):
                    LOGGER.info("recipe_augmented_from_dom", name=candidate.get("name"), field=key)
                    candidate[key] = list(dom[key])
        candidate["url"] = page_url
    return candidates
