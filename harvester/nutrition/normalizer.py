"""Ingredient line parsing, search-term cleaning and gram conversion."""
from __future__ import annotations

import re
from dataclasses import dataclass
from fractions import Fraction
from typing import Dict, Iterable, Optional, Sequence, Tuple

from harvester.nutrition.models import Portion

WEIGHT_GRAMS: Dict[str, float] = {
    "mg": 0.001,
    "g": 1.0,
    "kg": 1000.0,
    "oz": 28.35,
    "lb": 453.59,
}

VOLUME_ML: Dict[str, float] = {
    "ml": 1.0,
    "l": 1000.0,
    "tsp": 4.93,
    "tbsp": 14.79,
    "fl oz": 29.57,
    "cup": 236.59,
    "pint": 473.18,
    "quart": 946.35,
    "gallon": 3785.41,
    "pinch": 0.31,
    "dash": 0.62,
}

UNIT_ALIASES: Dict[str, str] = {
    "mg": "mg", "milligram": "mg", "milligrams": "mg",
    "g": "g", "gr": "g", "gram": "g", "grams": "g",
    "kg": "kg", "kilo": "kg", "kilos": "kg", "kilogram": "kg", "kilograms": "kg",
    "oz": "oz", "ounce": "oz", "ounces": "oz",
    "lb": "lb", "lbs": "lb", "pound": "lb", "pounds": "lb",
    "ml": "ml", "milliliter": "ml", "milliliters": "ml", "millilitre": "ml", "millilitres": "ml",
    "l": "l", "liter": "l", "liters": "l", "litre": "l", "litres": "l",
    "tsp": "tsp", "tsps": "tsp", "teaspoon": "tsp", "teaspoons": "tsp",
    "tbsp": "tbsp", "tbsps": "tbsp", "tbs": "tbsp", "tbl": "tbsp", "tablespoon": "tbsp", "tablespoons": "tbsp",
    "fl oz": "fl oz", "fluid ounce": "fl oz", "fluid ounces": "fl oz",
    "cup": "cup", "cups": "cup", "c": "cup",
    "pint": "pint", "pints": "pint", "pt": "pint",
    "quart": "quart", "quarts": "quart", "qt": "quart",
    "gallon": "gallon", "gallons": "gallon", "gal": "gallon",
    "pinch": "pinch", "pinches": "pinch",
    "dash": "dash", "dashes": "dash",
}

# grams per millilitre, matched as substrings of the ingredient name (longest key first)
DENSITY: Dict[str, float] = {
    "flour": 0.55,
    "almond flour": 0.4,
    "sugar": 0.85,
    "brown sugar": 0.93,
    "powdered sugar": 0.5,
    "icing sugar": 0.5,
    "butter": 0.96,
    "oil": 0.92,
    "honey": 1.42,
    "maple syrup": 1.32,
    "syrup": 1.37,
    "milk": 1.03,
    "cream": 1.01,
    "yogurt": 1.03,
    "water": 1.0,
    "broth": 1.0,
    "stock": 1.0,
    "rice": 0.85,
    "oats": 0.41,
    "salt": 1.2,
    "baking soda": 0.92,
    "baking powder": 0.9,
    "cocoa": 0.42,
    "cornstarch": 0.54,
    "cheese": 0.45,
    "chocolate chips": 0.72,
    "nuts": 0.6,
    "peanut butter": 1.08,
}

# typical grams for one item when a line carries no unit
ITEM_WEIGHTS: Dict[str, float] = {
    "egg": 50.0,
    "egg yolk": 17.0,
    "egg white": 33.0,
    "onion": 110.0,
    "shallot": 40.0,
    "garlic": 5.0,
    "clove": 5.0,
    "lemon": 60.0,
    "lime": 45.0,
    "orange": 130.0,
    "apple": 180.0,
    "banana": 118.0,
    "tomato": 120.0,
    "potato": 170.0,
    "carrot": 60.0,
    "celery": 40.0,
    "bell pepper": 120.0,
    "jalapeno": 14.0,
    "avocado": 150.0,
    "zucchini": 200.0,
    "chicken breast": 170.0,
    "chicken thigh": 110.0,
    "tortilla": 45.0,
    "slice": 28.0,
    "bay leaf": 0.2,
}

DEFAULT_ITEM_GRAMS = 100.0

PREP_WORDS: Tuple[str, ...] = (
    "room temperature", "all purpose",
    "melted", "softened", "chopped", "sliced", "diced", "minced", "crushed",
    "beaten", "sifted", "warm", "cold", "hot", "boiling", "granulated",
    "dried", "raw", "cooked", "steamed", "baked", "fried", "grilled",
    "finely", "roughly", "freshly", "peeled", "grated", "divided", "packed",
)

TERM_SUBSTITUTIONS: Dict[str, str] = {
    "milk": "milk whole",
    "egg": "egg whole",
    "eggs": "egg whole",
    "flour": "flour wheat all-purpose",
    "sugar": "sugar granulated",
    "butter": "butter salted",
    "rice": "rice white raw",
    "white rice": "rice white raw",
    "oats": "oats rolled raw",
    "rolled oats": "oats rolled raw",
    "pasta": "pasta dry",
}

VULGAR_FRACTIONS: Dict[str, str] = {
    "½": "1/2", "⅓": "1/3", "⅔": "2/3", "¼": "1/4", "¾": "3/4",
    "⅕": "1/5", "⅖": "2/5", "⅗": "3/5", "⅘": "4/5", "⅙": "1/6",
    "⅚": "5/6", "⅛": "1/8", "⅜": "3/8", "⅝": "5/8", "⅞": "7/8",
}

_NUMBER = r"\d+\s+\d+/\d+|\d+/\d+|\d+(?:\.\d+)?|\.\d+"
_QUANTITY_RE = re.compile(
    rf"^\s*(?P<low>{_NUMBER})(?:\s*(?:-|–|to)\s*(?P<high>{_NUMBER}))?\s*"
)
_INLINE_RE = re.compile(r"(?P<qty>\d+(?:[./]\d+)?)\s*(?P<unit>[A-Za-z]+(?:\s[A-Za-z]+)?)\.?\b")
_PARENS_RE = re.compile(r"\([^)]*\)|\[[^\]]*\]")
_PUNCTUATION_RE = re.compile(r"[.,/#!$%^&*;:{}=\-_`~()]")


@dataclass(slots=True)
class ParsedIngredient:
    quantity: float
    unit: Optional[str]
    name: str


def _to_number(token: str) -> float:
    parts = token.split()
    return float(sum(Fraction(part) for part in parts))


def _replace_vulgar(line: str) -> str:
    for symbol, text in VULGAR_FRACTIONS.items():
        # "1½" -> "1 1/2"
        line = re.sub(rf"(\d){symbol}", rf"\1 {text}", line)
        line = line.replace(symbol, text)
    return line


def _match_unit(text: str) -> Tuple[Optional[str], str]:
    """Split a leading unit token off ``text`` (two-word units checked first)."""
    words = text.split()
    for width in (2, 1):
        if len(words) < width:
            continue
        candidate = " ".join(words[:width]).lower().rstrip(".")
        if candidate in UNIT_ALIASES:
            # a lone "c" is only a unit when followed by a name
            if candidate == "c" and len(words) == 1:
                return None, text
            return UNIT_ALIASES[candidate], " ".join(words[width:])
    return None, text


def _clean_name(text: str) -> str:
    name = _PARENS_RE.sub(" ", text)
    name = re.sub(r"^\s*of\s+", "", name, flags=re.IGNORECASE)
    return " ".join(name.split()).strip(" ,")


def _tokenize(line: str) -> Optional[ParsedIngredient]:
    match = _QUANTITY_RE.match(line)
    if not match:
        return None
    low = _to_number(match.group("low"))
    high = match.group("high")
    quantity = (low + _to_number(high)) / 2 if high else low
    unit, rest = _match_unit(line[match.end():])
    name = _clean_name(rest)
    if not name:
        return None
    return ParsedIngredient(quantity=quantity, unit=unit, name=name)


def _inline(line: str) -> Optional[ParsedIngredient]:
    for match in _INLINE_RE.finditer(line):
        unit, rest = _match_unit(match.group("unit"))
        if unit is None:
            continue
        name = _clean_name(" ".join((line[: match.start()], rest, line[match.end():])))
        if name:
            return ParsedIngredient(quantity=float(Fraction(match.group("qty"))), unit=unit, name=name)
    return None


def parse_ingredient_line(line: str) -> ParsedIngredient:
    """Split an ingredient line into quantity, unit and name.

    Leading quantities may be integers, decimals, fractions, unicode vulgar
    fractions, mixed numbers ("1 1/2") or ranges ("1-2", midpoint). When no
    leading quantity is present a ``<qty><unit>`` pair anywhere in the line is
    used; otherwise the whole line is the name with quantity 1.
    """
    text = _replace_vulgar(line or "").strip()
    try:
        parsed = _tokenize(text) or _inline(text)
    except (ValueError, ZeroDivisionError):
        parsed = None
    if parsed is not None:
        return parsed
    return ParsedIngredient(quantity=1.0, unit=None, name=_clean_name(text) or text)


def clean_ingredient_term(name: str) -> str:
    """Reduce an ingredient name to a provider search term."""
    if not name:
        return ""
    # punctuation becomes spaces first, so "all-purpose" is matched as "all purpose"
    cleaned = _PUNCTUATION_RE.sub(" ", name.lower())
    for word in PREP_WORDS:
        cleaned = re.sub(rf"\b{re.escape(word)}\b", " ", cleaned)
    cleaned = " ".join(cleaned.split())
    return TERM_SUBSTITUTIONS.get(cleaned, cleaned)


def _lookup(table: Dict[str, float], ingredient: str) -> Optional[float]:
    name = (ingredient or "").lower()
    for key in sorted(table, key=len, reverse=True):
        if key in name:
            return table[key]
    return None


def density_for(ingredient: str) -> float:
    return _lookup(DENSITY, ingredient) or 1.0


def item_weight(ingredient: str) -> float:
    return _lookup(ITEM_WEIGHTS, ingredient) or DEFAULT_ITEM_GRAMS


def canonical_unit(unit: Optional[str]) -> Optional[str]:
    if not unit:
        return None
    return UNIT_ALIASES.get(unit.lower().rstrip("."))


def unit_to_grams(unit: Optional[str], quantity: float, ingredient: str = "") -> float:
    """Convert ``quantity`` of ``unit`` to grams.

    Volume units go through millilitres and a density looked up by
    ingredient name; unit-less lines use a per-item weight table.
    """
    canonical = canonical_unit(unit)
    if canonical in WEIGHT_GRAMS:
        return quantity * WEIGHT_GRAMS[canonical]
    if canonical in VOLUME_ML:
        return quantity * VOLUME_ML[canonical] * density_for(ingredient)
    return quantity * item_weight(ingredient)


def _unit_spellings(canonical: str) -> Iterable[str]:
    return [alias for alias, target in UNIT_ALIASES.items() if target == canonical and len(alias) > 1]


def portion_grams(unit: Optional[str], quantity: float, portions: Sequence[Portion]) -> Optional[float]:
    """Use a provider portion whose measure names the parsed unit."""
    canonical = canonical_unit(unit)
    if canonical is None or not portions:
        return None
    patterns = [re.compile(rf"\b{re.escape(spelling)}\b") for spelling in _unit_spellings(canonical)]
    for portion in portions:
        measure = portion.measure.lower()
        if any(pattern.search(measure) for pattern in patterns):
            return quantity * portion.grams
    return None
