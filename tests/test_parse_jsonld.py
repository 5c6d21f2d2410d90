from conftest import FIXTURES

from harvester.parse.jsonld import extract_recipes_from_jsonld, flatten_instructions, normalize_image


def test_extract_recipe_from_graph():
    html = (FIXTURES / "recipe_graph.html").read_text(encoding="utf-8")
    results = extract_recipes_from_jsonld(html)
    assert len(results) == 1
    recipe = results[0]
    assert recipe["name"] == "Lemon Pancakes"
    assert recipe["image"] == "https://cook.test/img/pancakes.jpg"
    assert recipe["recipe_yield"] == "4"
    assert recipe["recipe_category"] == "Breakfast, Brunch"
    assert recipe["recipe_cuisine"] == "American"
    assert recipe["recipe_ingredients"][0] == "1 1/2 cups flour"
    assert recipe["recipe_instructions"] == [
        "Whisk the dry ingredients.",
        "Fold in eggs and milk.",
        "Cook on a hot griddle.",
    ]


def test_malformed_blocks_are_ignored():
    html = '<script type="application/ld+json">{broken</script>'
    assert extract_recipes_from_jsonld(html) == []


def test_top_level_list_and_type_list():
    html = (
        '<script type="application/ld+json">'
        '[{"@type": "Person", "name": "Chef"}, {"@type": ["Thing", "Recipe"], "name": "Soup",'
        ' "recipeInstructions": "Boil everything."}]'
        "</script>"
    )
    results = extract_recipes_from_jsonld(html)
    assert [item["name"] for item in results] == ["Soup"]
    assert results[0]["recipe_instructions"] == ["Boil everything."]


def test_normalize_image_shapes():
    assert normalize_image("https://cook.test/a.jpg") == "https://cook.test/a.jpg"
    assert normalize_image({"@type": "ImageObject", "contentUrl": "https://cook.test/b.jpg"}) == "https://cook.test/b.jpg"
    assert normalize_image([None, {"url": "https://cook.test/c.jpg"}, "https://cook.test/d.jpg"]) == "https://cook.test/c.jpg"
    assert normalize_image([]) is None
    assert normalize_image(None) is None


def test_flatten_instructions_mixed_shapes():
    raw = [
        "Preheat the oven.",
        {"@type": "HowToStep", "text": "Mix."},
        {"@type": "HowToSection", "itemListElement": [{"@type": "HowToStep", "text": "Bake."}]},
        {"@type": "HowToTip", "text": "Enjoy warm."},
    ]
    assert flatten_instructions(raw) == ["Preheat the oven.", "Mix.", "Bake."]
