from conftest import FIXTURES

from harvester.parse.dom import DomRules, load_dom_rules, scrape_from_dom
from harvester.parse.extractor import extract_recipes


def test_dom_fallback_when_no_structured_data():
    html = (FIXTURES / "recipe_dom.html").read_text(encoding="utf-8")
    results = extract_recipes(html, "https://cook.test/stew/?ref=home")
    assert len(results) == 1
    recipe = results[0]
    assert recipe["url"] == "https://cook.test/stew"
    assert recipe["name"] == "Grandma's Beef Stew"
    assert recipe["recipe_ingredients"] == ["2 lb beef chuck", "3 carrots"]
    assert recipe["recipe_instructions"] == ["Brown the beef.", "Simmer for two hours."]
    assert recipe["image"] == "https://cook.test/img/stew.jpg"


def test_dom_without_name_is_not_a_recipe():
    html = "<html><body><li class='ingredient'>salt</li></body></html>"
    assert extract_recipes(html, "https://cook.test/page") == []


def test_structured_recipe_is_augmented_from_dom():
    html = (
        '<script type="application/ld+json">'
        '{"@type": "Recipe", "name": "Stew", "recipeIngredient": ["beef"]}'
        "</script>"
        "<ol class='instructions'><li>Brown.</li><li>Simmer.</li></ol>"
    )
    results = extract_recipes(html, "https://cook.test/stew")
    assert results[0]["recipe_instructions"] == ["Brown.", "Simmer."]
    assert results[0]["recipe_ingredients"] == ["beef"]


def test_structured_url_comes_from_page():
    html = (FIXTURES / "recipe_graph.html").read_text(encoding="utf-8")
    results = extract_recipes(html, "https://cook.test/lemon-pancakes/#print")
    assert results[0]["url"] == "https://cook.test/lemon-pancakes"


def test_dom_rules_load_from_yaml(tmp_path):
    path = tmp_path / "rules.yaml"
    path.write_text("selectors:\n  name: 'h2.title'\n", encoding="utf-8")
    rules = load_dom_rules(path)
    assert rules.name == "h2.title"
    assert rules.ingredients == DomRules().ingredients
    assert scrape_from_dom("<h2 class='title'>Toast</h2>", rules)["name"] == "Toast"


def test_missing_rules_file_gives_defaults(tmp_path):
    assert load_dom_rules(tmp_path / "absent.yaml") == DomRules()
    assert load_dom_rules(None) == DomRules()
