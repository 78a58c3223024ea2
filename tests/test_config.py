from __future__ import annotations

from pathlib import Path

import pytest

from prodscope.core.config.assertions import (
    AssertionSyntaxError,
    compile_assertion,
    failed_assertions,
)
from prodscope.core.config.loader import (
    ConfigError,
    load_all_recipes,
    load_app_config,
    load_origin_policies,
    load_recipe,
    validate_recipe_file,
)
from prodscope.core.config.models import AppConfig, RecipeTransform, RenderMode

REPO_CONFIGS = Path(__file__).resolve().parent.parent / "configs"

RECIPE = """
domain: www.Example-Shop.com
version: 3
selectors:
  name:
    selector: h1
    transform: extractNumber
  currency:
    value: EUR
assertions:
  - "price > 0"
"""


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


# =============================================================================
# App config
# =============================================================================


def test_missing_app_config_uses_defaults(tmp_path: Path) -> None:
    config = load_app_config(tmp_path / "missing.yaml")
    assert config.cache_ttl_seconds == 3600
    assert config.retry.max_attempts == 4
    assert config.render.hourly_budget == 100


def test_app_config_expands_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PRODSCOPE_LOG_LEVEL", "DEBUG")
    monkeypatch.delenv("PRODSCOPE_PROXY", raising=False)
    path = _write(
        tmp_path / "app.yaml",
        "logging:\n  level: ${PRODSCOPE_LOG_LEVEL}\n"
        "proxy:\n  server: ${PRODSCOPE_PROXY:-http://proxy.local:8000}\n",
    )

    config = load_app_config(path)

    assert config.logging.level == "DEBUG"
    assert config.proxy.server == "http://proxy.local:8000"


def test_invalid_app_config_raises(tmp_path: Path) -> None:
    path = _write(tmp_path / "app.yaml", "retry:\n  max_attempts: 0\n")
    with pytest.raises(ConfigError) as excinfo:
        load_app_config(path)
    assert "retry.max_attempts" in str(excinfo.value)


def test_malformed_yaml_raises(tmp_path: Path) -> None:
    path = _write(tmp_path / "app.yaml", "retry: [unclosed\n")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_app_config(path)


def test_shipped_configs_load() -> None:
    config = load_app_config(REPO_CONFIGS / "app.yaml")
    table = load_origin_policies(config, REPO_CONFIGS / "origins.yaml")
    recipes = load_all_recipes(REPO_CONFIGS / "recipes")

    assert table.for_origin("zara.com").acquisition.render == RenderMode.ALWAYS
    assert "shop.example.com" in recipes


# =============================================================================
# Origin policies
# =============================================================================


def test_origin_file_overrides_inline_policies(tmp_path: Path) -> None:
    config = AppConfig.model_validate(
        {
            "timeouts": {"static_fetch": 15},
            "origins": {
                "shop.example.com": {"timeout": 5, "headers": {"X-Inline": "1"}},
                "inline-only.com": {"acquisition": {"render": "never"}},
            },
        }
    )
    path = _write(
        tmp_path / "origins.yaml",
        "origins:\n  shop.example.com:\n    timeout: 7\n",
    )

    table = load_origin_policies(config, path)

    shop = table.for_origin("shop.example.com")
    assert shop.timeout == 7
    assert shop.headers == {"X-Inline": "1"}
    assert table.for_origin("inline-only.com").timeout == 15
    assert table.for_origin("inline-only.com").acquisition.render == RenderMode.NEVER


def test_subdomains_inherit_closest_parent(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "origins.yaml",
        "origins:\n"
        "  example.com:\n    timeout: 4\n"
        "  eu.example.com:\n    timeout: 6\n",
    )
    table = load_origin_policies(AppConfig(), path)

    assert table.for_origin("shop.eu.example.com").timeout == 6
    assert table.for_origin("us.example.com").timeout == 4

    unknown = table.for_origin("other.test")
    assert unknown.hostname == "other.test"
    assert unknown.timeout == 10.0
    assert unknown.retry is None


def test_hostnames_are_normalized(tmp_path: Path) -> None:
    path = _write(tmp_path / "origins.yaml", "origins:\n  WWW.Zara.com:\n    timeout: 3\n")
    table = load_origin_policies(AppConfig(), path)
    assert table["zara.com"].hostname == "zara.com"


def test_missing_origins_file_keeps_inline(tmp_path: Path) -> None:
    config = AppConfig.model_validate({"origins": {"a.com": {"timeout": 2}}})
    table = load_origin_policies(config, tmp_path / "absent.yaml")
    assert list(table) == ["a.com"]


def test_invalid_origin_policy_raises(tmp_path: Path) -> None:
    path = _write(tmp_path / "origins.yaml", "origins:\n  bad.com:\n    timeout: -1\n")
    with pytest.raises(ConfigError, match="bad.com"):
        load_origin_policies(AppConfig(), path)


def test_policy_table_is_read_only(tmp_path: Path) -> None:
    table = load_origin_policies(AppConfig(), _write(tmp_path / "o.yaml", "origins:\n  a.com: {}\n"))
    with pytest.raises(TypeError):
        table["b.com"] = table["a.com"]  # type: ignore[index]


# =============================================================================
# Recipes
# =============================================================================


def test_load_recipe_normalizes(tmp_path: Path) -> None:
    recipe = load_recipe(_write(tmp_path / "shop.yaml", RECIPE))

    assert recipe.domain == "example-shop.com"
    assert recipe.version == "3"
    assert recipe.selectors["name"].transform == RecipeTransform.EXTRACT_NUMBER
    assert recipe.selectors["currency"].selectors == []
    assert [str(a) for a in recipe.compiled_assertions] == ["price > 0"]


def test_load_all_recipes_skips_underscored(tmp_path: Path) -> None:
    _write(tmp_path / "shop.yaml", RECIPE)
    _write(tmp_path / "_draft.yaml", "domain: draft.com\n")
    _write(tmp_path / "other.yml", "domain: other.com\nselectors:\n  name:\n    selector: h1\n")

    recipes = load_all_recipes(tmp_path)

    assert sorted(recipes) == ["example-shop.com", "other.com"]


def test_duplicate_recipe_domain_raises(tmp_path: Path) -> None:
    _write(tmp_path / "a.yaml", "domain: dup.com\n")
    _write(tmp_path / "b.yaml", "domain: www.dup.com\n")
    with pytest.raises(ConfigError, match="Duplicate recipe for dup.com"):
        load_all_recipes(tmp_path)


def test_missing_recipes_dir_is_empty(tmp_path: Path) -> None:
    assert load_all_recipes(tmp_path / "nope") == {}


def test_bad_assertion_fails_recipe_load(tmp_path: Path) -> None:
    path = _write(tmp_path / "bad.yaml", "domain: bad.com\nassertions:\n  - price is positive\n")
    with pytest.raises(ConfigError, match="Invalid recipe"):
        load_recipe(path)


def test_validate_recipe_file_reports_errors(tmp_path: Path) -> None:
    good = _write(tmp_path / "good.yaml", RECIPE)
    bad = _write(tmp_path / "bad.yaml", "domain: bad.com\nselectors:\n  name:\n    required: true\n")

    assert validate_recipe_file(good) == []
    assert validate_recipe_file(tmp_path / "missing.yaml")[0].startswith("File not found")
    errors = validate_recipe_file(bad)
    assert len(errors) == 1
    assert errors[0].startswith("selectors.name")


# =============================================================================
# Assertions
# =============================================================================


@pytest.mark.parametrize(
    ("source", "record", "expected"),
    [
        ("price > 0", {"price": 12.5}, True),
        ("price > 0", {"price": 0}, False),
        ("price >= 10", {"price": "10"}, True),
        ("name", {"name": "Shirt"}, True),
        ("name", {"name": ""}, False),
        ("name", {}, False),
        ("images.length >= 2", {"images": ["a", "b"]}, True),
        ("images.length >= 2", {"images": ["a"]}, False),
        ("images[0].startswith('https://')", {"images": ["https://cdn/x.jpg"]}, True),
        ("images[0].startsWith('https://')", {"images": ["http://cdn/x.jpg"]}, False),
        ("images[3] == 'x'", {"images": ["a"]}, False),
        ("currency == 'EUR'", {"currency": "EUR"}, True),
        ("brand != null", {"brand": None}, False),
        ("brand != 'Acme'", {}, True),
        ("description.includes('linen')", {"description": "soft linen"}, True),
        ("price < 5", {"price": "cheap"}, False),
    ],
)
def test_assertion_evaluation(source: str, record: dict, expected: bool) -> None:
    assert compile_assertion(source).evaluate(record) is expected


@pytest.mark.parametrize("source", ["price is positive", "", "name.upper('x')", "1price > 0"])
def test_unsupported_assertions_raise(source: str) -> None:
    with pytest.raises(AssertionSyntaxError):
        compile_assertion(source)


def test_failed_assertions_messages() -> None:
    assertions = [compile_assertion("price > 100"), compile_assertion("name")]
    assert failed_assertions(assertions, {"price": 20, "name": "Shirt"}) == ["Assertion failed: price > 100"]
