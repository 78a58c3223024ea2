from __future__ import annotations

import json

import pytest
from conftest import jsonld_product, product_page

from prodscope.core.collaborators import InMemoryMetrics
from prodscope.core.config.models import Recipe
from prodscope.core.errors import ExtractionError
from prodscope.core.extract import (
    Document,
    ExtractionCandidate,
    ExtractionStrategy,
    HeuristicExtractor,
    MetaTagExtractor,
    MicrodataExtractor,
    RecipeExtractor,
    StrategyCoordinator,
    StrategyResult,
    StructuredExtractor,
    merge_candidates,
)

URL = "https://shop.example.com/products/linen-shirt"


# =============================================================================
# JSON-LD
# =============================================================================


def test_jsonld_basic_product() -> None:
    doc = Document(product_page(jsonld_product()), URL)
    result = StructuredExtractor().extract(doc, URL)

    assert result.ok
    assert result.fields["name"] == "Test Shirt"
    assert result.fields["price"] == 19.99
    assert result.fields["currency"] == "USD"
    assert result.fields["images"] == ["http://x/a.jpg"]


def test_jsonld_graph_and_strikethrough_price() -> None:
    graph = {
        "@context": "https://schema.org",
        "@graph": [
            {"@type": "BreadcrumbList", "itemListElement": []},
            {
                "@type": ["Product"],
                "name": "Wool Coat",
                "brand": {"@type": "Brand", "name": "Acme"},
                "image": [{"@type": "ImageObject", "contentUrl": "/img/coat.jpg"}],
                "offers": {
                    "@type": "Offer",
                    "price": "90.00",
                    "priceCurrency": "EUR",
                    "availability": "https://schema.org/InStock",
                    "priceSpecification": [
                        {"@type": "UnitPriceSpecification", "priceType": "https://schema.org/StrikethroughPrice", "price": "120.00"}
                    ],
                },
            },
        ],
    }
    doc = Document(product_page(graph), URL)
    fields = StructuredExtractor().extract(doc, URL).fields

    assert fields["name"] == "Wool Coat"
    assert fields["brand"] == "Acme"
    assert fields["price"] == 120.0
    assert fields["sale_price"] == 90.0
    assert fields["currency"] == "EUR"
    assert fields["availability"] == "in_stock"
    assert fields["images"] == ["https://shop.example.com/img/coat.jpg"]


def test_jsonld_tolerates_trailing_commas() -> None:
    html = (
        '<html><head><script type="application/ld+json">'
        '{"@type": "Product", "name": "Cap", "offers": {"price": "15",},}'
        "</script></head><body></body></html>"
    )
    fields = StructuredExtractor().extract(Document(html, URL), URL).fields
    assert fields["name"] == "Cap"
    assert fields["price"] == 15.0


def test_jsonld_without_product_fails() -> None:
    doc = Document(product_page({"@type": "Organization", "name": "Acme"}), URL)
    result = StructuredExtractor().extract(doc, URL)
    assert not result.success
    assert result.errors


# =============================================================================
# Microdata
# =============================================================================


MICRODATA_PAGE = """
<html><body>
  <div itemscope itemtype="https://schema.org/Product">
    <h1 itemprop="name">Canvas Tote</h1>
    <div itemprop="brand" itemscope itemtype="https://schema.org/Brand">
      <span itemprop="name">Acme</span>
    </div>
    <img itemprop="image" src="/media/tote-front.jpg">
    <p itemprop="description">A sturdy canvas tote bag.</p>
    <div itemprop="offers" itemscope itemtype="https://schema.org/Offer">
      <meta itemprop="priceCurrency" content="GBP">
      <span itemprop="price" content="25.00">£25</span>
      <link itemprop="availability" href="https://schema.org/OutOfStock">
    </div>
  </div>
</body></html>
"""


def test_microdata_scoped_properties() -> None:
    fields = MicrodataExtractor().extract(Document(MICRODATA_PAGE, URL), URL).fields

    assert fields["name"] == "Canvas Tote"
    assert fields["brand"] == "Acme"
    assert fields["price"] == 25.0
    assert fields["currency"] == "GBP"
    assert fields["availability"] == "out_of_stock"
    assert fields["images"] == ["https://shop.example.com/media/tote-front.jpg"]


def test_microdata_not_applicable_without_scope() -> None:
    doc = Document("<html><body><h1>Nothing</h1></body></html>", URL)
    assert not MicrodataExtractor().can_handle(doc, URL)


# =============================================================================
# Meta tags
# =============================================================================


def test_meta_tags() -> None:
    head = """
      <meta property="og:type" content="product">
      <meta property="og:title" content="Buy Linen Shirt | Acme Store">
      <meta property="og:image" content="https://cdn.acme.example/img/linen.jpg">
      <meta property="og:description" content="Breathable linen.">
      <meta property="product:price:amount" content="49.00">
      <meta property="product:price:currency" content="USD">
      <meta property="product:brand" content="Acme">
      <meta property="product:availability" content="in stock">
    """
    fields = MetaTagExtractor().extract(Document(product_page(head=head), URL), URL).fields

    assert fields["name"] == "Linen Shirt"
    assert fields["price"] == 49.0
    assert fields["currency"] == "USD"
    assert fields["brand"] == "Acme"
    assert fields["images"] == ["https://cdn.acme.example/img/linen.jpg"]
    assert fields["availability"] == "in_stock"


# =============================================================================
# Heuristic
# =============================================================================


HEURISTIC_PAGE = """
<html><head><title>Field Jacket | Outfitters</title></head><body>
  <div class="product-info">
    <h1 class="product-title">Field Jacket</h1>
    <div class="brand">Outfitters</div>
    <div class="product-gallery">
      <img src="/img/logo.png">
      <img data-src="/img/field-jacket-1.jpg">
      <img srcset="/img/field-jacket-2-small.jpg 400w, /img/field-jacket-2-large.jpg 1600w">
    </div>
    <span class="price price--compare">$300.00</span>
    <button name="add">Add to cart - $189.00</button>
    <div class="product-description">Waxed cotton field jacket with four pockets.</div>
  </div>
</body></html>
"""


def test_heuristic_prefers_add_to_cart_price() -> None:
    fields = HeuristicExtractor().extract(Document(HEURISTIC_PAGE, URL), URL).fields

    assert fields["name"] == "Field Jacket"
    assert fields["price"] == 189.0
    assert fields["currency"] == "USD"
    assert fields["brand"] == "Outfitters"
    assert fields["images"] == [
        "https://shop.example.com/img/field-jacket-1.jpg",
        "https://shop.example.com/img/field-jacket-2-large.jpg",
    ]
    assert fields["description"].startswith("Waxed cotton")


def test_heuristic_uses_learned_selectors_first() -> None:
    html = '<html><body><h1>Item</h1><div class="p-now">€75</div><div class="price">€99</div></body></html>'
    extractor = HeuristicExtractor(learned_selectors=lambda origin: {"price": [".p-now"]})

    fields = extractor.extract(Document(html, URL), URL).fields

    assert fields["price"] == 75.0
    assert fields["currency"] == "EUR"


def test_heuristic_falls_back_to_visible_text_price() -> None:
    html = "<html><body><h1>Desk Lamp</h1><p>Now only $34.50 while stocks last</p></body></html>"
    fields = HeuristicExtractor().extract(Document(html, URL), URL).fields
    assert fields["price"] == 34.5


def test_heuristic_fills_from_next_data() -> None:
    state = {
        "props": {
            "pageProps": {
                "product": {
                    "title": "Trail Runner",
                    "price": {"current": 129.95},
                    "brand": {"name": "Stride"},
                    "images": ["https://cdn.stride.example/img/trail-runner.jpg"],
                }
            }
        }
    }
    html = (
        '<html><body><div id="__next"></div>'
        f'<script id="__NEXT_DATA__" type="application/json">{json.dumps(state)}</script>'
        "</body></html>"
    )
    fields = HeuristicExtractor().extract(Document(html, URL), URL).fields

    assert fields["name"] == "Trail Runner"
    assert fields["price"] == 129.95
    assert fields["brand"] == "Stride"
    assert fields["images"] == ["https://cdn.stride.example/img/trail-runner.jpg"]


# =============================================================================
# Recipes
# =============================================================================


def _recipe(**overrides: object) -> Recipe:
    data: dict[str, object] = {
        "domain": "shop.example.com",
        "version": 3,
        "selectors": {
            "name": {"selector": "h1.title", "required": True, "transform": "trim"},
            "price": {"selector": ".missing", "fallback": [".price-now"], "type": "price", "required": True},
            "images": {"selector": ".gallery img", "type": "images"},
            "currency": {"value": "USD"},
        },
        "assertions": ["price > 0", "images.length >= 1"],
    }
    data.update(overrides)
    return Recipe.model_validate(data)


RECIPE_PAGE = """
<html><body>
  <h1 class="title">  Oxford Shirt </h1>
  <span class="price-now">$59.00</span>
  <div class="gallery"><img src="/img/oxford-1.jpg"><img data-src="/img/oxford-2.jpg"></div>
</body></html>
"""


def test_recipe_extracts_with_fallback_selectors() -> None:
    extractor = RecipeExtractor({"shop.example.com": _recipe()})
    result = extractor.extract(Document(RECIPE_PAGE, URL), URL)

    assert result.ok
    assert result.fields == {
        "name": "Oxford Shirt",
        "price": 59.0,
        "images": ["https://shop.example.com/img/oxford-1.jpg", "https://shop.example.com/img/oxford-2.jpg"],
        "currency": "USD",
    }


def test_recipe_matches_subdomains() -> None:
    extractor = RecipeExtractor({"example.com": _recipe(domain="example.com")})
    assert extractor.can_handle(Document(RECIPE_PAGE, URL), URL)
    assert not extractor.can_handle(Document(RECIPE_PAGE, URL), "https://other.test/p/1")


def test_recipe_failed_assertion_fails_recipe() -> None:
    recipe = _recipe(assertions=["price > 100"])
    result = RecipeExtractor({"shop.example.com": recipe}).extract(Document(RECIPE_PAGE, URL), URL)

    assert not result.success
    assert result.errors == ["Assertion failed: price > 100"]
    assert result.fields["price"] == 59.0


def test_recipe_missing_required_field() -> None:
    html = "<html><body><h1 class='title'>Oxford</h1></body></html>"
    result = RecipeExtractor({"shop.example.com": _recipe(assertions=[])}).extract(Document(html, URL), URL)

    assert not result.success
    assert "Required field 'price' not found" in result.errors


def test_recipe_rejects_bad_assertion_at_load() -> None:
    with pytest.raises(ValueError):
        _recipe(assertions=["price is positive"])


# =============================================================================
# Coordinator / merge
# =============================================================================


class _Static(ExtractionStrategy):
    def __init__(self, name: str, fields: dict[str, object], success: bool = True):
        self._name = name
        self.fields = fields
        self.success = success

    @property
    def name(self) -> str:
        return self._name

    def extract(self, document: Document, url: str) -> StrategyResult:
        return StrategyResult(fields=dict(self.fields), success=self.success)


class _Broken(ExtractionStrategy):
    @property
    def name(self) -> str:
        return "broken"

    def extract(self, document: Document, url: str) -> StrategyResult:
        raise RuntimeError("boom")


def test_merge_takes_first_valid_value_by_priority() -> None:
    coordinator = StrategyCoordinator()
    coordinator.register(_Static("low", {"name": "Low Name", "price": 10.0, "brand": "Acme"}), 10)
    coordinator.register(_Static("high", {"name": "", "price": 0, "description": "From high"}), 100)

    record = coordinator.run(Document("<html></html>", URL), URL)

    assert record.fields["name"] == "Low Name"
    assert record.fields["price"] == 10.0
    assert record.fields["description"] == "From high"
    assert record.provenance == {"description": "high", "name": "low", "price": "low", "brand": "low"}


def test_merge_unions_images_in_priority_order() -> None:
    candidates = [
        ExtractionCandidate("jsonld", 100, {"images": ["https://x.example/a.jpg"]}),
        ExtractionCandidate("meta_tags", 70, {"images": ["https://x.example/a.jpg?w=2", "https://x.example/b.jpg"]}),
        ExtractionCandidate("heuristic", 50, {"images": ["not-a-url.jpg"]}),
    ]
    record = merge_candidates(candidates)

    assert record.fields["images"] == ["https://x.example/a.jpg", "https://x.example/b.jpg"]
    assert record.provenance["images"] == "jsonld"


def test_merge_is_deterministic() -> None:
    candidates = [
        ExtractionCandidate("jsonld", 100, {"name": "A", "price": 5.0}),
        ExtractionCandidate("heuristic", 50, {"name": "B", "brand": "C", "color": "red"}),
    ]
    assert merge_candidates(candidates) == merge_candidates(list(candidates))
    assert merge_candidates(candidates).extras == {"color": "red"}


def test_equal_priorities_keep_registration_order() -> None:
    coordinator = StrategyCoordinator()
    coordinator.register(_Static("first", {"name": "First"}), 50)
    coordinator.register(_Static("second", {"name": "Second"}), 50)

    assert [name for name, _ in coordinator.strategies] == ["first", "second"]
    assert coordinator.run(Document("<html></html>", URL), URL).fields["name"] == "First"


def test_failing_strategy_is_isolated() -> None:
    metrics = InMemoryMetrics()
    coordinator = StrategyCoordinator(metrics=metrics)
    coordinator.register(_Broken(), 100)
    coordinator.register(_Static("ok", {"name": "Survivor"}), 10)

    record = coordinator.run(Document("<html></html>", URL), URL)

    assert record.fields["name"] == "Survivor"
    broken = [c for c in record.candidates if c.strategy == "broken"][0]
    assert not broken.success
    assert broken.errors == ("RuntimeError: boom",)
    assert metrics.get("strategy_errors", {"strategy": "broken"}) == 1


def test_failed_candidates_do_not_contribute() -> None:
    record = merge_candidates(
        [
            ExtractionCandidate("recipe", 90, {"name": "Partial"}, success=False),
            ExtractionCandidate("heuristic", 50, {"name": "Fallback"}),
        ]
    )
    assert record.fields["name"] == "Fallback"


def test_completeness_weights() -> None:
    record = merge_candidates(
        [ExtractionCandidate("jsonld", 100, {"name": "A", "price": 1.0, "images": ["https://x.example/a.jpg"]})]
    )
    assert record.completeness() == 0.75


def test_sale_price_not_below_price_from_another_strategy_is_dropped() -> None:
    record = merge_candidates(
        [
            ExtractionCandidate("jsonld", 100, {"name": "A", "price": 80.0}),
            ExtractionCandidate("meta_tags", 70, {"price": 100.0, "sale_price": 80.0}),
        ]
    )
    assert record.fields["price"] == 80.0
    assert "sale_price" not in record.fields
    assert "sale_price" not in record.provenance


def test_sale_price_follows_the_price_strategy() -> None:
    record = merge_candidates(
        [
            ExtractionCandidate("meta_tags", 70, {"sale_price": 55.0}),
            ExtractionCandidate("heuristic", 50, {"price": 100.0, "sale_price": 60.0}),
        ]
    )
    assert record.fields["sale_price"] == 60.0
    assert record.provenance["sale_price"] == "heuristic"


def test_sale_price_below_price_from_another_strategy_is_kept() -> None:
    record = merge_candidates(
        [
            ExtractionCandidate("jsonld", 100, {"price": 100.0}),
            ExtractionCandidate("meta_tags", 70, {"sale_price": 75.0}),
        ]
    )
    assert record.fields["sale_price"] == 75.0
    assert record.provenance["sale_price"] == "meta_tags"


def test_fill_from_respects_zero_price_switch() -> None:
    strict = merge_candidates([ExtractionCandidate("jsonld", 100, {"name": "Free Sample"})])
    lenient = merge_candidates(
        [ExtractionCandidate("jsonld", 100, {"name": "Free Sample"})], allow_zero_price=True
    )

    assert strict.fill_from({"price": 0}) == []
    assert lenient.fill_from({"price": 0}) == ["price"]
    assert lenient.provenance["price"] == "api"


def test_fill_from_skips_incoherent_sale_price() -> None:
    record = merge_candidates([ExtractionCandidate("jsonld", 100, {"name": "A", "price": 40.0})])

    assert record.fill_from({"sale_price": 45.0, "brand": "Acme"}) == ["brand"]
    assert "sale_price" not in record.fields


class _Declines(ExtractionStrategy):
    @property
    def name(self) -> str:
        return "declines"

    def extract(self, document: Document, url: str) -> StrategyResult:
        raise ExtractionError("Unsupported page layout", strategy=self.name)


def test_extraction_error_message_is_kept_verbatim() -> None:
    coordinator = StrategyCoordinator()
    coordinator.register(_Declines(), 100)

    record = coordinator.run(Document("<html></html>", URL), URL)

    assert record.candidates[0].errors == ("Unsupported page layout",)
    assert record.fields == {}
