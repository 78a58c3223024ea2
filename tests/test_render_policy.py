from __future__ import annotations

from conftest import FakeClock

from prodscope.core.acquire.render_policy import RenderBudget, RenderPolicy
from prodscope.core.config.models import AcquisitionHints, RenderConfig, RenderMode
from prodscope.core.extract import Document

SPA_SHELL = '<html><body><div id="__next"></div><script>window.__INITIAL_STATE__ = {}</script></body></html>'


def _policy(clock: FakeClock, **config: object) -> RenderPolicy:
    render_config = RenderConfig(**config)
    budget = RenderBudget(render_config.hourly_budget, render_config.budget_window_seconds, clock=clock)
    return RenderPolicy(render_config, budget)


def test_budget_consumes_and_resets_with_window(clock: FakeClock) -> None:
    budget = RenderBudget(limit=2, window_seconds=3600, clock=clock)

    assert budget.try_consume()
    assert budget.try_consume()
    assert not budget.try_consume()
    assert budget.remaining == 0

    clock.advance(3600)
    assert budget.remaining == 2
    assert budget.try_consume()
    assert budget.snapshot()["used"] == 1


def test_always_render_origin(clock: FakeClock) -> None:
    policy = _policy(clock)
    decision = policy.decide("https://www.ssense.com/en-us/men/product/acme/shirt/123")
    assert decision.should_render
    assert decision.factors == {"always_list": True}


def test_never_render_origin_ignores_spa_markers(clock: FakeClock) -> None:
    policy = _policy(clock)
    url = "https://www.zara.com/us/en/shirt-p01234567.html"
    decision = policy.decide(url, Document(SPA_SHELL, url))
    assert not decision.should_render
    assert decision.factors == {"never_list": True}


def test_origin_hints_override_lists(clock: FakeClock) -> None:
    policy = _policy(clock)
    hints = AcquisitionHints(render=RenderMode.ALWAYS)
    assert policy.decide("https://shop.example.com/products/x", hints=hints).should_render

    never = AcquisitionHints(render=RenderMode.NEVER)
    assert not policy.decide("https://www.farfetch.com/shopping/item-1.aspx", hints=never).should_render


def test_exhausted_budget_wins_over_always_list(clock: FakeClock) -> None:
    policy = _policy(clock, hourly_budget=0)
    decision = policy.decide("https://www.ssense.com/en-us/product/1")
    assert not decision.should_render
    assert decision.reason == "Render budget exhausted"


def test_spa_product_page_without_structured_data_renders(clock: FakeClock) -> None:
    policy = _policy(clock)
    url = "https://shop.example.com/products/linen-shirt"
    decision = policy.decide(url, Document(SPA_SHELL, url), completeness=0.25)

    assert decision.should_render
    assert decision.reason == "SPA without structured data"
    assert decision.confidence == "medium"


def test_complete_static_extraction_skips_render(clock: FakeClock) -> None:
    policy = _policy(clock)
    url = "https://shop.example.com/products/linen-shirt"
    decision = policy.decide(url, Document(SPA_SHELL, url), completeness=0.9)
    assert not decision.should_render


def test_lazy_images_render_only_when_unresolved(clock: FakeClock) -> None:
    policy = _policy(clock)
    url = "https://shop.example.com/products/linen-shirt"
    doc = Document('<html><body><img data-src="/img/a.jpg"></body></html>', url)

    assert policy.decide(url, doc, completeness=0.5).should_render
    assert not policy.decide(url, doc, completeness=0.5, images_resolved=True).should_render


def test_non_product_page_is_not_rendered(clock: FakeClock) -> None:
    policy = _policy(clock)
    url = "https://shop.example.com/about-us"
    decision = policy.decide(url, Document(SPA_SHELL, url))
    assert not decision.should_render
    assert decision.reason == "Not a product page"


def test_product_markup_detected_without_product_url(clock: FakeClock) -> None:
    policy = _policy(clock)
    url = "https://shop.example.com/linen-shirt"
    doc = Document('<html><body><div class="pdp" data-product-id="9"></div></body></html>', url)
    assert policy.analyze(url, doc).is_product_page


def test_decide_does_not_consume_budget_and_records_history(clock: FakeClock) -> None:
    policy = _policy(clock, hourly_budget=5)
    policy.decide("https://www.ssense.com/en-us/product/1")
    policy.decide("https://shop.example.com/about")

    stats = policy.stats()
    assert stats["total_decisions"] == 2
    assert stats["rendered"] == 1
    assert stats["budget"]["remaining"] == 5
    assert len(policy.history) == 2
