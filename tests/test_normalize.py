from __future__ import annotations

import pytest

from prodscope.core.normalize.images import (
    best_from_srcset,
    collect_images,
    dedupe_images,
    is_product_image,
    resolve_image_url,
    upscale_image_url,
)
from prodscope.core.normalize.parsing import (
    Availability,
    clean_title,
    detect_currency,
    parse_availability,
    parse_money,
    parse_price,
)
from prodscope.core.normalize.urls import canonical_url, host_matches, is_absolute_url, normalize_origin

# =============================================================================
# Money
# =============================================================================


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("$19.99", 19.99),
        ("1,234.56", 1234.56),
        ("1.234,56 €", 1234.56),
        ("1,234", 1234.0),
        ("1.234", 1.234),
        ("12,50", 12.5),
        ("1 299,00 zł", 1299.0),
        ("USD 45", 45.0),
        ("From $10 - $20", 10.0),
        (19.99, 19.99),
        ("free", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_price(raw: object, expected: float | None) -> None:
    assert parse_price(raw) == expected


def test_parse_money_detects_currency() -> None:
    money = parse_money("£1,050.00")
    assert money.amount == 1050.0
    assert money.currency == "GBP"


@pytest.mark.parametrize(
    ("text", "code"),
    [("CA$ 20", "CAD"), ("$20", "USD"), ("20 EUR", "EUR"), ("20", None)],
)
def test_detect_currency(text: str, code: str | None) -> None:
    assert detect_currency(text) == code


# =============================================================================
# Availability / titles
# =============================================================================


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("https://schema.org/InStock", Availability.IN_STOCK),
        ("http://schema.org/OutOfStock", Availability.OUT_OF_STOCK),
        ("Sold Out", Availability.OUT_OF_STOCK),
        ("Pre-order now", Availability.PREORDER),
        ("Only 3 left!", Availability.LIMITED),
        ("Discontinued", Availability.DISCONTINUED),
        (False, Availability.OUT_OF_STOCK),
        (None, Availability.IN_STOCK),
        ("mystery", Availability.IN_STOCK),
    ],
)
def test_parse_availability(raw: object, expected: Availability) -> None:
    assert parse_availability(raw) == expected


def test_clean_title_strips_site_suffix_and_prefix() -> None:
    assert clean_title("Buy Linen Shirt | Acme Store") == "Linen Shirt"
    assert clean_title("Shop Wool Coat Online - Brand") == "Wool Coat"


# =============================================================================
# Images
# =============================================================================


def test_resolve_image_url_forms() -> None:
    base = "https://shop.example/products/shirt"
    assert resolve_image_url("//cdn.example/a.jpg", base) == "https://cdn.example/a.jpg"
    assert resolve_image_url("/img/a.jpg", base) == "https://shop.example/img/a.jpg"
    assert resolve_image_url("https:files/a.jpg", base) == "https://shop.example/files/a.jpg"
    assert resolve_image_url("data:image/png;base64,AAAA", base) is None
    assert resolve_image_url("", base) is None


@pytest.mark.parametrize(
    ("url", "accepted"),
    [
        ("https://shop.example/img/shirt-front.jpg", True),
        ("https://cdn.shop.example/images/abcdef1234", True),
        ("https://res.cloudinary.com/x/image/upload/v1?id=4", True),
        ("https://shop.example/static/logo.png", False),
        ("https://shop.example/icons/cart.png", False),
        ("https://shop.example/img/placeholder.jpg", False),
        ("https://shop.example/img/no-image.jpg", False),
        ("https://shop.example/sprite.svg", False),
        ("https://shop.example/products/shirt", False),
    ],
)
def test_is_product_image(url: str, accepted: bool) -> None:
    assert is_product_image(url) is accepted


def test_collect_images_filters_dedupes_and_caps() -> None:
    base = "https://shop.example/p/1"
    images = collect_images(
        [
            "/img/a.jpg",
            "/img/a.jpg?v=2",
            "/img/logo.png",
            None,
            "/img/b.jpg",
            "/img/c.jpg",
        ],
        base,
        limit=2,
    )
    assert images == ["https://shop.example/img/a.jpg", "https://shop.example/img/b.jpg"]


def test_dedupe_images_ignores_query_and_fragment() -> None:
    urls = ["https://x.example/a.jpg?w=100", "https://x.example/a.jpg#zoom", "https://x.example/b.jpg"]
    assert dedupe_images(urls) == ["https://x.example/a.jpg?w=100", "https://x.example/b.jpg"]


def test_best_from_srcset_picks_largest() -> None:
    assert best_from_srcset("a.jpg 320w, b.jpg 1200w, c.jpg 640w") == "b.jpg"
    assert best_from_srcset("a.jpg 1x, b.jpg 2x") == "b.jpg"


def test_upscale_shopify_url() -> None:
    url = "https://cdn.shopify.com/s/files/1/shirt_300x300.jpg?v=1"
    assert upscale_image_url(url) == "https://cdn.shopify.com/s/files/1/shirt_2048x2048.jpg?v=1"


# =============================================================================
# URLs
# =============================================================================


def test_normalize_origin() -> None:
    assert normalize_origin("https://WWW.Shop.Example.com:443/p/1") == "shop.example.com"
    assert normalize_origin("www.example.com") == "example.com"


def test_is_absolute_url() -> None:
    assert is_absolute_url("https://shop.example/p/1")
    assert not is_absolute_url("/p/1")
    assert not is_absolute_url("ftp://shop.example/p/1")
    assert not is_absolute_url("not a url")


def test_canonical_url_drops_tracking_and_fragment() -> None:
    url = "HTTPS://Shop.Example/p/1?utm_source=x&color=red&gclid=abc#reviews"
    assert canonical_url(url) == "https://shop.example/p/1?color=red"


def test_host_matches_subdomains_only() -> None:
    assert host_matches("eu.zara.com", "zara.com")
    assert host_matches("zara.com", "www.zara.com")
    assert not host_matches("notzara.com", "zara.com")
