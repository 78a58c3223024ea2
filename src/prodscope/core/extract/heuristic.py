"""
Generic heuristic strategy: the fallback for pages with no usable annotations.

Works through ranked lists of common e-commerce selectors. Price search
order is learned selectors, the add-to-cart button (usually the selected
variant's price), ranked price selectors, and finally a currency-anchored
scan of the visible text. Embedded application state (``__NEXT_DATA__`` and
other JSON script blocks) fills whatever the markup did not provide.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from typing import Any

import orjson
from lxml.html import HtmlElement

from prodscope.core.acquire.interceptor import sniff_payload
from prodscope.core.normalize.images import best_from_srcset, collect_images
from prodscope.core.normalize.parsing import (
    clean_html_text,
    clean_title,
    parse_availability,
    parse_money,
)
from prodscope.core.normalize.urls import normalize_origin

from .base import Document, ExtractionStrategy, StrategyResult

logger = logging.getLogger(__name__)


NAME_SELECTORS = [
    "h1.product-title",
    "h1.product-name",
    "h1.product__title",
    ".product-title h1",
    ".product-name h1",
    'h1[itemprop="name"]',
    '[data-test="product-name"]',
    '[data-testid="product-name"]',
    ".pdp-name",
    ".product-info h1",
    ".product-header h1",
    "h1",
]

ADD_TO_CART_SELECTORS = [
    'button[name="add"]',
    "button.add-to-cart",
    ".add-to-cart button",
    '[data-testid="add-to-cart"]',
    "#add-to-cart",
]

PRICE_SELECTORS = [
    '[itemprop="price"]',
    ".product-price",
    ".current-price",
    ".sale-price",
    ".price-now",
    ".price-current",
    ".product-price-value",
    "[data-price]",
    "[data-product-price]",
    ".price--on-sale",
    ".price-item--sale",
    ".product__price",
    ".price__regular",
    ".price-item--regular",
    ".price .money",
    ".money",
    ".price",
    '[class*="price"]:not([class*="compare"]):not([class*="was"])',
]

IMAGE_SELECTORS = [
    ".product-image img",
    ".product-photo img",
    ".product-gallery img",
    ".product__media img",
    ".product-single__photo img",
    '[data-role="product-image"] img',
    ".pdp-image img",
    ".gallery img",
    ".slider img",
    ".carousel img",
    "picture img",
    'img[itemprop="image"]',
]

BRAND_SELECTORS = [
    ".product-brand",
    ".brand",
    '[itemprop="brand"]',
    ".product-vendor",
    ".vendor",
    "[data-brand]",
    ".manufacturer",
    ".designer",
]

DESCRIPTION_SELECTORS = [
    ".product-description",
    '[itemprop="description"]',
    ".product-details",
    ".product-info-description",
    ".pdp-description",
    ".description",
]

AVAILABILITY_SELECTORS = [
    ".availability",
    ".stock-status",
    "[data-availability]",
    ".product-availability",
]

STATE_SCRIPT_SELECTORS = ["script#__NEXT_DATA__", 'script[type="application/json"]']

LAZY_IMAGE_ATTRIBUTES = ("src", "data-src", "data-lazy-src", "data-original", "data-zoom-image")

VISIBLE_PRICE_RE = re.compile(
    r"(?:[$£€¥]|[A-Z]{1,2}\$)\s*\d[\d,.\s]*\d|\b\d[\d,.]*\s*(?:USD|EUR|GBP|CAD|AUD)\b"
)

MAX_DESCRIPTION_LENGTH = 1000


# Resolves learned selectors for an origin: field -> selectors
SelectorSource = Callable[[str], Mapping[str, list[str]]]


class HeuristicExtractor(ExtractionStrategy):
    """Lowest-priority strategy built on common selector patterns."""

    def __init__(
        self,
        max_images: int = 10,
        max_price: float = 100000.0,
        learned_selectors: SelectorSource | None = None,
    ):
        """Initialize the heuristic strategy.

        Args:
            max_images: Image cap
            max_price: Prices at or above this are ignored as implausible
            learned_selectors: Callable returning learned selectors per origin
        """
        self.max_images = max_images
        self.max_price = max_price
        self.learned_selectors = learned_selectors

    @property
    def name(self) -> str:
        return "heuristic"

    def extract(self, document: Document, url: str) -> StrategyResult:
        learned: Mapping[str, list[str]] = {}
        if self.learned_selectors is not None:
            learned = self.learned_selectors(normalize_origin(url)) or {}

        fields: dict[str, Any] = {}
        fields["name"] = self._name(document, learned.get("name", []))

        money = self._price(document, learned.get("price", []))
        if money is not None:
            fields["price"] = money[0]
            if money[1]:
                fields["currency"] = money[1]

        fields["images"] = self._images(document, url, learned.get("images", []))
        fields["brand"] = self._text(document, learned.get("brand", []) + BRAND_SELECTORS, max_length=50)
        fields["description"] = self._description(document, learned.get("description", []))

        availability = self._text(document, AVAILABILITY_SELECTORS)
        if availability:
            fields["availability"] = parse_availability(availability).value

        fields = {k: v for k, v in fields.items() if v not in (None, "", [])}
        self._fill_from_state(document, url, fields)

        if not fields:
            return StrategyResult.failure("No heuristic match")
        return StrategyResult(fields=fields)

    # -------------------------------------------------------------------------
    # Fields
    # -------------------------------------------------------------------------

    def _name(self, document: Document, learned: list[str]) -> str | None:
        for selector in learned + NAME_SELECTORS:
            element = document.css_first(selector)
            if element is None:
                continue
            text = clean_html_text(element.text_content())
            if 3 < len(text) < 200:
                return text

        title = document.meta("og:title", "twitter:title") or document.title
        return clean_title(title) or None

    def _plausible(self, amount: float | None) -> bool:
        return amount is not None and 0 < amount < self.max_price

    def _element_money(self, element: HtmlElement) -> tuple[float, str | None] | None:
        for raw in (
            element.get("content"),
            element.get("data-price"),
            element.get("data-product-price"),
            element.text_content(),
        ):
            if not raw:
                continue
            money = parse_money(raw)
            if self._plausible(money.amount):
                return money.amount, money.currency
        return None

    def _price(self, document: Document, learned: list[str]) -> tuple[float, str | None] | None:
        for selector in learned:
            element = document.css_first(selector)
            if element is not None:
                found = self._element_money(element)
                if found:
                    return found

        for selector in ADD_TO_CART_SELECTORS:
            for button in document.css(selector):
                text = clean_html_text(button.text_content())
                if not VISIBLE_PRICE_RE.search(text):
                    continue
                money = parse_money(VISIBLE_PRICE_RE.search(text).group())
                if self._plausible(money.amount):
                    return money.amount, money.currency

        for selector in PRICE_SELECTORS:
            for element in document.css(selector)[:3]:
                found = self._element_money(element)
                if found:
                    return found

        for match in VISIBLE_PRICE_RE.finditer(document.visible_text()):
            money = parse_money(match.group())
            if self._plausible(money.amount):
                return money.amount, money.currency
        return None

    def _images(self, document: Document, url: str, learned: list[str]) -> list[str]:
        candidates: list[str | None] = []
        for selector in learned + IMAGE_SELECTORS:
            for element in document.css(selector):
                srcset = element.get("srcset") or element.get("data-srcset")
                if srcset:
                    candidates.append(best_from_srcset(srcset))
                candidates.extend(element.get(attr) for attr in LAZY_IMAGE_ATTRIBUTES)
                candidates.append(element.get("content"))
        candidates.append(document.meta("og:image"))
        return collect_images(candidates, url, self.max_images)

    def _text(self, document: Document, selectors: list[str], max_length: int = 200) -> str | None:
        for selector in selectors:
            element = document.css_first(selector)
            if element is None:
                continue
            text = clean_html_text(element.get("content") or element.get("data-brand") or element.text_content())
            if 1 < len(text) <= max_length:
                return text
        return None

    def _description(self, document: Document, learned: list[str]) -> str | None:
        for selector in learned + DESCRIPTION_SELECTORS:
            element = document.css_first(selector)
            if element is None:
                continue
            text = clean_html_text(element.get("content") or element.text_content())
            if len(text) > 10:
                return text[:MAX_DESCRIPTION_LENGTH]
        return None

    # -------------------------------------------------------------------------
    # Embedded application state
    # -------------------------------------------------------------------------

    def _fill_from_state(self, document: Document, url: str, fields: dict[str, Any]) -> None:
        """Fill missing fields from JSON state blocks embedded in the page."""
        missing = {"name", "price", "brand", "images"} - set(fields)
        if not missing:
            return

        for selector in STATE_SCRIPT_SELECTORS:
            for script in document.css(selector):
                text = script.text_content()
                if not text or "product" not in text.lower():
                    continue
                try:
                    payload = orjson.loads(text)
                except orjson.JSONDecodeError:
                    logger.debug(f"Skipping unparseable state script on {url}")
                    continue

                found = sniff_payload(payload)
                if "images" in found:
                    found["images"] = collect_images(found["images"], url, self.max_images)
                if "price" in found and not self._plausible(found["price"]):
                    found.pop("price")
                for key in list(missing):
                    if found.get(key):
                        fields[key] = found[key]
                        missing.discard(key)
                if not missing:
                    return
