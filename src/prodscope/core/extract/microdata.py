"""
Microdata strategy: ``itemscope`` / ``itemprop`` product annotations.

Properties are read from the Product scope first (skipping properties that
belong to nested scopes such as the brand Organization) and fall back to a
page-global lookup when the scope has no match.
"""

from __future__ import annotations

import logging
from typing import Any

from lxml.html import HtmlElement

from prodscope.core.normalize.images import collect_images
from prodscope.core.normalize.parsing import clean_html_text, parse_availability, parse_money

from .base import Document, ExtractionStrategy, StrategyResult

logger = logging.getLogger(__name__)

PRODUCT_SCOPE_SELECTOR = '[itemscope][itemtype*="Product"]'
OFFER_SCOPE_SELECTOR = '[itemscope][itemtype*="Offer"]'

VALUE_ATTRIBUTES = {
    "meta": "content",
    "img": "src",
    "link": "href",
    "a": "href",
    "time": "datetime",
    "data": "value",
    "meter": "value",
    "source": "src",
}


def _owner_scope(element: HtmlElement) -> HtmlElement | None:
    parent = element.getparent()
    while parent is not None:
        if parent.get("itemscope") is not None:
            return parent
        parent = parent.getparent()
    return None


def _value(element: HtmlElement) -> str | None:
    """Read an itemprop value using the element-specific HTML microdata rules."""
    content = element.get("content")
    if content:
        return content.strip()

    attribute = VALUE_ATTRIBUTES.get(element.tag)
    if attribute and element.get(attribute):
        return element.get(attribute).strip()

    if element.get("itemscope") is not None:
        names = element.cssselect('[itemprop="name"]')
        if names:
            return _value(names[0])

    text = clean_html_text(element.text_content())
    return text or None


class MicrodataExtractor(ExtractionStrategy):
    """Strategy for schema.org microdata."""

    def __init__(self, max_images: int = 10):
        self.max_images = max_images

    @property
    def name(self) -> str:
        return "microdata"

    def can_handle(self, document: Document, url: str) -> bool:
        return bool(document.css(PRODUCT_SCOPE_SELECTOR))

    def _props(self, document: Document, scope: HtmlElement, prop: str) -> list[HtmlElement]:
        """Elements for ``prop`` owned by ``scope``; any in scope; then page-global."""
        selector = f'[itemprop~="{prop}"]'
        in_scope = document.css(selector, scope)
        owned = [el for el in in_scope if _owner_scope(el) is scope]
        if owned:
            return owned
        if in_scope:
            return in_scope
        return document.css(selector)

    def _prop(self, document: Document, scope: HtmlElement, prop: str) -> str | None:
        for element in self._props(document, scope, prop):
            value = _value(element)
            if value:
                return value
        return None

    def extract(self, document: Document, url: str) -> StrategyResult:
        scopes = [
            el
            for el in document.css(PRODUCT_SCOPE_SELECTOR)
            if "offer" not in (el.get("itemtype") or "").lower()
        ]
        if not scopes:
            return StrategyResult.failure("No product microdata found")
        scope = scopes[0]

        fields: dict[str, Any] = {
            "name": self._prop(document, scope, "name"),
            "brand": self._prop(document, scope, "brand"),
            "description": self._prop(document, scope, "description"),
            "sku": self._prop(document, scope, "sku") or self._prop(document, scope, "productID"),
            "category": self._prop(document, scope, "category"),
        }

        image_values = [_value(el) or el.get("data-src") for el in self._props(document, scope, "image")]
        fields["images"] = collect_images(image_values, url, self.max_images)

        offer_scope = document.css_first(OFFER_SCOPE_SELECTOR, scope)
        price_scope = offer_scope if offer_scope is not None else scope

        raw_price = self._prop(document, price_scope, "price") or self._prop(document, price_scope, "lowPrice")
        money = parse_money(raw_price)
        fields["price"] = money.amount
        fields["currency"] = self._prop(document, price_scope, "priceCurrency") or money.currency

        availability = self._prop(document, price_scope, "availability")
        if availability:
            fields["availability"] = parse_availability(availability).value

        fields = {k: v for k, v in fields.items() if v not in (None, "", [])}
        if not fields:
            return StrategyResult.failure("Product microdata scope is empty")
        return StrategyResult(fields=fields)
