"""
Meta tag strategy: Open Graph, product:* and Twitter card annotations.
"""

from __future__ import annotations

import logging
from typing import Any

from prodscope.core.normalize.images import collect_images
from prodscope.core.normalize.parsing import (
    clean_html_text,
    clean_title,
    parse_availability,
    parse_money,
)

from .base import Document, ExtractionStrategy, StrategyResult

logger = logging.getLogger(__name__)

META_SELECTOR = 'meta[property^="og:"], meta[property^="product:"], meta[name^="twitter:"], meta[property^="twitter:"]'

IMAGE_PROPERTIES = ("og:image", "og:image:secure_url", "og:image:url", "twitter:image", "twitter:image:src")


class MetaTagExtractor(ExtractionStrategy):
    """Strategy for page-level social/meta annotations."""

    def __init__(self, max_images: int = 10):
        self.max_images = max_images

    @property
    def name(self) -> str:
        return "meta_tags"

    def can_handle(self, document: Document, url: str) -> bool:
        return bool(document.css(META_SELECTOR))

    def _images(self, document: Document, url: str) -> list[str]:
        candidates: list[str | None] = []
        for prop in IMAGE_PROPERTIES:
            for element in document.css(f'meta[property="{prop}"], meta[name="{prop}"]'):
                candidates.append(element.get("content"))
        return collect_images(candidates, url, self.max_images)

    def extract(self, document: Document, url: str) -> StrategyResult:
        og_type = (document.meta("og:type") or "").lower()
        has_product_tags = bool(document.css('meta[property^="product:"]'))
        if og_type and "product" not in og_type and not has_product_tags:
            logger.debug(f"og:type={og_type!r} is not a product; reading tags anyway")

        title = document.meta("og:title", "product:title", "twitter:title")
        raw_price = document.meta("product:price:amount", "og:price:amount", "product:price")
        money = parse_money(raw_price)
        raw_sale = document.meta("product:sale_price:amount", "product:sale_price")

        fields: dict[str, Any] = {
            "name": clean_title(title) if title else None,
            "description": clean_html_text(
                document.meta("og:description", "product:description", "twitter:description", "description")
            ),
            "images": self._images(document, url),
            "price": money.amount,
            "currency": document.meta("product:price:currency", "og:price:currency", "product:currency")
            or money.currency,
            "brand": document.meta("product:brand", "og:brand"),
            "sku": document.meta("product:retailer_item_id", "product:sku", "product:id"),
            "category": document.meta("product:category", "og:category"),
            "site_name": document.meta("og:site_name"),
        }

        sale_price = parse_money(raw_sale).amount
        if sale_price:
            fields["sale_price"] = sale_price

        availability = document.meta("product:availability", "og:availability")
        if availability:
            fields["availability"] = parse_availability(availability).value

        fields = {k: v for k, v in fields.items() if v not in (None, "", [])}
        if not fields:
            return StrategyResult.failure("No usable meta tags")
        return StrategyResult(fields=fields)
