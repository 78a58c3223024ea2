"""
Structured data strategy for JSON-LD product markup.

Finds schema.org Product nodes in:
- Plain objects and top-level arrays
- ``@graph`` wrappers
- Nested ``mainEntity`` / ``mainEntityOfPage`` forms
- ProductGroup variants
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterator

from prodscope.core.normalize.images import collect_images
from prodscope.core.normalize.parsing import (
    clean_html_text,
    detect_currency,
    parse_availability,
    parse_money,
)

from .base import Document, ExtractionStrategy, StrategyResult

logger = logging.getLogger(__name__)


PRODUCT_TYPES = {"Product", "ProductGroup", "IndividualProduct", "ProductModel", "SomeProducts"}

NESTED_ENTITY_KEYS = ("mainEntity", "mainEntityOfPage", "itemOffered", "about")

MAX_NODE_DEPTH = 6

_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_COMMENT_RE = re.compile(r"<!--|-->|<!\[CDATA\[|\]\]>")


def _load_jsonld(text: str) -> Any:
    """Parse JSON-LD text, tolerating HTML comments and trailing commas."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        cleaned = _TRAILING_COMMA_RE.sub(r"\1", _COMMENT_RE.sub("", text)).strip()
        return json.loads(cleaned)


def _types(node: dict[str, Any]) -> set[str]:
    raw = node.get("@type", [])
    values = raw if isinstance(raw, list) else [raw]
    return {str(v).rsplit("/", 1)[-1] for v in values if v}


def iter_nodes(data: Any, depth: int = 0) -> Iterator[dict[str, Any]]:
    """Yield every JSON-LD object reachable through arrays, @graph and main entities."""
    if depth > MAX_NODE_DEPTH:
        return
    if isinstance(data, list):
        for item in data:
            yield from iter_nodes(item, depth + 1)
        return
    if not isinstance(data, dict):
        return

    yield data
    if "@graph" in data:
        yield from iter_nodes(data["@graph"], depth + 1)
    for key in NESTED_ENTITY_KEYS:
        nested = data.get(key)
        if isinstance(nested, (dict, list)):
            yield from iter_nodes(nested, depth + 1)


def find_product_nodes(data: Any) -> list[dict[str, Any]]:
    return [node for node in iter_nodes(data) if _types(node) & PRODUCT_TYPES]


def _text(value: Any) -> str | None:
    if isinstance(value, dict):
        value = value.get("name") or value.get("@value") or value.get("value")
    elif isinstance(value, list):
        value = next((v for v in (_text(item) for item in value) if v), None)
    if value is None or isinstance(value, (dict, list)):
        return None
    text = clean_html_text(str(value))
    return text or None


def _image_candidates(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        candidates: list[str] = []
        for item in value:
            candidates.extend(_image_candidates(item))
        return candidates
    if isinstance(value, dict):
        for key in ("contentUrl", "url", "@id", "thumbnailUrl"):
            if isinstance(value.get(key), str):
                return [value[key]]
    return []


def _offers(node: dict[str, Any]) -> list[dict[str, Any]]:
    """Flatten offers, AggregateOffer children and ProductGroup variant offers."""
    raw = node.get("offers")
    offers: list[dict[str, Any]] = []
    for offer in raw if isinstance(raw, list) else [raw]:
        if not isinstance(offer, dict):
            continue
        offers.append(offer)
        nested = offer.get("offers")
        if isinstance(nested, list):
            offers.extend(item for item in nested if isinstance(item, dict))
        elif isinstance(nested, dict):
            offers.append(nested)

    variants = node.get("hasVariant")
    if isinstance(variants, list):
        for variant in variants:
            if isinstance(variant, dict):
                offers.extend(_offers(variant))
    return offers


def _price_specs(offer: dict[str, Any]) -> list[dict[str, Any]]:
    specs = offer.get("priceSpecification")
    if isinstance(specs, dict):
        return [specs]
    if isinstance(specs, list):
        return [spec for spec in specs if isinstance(spec, dict)]
    return []


class StructuredExtractor(ExtractionStrategy):
    """Strategy for schema.org Product JSON-LD."""

    def __init__(self, max_images: int = 10):
        self.max_images = max_images

    @property
    def name(self) -> str:
        return "jsonld"

    def can_handle(self, document: Document, url: str) -> bool:
        return bool(document.css('script[type="application/ld+json"]'))

    def extract(self, document: Document, url: str) -> StrategyResult:
        result = StrategyResult()
        products: list[dict[str, Any]] = []

        for text in document.scripts("application/ld+json"):
            try:
                data = _load_jsonld(text)
            except json.JSONDecodeError as e:
                result.add_error(f"Invalid JSON-LD block: {e}")
                continue
            products.extend(find_product_nodes(data))

        if not products:
            result.success = False
            result.add_error("No Product node in JSON-LD")
            return result

        # First product is the page's main item; later nodes only fill gaps
        for node in products:
            for key, value in self._map_product(node, url).items():
                if result.fields.get(key) in (None, "", []):
                    result.fields[key] = value

        return result

    def _map_product(self, node: dict[str, Any], url: str) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "name": _text(node.get("name")),
            "description": _text(node.get("description")),
            "brand": _text(node.get("brand") or node.get("manufacturer")),
            "sku": _text(node.get("sku") or node.get("mpn") or node.get("productID")),
            "images": collect_images(_image_candidates(node.get("image")), url, self.max_images),
        }
        fields.update(self._map_offers(_offers(node)))

        gtin = next(
            (node[k] for k in ("gtin13", "gtin", "gtin12", "gtin14", "gtin8") if node.get(k)),
            None,
        )
        extras = {
            "gtin": _text(gtin),
            "mpn": _text(node.get("mpn")),
            "category": _text(node.get("category")),
            "color": _text(node.get("color")),
            "material": _text(node.get("material")),
        }
        rating = node.get("aggregateRating")
        if isinstance(rating, dict):
            extras["rating"] = parse_money(rating.get("ratingValue")).amount
            extras["review_count"] = parse_money(rating.get("reviewCount") or rating.get("ratingCount")).amount

        fields.update({k: v for k, v in extras.items() if v is not None})
        return {k: v for k, v in fields.items() if v not in (None, "", [])}

    def _map_offers(self, offers: list[dict[str, Any]]) -> dict[str, Any]:
        for offer in offers:
            price = None
            for key in ("price", "lowPrice", "highPrice"):
                price = parse_money(offer.get(key)).amount
                if price:
                    break

            list_price = None
            for spec in _price_specs(offer):
                spec_price = parse_money(spec.get("price")).amount
                price_type = str(spec.get("priceType", ""))
                if spec_price and ("StrikethroughPrice" in price_type or "ListPrice" in price_type):
                    list_price = spec_price
                elif spec_price and price is None:
                    price = spec_price

            if not price:
                continue

            currency = offer.get("priceCurrency")
            if not currency:
                currency = next(
                    (spec.get("priceCurrency") for spec in _price_specs(offer) if spec.get("priceCurrency")),
                    None,
                )
            if not currency:
                currency = detect_currency(str(offer.get("price", "")))

            fields: dict[str, Any] = {
                "price": price,
                "currency": str(currency).upper() if currency else None,
            }
            if list_price and list_price > price:
                fields["price"] = list_price
                fields["sale_price"] = price
            if offer.get("availability"):
                fields["availability"] = parse_availability(str(offer["availability"])).value
            return fields

        return {}
