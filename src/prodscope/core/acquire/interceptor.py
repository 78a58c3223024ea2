"""
API response interception for rendered pages.

While a page navigates, JSON responses whose URL matches the origin's API
signatures are captured by the browser backend. This module decides which
URLs are worth capturing and turns the captured payloads into product
fields:

- ``sniff_payload`` walks any JSON value (depth-bounded) looking for keys
  that contain price/name/brand/image
- ``PAYLOAD_OVERRIDES`` reads the exact shape of well-known APIs first
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from prodscope.core.backends.base import InterceptedResponse
from prodscope.core.normalize.images import IMAGE_EXTENSION_RE
from prodscope.core.normalize.parsing import parse_price
from prodscope.core.normalize.urls import host_matches

logger = logging.getLogger(__name__)


# =============================================================================
# API Signatures
# =============================================================================


API_SIGNATURES: dict[str, list[str]] = {
    "uniqlo.com": [r"api.*product", r"graphql", r"pricing", r"inventory", r"hmall-d", r"data.*product"],
    "nordstrom.com": [r"api.*product", r"style.*api", r"price"],
    "zara.com": [r"api.*product", r"commercial", r"availability"],
    "farfetch.com": [r"api.*product", r"graphql", r"listing"],
    "ssense.com": [r"api.*product", r"graphql", r"plp-products"],
    "net-a-porter.com": [r"api.*product", r"/nap/", r"yoox"],
    "bloomingdales.com": [r"api.*product", r"xapi", r"digital"],
    "saksfifthavenue.com": [r"api.*product", r"catalog", r"graphql"],
}

GENERIC_SIGNATURES = [r"/api/", r"graphql", r"product"]


def signature_patterns(
    origin: str,
    extra: Mapping[str, list[str]] | None = None,
    hints: Iterable[str] = (),
) -> list[re.Pattern[str]]:
    """Compiled URL patterns to intercept for ``origin``.

    Origin-specific signatures (built-in table, then config extras, then the
    origin policy's ``api_patterns``) replace the generic set when present.

    Args:
        origin: Normalized hostname
        extra: Config-supplied origin -> regex list table
        hints: Per-origin patterns from the origin policy

    Returns:
        Case-insensitive compiled patterns
    """
    sources: list[str] = []
    for table in (API_SIGNATURES, extra or {}):
        for host, patterns in table.items():
            if host_matches(origin, host):
                sources.extend(patterns)
    sources.extend(hints)
    if not sources:
        sources = list(GENERIC_SIGNATURES)

    compiled: list[re.Pattern[str]] = []
    for pattern in dict.fromkeys(sources):
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE))
        except re.error as e:
            logger.warning(f"Ignoring invalid API signature {pattern!r} for {origin}: {e}")
    return compiled


# =============================================================================
# Generic Key Sniffer
# =============================================================================


NAME_KEYS = {"name", "title", "productname", "product_name", "displayname"}
BRAND_KEYS = {"brand", "brandname", "manufacturer", "vendor", "designer"}
IMAGE_URL_KEYS = {"url", "src"}

MAX_PRICE = 100000.0


def _is_image_url(value: Any) -> bool:
    return isinstance(value, str) and bool(IMAGE_EXTENSION_RE.search(value))


def _sniff_price(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if 0 < value < MAX_PRICE else None
    if isinstance(value, str) and any(ch.isdigit() for ch in value):
        amount = parse_price(value)
        if amount is not None and 0 < amount < MAX_PRICE:
            return amount
    if isinstance(value, Mapping):
        for key in ("value", "amount", "current"):
            if key in value:
                return _sniff_price(value[key])
    return None


def sniff_payload(payload: Any, max_depth: int = 10) -> dict[str, Any]:
    """Find product fields anywhere in a JSON value.

    The first value found for each scalar field wins, in document order.
    Image URLs are accumulated without duplicates.

    Args:
        payload: Decoded JSON (dict, list or scalar)
        max_depth: Maximum nesting depth walked

    Returns:
        Dict with any of ``name``, ``price``, ``brand``, ``images``
    """
    found: dict[str, Any] = {}
    images: list[str] = []

    def visit(node: Any, depth: int) -> None:
        if depth > max_depth:
            return
        if isinstance(node, list):
            for item in node:
                if isinstance(item, (dict, list)):
                    visit(item, depth + 1)
            return
        if not isinstance(node, dict):
            return

        for key, value in node.items():
            lower = str(key).lower()

            if "price" not in found and ("price" in lower or lower in ("amount", "cost")):
                price = _sniff_price(value)
                if price is not None:
                    found["price"] = price

            if "name" not in found and lower in NAME_KEYS:
                if isinstance(value, str) and 3 < len(value.strip()) < 200:
                    found["name"] = value.strip()

            if "brand" not in found and lower in BRAND_KEYS:
                if isinstance(value, str) and 1 < len(value.strip()) < 100:
                    found["brand"] = value.strip()
                elif isinstance(value, dict) and isinstance(value.get("name"), str):
                    found["brand"] = value["name"].strip()

            if "image" in lower or lower in IMAGE_URL_KEYS:
                values = value if isinstance(value, list) else [value]
                for item in values:
                    if _is_image_url(item) and item not in images:
                        images.append(item)

            if isinstance(value, (dict, list)):
                visit(value, depth + 1)

    visit(payload, 0)
    if images:
        found["images"] = images
    return found


# =============================================================================
# Payload Overrides
# =============================================================================


def _dig(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _price_group_payload(payload: Any) -> dict[str, Any]:
    """Price-group shaped responses (``result.priceGroup`` / ``result.price.promo``)."""
    found: dict[str, Any] = {}
    candidates = [
        _dig(payload, "result", "price", "promo", "value"),
        _dig(payload, "result", "price", "base", "value"),
        _dig(payload, "result", "priceGroup", "salePrice", "value"),
        _dig(payload, "result", "priceGroup", "promoPrice", "value"),
        _dig(payload, "result", "priceGroup", "price", "value"),
        _dig(payload, "priceGroup", "salePrice", "value"),
        _dig(payload, "priceGroup", "price", "value"),
    ]
    for candidate in candidates:
        price = _sniff_price(candidate)
        if price is not None:
            found["price"] = price
            break

    name = _dig(payload, "result", "name") or _dig(payload, "name")
    if isinstance(name, str) and name.strip():
        found["name"] = name.strip()
    return found


def _graphql_product_payload(payload: Any) -> dict[str, Any]:
    """GraphQL ``{"data": {"product": {...}}}`` responses."""
    product = _dig(payload, "data", "product")
    if not isinstance(product, dict):
        return {}

    found: dict[str, Any] = {}
    price = _sniff_price(product.get("price"))
    if price is not None:
        found["price"] = price
    if isinstance(product.get("name"), str):
        found["name"] = product["name"].strip()
    brand = product.get("brand")
    if isinstance(brand, dict):
        brand = brand.get("name")
    if isinstance(brand, str):
        found["brand"] = brand.strip()
    images = product.get("images")
    if isinstance(images, list):
        urls = [img.get("url") if isinstance(img, dict) else img for img in images]
        found["images"] = [url for url in urls if isinstance(url, str)]
    return found


PayloadOverride = Callable[[Any], dict[str, Any]]

# (origin pattern or None for every origin, override)
PAYLOAD_OVERRIDES: list[tuple[str | None, PayloadOverride]] = [
    ("uniqlo.com", _price_group_payload),
    (None, _graphql_product_payload),
]


def overrides_for(origin: str) -> list[PayloadOverride]:
    return [fn for host, fn in PAYLOAD_OVERRIDES if host is None or host_matches(origin, host)]


# =============================================================================
# Combined Interception Result
# =============================================================================


@dataclass
class InterceptedData:
    """Fields recovered from every captured payload of one render."""

    fields: dict[str, Any] = field(default_factory=dict)
    sources: list[str] = field(default_factory=list)

    def absorb(self, found: Mapping[str, Any], source: str) -> None:
        """Merge one payload's fields; earlier payloads win, images accumulate."""
        contributed = False
        for key, value in found.items():
            if value in (None, "", []):
                continue
            if key == "images":
                existing = self.fields.setdefault("images", [])
                for url in value:
                    if url not in existing:
                        existing.append(url)
                        contributed = True
            elif key not in self.fields:
                self.fields[key] = value
                contributed = True
        if contributed and source not in self.sources:
            self.sources.append(source)

    def __bool__(self) -> bool:
        return bool(self.fields)


def interpret_responses(
    responses: Iterable[InterceptedResponse],
    origin: str,
    max_depth: int = 10,
) -> InterceptedData:
    """Turn captured API responses into one set of product fields.

    Args:
        responses: Responses captured during one navigation, in arrival order
        origin: Normalized hostname, selects payload overrides
        max_depth: Sniffer depth bound

    Returns:
        InterceptedData with merged fields and contributing source URLs
    """
    result = InterceptedData()
    overrides = overrides_for(origin)

    for response in responses:
        if response.status != 200 or response.data is None:
            continue
        for override in overrides:
            result.absorb(override(response.data), response.url)
        result.absorb(sniff_payload(response.data, max_depth), response.url)

    if result:
        logger.debug(f"Intercepted {sorted(result.fields)} from {len(result.sources)} API responses")
    return result
