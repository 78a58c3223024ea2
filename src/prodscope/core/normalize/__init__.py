"""Normalization of extracted values: prices, availability, images, URLs."""

from .images import (
    best_from_srcset,
    collect_images,
    dedupe_images,
    image_key,
    is_product_image,
    looks_like_placeholder,
    resolve_image_url,
    upscale_image_url,
)
from .parsing import (
    Availability,
    ParsedMoney,
    clean_html_text,
    clean_title,
    detect_currency,
    normalize_whitespace,
    parse_availability,
    parse_money,
    parse_price,
)
from .urls import canonical_url, host_matches, is_absolute_url, normalize_origin

__all__ = [
    # Parsing
    "Availability",
    "ParsedMoney",
    "parse_money",
    "parse_price",
    "detect_currency",
    "parse_availability",
    "normalize_whitespace",
    "clean_html_text",
    "clean_title",
    # Images
    "resolve_image_url",
    "is_product_image",
    "looks_like_placeholder",
    "image_key",
    "best_from_srcset",
    "collect_images",
    "dedupe_images",
    "upscale_image_url",
    # URLs
    "normalize_origin",
    "canonical_url",
    "is_absolute_url",
    "host_matches",
]
