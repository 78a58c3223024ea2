"""
Recipe strategy: declarative per-origin selectors.

Each recipe field tries its primary selector, then fallbacks in order,
applies an optional transform and a type coercion. A missing required
field or a failed assertion fails the whole recipe with an explicit error
list and the partial result; it never degrades to a guess.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from lxml import etree
from lxml.html import HtmlElement

from prodscope.core.config.assertions import failed_assertions
from prodscope.core.config.models import Recipe, RecipeField, RecipeFieldType, RecipeTransform
from prodscope.core.normalize.images import best_from_srcset, collect_images, upscale_image_url
from prodscope.core.normalize.parsing import (
    CURRENCY_CODES,
    CURRENCY_SYMBOLS,
    clean_html_text,
    parse_availability,
    parse_price,
)
from prodscope.core.normalize.urls import host_matches, normalize_origin

from .base import Document, ExtractionStrategy, StrategyResult

logger = logging.getLogger(__name__)

IMAGE_ATTRIBUTES = ("src", "data-src", "data-lazy-src", "data-original", "srcset", "data-srcset", "content", "href")

FALSE_STRINGS = {"false", "0", "no", "off", ""}


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


class RecipeExtractor(ExtractionStrategy):
    """Strategy driven by loaded per-origin recipes."""

    def __init__(self, recipes: Mapping[str, Recipe] | None = None, max_images: int = 10):
        self.recipes = dict(recipes or {})
        self.max_images = max_images

    @property
    def name(self) -> str:
        return "recipe"

    def recipe_for(self, url: str) -> Recipe | None:
        origin = normalize_origin(url)
        if origin in self.recipes:
            return self.recipes[origin]
        matches = [domain for domain in self.recipes if host_matches(origin, domain)]
        if matches:
            return self.recipes[max(matches, key=len)]
        return None

    def can_handle(self, document: Document, url: str) -> bool:
        return self.recipe_for(url) is not None

    def extract(self, document: Document, url: str) -> StrategyResult:
        recipe = self.recipe_for(url)
        if recipe is None:
            return StrategyResult.failure(f"No recipe for {normalize_origin(url)}")

        fields: dict[str, Any] = {}
        errors: list[str] = []

        for field_name, spec in recipe.selectors.items():
            value = self._extract_field(document, spec, url)
            if _is_empty(value):
                if spec.required:
                    errors.append(f"Required field '{field_name}' not found")
                continue
            fields[field_name] = value

        errors.extend(failed_assertions(recipe.compiled_assertions, fields))

        if errors:
            logger.info(
                f"Recipe {recipe.domain} v{recipe.version} failed on {url}: {'; '.join(errors)}",
                extra={"strategy": self.name},
            )
            return StrategyResult(fields=fields, success=False, errors=errors)

        logger.debug(f"Recipe {recipe.domain} v{recipe.version} extracted {sorted(fields)}")
        return StrategyResult(fields=fields)

    # -------------------------------------------------------------------------
    # Field extraction
    # -------------------------------------------------------------------------

    def _extract_field(self, document: Document, spec: RecipeField, url: str) -> Any:
        if spec.value is not None:
            return self._finish(spec.value, spec, url)

        many = spec.type in (RecipeFieldType.IMAGES, RecipeFieldType.ARRAY)
        for selector in spec.selectors:
            elements = self._select_elements(document, selector)
            if not elements:
                continue

            if many:
                raw: Any = [v for v in (self._element_value(el, spec) for el in elements) if v]
            else:
                raw = next((v for v in (self._element_value(el, spec) for el in elements) if v), None)

            value = self._finish(raw, spec, url)
            if not _is_empty(value):
                return value
        return None

    def _select_elements(self, document: Document, selector: str) -> list[HtmlElement]:
        """Select with XPath when the selector looks like one, CSS otherwise."""
        if selector.startswith(("/", ".//", "(")):
            try:
                return [el for el in document.tree.xpath(selector) if isinstance(el, HtmlElement)]
            except etree.XPathError as e:
                logger.debug(f"Invalid XPath {selector!r}: {e}")
                return []
        return document.css(selector)

    def _element_value(self, element: HtmlElement, spec: RecipeField) -> str | None:
        if spec.attribute:
            value = element.get(spec.attribute)
            if value and "srcset" in spec.attribute:
                value = best_from_srcset(value)
            return value.strip() if value else None

        if spec.type == RecipeFieldType.IMAGES:
            for attribute in IMAGE_ATTRIBUTES:
                value = element.get(attribute)
                if value:
                    return best_from_srcset(value) if "srcset" in attribute else value.strip()
            return None

        text = element.text_content()
        return text.strip() if text else None

    def _finish(self, raw: Any, spec: RecipeField, url: str) -> Any:
        if _is_empty(raw):
            return None

        if spec.type == RecipeFieldType.IMAGES:
            values = raw if isinstance(raw, list) else [raw]
            images = collect_images(values, url, self.max_images)
            if spec.transform == RecipeTransform.HIGH_QUALITY:
                images = [upscale_image_url(image) for image in images]
            return images

        value = self._transform(raw, spec.transform) if spec.transform else raw
        return self._coerce(value, spec.type)

    def _transform(self, value: Any, transform: RecipeTransform) -> Any:
        if isinstance(value, list):
            return [self._transform(item, transform) for item in value]

        if transform == RecipeTransform.EXTRACT_NUMBER:
            return parse_price(value) if not isinstance(value, (int, float)) else value
        if transform == RecipeTransform.STRIP_CURRENCY:
            text = str(value)
            for symbol in CURRENCY_SYMBOLS:
                text = text.replace(symbol, "")
            text = re.sub(r"\b(" + "|".join(CURRENCY_CODES) + r")\b", "", text)
            return text.strip()
        if transform == RecipeTransform.LOWERCASE:
            return str(value).lower()
        if transform == RecipeTransform.UPPERCASE:
            return str(value).upper()
        if transform == RecipeTransform.TRIM:
            return str(value).strip()
        if transform == RecipeTransform.HIGH_QUALITY:
            return upscale_image_url(str(value))
        return value

    def _coerce(self, value: Any, field_type: RecipeFieldType) -> Any:
        if field_type in (RecipeFieldType.NUMBER, RecipeFieldType.PRICE):
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return float(value)
            return parse_price(value)
        if field_type == RecipeFieldType.AVAILABILITY:
            return parse_availability(value).value
        if field_type == RecipeFieldType.BOOLEAN:
            if isinstance(value, str):
                return value.strip().lower() not in FALSE_STRINGS
            return bool(value)
        if field_type == RecipeFieldType.ARRAY:
            values = value if isinstance(value, list) else [value]
            return [clean_html_text(str(v)) for v in values if v not in (None, "")]
        if isinstance(value, list):
            value = value[0] if value else None
        if value is None:
            return None
        return clean_html_text(str(value)) or None
