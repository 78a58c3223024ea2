"""
Quality gate: turns a merged, noisy record into a trusted product or a
structured failure.

Steps:
1. Normalization (trim, coerce numbers, default currency, stamp version)
2. Schema validation with a pydantic model
3. Business rules
4. Warnings (non-blocking)
5. Rescue: on failure, look for synonymous keys in the raw candidates and
   re-run steps 1-3

Validation always normalizes first, so ``validate(normalize(x))`` and
``validate(x)`` agree.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError

from prodscope.core.config.models import QualityConfig
from prodscope.core.errors import ValidationError
from prodscope.core.normalize.images import dedupe_images, is_product_image
from prodscope.core.normalize.parsing import (
    Availability,
    detect_currency,
    normalize_whitespace,
    parse_availability,
    parse_price,
)

logger = logging.getLogger(__name__)


CANONICAL_KEYS = (
    "name",
    "price",
    "sale_price",
    "currency",
    "images",
    "brand",
    "description",
    "availability",
    "sku",
    "url",
)

STAMP_KEYS = ("validated_at", "validation_version")

PLACEHOLDER_NAME_PATTERNS = [
    re.compile(r"\blorem ipsum\b", re.IGNORECASE),
    re.compile(r"\bplaceholder\b", re.IGNORECASE),
    re.compile(r"\b(test|sample|example|dummy)\s+(product|item)\b", re.IGNORECASE),
    re.compile(r"^\s*(test|sample|example|untitled)\s*$", re.IGNORECASE),
    re.compile(r"\bdo not (buy|purchase)\b", re.IGNORECASE),
]

SALE_NAME_RE = re.compile(r"\b(sale|discount|discounted|clearance|\d+%\s*off)\b", re.IGNORECASE)

ISO_CODE_RE = re.compile(r"^[A-Za-z]{3}$")

NAME_SYNONYMS = ("name", "title", "product_name", "productName", "og_title", "og:title", "heading")
IMAGE_SYNONYMS = ("images", "image", "image_urls", "gallery", "photos", "pictures", "og_image", "og:image")
PRICE_EXCLUDED_KEYS = {"sale_price", "price_text", "compare_at_price_text"}


# =============================================================================
# Result Types
# =============================================================================


@dataclass(frozen=True)
class FieldIssue:
    """One validation error or warning."""

    field: str
    message: str
    severity: str = "error"  # error, low, medium, high

    def to_dict(self) -> dict[str, str]:
        data = {"field": self.field, "message": self.message}
        if self.severity != "error":
            data["severity"] = self.severity
        return data


@dataclass
class Product:
    """A validated, normalized product record."""

    name: str
    price: float
    images: list[str]
    currency: str
    sale_price: float | None = None
    brand: str | None = None
    description: str | None = None
    availability: str | None = None
    sku: str | None = None
    url: str | None = None
    validation_version: str = "1.0.0"
    validated_at: str | None = field(default=None, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class ValidationResult:
    """Outcome of the quality gate.

    ``valid`` implies ``product`` passed the schema and every business rule.
    When invalid, ``partial`` holds the best normalized data for diagnostics.
    """

    valid: bool
    product: Product | None = None
    errors: list[FieldIssue] = field(default_factory=list)
    warnings: list[FieldIssue] = field(default_factory=list)
    recovered: bool = False
    partial: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def completeness(self) -> float:
        data = self.product.to_dict() if self.product is not None else (self.partial or {})
        weights = {"name": 0.25, "price": 0.25, "images": 0.25, "brand": 0.15, "description": 0.10}
        return round(sum(w for key, w in weights.items() if data.get(key) not in (None, "", [])), 3)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "valid": self.valid,
            "product": self.product.to_dict() if self.product is not None else None,
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
        }
        if self.recovered:
            data["recovered"] = True
        if self.partial is not None:
            data["partial"] = self.partial
        if self.metadata:
            data["metadata"] = self.metadata
        return data

    def raise_for_invalid(self) -> Product:
        """Return the product, or raise ValidationError carrying this result."""
        if self.valid and self.product is not None:
            return self.product
        summary = "; ".join(f"{issue.field}: {issue.message}" for issue in self.errors) or "invalid product"
        raise ValidationError(f"Product failed validation: {summary}", result=self)

    @classmethod
    def failure(
        cls,
        field_name: str,
        message: str,
        partial: dict[str, Any] | None = None,
        **metadata: Any,
    ) -> "ValidationResult":
        return cls(valid=False, errors=[FieldIssue(field_name, message)], partial=partial, metadata=metadata)


# =============================================================================
# Schema
# =============================================================================


def _is_url(value: str) -> bool:
    return bool(re.match(r"^https?://[^\s/]+\S*$", value))


class ProductSchema(BaseModel):
    """Schema for a normalized product. ``allow_zero_price`` comes from the context."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1)
    price: float
    images: list[str] = Field(..., min_length=1)
    sale_price: float | None = None
    currency: str | None = Field(default=None, pattern=r"^[A-Z]{3}$")
    brand: str | None = None
    description: str | None = None
    availability: Availability | None = None
    sku: str | None = None

    @field_validator("price")
    @classmethod
    def price_floor(cls, v: float, info: ValidationInfo) -> float:
        allow_zero = bool((info.context or {}).get("allow_zero_price", False))
        if v < 0 or (v == 0 and not allow_zero):
            raise ValueError("must be greater than 0" if not allow_zero else "must not be negative")
        return v

    @field_validator("sale_price")
    @classmethod
    def sale_price_positive(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError("must be greater than 0")
        return v

    @field_validator("images")
    @classmethod
    def images_are_urls(cls, v: list[str]) -> list[str]:
        bad = [url for url in v if not _is_url(url)]
        if bad:
            raise ValueError(f"not URL-shaped: {bad[0][:80]}")
        return v


def _schema_issues(error: PydanticValidationError) -> list[FieldIssue]:
    issues: list[FieldIssue] = []
    for err in error.errors():
        field_name = str(err["loc"][0]) if err["loc"] else "product"
        if err["type"] == "missing":
            message = f"Missing required field: {field_name}"
        else:
            message = f"{field_name}: {err['msg'].removeprefix('Value error, ')}"
        issues.append(FieldIssue(field_name, message))
    return issues


# =============================================================================
# Coercion helpers
# =============================================================================


def _coerce_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        value = " ".join(str(v) for v in value if v)
    text = normalize_whitespace(str(value))
    return text or None


def _coerce_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return parse_price(str(value))


def _coerce_images(value: Any) -> list[str]:
    if value is None:
        return []
    items = [value] if isinstance(value, str) else list(value) if isinstance(value, (list, tuple)) else []
    urls = [item.strip() for item in items if isinstance(item, str) and item.strip()]
    return dedupe_images(urls)


def _coerce_currency(value: Any) -> str | None:
    """ISO code for a code or symbol such as ``usd`` or ``€``; None when unrecognized."""
    text = _coerce_text(value)
    if not text:
        return None
    if ISO_CODE_RE.match(text):
        return text.upper()
    return detect_currency(text)


# =============================================================================
# Quality Gate
# =============================================================================


class QualityGate:
    """Schema and business-rule validation with rescue and normalization."""

    def __init__(self, config: QualityConfig | None = None):
        self.config = config or QualityConfig()
        self._counts: Counter[str] = Counter()
        self._failure_reasons: Counter[str] = Counter()

    # -------------------------------------------------------------------------
    # Normalization
    # -------------------------------------------------------------------------

    def normalize(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Trim strings, coerce numbers, default currency and stamp the version.

        Non-canonical keys pass through unchanged. Normalizing twice yields
        the same data apart from ``validated_at``.
        """
        data = {key: value for key, value in record.items() if key not in STAMP_KEYS}

        for key in ("name", "brand", "description", "sku", "url"):
            if key in data:
                data[key] = _coerce_text(data[key])

        for key in ("price", "sale_price"):
            if key in data:
                data[key] = _coerce_number(data[key])

        data["images"] = _coerce_images(data.get("images"))

        data["currency"] = _coerce_currency(data.get("currency")) or self.config.default_currency

        availability = data.get("availability")
        data["availability"] = (
            parse_availability(availability).value
            if availability not in (None, "")
            else Availability.IN_STOCK.value
        )

        data["validated_at"] = datetime.now(timezone.utc).isoformat()
        data["validation_version"] = self.config.validation_version
        return data

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    def _check_schema(self, data: Mapping[str, Any]) -> list[FieldIssue]:
        present = {key: value for key, value in data.items() if value is not None}
        try:
            ProductSchema.model_validate(present, context={"allow_zero_price": self.config.allow_zero_price})
        except PydanticValidationError as e:
            return _schema_issues(e)
        return []

    def _check_business_rules(self, data: Mapping[str, Any]) -> list[FieldIssue]:
        errors: list[FieldIssue] = []
        name = data.get("name") or ""
        brand = data.get("brand")
        price = data.get("price")
        sale_price = data.get("sale_price")

        if sale_price is not None and price is not None and sale_price >= price:
            errors.append(
                FieldIssue("sale_price", f"Sale price ({sale_price}) must be less than original price ({price})")
            )

        if brand and name.casefold() == brand.casefold():
            errors.append(FieldIssue("name", "Product name should not be identical to brand name"))

        if any(pattern.search(name) for pattern in PLACEHOLDER_NAME_PATTERNS):
            errors.append(FieldIssue("name", "Product name contains placeholder text"))

        if price is not None and price > self.config.max_price:
            errors.append(FieldIssue("price", f"Price ({price}) is suspiciously high. Possible extraction error."))

        images = data.get("images") or []
        if images and not any(is_product_image(url) for url in images):
            errors.append(FieldIssue("images", "All images appear to be invalid or placeholders"))

        return errors

    def _warnings(self, data: Mapping[str, Any], record: Mapping[str, Any]) -> list[FieldIssue]:
        warnings: list[FieldIssue] = []
        raw_currency = _coerce_text(record.get("currency"))
        if raw_currency and _coerce_currency(raw_currency) is None:
            warnings.append(
                FieldIssue("currency", f"Unrecognized currency {raw_currency!r}, assumed {data['currency']}", "medium")
            )

        if not data.get("brand"):
            warnings.append(FieldIssue("brand", "Brand information is missing", "low"))

        description = data.get("description") or ""
        if len(description) < self.config.min_description_length:
            warnings.append(FieldIssue("description", "Product description is missing or too short", "low"))

        if len(data.get("images") or []) == 1:
            warnings.append(FieldIssue("images", "Only one product image found", "medium"))

        if SALE_NAME_RE.search(data.get("name") or "") and data.get("sale_price") is None:
            warnings.append(
                FieldIssue("sale_price", "Product name suggests it's on sale but no sale price found", "medium")
            )
        return warnings

    def check(self, record: Mapping[str, Any]) -> tuple[dict[str, Any], list[FieldIssue]]:
        """Normalize and run schema then business rules (steps 1-2)."""
        data = self.normalize(record)
        errors = self._check_schema(data)
        if errors:
            self._failure_reasons["schema_validation"] += 1
            return data, errors
        errors = self._check_business_rules(data)
        if errors:
            self._failure_reasons["business_rules"] += 1
        return data, errors

    # -------------------------------------------------------------------------
    # Rescue
    # -------------------------------------------------------------------------

    def rescue(
        self,
        record: Mapping[str, Any],
        candidates: Sequence[Mapping[str, Any]] = (),
    ) -> dict[str, Any] | None:
        """Fill invalid name/price/images from synonymous keys.

        Args:
            record: The record that failed validation
            candidates: Raw strategy outputs in priority order

        Returns:
            Patched record, or None when nothing could be substituted
        """
        sources = [record, *candidates]
        patched = dict(record)
        changed = False

        if not _coerce_text(record.get("name")):
            for source in sources:
                name = self._find_name(source)
                if name:
                    patched["name"] = name
                    changed = True
                    break

        price = _coerce_number(record.get("price"))
        if price is None or price <= 0:
            for source in sources:
                found = self._find_price(source)
                if found is not None:
                    patched["price"] = found
                    changed = True
                    break

        if not _coerce_images(record.get("images")):
            for source in sources:
                found_images = self._find_images(source)
                if found_images:
                    patched["images"] = found_images
                    changed = True
                    break

        return patched if changed else None

    def _find_name(self, source: Mapping[str, Any]) -> str | None:
        for key in NAME_SYNONYMS:
            name = _coerce_text(source.get(key))
            if name:
                return name
        return None

    def _find_price(self, source: Mapping[str, Any]) -> float | None:
        for key, value in source.items():
            lower = key.lower()
            if ("price" in lower or lower == "amount") and lower not in PRICE_EXCLUDED_KEYS:
                amount = _coerce_number(value)
                if amount is not None and 0 < amount <= self.config.max_price:
                    return amount
        return None

    def _find_images(self, source: Mapping[str, Any]) -> list[str]:
        for key, value in source.items():
            lower = key.lower()
            if key in IMAGE_SYNONYMS or "image" in lower or "gallery" in lower:
                urls = [url for url in _coerce_images(value) if _is_url(url)]
                if urls:
                    return urls
        return []

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def validate(
        self,
        record: Mapping[str, Any],
        candidates: Sequence[Mapping[str, Any]] = (),
    ) -> ValidationResult:
        """Validate a merged record.

        Args:
            record: Merged product fields
            candidates: Raw per-strategy fields used by the rescue pass

        Returns:
            ValidationResult; ``recovered`` is set when the rescue pass succeeded
        """
        self._counts["total"] += 1
        data, errors = self.check(record)
        recovered = False

        if errors:
            patched = self.rescue(record, candidates)
            if patched is not None:
                patched_data, patched_errors = self.check(patched)
                if not patched_errors:
                    logger.info(f"Recovered record by substituting synonymous fields for {record.get('url')}")
                    data, errors, recovered = patched_data, [], True

        if errors:
            self._counts["failed"] += 1
            partial = {k: v for k, v in data.items() if k not in STAMP_KEYS and v not in (None, "", [])}
            return ValidationResult(valid=False, errors=errors, partial=partial)

        warnings = self._warnings(data, record)
        if recovered:
            warnings.append(FieldIssue("product", "Recovered from partial extraction", "medium"))

        self._counts["passed"] += 1
        return ValidationResult(valid=True, product=self._product(data), warnings=warnings, recovered=recovered)

    def _product(self, data: Mapping[str, Any]) -> Product:
        return Product(
            name=data["name"],
            price=data["price"],
            images=list(data["images"]),
            currency=data["currency"],
            sale_price=data.get("sale_price"),
            brand=data.get("brand"),
            description=data.get("description"),
            availability=data.get("availability"),
            sku=data.get("sku"),
            url=data.get("url"),
            validation_version=data["validation_version"],
            validated_at=data["validated_at"],
        )

    def metrics(self) -> dict[str, Any]:
        total = self._counts["total"]
        return {
            "total": total,
            "passed": self._counts["passed"],
            "failed": self._counts["failed"],
            "pass_rate": round(self._counts["passed"] / total, 3) if total else 0.0,
            "failure_reasons": dict(self._failure_reasons),
        }
