"""
Strategy coordinator: runs registered strategies and merges their output.

Strategies run in descending priority. One strategy raising or returning
a failure never stops the others. The merge is a pure function of the
ordered candidates: for every field the first value that passes the
field's validity predicate wins.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from prodscope.core.errors import ExtractionError
from prodscope.core.normalize.images import dedupe_images
from prodscope.core.normalize.parsing import Availability

from .base import CANONICAL_FIELDS, Document, ExtractionCandidate, ExtractionStrategy

if TYPE_CHECKING:
    from prodscope.core.collaborators import MetricsSink

logger = logging.getLogger(__name__)


COMPLETENESS_WEIGHTS = {
    "name": 0.25,
    "price": 0.25,
    "images": 0.25,
    "brand": 0.15,
    "description": 0.10,
}

API_PROVENANCE = "api"


# =============================================================================
# Field Validity
# =============================================================================


def _non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _valid_images(value: Any) -> bool:
    return (
        isinstance(value, list)
        and bool(value)
        and all(isinstance(url, str) and url.startswith(("http://", "https://")) for url in value)
    )


def _valid_availability(value: Any) -> bool:
    if isinstance(value, Availability):
        return True
    return isinstance(value, str) and value in {member.value for member in Availability}


def field_validators(allow_zero_price: bool = False) -> dict[str, Callable[[Any], bool]]:
    """Per-field validity predicates used by the merge."""

    def valid_price(value: Any) -> bool:
        if not _is_number(value):
            return False
        return value >= 0 if allow_zero_price else value > 0

    return {
        "name": _non_empty_string,
        "price": valid_price,
        "sale_price": lambda v: _is_number(v) and v > 0,
        "currency": _non_empty_string,
        "images": _valid_images,
        "brand": _non_empty_string,
        "description": _non_empty_string,
        "availability": _valid_availability,
        "sku": _non_empty_string,
    }


def _present(value: Any) -> bool:
    return value not in (None, "", [], {})


def _below_price(sale_price: Any, price: Any) -> bool:
    if not _is_number(price):
        return True
    return _is_number(sale_price) and sale_price < price


# =============================================================================
# Merged Record
# =============================================================================


@dataclass
class MergedRecord:
    """Unified product fields with the strategy that supplied each one."""

    fields: dict[str, Any] = field(default_factory=dict)
    provenance: dict[str, str] = field(default_factory=dict)
    extras: dict[str, Any] = field(default_factory=dict)
    candidates: tuple[ExtractionCandidate, ...] = field(default=(), compare=False)
    allow_zero_price: bool = field(default=False, compare=False)

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def fill_from(self, source: Mapping[str, Any], source_name: str = API_PROVENANCE) -> list[str]:
        """Fill absent canonical fields from a lower-priority source.

        Returns:
            Names of the fields that were filled
        """
        filled: list[str] = []
        validators = field_validators(self.allow_zero_price)
        for name in CANONICAL_FIELDS:
            if name in self.fields:
                continue
            value = source.get(name)
            if value is None:
                continue
            if name == "images" and isinstance(value, list):
                value = dedupe_images(value)
            if name == "sale_price" and not _below_price(value, self.fields.get("price", source.get("price"))):
                continue
            if validators[name](value):
                self.fields[name] = value
                self.provenance[name] = source_name
                filled.append(name)
        return filled

    def completeness(self) -> float:
        """Weighted share of the key fields that are present."""
        score = sum(weight for name, weight in COMPLETENESS_WEIGHTS.items() if _present(self.fields.get(name)))
        return round(score, 3)

    def to_product_dict(self) -> dict[str, Any]:
        """Canonical fields followed by extras, as a plain dict."""
        product = {name: self.fields[name] for name in CANONICAL_FIELDS if name in self.fields}
        for key, value in self.extras.items():
            product.setdefault(key, value)
        return product

    def raw_fields(self) -> list[dict[str, Any]]:
        """Every candidate's fields in priority order, for rescue."""
        return [dict(candidate.fields) for candidate in self.candidates]


def merge_candidates(
    candidates: Sequence[ExtractionCandidate],
    max_images: int = 10,
    allow_zero_price: bool = False,
) -> MergedRecord:
    """Merge ordered candidates into one record.

    Scalar fields take the first valid value in candidate order. Images are
    the union of every valid image list in candidate order, deduplicated by
    origin and path and capped at ``max_images``; their provenance is the
    first strategy that contributed. Non-canonical fields fill only when
    still absent.

    Args:
        candidates: Candidates already sorted by descending priority
        max_images: Image cap
        allow_zero_price: Accept a price of exactly zero

    Returns:
        MergedRecord; identical inputs always yield identical records
    """
    validators = field_validators(allow_zero_price)
    record = MergedRecord(candidates=tuple(candidates), allow_zero_price=allow_zero_price)
    images: list[str] = []

    for candidate in candidates:
        if not candidate.success:
            continue
        for name, value in candidate.fields.items():
            if name == "images":
                if validators["images"](value):
                    if not images:
                        record.provenance["images"] = candidate.strategy
                    images = dedupe_images([*images, *value], limit=max_images)
                continue
            if name in validators:
                if name not in record.fields and validators[name](value):
                    record.fields[name] = value
                    record.provenance[name] = candidate.strategy
            elif _present(value) and name not in record.extras:
                record.extras[name] = value

    if images:
        record.fields["images"] = images
    _pair_sale_price(record, candidates, validators["sale_price"])
    return record


def _pair_sale_price(
    record: MergedRecord,
    candidates: Sequence[ExtractionCandidate],
    valid_sale_price: Callable[[Any], bool],
) -> None:
    """Keep ``sale_price`` coherent with the chosen ``price``.

    The strategy that supplied ``price`` also supplies ``sale_price`` when it
    has one. A sale price from any other strategy is kept only when it is
    below the chosen price.
    """
    price_source = record.provenance.get("price")
    if price_source is None or "sale_price" not in record.fields:
        return
    if record.provenance.get("sale_price") == price_source:
        return

    for candidate in candidates:
        if candidate.success and candidate.strategy == price_source:
            own = candidate.fields.get("sale_price")
            if valid_sale_price(own) and _below_price(own, record.fields["price"]):
                record.fields["sale_price"] = own
                record.provenance["sale_price"] = price_source
                return
            break

    if not _below_price(record.fields["sale_price"], record.fields["price"]):
        logger.debug(
            f"Dropped sale_price {record.fields['sale_price']} from {record.provenance['sale_price']}: "
            f"not below price {record.fields['price']} from {price_source}"
        )
        del record.fields["sale_price"]
        del record.provenance["sale_price"]


# =============================================================================
# Coordinator
# =============================================================================


@dataclass
class _Registration:
    strategy: ExtractionStrategy
    priority: int
    order: int


class StrategyCoordinator:
    """Priority-ordered collection of extraction strategies."""

    def __init__(
        self,
        max_images: int = 10,
        allow_zero_price: bool = False,
        metrics: "MetricsSink | None" = None,
    ):
        self.max_images = max_images
        self.allow_zero_price = allow_zero_price
        self.metrics = metrics
        self._registrations: list[_Registration] = []

    def register(self, strategy: ExtractionStrategy, priority: int) -> None:
        """Add a strategy. Equal priorities keep registration order."""
        self._registrations.append(_Registration(strategy, priority, len(self._registrations)))
        self._registrations.sort(key=lambda r: (-r.priority, r.order))

    @property
    def strategies(self) -> list[tuple[str, int]]:
        return [(r.strategy.name, r.priority) for r in self._registrations]

    def collect(self, document: Document, url: str) -> list[ExtractionCandidate]:
        """Run every applicable strategy and return candidates in priority order."""
        candidates: list[ExtractionCandidate] = []

        for registration in self._registrations:
            strategy = registration.strategy
            try:
                if not strategy.can_handle(document, url):
                    logger.debug(f"Strategy {strategy.name} skipped for {url}")
                    continue
                result = strategy.extract(document, url)
            except Exception as e:
                logger.warning(
                    f"Strategy {strategy.name} failed on {url}: {e}",
                    extra={"strategy": strategy.name, "url": url},
                )
                candidates.append(
                    ExtractionCandidate(
                        strategy=strategy.name,
                        priority=registration.priority,
                        fields={},
                        success=False,
                        errors=(e.message if isinstance(e, ExtractionError) else f"{type(e).__name__}: {e}",),
                    )
                )
                self._count("strategy_errors", strategy.name)
                continue

            if result.errors:
                logger.debug(f"Strategy {strategy.name} on {url}: {'; '.join(result.errors)}")

            candidates.append(
                ExtractionCandidate(
                    strategy=strategy.name,
                    priority=registration.priority,
                    fields=dict(result.fields),
                    success=result.ok,
                    errors=tuple(result.errors),
                )
            )
            if result.ok:
                self._count("strategy_successes", strategy.name)

        return candidates

    def merge(self, candidates: Iterable[ExtractionCandidate]) -> MergedRecord:
        return merge_candidates(list(candidates), self.max_images, self.allow_zero_price)

    def run(self, document: Document, url: str) -> MergedRecord:
        """Run all strategies on the document and merge their candidates."""
        record = self.merge(self.collect(document, url))
        logger.debug(f"Merged {sorted(record.fields)} for {url} from {sorted(set(record.provenance.values()))}")
        return record

    def _count(self, metric: str, strategy: str) -> None:
        if self.metrics is not None:
            self.metrics.increment(metric, tags={"strategy": strategy})
