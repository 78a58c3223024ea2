"""
Pattern memory: a best-effort cache of selectors that worked per origin.

Read once at startup (learned entries overlay the built-in seed), consulted
by the heuristic strategy, and written in the background after a
high-confidence quality gate pass. Read failures fall back to the seed;
write failures are logged and never reach the caller.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Mapping
from typing import Any

from prodscope.core.config.models import PatternMemoryConfig, PatternStoreType
from prodscope.core.extract.base import Document
from prodscope.core.extract.heuristic import (
    BRAND_SELECTORS,
    DESCRIPTION_SELECTORS,
    IMAGE_SELECTORS,
    NAME_SELECTORS,
    PRICE_SELECTORS,
)
from prodscope.core.normalize.images import image_key, resolve_image_url
from prodscope.core.normalize.parsing import clean_html_text, parse_price
from prodscope.core.normalize.urls import host_matches

from .stores import FieldSelectors, JsonFilePatternStore, PatternStore, SqlPatternStore

logger = logging.getLogger(__name__)

MAX_SELECTORS_PER_FIELD = 5


def _merge_selectors(primary: list[str], secondary: list[str]) -> list[str]:
    return list(dict.fromkeys([*primary, *secondary]))[:MAX_SELECTORS_PER_FIELD]


def create_store(config: PatternMemoryConfig) -> PatternStore:
    if config.backend == PatternStoreType.SQL:
        return SqlPatternStore(config.database_url)
    return JsonFilePatternStore(config.path)


# =============================================================================
# Selector discovery
# =============================================================================


def _text_of(element: Any) -> str:
    return clean_html_text(element.get("content") or element.text_content())


def discover_selectors(document: Document, product: Mapping[str, Any]) -> FieldSelectors:
    """Find which candidate selectors reproduce the accepted product values.

    Args:
        document: The page the product was extracted from
        product: Validated product fields

    Returns:
        field -> selectors that matched, in candidate order
    """
    found: FieldSelectors = {}

    name = clean_html_text(product.get("name"))
    if name:
        hits = [s for s in NAME_SELECTORS if (el := document.css_first(s)) is not None and _text_of(el) == name]
        if hits:
            found["name"] = hits

    price = product.get("price")
    if price:
        hits = []
        for selector in PRICE_SELECTORS:
            element = document.css_first(selector)
            if element is not None and parse_price(element.get("content") or element.text_content()) == price:
                hits.append(selector)
        if hits:
            found["price"] = hits

    brand = clean_html_text(product.get("brand"))
    if brand:
        hits = [s for s in BRAND_SELECTORS if (el := document.css_first(s)) is not None and _text_of(el) == brand]
        if hits:
            found["brand"] = hits

    description = clean_html_text(product.get("description"))
    if description:
        prefix = description[:60]
        hits = [
            s
            for s in DESCRIPTION_SELECTORS
            if (el := document.css_first(s)) is not None and _text_of(el).startswith(prefix)
        ]
        if hits:
            found["description"] = hits

    image_keys = {image_key(url) for url in product.get("images") or []}
    if image_keys:
        hits = []
        for selector in IMAGE_SELECTORS:
            for element in document.css(selector):
                resolved = resolve_image_url(element.get("src") or element.get("data-src"), document.url)
                if resolved and image_key(resolved) in image_keys:
                    hits.append(selector)
                    break
        if hits:
            found["images"] = hits

    return {field: hits[:MAX_SELECTORS_PER_FIELD] for field, hits in found.items()}


# =============================================================================
# Pattern Memory
# =============================================================================


class PatternMemory:
    """Learned selectors per origin, overlaid on built-in seed patterns."""

    def __init__(
        self,
        store: PatternStore | None,
        seed: Mapping[str, FieldSelectors] | None = None,
        learn_threshold: float = 0.7,
    ):
        self.store = store
        self.seed = {origin: dict(fields) for origin, fields in (seed or {}).items()}
        self.learn_threshold = learn_threshold
        self._patterns: dict[str, FieldSelectors] = {k: dict(v) for k, v in self.seed.items()}
        self._lock = threading.Lock()
        self._pending: set[asyncio.Task[None]] = set()

    @classmethod
    def from_config(cls, config: PatternMemoryConfig) -> "PatternMemory":
        store = create_store(config) if config.enabled else None
        memory = cls(store, seed=config.seed_patterns, learn_threshold=config.learn_threshold)
        memory.load()
        return memory

    def load(self) -> None:
        """Merge persisted entries over the seed. Read failures keep the seed."""
        if self.store is None:
            return
        try:
            learned = self.store.load_all()
        except Exception as e:
            logger.warning(f"Pattern memory unreadable, using built-in defaults: {e}")
            return

        with self._lock:
            for origin, fields in learned.items():
                current = self._patterns.setdefault(origin, {})
                for field_name, selectors in fields.items():
                    current[field_name] = _merge_selectors(list(selectors), current.get(field_name, []))
        logger.debug(f"Loaded learned patterns for {len(learned)} origins")

    def selectors_for(self, origin: str) -> FieldSelectors:
        """Selectors for ``origin``, including entries learned for parent domains."""
        with self._lock:
            merged: FieldSelectors = {}
            hosts = sorted((h for h in self._patterns if host_matches(origin, h)), key=len, reverse=True)
            for host in hosts:
                for field_name, selectors in self._patterns[host].items():
                    merged[field_name] = _merge_selectors(merged.get(field_name, []), selectors)
            return merged

    def learn(self, origin: str, discovered: FieldSelectors) -> FieldSelectors:
        """Merge discovered selectors into memory; returns the origin's new entry."""
        with self._lock:
            current = self._patterns.setdefault(origin, {})
            for field_name, selectors in discovered.items():
                current[field_name] = _merge_selectors(selectors, current.get(field_name, []))
            return {k: list(v) for k, v in current.items()}

    def record_success(
        self,
        origin: str,
        document: Document,
        product: Mapping[str, Any],
        completeness: float,
    ) -> bool:
        """Learn from a validated product without blocking the caller.

        Returns:
            True when a background write was scheduled
        """
        if completeness < self.learn_threshold:
            return False

        discovered = discover_selectors(document, product)
        if not discovered:
            return False

        entry = self.learn(origin, discovered)
        if self.store is None:
            return False

        try:
            task = asyncio.get_running_loop().create_task(self._write(origin, entry))
        except RuntimeError:
            self._write_sync(origin, entry)
            return True
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return True

    async def _write(self, origin: str, entry: FieldSelectors) -> None:
        await asyncio.to_thread(self._write_sync, origin, entry)

    def _write_sync(self, origin: str, entry: FieldSelectors) -> None:
        try:
            self.store.put(origin, entry)
        except Exception as e:
            logger.warning(f"Failed to persist learned patterns for {origin}: {e}")

    async def drain(self) -> None:
        """Wait for pending background writes."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def snapshot(self) -> dict[str, FieldSelectors]:
        with self._lock:
            return {origin: {k: list(v) for k, v in fields.items()} for origin, fields in self._patterns.items()}
