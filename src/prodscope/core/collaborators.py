"""
Interfaces for collaborators outside the core, with in-process defaults.

- ``ResultCache``: validated results keyed by canonical URL + extractor version
- ``ScraperRegistry``: dedicated per-site scrapers looked up by hostname
- ``MetricsSink``: counters for attempts, strategy successes, interceptions
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from prodscope.core.normalize.urls import host_matches

if TYPE_CHECKING:
    from prodscope.core.quality.gate import ValidationResult

logger = logging.getLogger(__name__)


# =============================================================================
# Result Cache
# =============================================================================


@runtime_checkable
class ResultCache(Protocol):
    async def get(self, key: str) -> "ValidationResult | None": ...

    async def set(self, key: str, result: "ValidationResult", ttl: float) -> None: ...


class InMemoryResultCache:
    """Process-local TTL cache."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, max_entries: int = 1000):
        self._clock = clock
        self._max_entries = max_entries
        self._entries: dict[str, tuple[float, "ValidationResult"]] = {}
        self._lock = threading.Lock()

    async def get(self, key: str) -> "ValidationResult | None":
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, result = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return result

    async def set(self, key: str, result: "ValidationResult", ttl: float) -> None:
        with self._lock:
            if len(self._entries) >= self._max_entries and key not in self._entries:
                oldest = min(self._entries, key=lambda k: self._entries[k][0])
                del self._entries[oldest]
            self._entries[key] = (self._clock() + ttl, result)

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# Dedicated Scraper Registry
# =============================================================================


# A dedicated scraper takes a URL and returns a raw record the quality gate can normalize
DedicatedScraper = Callable[[str], Awaitable[Mapping[str, Any]]]


@runtime_checkable
class ScraperRegistry(Protocol):
    def lookup(self, hostname: str) -> DedicatedScraper | None: ...


class DedicatedScraperRegistry:
    """Hostname -> scraper table matched on the hostname or any parent domain."""

    def __init__(self, scrapers: Mapping[str, DedicatedScraper] | None = None):
        self._scrapers: dict[str, DedicatedScraper] = dict(scrapers or {})

    def register(self, hostname: str, scraper: DedicatedScraper) -> None:
        self._scrapers[hostname] = scraper

    def lookup(self, hostname: str) -> DedicatedScraper | None:
        matches = [host for host in self._scrapers if host_matches(hostname, host)]
        if not matches:
            return None
        return self._scrapers[max(matches, key=len)]

    def __contains__(self, hostname: str) -> bool:
        return self.lookup(hostname) is not None


# =============================================================================
# Metrics Sink
# =============================================================================


@runtime_checkable
class MetricsSink(Protocol):
    def increment(self, name: str, value: int = 1, tags: Mapping[str, str] | None = None) -> None: ...


class InMemoryMetrics:
    """Counter sink; counters are keyed by name plus sorted tags."""

    def __init__(self) -> None:
        self._counters: Counter[str] = Counter()
        self._lock = threading.Lock()

    @staticmethod
    def _key(name: str, tags: Mapping[str, str] | None) -> str:
        if not tags:
            return name
        return name + "{" + ",".join(f"{k}={v}" for k, v in sorted(tags.items())) + "}"

    def increment(self, name: str, value: int = 1, tags: Mapping[str, str] | None = None) -> None:
        with self._lock:
            self._counters[self._key(name, tags)] += value

    def get(self, name: str, tags: Mapping[str, str] | None = None) -> int:
        with self._lock:
            return self._counters[self._key(name, tags)]

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)
