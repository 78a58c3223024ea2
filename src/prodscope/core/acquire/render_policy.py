"""
Render policy: decide whether a page is worth an expensive browser render.

The decision is made after the static fetch and static extraction, from:
- the process-wide render budget
- per-origin always/never lists and origin policy hints
- whether the URL or markup looks like a product page
- how complete the static extraction already is
- client-side application markers versus embedded structured data
- lazy-loading markers versus already-resolved images
"""

from __future__ import annotations

import logging
import re
import threading
import time
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from prodscope.core.config.models import AcquisitionHints, RenderConfig, RenderMode
from prodscope.core.normalize.urls import host_matches, normalize_origin

if TYPE_CHECKING:
    from prodscope.core.extract.base import Document

logger = logging.getLogger(__name__)


PRODUCT_HTML_MARKERS = (
    "product-detail",
    "product-info",
    "pdp-container",
    'itemtype="http://schema.org/Product"',
    'itemtype="https://schema.org/Product"',
    '"@type":"Product"',
    '"@type": "Product"',
    "add-to-cart",
    "addtocart",
)

PRODUCT_DOM_SELECTORS = (
    '[itemtype*="Product"]',
    "[data-product-id]",
    ".product-detail, .product-info, .pdp",
    'meta[property="og:type"][content="product"]',
)


# =============================================================================
# Render Budget
# =============================================================================


class RenderBudget:
    """Rolling-window quota of browser renders, shared process-wide.

    The counter resets when the window elapses. ``try_consume`` is atomic.
    """

    def __init__(
        self,
        limit: int = 100,
        window_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._used = 0
        self._window_start = clock()

    def _roll(self) -> None:
        now = self._clock()
        if now - self._window_start >= self.window_seconds:
            self._used = 0
            self._window_start = now

    def try_consume(self) -> bool:
        """Take one render from the budget; False when exhausted."""
        with self._lock:
            self._roll()
            if self._used >= self.limit:
                return False
            self._used += 1
            return True

    @property
    def remaining(self) -> int:
        with self._lock:
            self._roll()
            return max(self.limit - self._used, 0)

    @property
    def used(self) -> int:
        with self._lock:
            self._roll()
            return self._used

    @property
    def resets_in(self) -> float:
        with self._lock:
            return max(self.window_seconds - (self._clock() - self._window_start), 0.0)

    def snapshot(self) -> dict[str, Any]:
        return {"used": self.used, "limit": self.limit, "remaining": self.remaining, "resets_in": self.resets_in}


# =============================================================================
# Render Decision
# =============================================================================


@dataclass
class RenderDecision:
    """Outcome of one render-policy evaluation. Never persisted."""

    should_render: bool
    reason: str
    confidence: str = "high"  # high, medium, low
    factors: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "should_render": self.should_render,
            "reason": self.reason,
            "confidence": self.confidence,
            "factors": dict(self.factors),
        }


@dataclass
class PageSignals:
    """Page features the decision is based on."""

    is_product_page: bool = False
    spa_indicators: int = 0
    has_structured_data: bool = False
    completeness: float = 0.0
    has_lazy_loading: bool = False
    images_resolved: bool = False

    @property
    def is_spa(self) -> bool:
        return self.spa_indicators > 0

    @property
    def spa_confidence(self) -> str:
        if self.spa_indicators > 2:
            return "high"
        if self.spa_indicators > 0:
            return "medium"
        return "low"


# =============================================================================
# Render Policy
# =============================================================================


class RenderPolicy:
    """Cost-aware static-vs-rendered decision with bookkeeping."""

    def __init__(self, config: RenderConfig | None = None, budget: RenderBudget | None = None):
        self.config = config or RenderConfig()
        self.budget = budget or RenderBudget(self.config.hourly_budget, self.config.budget_window_seconds)
        self._url_patterns = [re.compile(p, re.IGNORECASE) for p in self.config.product_url_patterns]
        self._history: deque[tuple[str, RenderDecision, datetime]] = deque(maxlen=self.config.history_size)
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Origin lists
    # -------------------------------------------------------------------------

    def is_always(self, origin: str, hints: AcquisitionHints | None = None) -> bool:
        if hints is not None and hints.render != RenderMode.AUTO:
            return hints.render == RenderMode.ALWAYS
        return any(host_matches(origin, host) for host in self.config.always_render)

    def is_never(self, origin: str, hints: AcquisitionHints | None = None) -> bool:
        if hints is not None and hints.render != RenderMode.AUTO:
            return hints.render == RenderMode.NEVER
        return any(host_matches(origin, host) for host in self.config.never_render)

    # -------------------------------------------------------------------------
    # Page analysis
    # -------------------------------------------------------------------------

    def is_product_url(self, url: str) -> bool:
        return any(pattern.search(url) for pattern in self._url_patterns)

    def analyze(
        self,
        url: str,
        document: "Document | None",
        completeness: float = 0.0,
        images_resolved: bool = False,
    ) -> PageSignals:
        """Collect page signals from the URL, raw HTML and parsed tree."""
        html = document.html if document is not None else ""
        signals = PageSignals(completeness=completeness, images_resolved=images_resolved)

        signals.is_product_page = self.is_product_url(url) or any(marker in html for marker in PRODUCT_HTML_MARKERS)
        signals.spa_indicators = sum(1 for marker in self.config.spa_markers if marker in html)
        signals.has_lazy_loading = any(marker in html for marker in self.config.lazy_markers)

        if document is not None:
            if not signals.is_product_page:
                signals.is_product_page = any(document.css(selector) for selector in PRODUCT_DOM_SELECTORS)
            signals.has_structured_data = bool(
                document.css('script[type="application/ld+json"]')
                or document.css('[itemtype*="schema.org/Product"]')
                or document.css('meta[property="og:type"][content="product"]')
            )
        return signals

    # -------------------------------------------------------------------------
    # Decision
    # -------------------------------------------------------------------------

    def decide(
        self,
        url: str,
        document: "Document | None" = None,
        *,
        completeness: float = 0.0,
        images_resolved: bool = False,
        hints: AcquisitionHints | None = None,
    ) -> RenderDecision:
        """Decide whether to render ``url``.

        Does not consume the budget; the rendering step does that when it
        actually launches a page.

        Args:
            url: Target URL
            document: Statically fetched document, if any
            completeness: Completeness score of the static extraction
            images_resolved: Static extraction already produced images
            hints: Origin policy acquisition hints

        Returns:
            RenderDecision
        """
        origin = normalize_origin(url)

        if self.budget.remaining <= 0:
            decision = RenderDecision(False, "Render budget exhausted", factors={"budget_exhausted": True})
            return self._record(url, decision)

        if self.is_always(origin, hints):
            decision = RenderDecision(True, "Origin requires rendering", factors={"always_list": True})
            return self._record(url, decision)

        if self.is_never(origin, hints):
            decision = RenderDecision(False, "Origin has good static HTML", factors={"never_list": True})
            return self._record(url, decision)

        signals = self.analyze(url, document, completeness, images_resolved)
        factors = {
            "is_product_page": signals.is_product_page,
            "is_spa": signals.is_spa,
            "spa_indicators": signals.spa_indicators,
            "has_structured_data": signals.has_structured_data,
            "completeness": signals.completeness,
            "has_lazy_loading": signals.has_lazy_loading,
            "images_resolved": signals.images_resolved,
        }

        if not signals.is_product_page:
            decision = RenderDecision(False, "Not a product page", factors=factors)
        elif signals.completeness >= self.config.completeness_threshold:
            decision = RenderDecision(False, "Already has complete product data", factors=factors)
        elif signals.is_spa and not signals.has_structured_data:
            decision = RenderDecision(
                True, "SPA without structured data", confidence=signals.spa_confidence, factors=factors
            )
        elif signals.has_lazy_loading and not signals.images_resolved:
            decision = RenderDecision(True, "Lazy-loaded content detected", confidence="medium", factors=factors)
        else:
            decision = RenderDecision(False, "Static extraction should suffice", factors=factors)

        return self._record(url, decision)

    def _record(self, url: str, decision: RenderDecision) -> RenderDecision:
        with self._lock:
            self._history.append((url, decision, datetime.now(timezone.utc)))
        logger.debug(
            f"Render decision for {normalize_origin(url)}: "
            f"{'RENDER' if decision.should_render else 'SKIP'} - {decision.reason}"
        )
        return decision

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def history(self) -> list[tuple[str, RenderDecision, datetime]]:
        with self._lock:
            return list(self._history)

    def stats(self) -> dict[str, Any]:
        """Counts over recent decisions plus the budget state."""
        decisions = [decision for _, decision, _ in self.history]
        rendered = sum(1 for d in decisions if d.should_render)
        reasons = Counter(d.reason for d in decisions)
        return {
            "total_decisions": len(decisions),
            "rendered": rendered,
            "skipped": len(decisions) - rendered,
            "budget": self.budget.snapshot(),
            "top_reasons": [{"reason": r, "count": c} for r, c in reasons.most_common(5)],
        }
