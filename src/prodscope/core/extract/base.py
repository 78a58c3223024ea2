"""
Base classes for extraction strategies.

Defines the parsed Document handed to every strategy, the per-strategy
result, and the ExtractionStrategy interface.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from lxml import etree
from lxml import html as lxml_html
from lxml.cssselect import SelectorError

logger = logging.getLogger(__name__)

CANONICAL_FIELDS = (
    "name",
    "price",
    "sale_price",
    "currency",
    "images",
    "brand",
    "description",
    "availability",
    "sku",
)

_XML_DECLARATION_RE = re.compile(r"^\s*<\?xml[^>]*\?>", re.IGNORECASE)


# =============================================================================
# Document
# =============================================================================


class Document:
    """An HTML page parsed once and shared by all strategies."""

    def __init__(self, html: str, url: str):
        self.html = html or ""
        self.url = url
        self._tree: lxml_html.HtmlElement | None = None

    @property
    def tree(self) -> lxml_html.HtmlElement:
        if self._tree is None:
            self._tree = self._parse(self.html)
        return self._tree

    @staticmethod
    def _parse(html: str) -> lxml_html.HtmlElement:
        text = _XML_DECLARATION_RE.sub("", html)
        if not text.strip():
            return lxml_html.fromstring("<html><body></body></html>")
        try:
            return lxml_html.document_fromstring(text)
        except (etree.ParserError, ValueError) as e:
            logger.debug(f"Falling back to empty document after parse error: {e}")
            return lxml_html.fromstring("<html><body></body></html>")

    def css(self, selector: str, root: lxml_html.HtmlElement | None = None) -> list[lxml_html.HtmlElement]:
        """CSS select; invalid selectors match nothing."""
        try:
            return (root if root is not None else self.tree).cssselect(selector)
        except (SelectorError, etree.XPathError) as e:
            logger.debug(f"Invalid selector {selector!r}: {e}")
            return []

    def css_first(self, selector: str, root: lxml_html.HtmlElement | None = None) -> lxml_html.HtmlElement | None:
        matches = self.css(selector, root)
        return matches[0] if matches else None

    def meta(self, *names: str) -> str | None:
        """First non-empty ``content`` of a meta tag matched by property or name."""
        for name in names:
            for element in self.css(f'meta[property="{name}"], meta[name="{name}"], meta[itemprop="{name}"]'):
                content = (element.get("content") or "").strip()
                if content:
                    return content
        return None

    def scripts(self, script_type: str | None = None) -> list[str]:
        selector = f'script[type="{script_type}"]' if script_type else "script:not([src])"
        return [script.text_content() for script in self.css(selector) if script.text_content()]

    def visible_text(self) -> str:
        """Body text without script/style/noscript content."""
        body = self.tree.find("body")
        root = body if body is not None else self.tree
        parts = root.xpath(
            ".//text()[not(ancestor::script) and not(ancestor::style) and not(ancestor::noscript)]"
        )
        return " ".join(" ".join(parts).split())

    @property
    def title(self) -> str | None:
        element = self.tree.find(".//title")
        if element is None:
            return None
        return element.text_content().strip() or None


# =============================================================================
# Strategy Results
# =============================================================================


@dataclass
class StrategyResult:
    """Fields proposed by one strategy for one page, already type-coerced."""

    fields: dict[str, Any] = field(default_factory=dict)
    success: bool = True
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.success and any(v not in (None, "", []) for v in self.fields.values())

    def add_error(self, error: str) -> None:
        self.errors.append(error)

    @classmethod
    def failure(cls, error: str, fields: dict[str, Any] | None = None) -> "StrategyResult":
        return cls(fields=fields or {}, success=False, errors=[error])


@dataclass(frozen=True)
class ExtractionCandidate:
    """One strategy's output for one call, tagged with provenance."""

    strategy: str
    priority: int
    fields: dict[str, Any]
    success: bool = True
    errors: tuple[str, ...] = ()


# =============================================================================
# Strategy Interface
# =============================================================================


class ExtractionStrategy(ABC):
    """Abstract base class for extraction strategies."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Strategy identifier used for provenance."""

    def can_handle(self, document: Document, url: str) -> bool:
        """Cheap check whether ``extract`` is worth running on this page."""
        return True

    @abstractmethod
    def extract(self, document: Document, url: str) -> StrategyResult:
        """Extract product fields from the document.

        Args:
            document: Parsed page
            url: Page URL used to resolve relative links

        Returns:
            StrategyResult with coerced field values
        """
