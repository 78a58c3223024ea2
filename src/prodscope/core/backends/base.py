"""
Backend base classes and data structures.

Defines the interface contract for page acquisition backends and the
acquisition error family consumed by the resilience layer.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from prodscope.core.errors import AcquisitionError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ProxySettings:
    """Proxy endpoint used by the rendered-with-proxy acquisition mode."""

    server: str
    username: str | None = None
    password: str | None = None

    def to_playwright(self) -> dict[str, str]:
        proxy = {"server": self.server}
        if self.username:
            proxy["username"] = self.username
        if self.password:
            proxy["password"] = self.password
        return proxy


@dataclass
class RequestSpec:
    """Specification for a page acquisition request."""

    url: str
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = 10.0
    follow_redirects: bool = True

    # Rendering options
    navigation_timeout: float = 30.0
    wait_for_selector: str | None = None
    intercept_patterns: list[re.Pattern[str]] = field(default_factory=list)
    proxy: ProxySettings | None = None

    # Metadata for logging
    origin: str | None = None
    mode: str | None = None  # "static", "rendered", "rendered_proxy"


@dataclass
class FetchResult:
    """Result of a fetch operation."""

    url: str
    final_url: str
    status_code: int
    html: str
    headers: dict[str, str]

    elapsed_ms: float
    fetched_at: datetime = field(default_factory=_utcnow)

    @property
    def ok(self) -> bool:
        """Check if request was successful (2xx status)."""
        return 200 <= self.status_code < 300

    @property
    def content_length(self) -> int:
        return len(self.html.encode("utf-8"))


@dataclass
class InterceptedResponse:
    """One JSON network response captured while a page was navigating."""

    url: str
    status: int
    data: Any


@dataclass
class RenderResult(FetchResult):
    """Result of a render operation (JavaScript execution).

    Extends FetchResult with browser-specific data.
    """

    console_logs: list[str] = field(default_factory=list)
    intercepted: list[InterceptedResponse] = field(default_factory=list)


class Backend(ABC):
    """Abstract base class for acquisition backends.

    All backends must implement fetch. Browser-based backends also
    implement render.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier."""

    @property
    def supports_javascript(self) -> bool:
        """Whether this backend can execute JavaScript."""
        return False

    @abstractmethod
    async def fetch(self, request: RequestSpec) -> FetchResult:
        """Fetch a URL and return the response.

        Args:
            request: Request specification

        Returns:
            FetchResult with response data

        Raises:
            AcquisitionError: On fetch failure
        """

    async def render(self, request: RequestSpec) -> RenderResult:
        """Render a page with JavaScript execution.

        Args:
            request: Request specification

        Returns:
            RenderResult with rendered content and intercepted API payloads

        Raises:
            NotImplementedError: If backend doesn't support rendering
            AcquisitionError: On render failure
        """
        raise NotImplementedError(f"{self.name} backend does not support JavaScript rendering")

    async def close(self) -> None:
        """Clean up backend resources."""

    async def __aenter__(self) -> "Backend":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


# =============================================================================
# Acquisition Errors
# =============================================================================


class FetchError(AcquisitionError):
    """Error during a static fetch."""


class FetchTimeout(FetchError):
    """Static fetch exceeded its timeout."""

    def __init__(self, message: str, url: str | None = None, cause: Exception | None = None):
        super().__init__(message, url, cause=cause, retryable=True)


class RenderError(AcquisitionError):
    """Error during a browser render."""


class NavigationTimeout(RenderError):
    """Page navigation exceeded its timeout."""

    def __init__(self, message: str, url: str | None = None, cause: Exception | None = None):
        super().__init__(message, url, cause=cause, retryable=True)


class RateLimitError(AcquisitionError):
    """Rate limit hit (429 or similar)."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, url, status_code=429, retryable=True)
        self.retry_after = retry_after


class BlockedError(AcquisitionError):
    """Request blocked by anti-bot measures."""


class RenderBudgetExhausted(AcquisitionError):
    """The hourly render budget has no tokens left."""

    def __init__(self, url: str | None = None):
        super().__init__("Render budget exhausted", url, retryable=False)
