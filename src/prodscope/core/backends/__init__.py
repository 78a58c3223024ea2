"""Backend implementations for fetching and rendering pages."""

from .base import (
    Backend,
    BlockedError,
    FetchError,
    FetchResult,
    FetchTimeout,
    InterceptedResponse,
    NavigationTimeout,
    ProxySettings,
    RateLimitError,
    RenderBudgetExhausted,
    RenderError,
    RenderResult,
    RequestSpec,
)
from .http_backend import HttpBackend
from .playwright_backend import PlaywrightBackend

__all__ = [
    # Base classes
    "Backend",
    "RequestSpec",
    "ProxySettings",
    "FetchResult",
    "RenderResult",
    "InterceptedResponse",
    # Errors
    "FetchError",
    "FetchTimeout",
    "RenderError",
    "NavigationTimeout",
    "RateLimitError",
    "BlockedError",
    "RenderBudgetExhausted",
    # Backends
    "HttpBackend",
    "PlaywrightBackend",
]
