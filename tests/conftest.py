"""Shared fixtures: fake clock, scripted backends and page builders."""

from __future__ import annotations

import json
import random
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from prodscope.core.backends.base import (
    Backend,
    FetchResult,
    InterceptedResponse,
    RenderResult,
    RequestSpec,
)
from prodscope.core.config.models import AppConfig, PatternMemoryConfig, PlaywrightConfig
from prodscope.core.context import ParserContext


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(_seconds: float) -> None:
    return None


class FakeStaticBackend(Backend):
    """Returns scripted HTML per URL, or raises a scripted error."""

    def __init__(self, pages: dict[str, Any] | None = None, default: Any = None):
        self.pages = dict(pages or {})
        self.default = default
        self.requests: list[RequestSpec] = []

    @property
    def name(self) -> str:
        return "fake-static"

    async def fetch(self, request: RequestSpec) -> FetchResult:
        self.requests.append(request)
        outcome = self.pages.get(request.url, self.default)
        if callable(outcome):
            outcome = outcome(request)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            raise AssertionError(f"No scripted page for {request.url}")
        return FetchResult(
            url=request.url,
            final_url=request.url,
            status_code=200,
            html=outcome,
            headers={"content-type": "text/html"},
            elapsed_ms=1.0,
        )


class FakeRenderBackend(Backend):
    """Returns scripted rendered HTML plus optional intercepted payloads."""

    def __init__(
        self,
        pages: dict[str, Any] | None = None,
        intercepted: dict[str, list[InterceptedResponse]] | None = None,
        default: Any = None,
    ):
        self.pages = dict(pages or {})
        self.intercepted = dict(intercepted or {})
        self.default = default
        self.requests: list[RequestSpec] = []

    @property
    def name(self) -> str:
        return "fake-render"

    @property
    def supports_javascript(self) -> bool:
        return True

    async def fetch(self, request: RequestSpec) -> RenderResult:
        return await self.render(request)

    async def render(self, request: RequestSpec) -> RenderResult:
        self.requests.append(request)
        outcome = self.pages.get(request.url, self.default)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            raise AssertionError(f"No scripted render for {request.url}")
        return RenderResult(
            url=request.url,
            final_url=request.url,
            status_code=200,
            html=outcome,
            headers={},
            elapsed_ms=5.0,
            intercepted=list(self.intercepted.get(request.url, [])),
        )


def product_page(
    jsonld: dict[str, Any] | list[Any] | None = None,
    head: str = "",
    body: str = "",
    title: str = "Product",
) -> str:
    """Build an HTML page with optional JSON-LD."""
    script = ""
    if jsonld is not None:
        script = f'<script type="application/ld+json">{json.dumps(jsonld)}</script>'
    return f"<html><head><title>{title}</title>{head}{script}</head><body>{body}</body></html>"


def jsonld_product(
    name: str = "Test Shirt",
    price: Any = "19.99",
    images: list[str] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    node: dict[str, Any] = {
        "@context": "https://schema.org",
        "@type": "Product",
        "name": name,
        "image": images if images is not None else ["http://x/a.jpg"],
        "offers": {"@type": "Offer", "price": price, "priceCurrency": "USD"},
    }
    node.update(extra)
    return node


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        recipes_dir=tmp_path / "recipes",
        origins_file=None,
        pattern_memory=PatternMemoryConfig(enabled=False),
        playwright=PlaywrightConfig(enabled=False),
    )


@pytest.fixture
def make_context(app_config: AppConfig, clock: FakeClock) -> Callable[..., ParserContext]:
    """Build a ParserContext with fake backends, a fake clock and no sleeping."""

    def factory(
        static: Backend | None = None,
        render: Backend | None = None,
        config: AppConfig | None = None,
        **kwargs: Any,
    ) -> ParserContext:
        return ParserContext.create(
            config or app_config,
            static_backend=static or FakeStaticBackend(),
            render_backend=render,
            clock=clock,
            sleep=no_sleep,
            rng=random.Random(7),
            **kwargs,
        )

    return factory
