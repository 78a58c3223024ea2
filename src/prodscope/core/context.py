"""
Parser context: every long-lived component, wired once per process.

Holds the shared state the engine needs across calls (per-origin circuit
state, the render budget, pattern memory) and is passed explicitly to the
parser instead of living in module globals.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from prodscope.core.acquire.render_policy import RenderBudget, RenderPolicy
from prodscope.core.backends.base import Backend
from prodscope.core.backends.http_backend import HttpBackend
from prodscope.core.backends.playwright_backend import PlaywrightBackend
from prodscope.core.collaborators import (
    InMemoryMetrics,
    MetricsSink,
    ResultCache,
    ScraperRegistry,
)
from prodscope.core.config.loader import load_all_recipes, load_origin_policies
from prodscope.core.config.models import AppConfig, OriginPolicyTable, Recipe
from prodscope.core.extract import (
    HeuristicExtractor,
    MetaTagExtractor,
    MicrodataExtractor,
    RecipeExtractor,
    StrategyCoordinator,
    StructuredExtractor,
)
from prodscope.core.memory import PatternMemory
from prodscope.core.quality.gate import QualityGate
from prodscope.core.resilience import CircuitBreaker, RetryController

logger = logging.getLogger(__name__)


def build_coordinator(
    config: AppConfig,
    recipes: Mapping[str, Recipe],
    pattern_memory: PatternMemory | None = None,
    metrics: MetricsSink | None = None,
) -> StrategyCoordinator:
    """Register the built-in strategies with their configured priorities."""
    max_images = config.extraction.max_images
    coordinator = StrategyCoordinator(
        max_images=max_images,
        allow_zero_price=config.quality.allow_zero_price,
        metrics=metrics,
    )
    strategies = [
        StructuredExtractor(max_images),
        RecipeExtractor(recipes, max_images),
        MicrodataExtractor(max_images),
        MetaTagExtractor(max_images),
        HeuristicExtractor(
            max_images,
            max_price=config.quality.max_price,
            learned_selectors=pattern_memory.selectors_for if pattern_memory is not None else None,
        ),
    ]
    for strategy in strategies:
        priority = config.extraction.priorities.get(strategy.name)
        if priority is None:
            logger.info(f"Strategy {strategy.name} has no priority configured; not registered")
            continue
        coordinator.register(strategy, priority)
    return coordinator


@dataclass
class ParserContext:
    """Components shared by every parse call in this process."""

    config: AppConfig
    origins: OriginPolicyTable
    recipes: dict[str, Recipe]
    coordinator: StrategyCoordinator
    render_policy: RenderPolicy
    circuit_breaker: CircuitBreaker
    retry: RetryController
    quality_gate: QualityGate
    pattern_memory: PatternMemory
    static_backend: Backend
    render_backend: Backend | None = None
    cache: ResultCache | None = None
    registry: ScraperRegistry | None = None
    metrics: MetricsSink = field(default_factory=InMemoryMetrics)

    @classmethod
    def create(
        cls,
        app_config: AppConfig | None = None,
        *,
        origins: OriginPolicyTable | None = None,
        recipes: Mapping[str, Recipe] | None = None,
        static_backend: Backend | None = None,
        render_backend: Backend | None = None,
        cache: ResultCache | None = None,
        registry: ScraperRegistry | None = None,
        metrics: MetricsSink | None = None,
        pattern_memory: PatternMemory | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> "ParserContext":
        """Wire every component from configuration.

        Keyword arguments replace individual components; tests use them to
        inject fake backends, clocks and sleeps.

        Raises:
            ConfigError: Invalid origin policies or recipes
        """
        config = app_config or AppConfig()
        origins = origins if origins is not None else load_origin_policies(config)
        recipes = dict(recipes) if recipes is not None else load_all_recipes(config.recipes_dir)
        metrics = metrics if metrics is not None else InMemoryMetrics()
        if pattern_memory is None:
            pattern_memory = PatternMemory.from_config(config.pattern_memory)

        retry_overrides = {host: p.retry for host, p in origins.items() if p.retry is not None}
        breaker_overrides = {
            host: p.circuit_breaker for host, p in origins.items() if p.circuit_breaker is not None
        }

        if static_backend is None:
            static_backend = HttpBackend(
                timeout=config.timeouts.static_fetch,
                user_agent=config.playwright.user_agent,
            )
        if render_backend is None and config.playwright.enabled:
            pw = config.playwright
            render_backend = PlaywrightBackend(
                headless=pw.headless,
                browser_type=pw.browser,
                max_pages=pw.max_pages,
                viewport_width=pw.viewport_width,
                viewport_height=pw.viewport_height,
                user_agent=pw.user_agent,
                stealth=pw.stealth,
                settle_ms=pw.settle_ms,
            )

        budget = RenderBudget(config.render.hourly_budget, config.render.budget_window_seconds, clock=clock)

        return cls(
            config=config,
            origins=origins,
            recipes=recipes,
            coordinator=build_coordinator(config, recipes, pattern_memory, metrics),
            render_policy=RenderPolicy(config.render, budget),
            circuit_breaker=CircuitBreaker(config.circuit_breaker, breaker_overrides, clock=clock),
            retry=RetryController(config.retry, retry_overrides, sleep=sleep, rng=rng),
            quality_gate=QualityGate(config.quality),
            pattern_memory=pattern_memory,
            static_backend=static_backend,
            render_backend=render_backend,
            cache=cache,
            registry=registry,
            metrics=metrics,
        )

    async def aclose(self) -> None:
        """Flush background writes and release backends."""
        await self.pattern_memory.drain()
        await self.static_backend.close()
        if self.render_backend is not None:
            await self.render_backend.close()

    async def __aenter__(self) -> "ParserContext":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()
