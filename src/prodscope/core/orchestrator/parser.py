"""
Product parser: one URL in, one ValidationResult out.

Flow per call:
    cache lookup -> fallback chain [static -> rendered -> rendered+proxy ->
    dedicated scraper] -> each step: retry(circuit(fetch)) -> extraction ->
    quality gate -> cache write and pattern learning in the background

Every failure path returns ``ValidationResult(valid=False)`` with the error
list and the best partial data.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from prodscope import EXTRACTOR_VERSION
from prodscope.core.acquire.interceptor import InterceptedData, interpret_responses, signature_patterns
from prodscope.core.acquire.render_policy import RenderDecision
from prodscope.core.backends.base import ProxySettings, RenderBudgetExhausted, RequestSpec
from prodscope.core.config.models import OriginPolicy
from prodscope.core.context import ParserContext
from prodscope.core.errors import CircuitOpenError, ExhaustedFallbackError
from prodscope.core.extract.base import Document
from prodscope.core.extract.coordinator import MergedRecord
from prodscope.core.logging import ContextualLogger, get_contextual_logger
from prodscope.core.normalize.images import collect_images
from prodscope.core.normalize.urls import canonical_url, is_absolute_url, normalize_origin
from prodscope.core.quality.gate import FieldIssue, ValidationResult
from prodscope.core.resilience.fallback import Escalate, FallbackChain, FallbackStep

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class AcquiredResult:
    """A quality-gate result together with what produced it."""

    result: ValidationResult
    mode: str
    document: Document | None = None
    record: MergedRecord | None = None
    decision: RenderDecision | None = None
    intercepted: InterceptedData | None = None


@dataclass
class _Call:
    url: str
    origin: str
    policy: OriginPolicy
    log: ContextualLogger
    allow_render: bool = True
    decision: RenderDecision | None = None
    started: float = field(default_factory=time.monotonic)


def cache_key(url: str) -> str:
    return f"{canonical_url(url)}#{EXTRACTOR_VERSION}"


class ProductParser:
    """Turns product page URLs into validated product records."""

    def __init__(self, context: ParserContext):
        self.context = context
        self._background: set[asyncio.Task[Any]] = set()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def parse(self, url: str, *, allow_render: bool = True) -> ValidationResult:
        """Parse one product URL.

        Args:
            url: Absolute http(s) URL
            allow_render: Permit browser rendering steps

        Returns:
            ValidationResult; never raises for acquisition or validation failures
        """
        url = (url or "").strip()
        if not is_absolute_url(url):
            return ValidationResult.failure("url", f"Invalid URL {url!r}: expected an absolute http(s) URL")

        ctx = self.context
        origin = normalize_origin(url)
        call = _Call(
            url=url,
            origin=origin,
            policy=ctx.origins.for_origin(origin),
            log=get_contextual_logger("parser", origin=origin, url=url),
            allow_render=allow_render,
        )
        ctx.metrics.increment("parse_attempts", tags={"origin": origin})

        if ctx.cache is not None:
            cached = await ctx.cache.get(cache_key(url))
            if cached is not None:
                ctx.metrics.increment("cache_hits")
                call.log.debug("Cache hit")
                return dataclasses.replace(cached, metadata={**cached.metadata, "cache": "hit"})

        chain = self._build_chain(call)
        try:
            acquired = await asyncio.wait_for(chain.run(), timeout=ctx.config.timeouts.per_call)
        except asyncio.TimeoutError:
            per_call = ctx.config.timeouts.per_call
            attempts = [a.to_dict() for a in chain.attempts]
            if chain.provisional is not None:
                call.log.warning(f"Parse timed out after {per_call}s; using the provisional result")
                return self._finish(call, chain.provisional, attempts)
            call.log.warning(f"Parse timed out after {per_call}s")
            return self._failure(
                call,
                FieldIssue("acquisition", f"Timed out after {per_call}s"),
                best=chain.best,
                attempts=attempts,
            )
        except CircuitOpenError as e:
            ctx.metrics.increment("circuit_rejections", tags={"origin": origin})
            call.log.warning(str(e))
            return self._failure(
                call,
                FieldIssue("acquisition", str(e)),
                best=e.best_result,
                attempts=[a.to_dict() for a in chain.attempts],
            )
        except ExhaustedFallbackError as e:
            detail = e.message if e.last_error is None else f"{e.message}: {e.last_error}"
            call.log.warning(detail)
            return self._failure(call, FieldIssue("acquisition", detail), best=e.best_result, attempts=e.attempts)

        return self._finish(call, acquired, [a.to_dict() for a in chain.attempts])

    async def parse_many(self, urls: Iterable[str], concurrency: int = 4) -> list[ValidationResult]:
        """Parse several URLs with bounded concurrency, preserving input order."""
        semaphore = asyncio.Semaphore(concurrency)

        async def bounded(target: str) -> ValidationResult:
            async with semaphore:
                return await self.parse(target)

        return list(await asyncio.gather(*(bounded(url) for url in urls)))

    async def drain(self) -> None:
        """Wait for background cache writes."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def stats(self) -> dict[str, Any]:
        ctx = self.context
        metrics_snapshot = getattr(ctx.metrics, "snapshot", None)
        return {
            "circuits": ctx.circuit_breaker.snapshot(),
            "retries": ctx.retry.stats(),
            "render": ctx.render_policy.stats(),
            "quality": ctx.quality_gate.metrics(),
            "metrics": metrics_snapshot() if callable(metrics_snapshot) else {},
        }

    # -------------------------------------------------------------------------
    # Fallback chain
    # -------------------------------------------------------------------------

    def _build_chain(self, call: _Call) -> FallbackChain[AcquiredResult]:
        ctx = self.context
        hints = call.policy.acquisition
        can_render = (
            call.allow_render
            and ctx.render_backend is not None
            and not ctx.render_policy.is_never(call.origin, hints)
        )
        proxy = None
        if ctx.config.proxy.enabled and hints.use_proxy:
            proxy = ProxySettings(ctx.config.proxy.server, ctx.config.proxy.username, ctx.config.proxy.password)
        scraper = ctx.registry.lookup(call.origin) if ctx.registry is not None else None

        async def static() -> AcquiredResult:
            return await self._static_step(call, escalate=can_render)

        async def rendered() -> AcquiredResult:
            return await self._rendered_step(call, proxy=None)

        async def rendered_proxy() -> AcquiredResult:
            return await self._rendered_step(call, proxy=proxy)

        async def dedicated() -> AcquiredResult:
            raw = await self._transport(call, lambda: scraper(call.url))
            result = ctx.quality_gate.validate({**raw, "url": call.url})
            result.metadata["mode"] = "dedicated"
            return AcquiredResult(result=result, mode="dedicated")

        steps = [
            FallbackStep("static", static, enabled=not hints.skip_static),
            FallbackStep("rendered", rendered, enabled=can_render),
            FallbackStep("rendered_proxy", rendered_proxy, enabled=can_render and proxy is not None),
            FallbackStep("dedicated", dedicated, enabled=scraper is not None),
        ]
        return FallbackChain(
            steps,
            accept=lambda acquired: acquired.result.valid,
            rank=lambda acquired: acquired.result.completeness,
        )

    async def _transport(self, call: _Call, fn: Callable[[], Awaitable[T]]) -> T:
        """One unit of acquisition work: retry(circuit(fn))."""
        ctx = self.context
        return await ctx.retry.run(
            call.origin,
            lambda: ctx.circuit_breaker.call(call.origin, fn),
            policy=call.policy.retry,
        )

    async def _static_step(self, call: _Call, escalate: bool) -> AcquiredResult:
        ctx = self.context
        request = RequestSpec(
            url=call.url,
            headers=dict(call.policy.headers),
            timeout=call.policy.timeout,
            origin=call.origin,
            mode="static",
        )
        fetched = await self._transport(call, lambda: ctx.static_backend.fetch(request))
        acquired = self._evaluate(call, fetched.html, fetched.final_url, "static")

        if escalate:
            record = acquired.record
            decision = ctx.render_policy.decide(
                call.url,
                acquired.document,
                completeness=record.completeness() if record is not None else 0.0,
                images_resolved=bool(record is not None and record.get("images")),
                hints=call.policy.acquisition,
            )
            acquired.decision = call.decision = decision
            acquired.result.metadata["render_decision"] = decision.to_dict()
            if decision.should_render:
                ctx.metrics.increment("render_escalations", tags={"origin": call.origin})
                raise Escalate(decision.reason, acquired)
        return acquired

    async def _rendered_step(self, call: _Call, proxy: ProxySettings | None) -> AcquiredResult:
        ctx = self.context
        if ctx.render_backend is None:
            raise RenderBudgetExhausted(call.url)
        if not ctx.render_policy.budget.try_consume():
            ctx.metrics.increment("render_budget_exhausted")
            raise RenderBudgetExhausted(call.url)

        mode = "rendered_proxy" if proxy is not None else "rendered"
        hints = call.policy.acquisition
        request = RequestSpec(
            url=call.url,
            headers=dict(call.policy.headers),
            timeout=call.policy.timeout,
            navigation_timeout=call.policy.navigation_timeout,
            wait_for_selector=hints.wait_for_selector,
            intercept_patterns=signature_patterns(call.origin, ctx.config.api_signatures, hints.api_patterns),
            proxy=proxy,
            origin=call.origin,
            mode=mode,
        )
        rendered = await self._transport(call, lambda: ctx.render_backend.render(request))
        intercepted = interpret_responses(getattr(rendered, "intercepted", []), call.origin)
        if intercepted:
            ctx.metrics.increment("api_interceptions", value=len(intercepted.sources), tags={"origin": call.origin})
        return self._evaluate(call, rendered.html, rendered.final_url, mode, intercepted)

    # -------------------------------------------------------------------------
    # Extraction + quality gate
    # -------------------------------------------------------------------------

    def _evaluate(
        self,
        call: _Call,
        html: str,
        final_url: str | None,
        mode: str,
        intercepted: InterceptedData | None = None,
    ) -> AcquiredResult:
        ctx = self.context
        log = call.log.bind(mode=mode)
        document = Document(html, final_url or call.url)
        record = ctx.coordinator.run(document, call.url)

        raw_candidates = record.raw_fields()
        if intercepted:
            api_fields = dict(intercepted.fields)
            if "images" in api_fields:
                api_fields["images"] = collect_images(
                    api_fields["images"], document.url, ctx.config.extraction.max_images
                )
            filled = record.fill_from(api_fields)
            if filled:
                log.info(f"Filled {filled} from intercepted API data")
            raw_candidates.append(api_fields)

        result = ctx.quality_gate.validate({**record.to_product_dict(), "url": call.url}, raw_candidates)

        strategy_errors = {
            candidate.strategy: list(candidate.errors)
            for candidate in record.candidates
            if not candidate.success and candidate.errors
        }
        if "recipe" in strategy_errors:
            log.warning(f"Recipe extraction failed: {'; '.join(strategy_errors['recipe'])}")

        result.metadata.update(
            {
                "mode": mode,
                "provenance": dict(record.provenance),
                "strategies": [c.strategy for c in record.candidates if c.success],
                "strategy_errors": strategy_errors,
            }
        )
        if intercepted:
            result.metadata["api_sources"] = list(intercepted.sources)

        log.debug(f"{mode}: valid={result.valid} completeness={result.completeness}")
        return AcquiredResult(result=result, mode=mode, document=document, record=record, intercepted=intercepted)

    # -------------------------------------------------------------------------
    # Outcomes
    # -------------------------------------------------------------------------

    def _finish(self, call: _Call, acquired: AcquiredResult, attempts: list[dict[str, Any]]) -> ValidationResult:
        ctx = self.context
        result = acquired.result
        result.metadata.update(
            {
                "origin": call.origin,
                "attempts": attempts,
                "elapsed_ms": round((time.monotonic() - call.started) * 1000, 1),
                "extractor_version": EXTRACTOR_VERSION,
            }
        )
        if call.decision is not None:
            result.metadata.setdefault("render_decision", call.decision.to_dict())
        ctx.metrics.increment("parse_success", tags={"origin": call.origin, "mode": acquired.mode})
        if result.recovered:
            ctx.metrics.increment("parse_recovered", tags={"origin": call.origin})

        if acquired.document is not None and result.product is not None:
            ctx.pattern_memory.record_success(
                call.origin,
                acquired.document,
                result.product.to_dict(),
                result.completeness,
            )

        if ctx.cache is not None:
            self._spawn(ctx.cache.set(cache_key(call.url), result, ctx.config.cache_ttl_seconds))

        call.log.info(f"Parsed via {acquired.mode}: {result.product.name if result.product else '-'}")
        return result

    def _failure(
        self,
        call: _Call,
        issue: FieldIssue,
        best: ValidationResult | AcquiredResult | None,
        attempts: list[dict[str, Any]],
    ) -> ValidationResult:
        self.context.metrics.increment("parse_failure", tags={"origin": call.origin})
        if isinstance(best, AcquiredResult):
            best = best.result

        errors = [issue]
        partial: dict[str, Any] | None = None
        metadata: dict[str, Any] = {}
        if best is not None:
            errors = [*best.errors, issue]
            partial = best.partial or (best.product.to_dict() if best.product is not None else None)
            metadata.update(best.metadata)

        metadata.update(
            {
                "origin": call.origin,
                "attempts": attempts,
                "elapsed_ms": round((time.monotonic() - call.started) * 1000, 1),
                "extractor_version": EXTRACTOR_VERSION,
            }
        )
        return ValidationResult(valid=False, errors=errors, partial=partial, metadata=metadata)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)

        def done(finished: asyncio.Task[Any]) -> None:
            self._background.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                logger.warning(f"Background cache write failed: {finished.exception()}")

        task.add_done_callback(done)
