"""
Fallback chain over acquisition strategies.

Steps run in order (static fetch, rendered fetch, rendered with proxy,
dedicated scraper) until one produces a result that clears the quality
gate. A step may also hand back a usable result while asking for a
costlier step (``Escalate``); that result is kept as the fallback if every
later step fails or the origin circuit opens.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from prodscope.core.errors import CircuitOpenError, ExhaustedFallbackError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Escalate(Exception):
    """A step produced a provisional result; try the next step."""

    def __init__(self, reason: str, result: Any = None):
        super().__init__(reason)
        self.reason = reason
        self.result = result


@dataclass
class FallbackStep(Generic[T]):
    """One acquisition mode in the chain."""

    name: str
    run: Callable[[], Awaitable[T]]
    enabled: bool = True


@dataclass
class StepAttempt:
    """What happened to one step, for diagnostics."""

    step: str
    status: str  # accepted, rejected, escalated, failed, skipped
    detail: str | None = None
    elapsed_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "status": self.status,
            "detail": self.detail,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }


class FallbackChain(Generic[T]):
    """Ordered acquisition steps with short-circuit on the first accepted result.

    Args:
        steps: Steps in escalation order
        accept: Whether a result clears the quality gate
        rank: Score used to keep the best rejected result (higher wins)
    """

    def __init__(
        self,
        steps: Sequence[FallbackStep[T]],
        accept: Callable[[T], bool],
        rank: Callable[[T], float] | None = None,
    ):
        self.steps = list(steps)
        self.accept = accept
        self.rank = rank or (lambda _result: 0.0)
        self.attempts: list[StepAttempt] = []
        self.best: T | None = None
        self.provisional: T | None = None

    def _keep_best(self, candidate: T | None) -> None:
        if candidate is None:
            return
        if self.best is None or self.rank(candidate) > self.rank(self.best):
            self.best = candidate

    async def run(self) -> T:
        """Run steps until one result is accepted.

        ``best`` and ``provisional`` are kept on the instance as steps
        complete, so a caller that abandons the run (per-call timeout) can
        still use them.

        Returns:
            The first accepted result, or an accepted provisional result when
            every later step failed or the circuit opened

        Raises:
            CircuitOpenError: The origin's circuit is open and no provisional
                result exists; ``best_result`` carries the best rejected result
            ExhaustedFallbackError: No step produced an accepted result; chained
                from the last step error
        """
        last_error: Exception | None = None

        for step in self.steps:
            if not step.enabled:
                self.attempts.append(StepAttempt(step.name, "skipped"))
                continue

            start = time.monotonic()
            try:
                result = await step.run()
            except CircuitOpenError as e:
                self.attempts.append(StepAttempt(step.name, "failed", "circuit open", _elapsed(start)))
                if self.provisional is not None:
                    logger.info(f"{e}; using the provisional result")
                    return self.provisional
                e.best_result = self.best
                raise
            except Escalate as e:
                self.attempts.append(StepAttempt(step.name, "escalated", e.reason, _elapsed(start)))
                logger.debug(f"Fallback step {step.name} escalated: {e.reason}")
                if e.result is not None and self.accept(e.result) and self.provisional is None:
                    self.provisional = e.result
                self._keep_best(e.result)
                continue
            except Exception as e:
                last_error = e
                self.attempts.append(
                    StepAttempt(step.name, "failed", f"{type(e).__name__}: {e}", _elapsed(start))
                )
                logger.info(f"Fallback step {step.name} failed: {e}")
                continue

            if self.accept(result):
                self.attempts.append(StepAttempt(step.name, "accepted", elapsed_ms=_elapsed(start)))
                return result

            self.attempts.append(StepAttempt(step.name, "rejected", "quality gate", _elapsed(start)))
            self._keep_best(result)

        if self.provisional is not None:
            logger.info("Escalation did not improve on the provisional result; using it")
            return self.provisional

        tried = [a.step for a in self.attempts if a.status != "skipped"]
        raise ExhaustedFallbackError(
            f"All acquisition strategies failed ({', '.join(tried) or 'none enabled'})",
            last_error=last_error,
            best_result=self.best,
            attempts=[a.to_dict() for a in self.attempts],
        ) from last_error


def _elapsed(start: float) -> float:
    return (time.monotonic() - start) * 1000
