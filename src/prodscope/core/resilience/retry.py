"""
Retry controller with tenacity.

Wraps one unit of work with bounded retries, exponential backoff
(``base * factor^attempt`` capped at ``max_delay``) and +/- jitter.
Non-retryable errors abort immediately.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections import defaultdict
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from prodscope.core.config.models import RetryPolicy
from prodscope.core.errors import AcquisitionError, CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = {408, 429}


# =============================================================================
# Error Classification
# =============================================================================


def is_retryable_status(status_code: int | None) -> bool:
    if status_code is None:
        return False
    return status_code in RETRYABLE_STATUS_CODES or status_code >= 500


def is_retryable(error: BaseException) -> bool:
    """Classify an error for the retry controller.

    Retryable: connection resets and timeouts, HTTP 408/429/5xx, navigation
    timeouts. Everything else, including other 4xx and open circuits,
    aborts immediately.
    """
    if isinstance(error, CircuitOpenError):
        return False
    if isinstance(error, AcquisitionError):
        if error.retryable is not None:
            return error.retryable
        if error.status_code is not None:
            return is_retryable_status(error.status_code)
        return False
    if isinstance(error, httpx.HTTPStatusError):
        return is_retryable_status(error.response.status_code)
    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return True
    return isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError))


# =============================================================================
# Backoff
# =============================================================================


def compute_delay(policy: RetryPolicy, attempt: int, rng: random.Random | None = None) -> float:
    """Delay before retry number ``attempt + 1``.

    Args:
        policy: Retry policy
        attempt: Zero-based index of the failed attempt
        rng: Random source for jitter; no jitter when the policy's jitter is 0

    Returns:
        ``min(base * factor^attempt, max_delay)`` scaled by a random factor in
        ``[1 - jitter, 1 + jitter]`` and clamped to ``[0, max_delay]``
    """
    delay = min(policy.base_delay * policy.factor**attempt, policy.max_delay)
    if policy.jitter:
        rng = rng or random
        delay *= 1 + rng.uniform(-policy.jitter, policy.jitter)
    return max(0.0, min(delay, policy.max_delay))


class wait_backoff_jitter(wait_base):
    """Tenacity wait strategy using ``compute_delay``.

    A RateLimitError's ``retry_after`` raises the delay, still capped at
    ``max_delay``.
    """

    def __init__(self, policy: RetryPolicy, rng: random.Random | None = None):
        self.policy = policy
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = compute_delay(self.policy, retry_state.attempt_number - 1, self.rng)
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            retry_after = getattr(outcome.exception(), "retry_after", None)
            if retry_after:
                delay = min(max(delay, float(retry_after)), self.policy.max_delay)
        return delay


# =============================================================================
# Retry Controller
# =============================================================================


@dataclass
class RetryStats:
    """Per-origin counters."""

    attempts: int = 0
    successes: int = 0
    failures: int = 0
    retries: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempts": self.attempts,
            "successes": self.successes,
            "failures": self.failures,
            "retries": self.retries,
            "last_error": self.last_error,
        }


class RetryController:
    """Bounded retries with origin-tunable budgets.

    Args:
        policy: Global default policy
        overrides: Per-origin policies
        sleep: Async sleep used between attempts, injectable for tests
        rng: Random source for jitter
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        overrides: Mapping[str, RetryPolicy] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self.policy = policy or RetryPolicy()
        self.overrides = dict(overrides or {})
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._stats: dict[str, RetryStats] = defaultdict(RetryStats)

    def policy_for(self, origin: str) -> RetryPolicy:
        return self.overrides.get(origin, self.policy)

    async def run(
        self,
        origin: str,
        fn: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
    ) -> T:
        """Run ``fn`` with retries.

        Args:
            origin: Normalized hostname, selects the policy and stats bucket
            fn: Zero-argument coroutine function performing one attempt
            policy: Explicit policy, overriding the origin lookup

        Returns:
            Result of the first successful attempt

        Raises:
            The last error once attempts are exhausted, or the first
            non-retryable error
        """
        policy = policy or self.policy_for(origin)
        stats = self._stats[origin]
        log_retry = before_sleep_log(logger, logging.WARNING)

        def before_sleep(retry_state: RetryCallState) -> None:
            stats.retries += 1
            log_retry(retry_state)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_backoff_jitter(policy, self._rng),
            retry=retry_if_exception(is_retryable),
            before_sleep=before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    stats.attempts += 1
                    result = await fn()
        except Exception as e:
            stats.failures += 1
            stats.last_error = f"{type(e).__name__}: {e}"
            raise

        stats.successes += 1
        return result

    def get_stats(self, origin: str) -> RetryStats:
        return self._stats[origin]

    def stats(self) -> dict[str, dict[str, Any]]:
        return {origin: stats.to_dict() for origin, stats in self._stats.items()}
