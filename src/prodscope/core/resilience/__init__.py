"""Resilience layer: circuit breaker, retry controller, fallback chain."""

from .circuit_breaker import BreakerState, CircuitBreaker, CircuitState
from .fallback import Escalate, FallbackChain, FallbackStep, StepAttempt
from .retry import RetryController, RetryStats, compute_delay, is_retryable

__all__ = [
    "BreakerState",
    "CircuitBreaker",
    "CircuitState",
    "Escalate",
    "FallbackChain",
    "FallbackStep",
    "StepAttempt",
    "RetryController",
    "RetryStats",
    "compute_delay",
    "is_retryable",
]
