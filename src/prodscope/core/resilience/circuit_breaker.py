"""
Per-origin circuit breaker.

State machine per origin:

    CLOSED --(failures >= threshold within window)--> OPEN
    OPEN --(reset_timeout elapsed, next call)--> HALF_OPEN
    HALF_OPEN --(any failure)--> OPEN
    HALF_OPEN --(half_open_attempts consecutive successes)--> CLOSED

An open circuit rejects calls with CircuitOpenError without running them.
State is mutated only under a lock, so concurrent calls to the same origin
see consistent counters.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter, deque
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from prodscope.core.config.models import CircuitBreakerConfig
from prodscope.core.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CallEvent:
    at: float
    success: bool
    error_type: str | None = None


@dataclass
class Transition:
    at: float
    from_state: BreakerState
    to_state: BreakerState
    failure_count: int


@dataclass
class CircuitState:
    """Mutable breaker state for one origin; lives for the process lifetime."""

    origin: str
    history_size: int = 100
    state: BreakerState = BreakerState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_at: float | None = None
    opened_at: float | None = None
    half_open_in_flight: int = 0
    half_open_successes: int = 0
    rejected: int = 0
    history: deque[CallEvent] = field(init=False)
    transitions: list[Transition] = field(default_factory=list)
    error_types: Counter[str] = field(default_factory=Counter)

    def __post_init__(self) -> None:
        self.history = deque(maxlen=self.history_size)

    def failures_since(self, since: float) -> int:
        return sum(1 for event in self.history if not event.success and event.at >= since)

    def to_dict(self) -> dict[str, Any]:
        return {
            "origin": self.origin,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "last_failure_at": self.last_failure_at,
            "opened_at": self.opened_at,
            "rejected": self.rejected,
            "transitions": [
                {"at": t.at, "from": t.from_state.value, "to": t.to_state.value, "failures": t.failure_count}
                for t in self.transitions
            ],
            "error_types": dict(self.error_types),
        }


class CircuitBreaker:
    """Registry of per-origin circuits sharing one configuration.

    Args:
        config: Global thresholds
        overrides: Per-origin threshold overrides
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        overrides: Mapping[str, CircuitBreakerConfig] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self.overrides = dict(overrides or {})
        self._clock = clock
        self._lock = threading.Lock()
        self._states: dict[str, CircuitState] = {}

    def config_for(self, origin: str) -> CircuitBreakerConfig:
        return self.overrides.get(origin, self.config)

    def _state(self, origin: str) -> CircuitState:
        state = self._states.get(origin)
        if state is None:
            state = CircuitState(origin=origin, history_size=self.config_for(origin).history_size)
            self._states[origin] = state
        return state

    def _transition(self, state: CircuitState, to_state: BreakerState, now: float) -> None:
        if state.state == to_state:
            return
        state.transitions.append(Transition(now, state.state, to_state, state.failure_count))
        logger.info(
            f"Circuit {state.origin}: {state.state.value} -> {to_state.value} "
            f"(failures={state.failure_count})",
            extra={"origin": state.origin},
        )
        state.state = to_state

        if to_state == BreakerState.OPEN:
            state.opened_at = now
            state.half_open_in_flight = 0
            state.half_open_successes = 0
        elif to_state == BreakerState.HALF_OPEN:
            state.half_open_in_flight = 0
            state.half_open_successes = 0
        elif to_state == BreakerState.CLOSED:
            state.failure_count = 0
            state.opened_at = None
            state.half_open_in_flight = 0
            state.half_open_successes = 0

    # -------------------------------------------------------------------------
    # Admission and outcomes
    # -------------------------------------------------------------------------

    def acquire(self, origin: str) -> None:
        """Admit one call or raise CircuitOpenError.

        Raises:
            CircuitOpenError: The circuit is open, or half-open with all
                trial slots taken
        """
        config = self.config_for(origin)
        with self._lock:
            state = self._state(origin)
            now = self._clock()

            if state.state == BreakerState.OPEN:
                elapsed = now - (state.opened_at or now)
                if elapsed < config.reset_timeout:
                    state.rejected += 1
                    raise CircuitOpenError(origin, retry_after=config.reset_timeout - elapsed)
                self._transition(state, BreakerState.HALF_OPEN, now)

            if state.state == BreakerState.HALF_OPEN:
                if state.half_open_in_flight >= config.half_open_attempts:
                    state.rejected += 1
                    raise CircuitOpenError(origin)
                state.half_open_in_flight += 1

    def record_success(self, origin: str) -> None:
        config = self.config_for(origin)
        with self._lock:
            state = self._state(origin)
            now = self._clock()
            state.history.append(CallEvent(now, True))
            state.success_count += 1

            if state.state == BreakerState.HALF_OPEN:
                state.half_open_in_flight = max(state.half_open_in_flight - 1, 0)
                state.half_open_successes += 1
                if state.half_open_successes >= config.half_open_attempts:
                    self._transition(state, BreakerState.CLOSED, now)
            elif state.state == BreakerState.CLOSED:
                state.failure_count = 0

    def record_failure(self, origin: str, error: BaseException | None = None) -> None:
        config = self.config_for(origin)
        with self._lock:
            state = self._state(origin)
            now = self._clock()
            error_type = type(error).__name__ if error is not None else None
            state.history.append(CallEvent(now, False, error_type))
            if error_type:
                state.error_types[error_type] += 1
            state.failure_count += 1
            state.last_failure_at = now

            if state.state == BreakerState.HALF_OPEN:
                self._transition(state, BreakerState.OPEN, now)
            elif state.state == BreakerState.CLOSED:
                recent = state.failures_since(now - config.monitoring_window)
                if state.failure_count >= config.failure_threshold and recent >= config.failure_threshold:
                    self._transition(state, BreakerState.OPEN, now)

    async def call(self, origin: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` through the origin's circuit.

        Args:
            origin: Normalized hostname
            fn: Zero-argument coroutine function performing the work

        Returns:
            Whatever ``fn`` returns

        Raises:
            CircuitOpenError: Without calling ``fn`` when the circuit rejects
        """
        self.acquire(origin)
        try:
            result = await fn()
        except CircuitOpenError:
            self._release(origin)
            raise
        except BaseException as e:
            if isinstance(e, Exception):
                self.record_failure(origin, e)
            else:
                self._release(origin)
            raise
        self.record_success(origin)
        return result

    def _release(self, origin: str) -> None:
        """Free a half-open slot for a call that produced no outcome (cancelled)."""
        with self._lock:
            state = self._state(origin)
            if state.state == BreakerState.HALF_OPEN:
                state.half_open_in_flight = max(state.half_open_in_flight - 1, 0)

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def get_state(self, origin: str) -> BreakerState:
        """Current state. OPEN moves to HALF_OPEN only when the next call is admitted."""
        with self._lock:
            return self._state(origin).state

    def is_open(self, origin: str) -> bool:
        return self.get_state(origin) == BreakerState.OPEN

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {origin: state.to_dict() for origin, state in self._states.items()}

    def reset(self, origin: str | None = None) -> None:
        """Forget state for one origin, or for all origins."""
        with self._lock:
            if origin is None:
                self._states.clear()
            else:
                self._states.pop(origin, None)
