"""
Error taxonomy for the extraction engine.

Acquisition errors feed the retry controller and circuit breaker, extraction
errors stay inside one strategy, validation errors may be rescued, and the
last two are terminal signals for a single parse call.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from prodscope.core.quality.gate import ValidationResult


class ProdscopeError(Exception):
    """Base class for all engine errors."""


class AcquisitionError(ProdscopeError):
    """Network, timeout or HTTP status failure while acquiring a page."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        cause: Exception | None = None,
        retryable: bool | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.url = url
        self.status_code = status_code
        self.cause = cause
        self.retryable = retryable

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code:
            parts.append(f"(status={self.status_code})")
        if self.url:
            parts.append(f"[{self.url}]")
        return " ".join(parts)


class ExtractionError(ProdscopeError):
    """A single strategy failed; never aborts the whole run."""

    def __init__(self, message: str, strategy: str | None = None):
        super().__init__(message)
        self.message = message
        self.strategy = strategy


class ValidationError(ProdscopeError):
    """Quality gate rejected a record after rescue."""

    def __init__(self, message: str, result: "ValidationResult | None" = None):
        super().__init__(message)
        self.message = message
        self.result = result

    @property
    def errors(self) -> list[dict[str, Any]]:
        if self.result is None:
            return []
        return [issue.to_dict() for issue in self.result.errors]


class CircuitOpenError(ProdscopeError):
    """Fast-fail: the origin's circuit is open, no work was performed."""

    def __init__(self, origin: str, retry_after: float | None = None):
        message = f"Circuit open for {origin}"
        if retry_after is not None:
            message += f", retry in {retry_after:.1f}s"
        super().__init__(message)
        self.origin = origin
        self.retry_after = retry_after
        # Set by the fallback chain when earlier steps left a rejected result
        self.best_result: Any = None


class ExhaustedFallbackError(ProdscopeError):
    """Every acquisition strategy in the fallback chain failed."""

    def __init__(
        self,
        message: str,
        last_error: Exception | None = None,
        best_result: "ValidationResult | None" = None,
        attempts: list[Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.last_error = last_error
        self.best_result = best_result
        self.attempts = attempts or []
