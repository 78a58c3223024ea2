"""Orchestrator - one parse call from URL to validated product."""

from .parser import AcquiredResult, ProductParser, cache_key

__all__ = [
    "AcquiredResult",
    "ProductParser",
    "cache_key",
]
