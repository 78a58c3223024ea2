"""Best-effort learned-selector memory."""

from .pattern_memory import PatternMemory, create_store, discover_selectors
from .stores import JsonFilePatternStore, LearnedPattern, PatternStore, SqlPatternStore

__all__ = [
    "PatternMemory",
    "create_store",
    "discover_selectors",
    "PatternStore",
    "JsonFilePatternStore",
    "SqlPatternStore",
    "LearnedPattern",
]
