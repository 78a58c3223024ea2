"""Extraction strategies and the coordinator that merges their output."""

from .base import CANONICAL_FIELDS, Document, ExtractionCandidate, ExtractionStrategy, StrategyResult
from .coordinator import MergedRecord, StrategyCoordinator, field_validators, merge_candidates
from .heuristic import HeuristicExtractor
from .meta_tags import MetaTagExtractor
from .microdata import MicrodataExtractor
from .recipe import RecipeExtractor
from .structured import StructuredExtractor

__all__ = [
    "CANONICAL_FIELDS",
    "Document",
    "ExtractionCandidate",
    "ExtractionStrategy",
    "StrategyResult",
    "MergedRecord",
    "StrategyCoordinator",
    "field_validators",
    "merge_candidates",
    "StructuredExtractor",
    "RecipeExtractor",
    "MicrodataExtractor",
    "MetaTagExtractor",
    "HeuristicExtractor",
]
