"""CLI command modules."""

from . import origins, parse, recipes

__all__ = [
    "origins",
    "parse",
    "recipes",
]
