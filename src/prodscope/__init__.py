"""
Prodscope - Universal product extraction engine.

Turns arbitrary e-commerce product pages into validated product records
without a hand-written scraper per site.
"""

__version__ = "0.1.0"
__app_name__ = "prodscope"

# Bumped whenever extraction output can change for the same page; part of cache keys.
EXTRACTOR_VERSION = "1.0.0"
