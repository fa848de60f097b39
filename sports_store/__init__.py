"""Sports time-series storage and cost-aware query layer.

Stores player stats, game states, predictions, ownership, injuries and
weather as time-partitioned tables with compression, retention and
continuous rollups, and serves them through a cache that trades freshness
against a daily query spend budget.

Example:
    >>> from sports_store import Settings, SportsDataManager
    >>> manager = SportsDataManager(Settings(db_url="sqlite:///data/sports.db"))
    >>> manager.initialize()
"""

from __future__ import annotations

__version__ = "0.1.0"
__author__ = "Sports Store Team"

# Public API exports
from sports_store.cache.manager import SportsDataManager
from sports_store.config import Settings
from sports_store.storage.query import QueryFilters, QueryRequest
from sports_store.storage.writer import InsertRequest

__all__ = [
    "InsertRequest",
    "QueryFilters",
    "QueryRequest",
    "Settings",
    "SportsDataManager",
    "__author__",
    "__version__",
]
