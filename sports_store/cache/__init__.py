"""Cost-aware caching tier.

Submodules:
    store: In-memory TTL cache with FIFO eviction
    ledger: Per-UTC-day query cost ledger
    manager: Service facade tying storage, cache and cost control together
"""
from __future__ import annotations

from sports_store.cache.ledger import CostLedger
from sports_store.cache.manager import SportsDataManager, build_cache_key
from sports_store.cache.store import CacheEntry, CacheSweeper, QueryCache

__all__ = [
    "CacheEntry",
    "CacheSweeper",
    "CostLedger",
    "QueryCache",
    "SportsDataManager",
    "build_cache_key",
]
