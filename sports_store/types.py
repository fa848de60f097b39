"""Type definitions, protocols and exceptions for the sports store.

This module defines the closed set of entity kinds, the enums that steer the
query and cache layers, the result containers returned to callers, and the
exception taxonomy. Protocols describe the cache and cost-ledger seams so an
external shared store can stand in for the in-memory implementations.

Example:
    >>> from sports_store.types import EntityType, InsertResult
    >>> EntityType("player_stats") is EntityType.PLAYER_STATS
    True
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Protocol, TypedDict

# =============================================================================
# Enumerations
# =============================================================================


class EntityType(str, Enum):
    """The six time-series entity kinds held by the store."""

    PLAYER_STATS = "player_stats"
    GAME_STATES = "game_states"
    PREDICTIONS = "predictions"
    OWNERSHIP = "ownership"
    INJURIES = "injuries"
    WEATHER = "weather"


class QueryMode(str, Enum):
    """Whether a query reads raw rows or bucketed rollups."""

    RAW = "raw"
    AGGREGATE = "aggregate"


class CacheStrategy(str, Enum):
    """Per-query caching policy."""

    NEVER = "never"
    ALWAYS = "always"
    SMART = "smart"


class Priority(str, Enum):
    """Caller-declared query priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Timeframe(str, Enum):
    """Lookback windows accepted by player aggregate lookups."""

    HOUR = "1h"
    DAY = "1d"
    WEEK = "7d"
    MONTH = "30d"
    SEASON = "season"


class AggregateSource(str, Enum):
    """Relation that served an aggregate query."""

    DAILY_VIEW = "player_stats_daily"
    WEEKLY_VIEW = "player_stats_weekly"
    RAW = "player_stats"


# =============================================================================
# Protocols (Interfaces)
# =============================================================================


class CacheBackend(Protocol):
    """Protocol for query-result caches."""

    def get(self, key: str) -> Any | None:
        """Return a live cached value or None."""
        ...

    def set(self, key: str, data: Any, ttl_seconds: int) -> None:
        """Store a value for ttl_seconds."""
        ...

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with prefix."""
        ...

    def sweep_expired(self) -> int:
        """Drop expired entries."""
        ...

    def clear(self) -> None:
        """Drop all entries."""
        ...

    def stats(self) -> CacheStats:
        """Return a snapshot of the cache counters."""
        ...


class CostTracker(Protocol):
    """Protocol for the daily query cost ledger."""

    def record(self, cost: float) -> float:
        """Add cost to today's tally and return the new total."""
        ...

    def today(self) -> DailyCost:
        """Return today's tally."""
        ...

    def month_to_date(self) -> DailyCost:
        """Return the tally summed over the current month."""
        ...

    def clear(self) -> None:
        """Forget all recorded cost."""
        ...


# =============================================================================
# TypedDicts for Structured Data
# =============================================================================


class CleanupReport(TypedDict):
    """Outcome of a retention cleanup pass."""

    deleted_rows: int
    per_table: dict[str, int]
    database_size: int


class PolicyRecord(TypedDict):
    """A registered compression, retention or refresh policy."""

    table_name: str
    policy_type: str
    interval: str


# =============================================================================
# Dataclasses
# =============================================================================


@dataclass(frozen=True)
class InsertResult:
    """Counts returned by a batch write.

    Attributes:
        inserted: Points written (inserted or merged).
        deduplicated: Points collapsed by in-batch deduplication.
        errors: Points dropped by row-level validation.
    """

    inserted: int = 0
    deduplicated: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class AggregateBucket:
    """One rollup row for a player over a daily or weekly bucket."""

    bucket: datetime
    player_id: str
    team: str
    position: str
    avg_fantasy_points: float
    max_fantasy_points: float
    min_fantasy_points: float
    fp_stddev: float | None
    total_fantasy_points: float
    sum_sq_fantasy_points: float
    total_snaps: int
    game_count: int


@dataclass(frozen=True)
class PlayerAggregates:
    """Pooled aggregate statistics for one player.

    Attributes:
        avg_fantasy_points: Mean fantasy points across games.
        total_fantasy_points: Sum of fantasy points.
        total_snap_count: Sum of snaps played.
        consistency_score: 100 minus the coefficient of variation in percent,
            floored at zero and rounded to a whole number.
        recent_trend: Relative distance of the latest game from the mean.
        game_count: Number of games pooled.
    """

    avg_fantasy_points: float = 0.0
    total_fantasy_points: float = 0.0
    total_snap_count: int = 0
    consistency_score: float = 0.0
    recent_trend: float = 0.0
    game_count: int = 0

    def to_dict(self) -> dict[str, float | int]:
        return asdict(self)


@dataclass
class DailyCost:
    """Cost tally for one UTC day."""

    day: date
    cost: float = 0.0
    queries: int = 0


@dataclass
class CacheStats:
    """Cache counters."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    invalidations: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, float | int]:
        data: dict[str, float | int] = asdict(self)
        data["hit_rate"] = round(self.hit_rate, 4)
        return data


@dataclass
class CostMetrics:
    """Spend and storage summary with optimization recommendations."""

    daily_cost: float
    monthly_cost: float
    monthly_projection: float
    query_count: int
    storage_estimate: float
    compression_ratio: float
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# Exceptions
# =============================================================================


class SportsStoreError(Exception):
    """Base exception for sports store errors."""


class PointValidationError(SportsStoreError):
    """A single point failed validation and was dropped from its batch."""


class InvalidQueryError(SportsStoreError, ValueError):
    """A query request is malformed or targets an unsupported view."""


class TransactionError(SportsStoreError):
    """A batch write failed and was rolled back; nothing was persisted."""


class ConnectivityError(SportsStoreError):
    """The database could not be reached or did not answer in time."""


class CostLimitExceeded(SportsStoreError):
    """Today's query spend reached the daily limit; the query was refused."""

    def __init__(self, current_cost: float, limit: float) -> None:
        self.current_cost = current_cost
        self.limit = limit
        super().__init__(
            f"Daily cost limit exceeded: ${current_cost:.4f} of ${limit:.4f}"
        )


class SchemaInitializationError(SportsStoreError):
    """Schema initialization failed at a named DDL step."""

    def __init__(self, step: str, message: str) -> None:
        self.step = step
        super().__init__(f"Schema initialization failed at {step}: {message}")
