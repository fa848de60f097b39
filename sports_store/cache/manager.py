"""Service facade combining storage, caching and cost control.

``SportsDataManager`` is the single entry point callers use. It owns the
database pool, the schema manager, the write and query paths, the result
cache and the cost ledger. Every query is checked against the daily spend
ceiling before anything else happens; the cache strategy then decides
whether to read and store results.

Example:
    >>> from sports_store.cache.manager import SportsDataManager
    >>> manager = SportsDataManager(Settings(db_url="sqlite:///data/sports.db"))
    >>> manager.initialize()
    >>> manager.get_aggregates("P1", Timeframe.MONTH).game_count
    0
    >>> manager.close()
"""
from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from dataclasses import asdict, fields
from datetime import date, datetime
from typing import Any

import pandas as pd

from sports_store.cache.ledger import CostLedger, utcnow
from sports_store.cache.store import CacheSweeper, QueryCache
from sports_store.config import Settings
from sports_store.events import (
    CacheInvalidated,
    CostWarning,
    DataInserted,
    DataQueried,
    EventPublisher,
    SchemaInitialized,
)
from sports_store.logging import WARN
from sports_store.storage.db import Database
from sports_store.storage.partitions import SchemaManager
from sports_store.storage.points import BasePoint, get_spec
from sports_store.storage.query import QueryPath, QueryRequest, resolve_range
from sports_store.storage.schema import ensure_utc
from sports_store.storage.writer import InsertRequest, WritePath
from sports_store.types import (
    AggregateBucket,
    CacheBackend,
    CacheStats,
    CacheStrategy,
    CleanupReport,
    CostLimitExceeded,
    CostMetrics,
    CostTracker,
    EntityType,
    InsertResult,
    PlayerAggregates,
    Priority,
    QueryMode,
    SportsStoreError,
    Timeframe,
)

logger = logging.getLogger(__name__)

# Results larger than this are cached under the smart strategy even at low priority
LARGE_RESULT_ROWS = 100
# Projection horizon for monthly cost
DAYS_PER_MONTH = 30
# Daily query volume above which batching is recommended
HIGH_QUERY_VOLUME = 1000
# Compression ratio reported while compression policies are active
ASSUMED_COMPRESSION_RATIO = 0.9
BYTES_PER_GB = 1024 ** 3


def build_cache_key(request: QueryRequest) -> str:
    """Return the canonical cache key for a query.

    Equivalent requests always map to the same key regardless of the order
    their filters were supplied in.

    Example:
        >>> build_cache_key(request).split(":", 1)[0]
        'player_stats'
    """
    payload = {"mode": request.mode.value, **request.filters.model_dump(mode="json")}
    return f"{request.entity_type.value}:{_canonical(payload)}"


def aggregate_cache_key(
    player_id: str,
    timeframe: Timeframe,
    start_time: datetime | None,
    end_time: datetime | None,
) -> str:
    """Return the cache key for a player aggregate lookup.

    Relative lookups key on the timeframe alone, so they are served from the
    cache until the entry expires or a player_stats write invalidates it.
    """
    bounds = ":".join(
        ensure_utc(value).isoformat() if value else ""
        for value in (start_time, end_time)
    )
    return (
        f"{EntityType.PLAYER_STATS.value}:aggregates:"
        f"{player_id}:{timeframe.value}:{bounds}"
    )


def _canonical(payload: dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def cost_recommendations(
    monthly_projection: float,
    monthly_budget: float,
    query_count: int,
) -> list[str]:
    """Return spend-reduction advice for the current usage pattern."""
    recommendations: list[str] = []
    if monthly_projection > monthly_budget * 0.8:
        recommendations.append("Enable aggressive caching to reduce query costs")
        recommendations.append("Consider increasing compression intervals")
    if query_count > HIGH_QUERY_VOLUME:
        recommendations.append("Implement query batching for efficiency")
        recommendations.append("Review query patterns for optimization opportunities")
    return recommendations


class SportsDataManager:
    """Cost-aware storage service for sports time-series data.

    Attributes:
        settings: Store configuration.
        database: Database wrapper owning the connection pool.
        publisher: Event publisher for store side effects.
        cache: Query-result cache.
        ledger: Per-day query cost ledger.
        schema: Schema and policy manager.
        writer: Batch write path.
        queries: Raw and aggregate query path.
    """

    def __init__(
        self,
        settings: Settings,
        database: Database | None = None,
        publisher: EventPublisher | None = None,
        cache: CacheBackend | None = None,
        ledger: CostTracker | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Wire the store components from settings.

        Args:
            settings: Store configuration.
            database: Pre-built database (defaults to one built from settings).
            publisher: Event publisher (defaults to a private one).
            cache: Cache backend (defaults to an in-memory QueryCache).
            ledger: Cost tracker (defaults to an in-memory CostLedger).
            clock: UTC clock used for cost days and aggregate windows.
        """
        self.settings = settings
        self.database = database if database is not None else Database(settings)
        self.publisher = publisher if publisher is not None else EventPublisher()
        self.cache: CacheBackend = (
            cache if cache is not None else QueryCache(settings.cache_max_entries)
        )
        self.ledger: CostTracker = (
            ledger if ledger is not None else CostLedger(clock=clock)
        )
        self.schema = SchemaManager(self.database, settings)
        self.writer = WritePath(self.database)
        self.queries = QueryPath(self.database, settings)
        self.sweeper = CacheSweeper(self.cache, settings.cache_sweep_interval)
        self.logger = logging.getLogger(self.__class__.__name__)

        self._clock = clock
        self._ready = False
        self._warned_day: date | None = None
        self._warning_lock = threading.Lock()

    def __enter__(self) -> SportsDataManager:
        self.initialize()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def is_ready(self) -> bool:
        return self._ready

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def initialize(self) -> None:
        """Initialize the schema and start accepting traffic.

        Raises:
            SchemaInitializationError: A DDL step failed; the store stays unready.
            ConnectivityError: The database could not be reached.
        """
        if self._ready:
            return
        steps = self.schema.initialize_schema()
        self.sweeper.start()
        self._ready = True
        self.publisher.publish(SchemaInitialized(steps=steps))
        self.logger.info("Sports data manager ready")

    def close(self) -> None:
        """Stop the sweeper, clear in-memory state and release the pool."""
        self._ready = False
        self.sweeper.stop()
        self.cache.clear()
        self.ledger.clear()
        self.database.dispose()
        self.logger.info("Sports data manager closed")

    def _require_ready(self) -> None:
        if not self._ready:
            raise SportsStoreError("Store is not initialized; call initialize() first")

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def insert_data(self, request: InsertRequest) -> InsertResult:
        """Write a batch and invalidate cached reads for its entity.

        Raises:
            TransactionError: The batch was rolled back.
            ConnectivityError: The database could not be reached.
        """
        self._require_ready()
        result = self.writer.insert(request)
        if result.inserted:
            self.invalidate(request.entity_type)
        self.publisher.publish(
            DataInserted(
                entity_type=request.entity_type,
                inserted=result.inserted,
                deduplicated=result.deduplicated,
                errors=result.errors,
                source=request.source,
            )
        )
        return result

    def invalidate(self, entity_type: EntityType | str) -> int:
        """Drop every cached result for an entity type.

        Returns:
            Number of cache entries removed.
        """
        prefix = f"{EntityType(entity_type).value}:"
        removed = self.cache.invalidate_prefix(prefix)
        self.publisher.publish(CacheInvalidated(prefix=prefix, removed=removed))
        return removed

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def query_data(self, request: QueryRequest) -> list[BasePoint] | list[AggregateBucket]:
        """Run a query under the cache strategy and the daily spend ceiling.

        Raises:
            InvalidQueryError: The request cannot be served.
            CostLimitExceeded: Today's spend reached the daily limit.
            ConnectivityError: The database could not be reached.
        """
        self._require_ready()
        self.queries.validate(request)
        current_cost = self._check_budget()

        strategy = self._strategy_for(request)
        key = build_cache_key(request)
        if self._should_read(strategy, current_cost):
            cached = self.cache.get(key)
            if cached is not None:
                self.publisher.publish(
                    DataQueried(
                        entity_type=request.entity_type,
                        result_count=len(cached),
                        cached=True,
                    )
                )
                return list(cached)

        results = self.queries.execute(request)
        self.ledger.record(self.query_cost(len(results)))
        if self._should_store(strategy, request.priority, len(results)):
            self.cache.set(key, results, self.settings.cache_default_ttl)

        self.publisher.publish(
            DataQueried(
                entity_type=request.entity_type,
                result_count=len(results),
                cached=False,
            )
        )
        return results

    def query_frame(self, request: QueryRequest) -> pd.DataFrame:
        """Run a query and return the results as a DataFrame."""
        rows = self.query_data(request)
        if request.mode is QueryMode.AGGREGATE:
            columns = [f.name for f in fields(AggregateBucket)]
            records = [asdict(row) for row in rows]
        else:
            columns = list(get_spec(request.entity_type).point_model.model_fields)
            records = [row.model_dump() for row in rows]
        return pd.DataFrame.from_records(records, columns=columns)

    def get_aggregates(
        self,
        player_id: str,
        timeframe: Timeframe | str = Timeframe.WEEK,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> PlayerAggregates:
        """Return pooled fantasy aggregates for a player, cached for an hour.

        Args:
            player_id: Player to summarize.
            timeframe: Lookback window (1h, 1d, 7d, 30d or season).
            start_time: Explicit range start; overrides the timeframe.
            end_time: Explicit range end.

        Raises:
            CostLimitExceeded: Today's spend reached the daily limit.
        """
        self._require_ready()
        timeframe = Timeframe(timeframe)
        self._check_budget()

        key = aggregate_cache_key(player_id, timeframe, start_time, end_time)
        if self.settings.cache_enabled:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        filters = resolve_range(player_id, timeframe, start_time, end_time, self._clock())
        aggregates = self.queries.get_player_aggregates(
            player_id,
            start_time=filters.start_time,
            end_time=filters.end_time,
        )
        self.ledger.record(self.query_cost(aggregates.game_count))
        if self.settings.cache_enabled:
            self.cache.set(key, aggregates, self.settings.aggregate_cache_ttl)
        return aggregates

    # -------------------------------------------------------------------------
    # Cost control
    # -------------------------------------------------------------------------

    def query_cost(self, result_count: int) -> float:
        """Return the charge for a query that returned result_count rows."""
        return self.settings.base_query_cost + result_count * self.settings.per_row_cost

    def _check_budget(self) -> float:
        """Refuse work past the daily limit; warn once a day near it.

        Returns:
            Today's cost so far.
        """
        today = self.ledger.today()
        limit = self.settings.daily_cost_limit
        if today.cost >= limit:
            self.logger.warning(
                f"{WARN} Daily cost limit reached: ${today.cost:.4f} of ${limit:.2f}"
            )
            raise CostLimitExceeded(today.cost, limit)

        threshold = self.settings.cost_warning_threshold
        if today.cost >= limit * threshold:
            with self._warning_lock:
                first_warning = self._warned_day != today.day
                self._warned_day = today.day
            if first_warning:
                self.logger.warning(
                    f"{WARN} Daily cost at {today.cost / limit:.0%} of limit"
                )
                self.publisher.publish(
                    CostWarning(current_cost=today.cost, limit=limit, threshold=threshold)
                )
        return today.cost

    def _strategy_for(self, request: QueryRequest) -> CacheStrategy:
        if not self.settings.cache_enabled:
            return CacheStrategy.NEVER
        return request.cache_strategy or self.settings.cache_default_strategy

    def _should_read(self, strategy: CacheStrategy, current_cost: float) -> bool:
        if strategy is CacheStrategy.NEVER:
            return False
        if strategy is CacheStrategy.ALWAYS:
            return True
        if self.settings.cache_cost_optimization:
            return current_cost > (
                self.settings.daily_cost_limit * self.settings.smart_cache_threshold
            )
        return self.settings.cache_enabled

    def _should_store(
        self, strategy: CacheStrategy, priority: Priority, result_count: int
    ) -> bool:
        if strategy is CacheStrategy.NEVER:
            return False
        if strategy is CacheStrategy.ALWAYS:
            return True
        return result_count > LARGE_RESULT_ROWS or priority is not Priority.LOW

    # -------------------------------------------------------------------------
    # Reporting and maintenance
    # -------------------------------------------------------------------------

    def get_cost_metrics(self) -> CostMetrics:
        """Return spend, storage and optimization advice."""
        today = self.ledger.today()
        month = self.ledger.month_to_date()
        projection = today.cost * DAYS_PER_MONTH
        storage_gb = self.database.database_size_bytes() / BYTES_PER_GB
        return CostMetrics(
            daily_cost=today.cost,
            monthly_cost=month.cost,
            monthly_projection=projection,
            query_count=today.queries,
            storage_estimate=round(storage_gb, 6),
            compression_ratio=(
                ASSUMED_COMPRESSION_RATIO if self.settings.compression_enabled else 0.0
            ),
            recommendations=cost_recommendations(
                projection, self.settings.monthly_cost_budget, today.queries
            ),
        )

    def get_cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def cleanup_old_data(self, now: datetime | None = None) -> CleanupReport:
        """Apply retention now and drop cached reads for affected entities."""
        self._require_ready()
        report = self.schema.cleanup_old_data(now or self._clock())
        for entity in EntityType:
            if report["per_table"].get(get_spec(entity).table_name):
                self.invalidate(entity)
        return report
