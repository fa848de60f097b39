"""Raw and aggregate reads over the hypertables.

Raw queries return typed points newest first. Aggregate queries return
PlayerStat rollup buckets, read from the daily view, the weekly view, or
computed on the fly from raw rows depending on the width of the window:

====================  ===========================
Window                Source
====================  ===========================
<= 1 day              ``player_stats_daily``
> 7 days              ``player_stats_weekly``
otherwise             daily buckets from raw rows
====================  ===========================

Both thresholds come from ``Settings``.

Example:
    >>> from sports_store.storage.query import QueryFilters, QueryPath, QueryRequest
    >>> path = QueryPath(database, settings)
    >>> stats = path.execute(QueryRequest(
    ...     entity_type=EntityType.PLAYER_STATS,
    ...     filters=QueryFilters(start_time=start, end_time=end, player_id="P1"),
    ... ))
"""
from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import Float, Integer, String, bindparam, select, text
from sqlalchemy.sql import FromClause, Select

from sports_store.config import Settings
from sports_store.storage.db import Database
from sports_store.storage.models import PlayerStat
from sports_store.storage.partitions import (
    DAILY_ROLLUP,
    ROLLUP_TABLES,
    WEEKLY_ROLLUP,
    floor_to_bucket,
    rollup_sql,
)
from sports_store.storage.points import BasePoint, get_spec, point_from_row
from sports_store.storage.schema import UtcDateTime, ensure_utc
from sports_store.types import (
    AggregateBucket,
    AggregateSource,
    CacheStrategy,
    EntityType,
    InvalidQueryError,
    PlayerAggregates,
    Priority,
    QueryMode,
    Timeframe,
)

logger = logging.getLogger(__name__)

# Equality filters, in the order they are applied
EQUALITY_FILTERS = (
    "player_id",
    "game_id",
    "team",
    "position",
    "season",
    "week",
    "model_id",
    "contest_type",
)

# Columns an aggregate query can filter on
AGGREGATE_FILTERS = frozenset({"player_id", "team", "position"})

TIMEFRAME_WINDOWS: dict[Timeframe, timedelta] = {
    Timeframe.HOUR: timedelta(hours=1),
    Timeframe.DAY: timedelta(days=1),
    Timeframe.WEEK: timedelta(days=7),
    Timeframe.MONTH: timedelta(days=30),
    Timeframe.SEASON: timedelta(days=365),
}


# =============================================================================
# Request Models
# =============================================================================


class QueryFilters(BaseModel):
    """Time range and equality filters for a query.

    Attributes:
        start_time: Inclusive lower bound on ``timestamp``.
        end_time: Inclusive upper bound on ``timestamp``.
        limit: Maximum rows returned.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )

    start_time: datetime
    end_time: datetime
    player_id: str | None = None
    game_id: str | None = None
    team: str | None = None
    position: str | None = None
    season: int | None = None
    week: int | None = None
    model_id: str | None = None
    contest_type: str | None = None
    limit: int | None = Field(default=None, ge=1)

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_time(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode="after")
    def check_range(self) -> QueryFilters:
        if self.start_time > self.end_time:
            raise ValueError("start_time must not be after end_time")
        return self

    @property
    def window(self) -> timedelta:
        return self.end_time - self.start_time

    def equality_filters(self) -> dict[str, Any]:
        """Return the equality filters that were set."""
        return {
            name: getattr(self, name)
            for name in EQUALITY_FILTERS
            if getattr(self, name) is not None
        }


class QueryRequest(BaseModel):
    """A read against one entity type.

    Attributes:
        entity_type: Entity to read.
        filters: Time range and equality filters.
        mode: Raw rows or rollup buckets.
        cache_strategy: Caching policy; None uses the configured default.
        priority: Caller priority, consulted when storing results.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    entity_type: EntityType
    filters: QueryFilters
    mode: QueryMode = QueryMode.RAW
    cache_strategy: CacheStrategy | None = None
    priority: Priority = Priority.MEDIUM


# =============================================================================
# Derived Metrics
# =============================================================================


def pooled_stddev(count: int, total: float, sum_sq: float) -> float | None:
    """Sample standard deviation from a count, sum and sum of squares.

    Returns None when fewer than two values were pooled.
    """
    if count < 2:
        return None
    variance = (sum_sq - total * total / count) / (count - 1)
    return math.sqrt(max(variance, 0.0))


def consistency_score(mean: float, stddev: float | None, count: int) -> float:
    """Return 100 minus the coefficient of variation in percent, floored at 0.

    The score is a whole number; halves round up.

    Example:
        >>> consistency_score(20.0, 10.0, 3)
        50.0
    """
    if count < 2 or stddev is None or mean == 0:
        return 0.0
    score = max(0.0, 100.0 - (stddev / mean) * 100.0)
    return float(math.floor(score + 0.5))


def recent_trend(latest: float | None, mean: float) -> float:
    """Return how far the latest value sits from the mean, relative to it.

    Example:
        >>> recent_trend(30.0, 20.0)
        0.5
    """
    if latest is None or mean == 0:
        return 0.0
    return round((latest - mean) / mean, 2)


def summarize_buckets(
    buckets: Sequence[AggregateBucket], latest: float | None
) -> PlayerAggregates:
    """Pool rollup buckets into a single set of player aggregates."""
    count = sum(b.game_count for b in buckets)
    if count == 0:
        return PlayerAggregates()
    total = sum(b.total_fantasy_points for b in buckets)
    sum_sq = sum(b.sum_sq_fantasy_points for b in buckets)
    mean = total / count
    stddev = pooled_stddev(count, total, sum_sq)
    return PlayerAggregates(
        avg_fantasy_points=mean,
        total_fantasy_points=total,
        total_snap_count=sum(b.total_snaps for b in buckets),
        consistency_score=consistency_score(mean, stddev, count),
        recent_trend=recent_trend(latest, mean),
        game_count=count,
    )


# =============================================================================
# Query Path
# =============================================================================


class QueryPath:
    """Executes raw and aggregate reads.

    Attributes:
        database: Database wrapper.
        settings: Store configuration (aggregate routing thresholds).
    """

    def __init__(self, database: Database, settings: Settings) -> None:
        self.database = database
        self.settings = settings
        self.logger = logging.getLogger(self.__class__.__name__)

    def validate(self, request: QueryRequest) -> None:
        """Reject filters and modes that do not apply to the entity.

        Raises:
            InvalidQueryError: The request cannot be served.
        """
        spec = get_spec(request.entity_type)
        filters = request.filters.equality_filters()
        if request.mode is QueryMode.AGGREGATE:
            if spec.entity_type is not EntityType.PLAYER_STATS:
                raise InvalidQueryError(
                    f"Aggregate queries are only available for player_stats, "
                    f"not {spec.entity_type.value}"
                )
            allowed = AGGREGATE_FILTERS
        else:
            allowed = spec.filter_columns
        unsupported = sorted(set(filters) - allowed)
        if unsupported:
            raise InvalidQueryError(
                f"Filters {unsupported} do not apply to "
                f"{spec.entity_type.value} in {request.mode.value} mode"
            )

    def execute(self, request: QueryRequest) -> list[BasePoint] | list[AggregateBucket]:
        """Validate and run a query.

        Raises:
            InvalidQueryError: The request cannot be served.
            ConnectivityError: The database could not be reached.
        """
        self.validate(request)
        if request.mode is QueryMode.AGGREGATE:
            return self.aggregate(request.filters)
        return self.raw(request.entity_type, request.filters)

    def raw(self, entity_type: EntityType, filters: QueryFilters) -> list[BasePoint]:
        """Return points in the inclusive range, newest first."""
        spec = get_spec(entity_type)
        model = spec.orm_model
        stmt = select(model).where(
            model.timestamp >= filters.start_time,
            model.timestamp <= filters.end_time,
        )
        for name, value in filters.equality_filters().items():
            stmt = stmt.where(getattr(model, name) == value)
        stmt = stmt.order_by(model.timestamp.desc())
        if filters.limit is not None:
            stmt = stmt.limit(filters.limit)

        with self.database.read_scope() as session:
            rows = session.scalars(stmt).all()
            points = [point_from_row(spec, row) for row in rows]
        self.logger.debug(f"Raw {entity_type.value} query returned {len(points)} rows")
        return points

    def route(self, window: timedelta) -> AggregateSource:
        """Pick the relation that serves an aggregate window."""
        if window <= self.settings.daily_view_max_window:
            return AggregateSource.DAILY_VIEW
        if window > self.settings.weekly_view_min_window:
            return AggregateSource.WEEKLY_VIEW
        return AggregateSource.RAW

    def aggregate(self, filters: QueryFilters) -> list[AggregateBucket]:
        """Return PlayerStat rollup buckets for the window, oldest first."""
        source = self.route(filters.window)
        if source is AggregateSource.RAW:
            relation = self._raw_rollup(filters)
            stmt = select(relation)
        else:
            relation = ROLLUP_TABLES[source]
            rollup = DAILY_ROLLUP if source is AggregateSource.DAILY_VIEW else WEEKLY_ROLLUP
            stmt = select(relation).where(
                relation.c.bucket >= floor_to_bucket(filters.start_time, rollup),
                relation.c.bucket <= filters.end_time,
            )
        stmt = self._filter_buckets(stmt, relation, filters)

        with self.database.read_scope() as session:
            rows = session.execute(stmt).mappings().all()
        buckets = [_to_bucket(row) for row in rows]
        self.logger.debug(
            f"Aggregate query over {filters.window} served by {source.value} "
            f"({len(buckets)} buckets)"
        )
        return buckets

    def _raw_rollup(self, filters: QueryFilters) -> FromClause:
        """Daily buckets computed from raw rows within the exact window."""
        sql = rollup_sql(
            self.database.dialect,
            DAILY_ROLLUP,
            where="timestamp >= :start_time AND timestamp <= :end_time",
        )
        textual = (
            text(sql)
            .bindparams(
                bindparam("start_time", filters.start_time, type_=UtcDateTime),
                bindparam("end_time", filters.end_time, type_=UtcDateTime),
            )
            .columns(
                bucket=UtcDateTime,
                player_id=String,
                team=String,
                position=String,
                avg_fantasy_points=Float,
                max_fantasy_points=Float,
                min_fantasy_points=Float,
                fp_stddev=Float,
                total_fantasy_points=Float,
                sum_sq_fantasy_points=Float,
                total_snaps=Integer,
                game_count=Integer,
            )
        )
        return textual.subquery("raw_rollup")

    def _filter_buckets(
        self, stmt: Select, relation: FromClause, filters: QueryFilters
    ) -> Select:
        for name, value in filters.equality_filters().items():
            stmt = stmt.where(relation.c[name] == value)
        stmt = stmt.order_by(relation.c.bucket.asc(), relation.c.player_id.asc())
        if filters.limit is not None:
            stmt = stmt.limit(filters.limit)
        return stmt

    def latest_fantasy_points(
        self, player_id: str, start_time: datetime, end_time: datetime
    ) -> float | None:
        """Return the player's most recent fantasy points within the range."""
        stmt = (
            select(PlayerStat.fantasy_points)
            .where(
                PlayerStat.player_id == player_id,
                PlayerStat.timestamp >= start_time,
                PlayerStat.timestamp <= end_time,
            )
            .order_by(PlayerStat.timestamp.desc())
            .limit(1)
        )
        with self.database.read_scope() as session:
            return session.execute(stmt).scalar()

    def get_player_aggregates(
        self,
        player_id: str,
        timeframe: Timeframe | str = Timeframe.WEEK,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        now: datetime | None = None,
    ) -> PlayerAggregates:
        """Pool a player's rollup buckets over a timeframe.

        Args:
            player_id: Player to summarize.
            timeframe: Lookback window ending at ``end_time``.
            start_time: Explicit range start; overrides the timeframe.
            end_time: Range end (defaults to ``now``).
            now: Reference time (defaults to the current UTC time).

        Returns:
            PlayerAggregates; all zeros when the player has no rows.
        """
        filters = resolve_range(player_id, timeframe, start_time, end_time, now)
        buckets = self.aggregate(filters)
        latest = self.latest_fantasy_points(
            player_id, filters.start_time, filters.end_time
        )
        return summarize_buckets(buckets, latest)


def resolve_range(
    player_id: str,
    timeframe: Timeframe | str,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    now: datetime | None = None,
) -> QueryFilters:
    """Turn a timeframe or explicit range into aggregate query filters."""
    end = end_time or now or datetime.now(timezone.utc)
    start = start_time or ensure_utc(end) - TIMEFRAME_WINDOWS[Timeframe(timeframe)]
    return QueryFilters(start_time=start, end_time=end, player_id=player_id)


def _to_bucket(row: Any) -> AggregateBucket:
    return AggregateBucket(
        bucket=row["bucket"],
        player_id=row["player_id"],
        team=row["team"],
        position=row["position"],
        avg_fantasy_points=float(row["avg_fantasy_points"]),
        max_fantasy_points=float(row["max_fantasy_points"]),
        min_fantasy_points=float(row["min_fantasy_points"]),
        fp_stddev=None if row["fp_stddev"] is None else float(row["fp_stddev"]),
        total_fantasy_points=float(row["total_fantasy_points"]),
        sum_sq_fantasy_points=float(row["sum_sq_fantasy_points"]),
        total_snaps=int(row["total_snaps"] or 0),
        game_count=int(row["game_count"]),
    )
