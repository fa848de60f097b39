"""Tests for the query path."""
from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from pydantic import ValidationError

from sports_store.config import Settings
from sports_store.storage.partitions import SchemaManager
from sports_store.storage.points import PlayerStatPoint
from sports_store.storage.query import (
    QueryFilters,
    QueryPath,
    QueryRequest,
    consistency_score,
    pooled_stddev,
    recent_trend,
    summarize_buckets,
)
from sports_store.storage.writer import InsertRequest, WritePath
from sports_store.types import (
    AggregateBucket,
    AggregateSource,
    EntityType,
    InvalidQueryError,
    QueryMode,
    Timeframe,
)

UTC = timezone.utc
SEASON_START = datetime(2024, 9, 1, tzinfo=UTC)
SEASON_END = datetime(2024, 12, 31, tzinfo=UTC)


@pytest.fixture
def path(schema: SchemaManager, settings: Settings) -> QueryPath:
    """Provide a query path over an initialized schema."""
    return QueryPath(schema.database, settings)


@pytest.fixture
def loaded(
    path: QueryPath, player_stat: Callable[..., dict[str, Any]]
) -> QueryPath:
    """Load three weekly games for P1 and one for P2."""
    points = [
        player_stat(timestamp=datetime(2024, 9, 8, 17, tzinfo=UTC), gameId="W1",
                    week=1, fantasyPoints=10.0, snapCount=50),
        player_stat(timestamp=datetime(2024, 9, 15, 17, tzinfo=UTC), gameId="W2",
                    week=2, fantasyPoints=20.0, snapCount=55),
        player_stat(timestamp=datetime(2024, 9, 22, 17, tzinfo=UTC), gameId="W3",
                    week=3, fantasyPoints=30.0, snapCount=60),
        player_stat(timestamp=datetime(2024, 9, 15, 20, tzinfo=UTC), playerId="P2",
                    gameId="W2", team="BUF", position="WR", week=2, fantasyPoints=8.0),
    ]
    WritePath(path.database).insert(InsertRequest(EntityType.PLAYER_STATS, points))
    return path


class TestQueryModels:
    """Tests for QueryFilters and QueryRequest."""

    def test_start_after_end_rejected(self) -> None:
        """The range must not be inverted."""
        with pytest.raises(ValidationError):
            QueryFilters(start_time=SEASON_END, end_time=SEASON_START)

    def test_unknown_filter_rejected(self) -> None:
        """Unknown filter names should be rejected."""
        with pytest.raises(ValidationError):
            QueryFilters(start_time=SEASON_START, end_time=SEASON_END, venue="x")

    def test_camel_case_filters(self) -> None:
        """Filters should accept camelCase names."""
        filters = QueryFilters.model_validate(
            {
                "startTime": "2024-09-01T00:00:00Z",
                "endTime": "2024-09-30T00:00:00Z",
                "playerId": "P1",
            }
        )

        assert filters.player_id == "P1"
        assert filters.equality_filters() == {"player_id": "P1"}


class TestValidate:
    """Tests for request validation."""

    def test_inapplicable_filter_rejected(self, path: QueryPath) -> None:
        """A filter the entity lacks should raise InvalidQueryError."""
        request = QueryRequest(
            entity_type=EntityType.WEATHER,
            filters=QueryFilters(
                start_time=SEASON_START, end_time=SEASON_END, model_id="fp-xgb"
            ),
        )

        with pytest.raises(InvalidQueryError, match="model_id"):
            path.execute(request)

    def test_aggregate_only_for_player_stats(self, path: QueryPath) -> None:
        """Aggregate mode on another entity should raise InvalidQueryError."""
        request = QueryRequest(
            entity_type=EntityType.GAME_STATES,
            filters=QueryFilters(start_time=SEASON_START, end_time=SEASON_END),
            mode=QueryMode.AGGREGATE,
        )

        with pytest.raises(InvalidQueryError):
            path.execute(request)

    def test_aggregate_rejects_non_view_filters(self, path: QueryPath) -> None:
        """Aggregate mode only filters on view columns."""
        request = QueryRequest(
            entity_type=EntityType.PLAYER_STATS,
            filters=QueryFilters(start_time=SEASON_START, end_time=SEASON_END, week=2),
            mode=QueryMode.AGGREGATE,
        )

        with pytest.raises(InvalidQueryError):
            path.execute(request)


class TestRawQueries:
    """Tests for raw-mode queries."""

    def test_returns_points_newest_first(self, loaded: QueryPath) -> None:
        """Raw results should be typed points ordered by timestamp descending."""
        request = QueryRequest(
            entity_type=EntityType.PLAYER_STATS,
            filters=QueryFilters(
                start_time=SEASON_START, end_time=SEASON_END, player_id="P1"
            ),
        )

        results = loaded.execute(request)

        assert all(isinstance(p, PlayerStatPoint) for p in results)
        assert [p.game_id for p in results] == ["W3", "W2", "W1"]
        assert results[0].timestamp.tzinfo == UTC

    def test_range_is_inclusive(self, loaded: QueryPath) -> None:
        """Both range bounds should be inclusive."""
        exact = datetime(2024, 9, 15, 17, tzinfo=UTC)
        request = QueryRequest(
            entity_type=EntityType.PLAYER_STATS,
            filters=QueryFilters(start_time=exact, end_time=exact),
        )

        assert [p.game_id for p in loaded.execute(request)] == ["W2"]

    def test_equality_filters_and_limit(self, loaded: QueryPath) -> None:
        """Equality filters and limit should narrow the result."""
        by_week = QueryRequest(
            entity_type=EntityType.PLAYER_STATS,
            filters=QueryFilters(start_time=SEASON_START, end_time=SEASON_END, week=2),
        )
        limited = QueryRequest(
            entity_type=EntityType.PLAYER_STATS,
            filters=QueryFilters(start_time=SEASON_START, end_time=SEASON_END, limit=2),
        )

        assert {p.player_id for p in loaded.execute(by_week)} == {"P1", "P2"}
        assert len(loaded.execute(limited)) == 2

    def test_empty_range(self, loaded: QueryPath) -> None:
        """A range with no rows should return an empty list."""
        request = QueryRequest(
            entity_type=EntityType.PLAYER_STATS,
            filters=QueryFilters(
                start_time=datetime(2023, 1, 1, tzinfo=UTC),
                end_time=datetime(2023, 2, 1, tzinfo=UTC),
            ),
        )

        assert loaded.execute(request) == []


class TestAggregateRouting:
    """Tests for aggregate source routing."""

    @pytest.mark.parametrize(
        ("window", "expected"),
        [
            (timedelta(hours=1), AggregateSource.DAILY_VIEW),
            (timedelta(days=1), AggregateSource.DAILY_VIEW),
            (timedelta(days=3), AggregateSource.RAW),
            (timedelta(days=7), AggregateSource.RAW),
            (timedelta(days=7, seconds=1), AggregateSource.WEEKLY_VIEW),
            (timedelta(days=365), AggregateSource.WEEKLY_VIEW),
        ],
    )
    def test_route(self, path: QueryPath, window: timedelta, expected: AggregateSource) -> None:
        """Windows should route to daily, raw or weekly sources."""
        assert path.route(window) is expected

    def test_weekly_buckets_in_order(self, loaded: QueryPath) -> None:
        """Weekly aggregates should come back oldest bucket first."""
        request = QueryRequest(
            entity_type=EntityType.PLAYER_STATS,
            filters=QueryFilters(
                start_time=SEASON_START, end_time=SEASON_END, player_id="P1"
            ),
            mode=QueryMode.AGGREGATE,
        )

        buckets = loaded.execute(request)

        assert [b.bucket for b in buckets] == [
            datetime(2024, 9, 2, tzinfo=UTC),
            datetime(2024, 9, 9, tzinfo=UTC),
            datetime(2024, 9, 16, tzinfo=UTC),
        ]
        assert [b.total_fantasy_points for b in buckets] == [10.0, 20.0, 30.0]
        assert all(b.game_count == 1 for b in buckets)

    def test_daily_view(self, loaded: QueryPath) -> None:
        """Windows up to a day should read the daily view."""
        request = QueryRequest(
            entity_type=EntityType.PLAYER_STATS,
            filters=QueryFilters(
                start_time=datetime(2024, 9, 15, tzinfo=UTC),
                end_time=datetime(2024, 9, 16, tzinfo=UTC),
            ),
            mode=QueryMode.AGGREGATE,
        )

        buckets = loaded.execute(request)

        assert [(b.player_id, b.bucket) for b in buckets] == [
            ("P1", datetime(2024, 9, 15, tzinfo=UTC)),
            ("P2", datetime(2024, 9, 15, tzinfo=UTC)),
        ]

    def test_mid_window_computed_from_raw(self, loaded: QueryPath) -> None:
        """Windows between one and seven days should bucket raw rows by day."""
        request = QueryRequest(
            entity_type=EntityType.PLAYER_STATS,
            filters=QueryFilters(
                start_time=datetime(2024, 9, 14, tzinfo=UTC),
                end_time=datetime(2024, 9, 18, tzinfo=UTC),
                position="QB",
            ),
            mode=QueryMode.AGGREGATE,
        )

        buckets = loaded.execute(request)

        assert len(buckets) == 1
        assert buckets[0].bucket == datetime(2024, 9, 15, tzinfo=UTC)
        assert buckets[0].avg_fantasy_points == 20.0
        assert buckets[0].total_snaps == 55
        assert buckets[0].fp_stddev is None


class TestPlayerAggregates:
    """Tests for pooled player aggregates."""

    def test_three_week_scenario(self, loaded: QueryPath) -> None:
        """Weeks of 10, 20 and 30 points pool to mean 20 and consistency 50."""
        aggregates = loaded.get_player_aggregates(
            "P1", Timeframe.MONTH, now=datetime(2024, 9, 25, 12, tzinfo=UTC)
        )

        assert aggregates.avg_fantasy_points == 20.0
        assert aggregates.total_fantasy_points == 60.0
        assert aggregates.total_snap_count == 165
        assert aggregates.game_count == 3
        assert aggregates.consistency_score == 50.0
        assert aggregates.recent_trend == 0.5

    def test_explicit_range_overrides_timeframe(self, loaded: QueryPath) -> None:
        """An explicit range should be used instead of the timeframe."""
        aggregates = loaded.get_player_aggregates(
            "P1",
            Timeframe.HOUR,
            start_time=datetime(2024, 9, 14, tzinfo=UTC),
            end_time=datetime(2024, 9, 18, tzinfo=UTC),
        )

        assert aggregates.game_count == 1
        assert aggregates.consistency_score == 0.0
        assert aggregates.recent_trend == 0.0

    def test_unknown_player_is_all_zero(self, loaded: QueryPath) -> None:
        """A player with no rows should get zeroed aggregates."""
        aggregates = loaded.get_player_aggregates(
            "NOBODY", Timeframe.SEASON, now=datetime(2024, 9, 25, tzinfo=UTC)
        )

        assert aggregates.game_count == 0
        assert aggregates.avg_fantasy_points == 0.0


class TestDerivedMetrics:
    """Tests for the pure metric functions."""

    def test_pooled_stddev_is_sample(self) -> None:
        """Pooled stddev should use n - 1."""
        assert pooled_stddev(3, 60.0, 1400.0) == pytest.approx(10.0)
        assert pooled_stddev(1, 10.0, 100.0) is None

    @pytest.mark.parametrize(
        ("mean", "stddev", "count", "expected"),
        [
            (20.0, 10.0, 3, 50.0),
            (10.0, 25.0, 4, 0.0),
            (0.0, 5.0, 3, 0.0),
            (20.0, None, 1, 0.0),
            (20.0, 0.0, 2, 100.0),
            (15.0, 4.0, 5, 73.0),
            (4.0, 2.5, 3, 38.0),
        ],
    )
    def test_consistency_score(
        self, mean: float, stddev: float | None, count: int, expected: float
    ) -> None:
        """Consistency should be 100 minus CV percent, floored and rounded half up."""
        assert consistency_score(mean, stddev, count) == expected

    @pytest.mark.parametrize(
        ("latest", "mean", "expected"),
        [(30.0, 20.0, 0.5), (10.0, 20.0, -0.5), (5.0, 0.0, 0.0), (None, 20.0, 0.0)],
    )
    def test_recent_trend(
        self, latest: float | None, mean: float, expected: float
    ) -> None:
        """Trend should be the relative distance from the mean."""
        assert recent_trend(latest, mean) == expected


class TestSummarizeBuckets:
    """Tests for pooling buckets into player aggregates."""

    @staticmethod
    def _bucket(day: int, points: float) -> AggregateBucket:
        return AggregateBucket(
            bucket=datetime(2024, 9, day, tzinfo=UTC),
            player_id="P1",
            team="KC",
            position="QB",
            avg_fantasy_points=points,
            max_fantasy_points=points,
            min_fantasy_points=points,
            fp_stddev=None,
            total_fantasy_points=points,
            sum_sq_fantasy_points=points * points,
            total_snaps=50,
            game_count=1,
        )

    def test_consistency_is_a_whole_number(self) -> None:
        """Games of 10, 20 and 31 points should score 48, not 48.34."""
        buckets = [self._bucket(2, 10.0), self._bucket(9, 20.0), self._bucket(16, 31.0)]

        aggregates = summarize_buckets(buckets, latest=31.0)

        assert aggregates.consistency_score == 48.0
        assert aggregates.game_count == 3

    def test_average_is_not_rounded(self) -> None:
        """The pooled average should keep full precision."""
        buckets = [self._bucket(2, 10.0), self._bucket(9, 20.0), self._bucket(16, 31.0)]

        aggregates = summarize_buckets(buckets, latest=None)

        assert aggregates.avg_fantasy_points == pytest.approx(61.0 / 3)
        assert aggregates.avg_fantasy_points != round(61.0 / 3, 2)
        assert aggregates.total_fantasy_points == 61.0
        assert aggregates.total_snap_count == 150
