"""Tests for type definitions and exceptions."""
from __future__ import annotations

import pytest

from sports_store.types import (
    CacheStats,
    ConnectivityError,
    CostLimitExceeded,
    EntityType,
    InsertResult,
    InvalidQueryError,
    PlayerAggregates,
    SchemaInitializationError,
    SportsStoreError,
    TransactionError,
)


class TestEnums:
    """Tests for enumerations."""

    def test_entity_type_values(self) -> None:
        """Entity types should round-trip from their string values."""
        assert [e.value for e in EntityType] == [
            "player_stats",
            "game_states",
            "predictions",
            "ownership",
            "injuries",
            "weather",
        ]
        assert EntityType("ownership") is EntityType.OWNERSHIP

    def test_unknown_entity_type_rejected(self) -> None:
        """Unknown entity types should raise ValueError."""
        with pytest.raises(ValueError):
            EntityType("box_scores")


class TestResultTypes:
    """Tests for result dataclasses."""

    def test_insert_result_to_dict(self) -> None:
        """InsertResult should serialize its counts."""
        result = InsertResult(inserted=8, deduplicated=1, errors=1)

        assert result.to_dict() == {"inserted": 8, "deduplicated": 1, "errors": 1}

    def test_player_aggregates_default_to_zero(self) -> None:
        """Empty aggregates should be all zeros."""
        aggregates = PlayerAggregates()

        assert set(aggregates.to_dict().values()) == {0}

    def test_cache_stats_hit_rate(self) -> None:
        """Hit rate should be hits over lookups, 0 when there were none."""
        assert CacheStats().hit_rate == 0.0
        stats = CacheStats(hits=3, misses=1)
        assert stats.hit_rate == 0.75
        assert stats.to_dict()["hit_rate"] == 0.75


class TestExceptions:
    """Tests for the exception taxonomy."""

    @pytest.mark.parametrize(
        "error",
        [
            TransactionError("rolled back"),
            ConnectivityError("timeout"),
            InvalidQueryError("bad filter"),
            CostLimitExceeded(10.0, 10.0),
            SchemaInitializationError("retention:predictions", "boom"),
        ],
    )
    def test_all_derive_from_base(self, error: Exception) -> None:
        """Every store error should derive from SportsStoreError."""
        assert isinstance(error, SportsStoreError)

    def test_invalid_query_is_value_error(self) -> None:
        """InvalidQueryError should also be a ValueError."""
        assert isinstance(InvalidQueryError("x"), ValueError)

    def test_cost_limit_exceeded_carries_amounts(self) -> None:
        """CostLimitExceeded should expose the current cost and limit."""
        error = CostLimitExceeded(10.5, 10.0)

        assert error.current_cost == 10.5
        assert error.limit == 10.0
        assert "10.5000" in str(error)

    def test_schema_error_names_step(self) -> None:
        """SchemaInitializationError should name the failing step."""
        error = SchemaInitializationError("compression:player_stats", "denied")

        assert error.step == "compression:player_stats"
        assert "compression:player_stats" in str(error)
