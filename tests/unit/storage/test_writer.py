"""Tests for the batch write path."""
from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from sqlalchemy import func, select

from sports_store.storage.models import PlayerStat, Prediction
from sports_store.storage.partitions import SchemaManager
from sports_store.storage.points import PlayerStatPoint, WeatherPoint, get_spec
from sports_store.storage.writer import InsertRequest, WritePath, deduplicate
from sports_store.types import EntityType, InsertResult, TransactionError

UTC = timezone.utc


@pytest.fixture
def writer(schema: SchemaManager) -> WritePath:
    """Provide a write path over an initialized schema."""
    return WritePath(schema.database)


def _player_rows(writer: WritePath) -> list[PlayerStat]:
    with writer.database.read_scope() as session:
        return list(
            session.scalars(select(PlayerStat).order_by(PlayerStat.game_id)).all()
        )


class TestValidation:
    """Tests for row-level validation."""

    def test_invalid_points_are_counted_not_raised(
        self, writer: WritePath, player_stat: Callable[..., dict[str, Any]]
    ) -> None:
        """Bad points should be dropped and counted; good ones written."""
        bad_missing = player_stat(gameId="G2")
        del bad_missing["playerId"]
        points = [
            player_stat(gameId="G1"),
            bad_missing,
            player_stat(gameId="G3", week="eleventh"),
            player_stat(gameId="G4", confidence=1.5),
            "not a mapping",
        ]

        result = writer.insert(InsertRequest(EntityType.PLAYER_STATS, points))

        assert result == InsertResult(inserted=1, deduplicated=0, errors=4)
        assert [row.game_id for row in _player_rows(writer)] == ["G1"]

    def test_request_defaults_fill_provenance(
        self, writer: WritePath, player_stat: Callable[..., dict[str, Any]]
    ) -> None:
        """Points without provenance should take the request's source and confidence."""
        record = player_stat()
        del record["dataSource"]
        del record["confidence"]

        writer.insert(
            InsertRequest(
                EntityType.PLAYER_STATS, [record], source="sleeper", confidence=0.7
            )
        )

        [row] = _player_rows(writer)
        assert row.data_source == "sleeper"
        assert row.confidence == 0.7

    def test_point_provenance_wins_over_request(
        self, writer: WritePath, player_stat: Callable[..., dict[str, Any]]
    ) -> None:
        """Provenance on the point should not be overwritten."""
        writer.insert(
            InsertRequest(
                EntityType.PLAYER_STATS, [player_stat()], source="sleeper", confidence=0.5
            )
        )

        [row] = _player_rows(writer)
        assert row.data_source == "espn"
        assert row.confidence == 0.9

    def test_wrong_entity_point_is_an_error(
        self, writer: WritePath
    ) -> None:
        """A typed point of another entity should be rejected."""
        weather = WeatherPoint(
            timestamp=datetime(2024, 9, 8, 16, tzinfo=UTC),
            game_id="G1",
            venue="Arrowhead",
            temperature=78.0,
            data_source="noaa",
            confidence=1.0,
        )

        result = writer.insert(InsertRequest(EntityType.PLAYER_STATS, [weather]))

        assert result.errors == 1
        assert result.inserted == 0

    def test_empty_batch_is_a_noop(self, writer: WritePath) -> None:
        """An empty batch should return zeros."""
        result = writer.insert(InsertRequest(EntityType.GAME_STATES, []))

        assert result == InsertResult()

    def test_timestamps_stored_in_utc(
        self, writer: WritePath, player_stat: Callable[..., dict[str, Any]]
    ) -> None:
        """Aware timestamps should be stored and read back as UTC."""
        eastern = timezone(timedelta(hours=-4))
        writer.insert(
            InsertRequest(
                EntityType.PLAYER_STATS,
                [player_stat(timestamp=datetime(2024, 9, 8, 13, tzinfo=eastern))],
            )
        )

        [row] = _player_rows(writer)
        assert row.timestamp == datetime(2024, 9, 8, 17, tzinfo=UTC)


class TestDeduplication:
    """Tests for in-batch deduplication."""

    def test_keeps_last_occurrence_at_first_position(
        self, player_stat: Callable[..., dict[str, Any]]
    ) -> None:
        """The last duplicate should win and take the first slot."""
        spec = get_spec(EntityType.PLAYER_STATS)
        points = [
            PlayerStatPoint.model_validate(player_stat(gameId="G1", fantasyPoints=1.0)),
            PlayerStatPoint.model_validate(player_stat(gameId="G2", fantasyPoints=2.0)),
            PlayerStatPoint.model_validate(player_stat(gameId="G1", fantasyPoints=3.0)),
        ]

        unique, removed = deduplicate(spec, points)

        assert removed == 1
        assert [(p.game_id, p.fantasy_points) for p in unique] == [
            ("G1", 3.0),
            ("G2", 2.0),
        ]

    def test_different_timestamps_are_distinct(
        self, player_stat: Callable[..., dict[str, Any]]
    ) -> None:
        """Identity includes the timestamp."""
        spec = get_spec(EntityType.PLAYER_STATS)
        base = datetime(2024, 9, 8, 17, tzinfo=UTC)
        points = [
            PlayerStatPoint.model_validate(player_stat(timestamp=base)),
            PlayerStatPoint.model_validate(
                player_stat(timestamp=base + timedelta(minutes=5))
            ),
        ]

        unique, removed = deduplicate(spec, points)

        assert removed == 0
        assert len(unique) == 2

    def test_insert_reports_deduplicated(
        self, writer: WritePath, player_stat: Callable[..., dict[str, Any]]
    ) -> None:
        """Deduplicated points should be reported and the last one stored."""
        points = [
            player_stat(fantasyPoints=10.0),
            player_stat(fantasyPoints=12.5),
        ]

        result = writer.insert(
            InsertRequest(EntityType.PLAYER_STATS, points, deduplicate=True)
        )

        assert result == InsertResult(inserted=1, deduplicated=1, errors=0)
        [row] = _player_rows(writer)
        assert row.fantasy_points == 12.5


class TestMerge:
    """Tests for natural-key upserts."""

    @pytest.mark.parametrize(("first", "second"), [(0.6, 0.9), (0.9, 0.6)])
    def test_confidence_never_downgraded(
        self,
        writer: WritePath,
        player_stat: Callable[..., dict[str, Any]],
        first: float,
        second: float,
    ) -> None:
        """Re-inserting a key keeps the higher confidence and the newer values."""
        writer.insert(
            InsertRequest(
                EntityType.PLAYER_STATS,
                [player_stat(confidence=first, fantasyPoints=10.0)],
            )
        )
        writer.insert(
            InsertRequest(
                EntityType.PLAYER_STATS,
                [player_stat(confidence=second, fantasyPoints=14.0)],
            )
        )

        rows = _player_rows(writer)
        assert len(rows) == 1
        assert rows[0].confidence == 0.9
        assert rows[0].fantasy_points == 14.0

    def test_merge_refreshes_updated_at(
        self, writer: WritePath, player_stat: Callable[..., dict[str, Any]]
    ) -> None:
        """Merged rows keep created_at and carry an updated_at."""
        writer.insert(InsertRequest(EntityType.PLAYER_STATS, [player_stat()]))
        writer.insert(InsertRequest(EntityType.PLAYER_STATS, [player_stat()]))

        [row] = _player_rows(writer)
        assert row.created_at is not None
        assert row.updated_at >= row.created_at

    def test_prediction_outcome_resolution(
        self, writer: WritePath, prediction: Callable[..., dict[str, Any]]
    ) -> None:
        """A re-sent prediction updates only its outcome fields."""
        writer.insert(
            InsertRequest(EntityType.PREDICTIONS, [prediction()], source="model")
        )
        writer.insert(
            InsertRequest(
                EntityType.PREDICTIONS,
                [
                    prediction(
                        timestamp=datetime(2024, 9, 9, 12, tzinfo=UTC),
                        predictedValue=99.0,
                        actualValue=21.4,
                        isValidated=True,
                        accuracy=0.91,
                    )
                ],
                source="grader",
            )
        )

        with writer.database.read_scope() as session:
            rows = session.scalars(select(Prediction)).all()
        assert len(rows) == 1
        [row] = rows
        assert row.timestamp == datetime(2024, 9, 7, 12, tzinfo=UTC)
        assert row.predicted_value == 19.5
        assert row.data_source == "model"
        assert row.actual_value == 21.4
        assert row.is_validated is True
        assert row.accuracy == 0.91
        assert row.features == {"targets_l3": 8.0, "snap_share": 0.91}


class TestAtomicity:
    """Tests for all-or-nothing batches."""

    def test_failure_mid_batch_writes_nothing(
        self, writer: WritePath, player_stat: Callable[..., dict[str, Any]]
    ) -> None:
        """A database rejection on point 5 of 10 should leave zero rows."""
        points: list[Any] = [
            PlayerStatPoint.model_validate(player_stat(gameId=f"G{i}"))
            for i in range(10)
        ]
        # Bypasses validation so the database CHECK constraint rejects it
        points[4] = PlayerStatPoint.model_construct(
            **{
                **points[4].model_dump(),
                "game_id": "G4",
                "confidence": 1.5,
            }
        )

        with pytest.raises(TransactionError):
            writer.insert(InsertRequest(EntityType.PLAYER_STATS, points))

        with writer.database.read_scope() as session:
            count = session.execute(
                select(func.count()).select_from(PlayerStat)
            ).scalar()
        assert count == 0
