"""SQLAlchemy ORM models for sports time-series data.

Each model maps one hypertable. The primary key is the entity's natural key
with ``timestamp`` included, which TimescaleDB requires of every unique
constraint on a hypertable and which the write path uses as its upsert
conflict target.

Models are organized into categories:
- Performance: PlayerStat, GameState
- Modeling: Prediction, Ownership
- Context: InjuryReport, WeatherObservation
- Catalog: StoragePolicy

Example:
    >>> from sports_store.storage.models import PlayerStat
    >>> from sqlalchemy import select
    >>> with database.session_scope() as session:
    ...     latest = session.scalars(
    ...         select(PlayerStat).order_by(PlayerStat.timestamp.desc())
    ...     ).first()
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, CheckConstraint, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from sports_store.storage.schema import (
    Base,
    ProvenanceMixin,
    TimestampMixin,
    UtcDateTime,
)

JsonType = JSON().with_variant(JSONB(), "postgresql")


def _confidence_check(table: str) -> CheckConstraint:
    return CheckConstraint(
        "confidence >= 0 AND confidence <= 1",
        name=f"ck_{table}_confidence",
    )


# =============================================================================
# Performance Models
# =============================================================================


class PlayerStat(ProvenanceMixin, TimestampMixin, Base):
    """Per-game player statistics snapshot.

    Attributes:
        timestamp: Observation time (partitioning column).
        player_id: Player identifier.
        game_id: Game identifier.
        team: Player's team code.
        opponent: Opposing team code.
        position: Roster position (QB, RB, WR, TE, ...).
        week: Season week.
        season: Season year.
        fantasy_points: Fantasy points scored.
        snap_count: Offensive snaps played.
        air_yards: Air yards on targets.
        target_share: Share of team targets in [0, 1].
        game_script: Score-state context at observation time.
    """

    __tablename__ = "player_stats"

    timestamp: Mapped[datetime] = mapped_column(UtcDateTime, primary_key=True)
    player_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    game_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    team: Mapped[str] = mapped_column(String(10), nullable=False)
    opponent: Mapped[str] = mapped_column(String(10), nullable=False)
    position: Mapped[str] = mapped_column(String(10), nullable=False)
    week: Mapped[int] = mapped_column(nullable=False)
    season: Mapped[int] = mapped_column(nullable=False)
    fantasy_points: Mapped[float] = mapped_column(nullable=False)

    # Box score
    passing_yards: Mapped[int | None] = mapped_column(nullable=True)
    passing_tds: Mapped[int | None] = mapped_column(nullable=True)
    rushing_yards: Mapped[int | None] = mapped_column(nullable=True)
    rushing_tds: Mapped[int | None] = mapped_column(nullable=True)
    receiving_yards: Mapped[int | None] = mapped_column(nullable=True)
    receiving_tds: Mapped[int | None] = mapped_column(nullable=True)
    receptions: Mapped[int | None] = mapped_column(nullable=True)
    targets: Mapped[int | None] = mapped_column(nullable=True)

    # Advanced metrics
    snap_count: Mapped[int | None] = mapped_column(nullable=True)
    red_zone_targets: Mapped[int | None] = mapped_column(nullable=True)
    air_yards: Mapped[float | None] = mapped_column(nullable=True)
    target_share: Mapped[float | None] = mapped_column(nullable=True)

    # Context
    game_script: Mapped[float | None] = mapped_column(nullable=True)
    weather_temp: Mapped[float | None] = mapped_column(nullable=True)
    weather_wind: Mapped[float | None] = mapped_column(nullable=True)

    __table_args__ = (
        _confidence_check("player_stats"),
        Index("idx_player_stats_player_season", "player_id", "season", "week"),
        Index("idx_player_stats_team_week", "team", "season", "week"),
        Index("idx_player_stats_position", "position", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<PlayerStat(player_id={self.player_id!r}, game_id={self.game_id!r}, "
            f"timestamp={self.timestamp})>"
        )


class GameState(ProvenanceMixin, TimestampMixin, Base):
    """Live game snapshot with derived win probability.

    Attributes:
        timestamp: Observation time (partitioning column).
        game_id: Game identifier.
        quarter: Current quarter (5 for overtime).
        time_remaining: Seconds left in the quarter.
        score_differential: Home minus away score.
        win_probability: Home win probability in [0, 1].
    """

    __tablename__ = "game_states"

    timestamp: Mapped[datetime] = mapped_column(UtcDateTime, primary_key=True)
    game_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    home_team: Mapped[str] = mapped_column(String(10), nullable=False)
    away_team: Mapped[str] = mapped_column(String(10), nullable=False)
    week: Mapped[int] = mapped_column(nullable=False)
    season: Mapped[int] = mapped_column(nullable=False)
    quarter: Mapped[int] = mapped_column(nullable=False)
    time_remaining: Mapped[int] = mapped_column(nullable=False)
    home_score: Mapped[int] = mapped_column(nullable=False)
    away_score: Mapped[int] = mapped_column(nullable=False)
    possession: Mapped[str | None] = mapped_column(String(10), nullable=True)
    down: Mapped[int | None] = mapped_column(nullable=True)
    distance: Mapped[int | None] = mapped_column(nullable=True)
    yard_line: Mapped[int | None] = mapped_column(nullable=True)

    # Derived metrics
    game_script: Mapped[float | None] = mapped_column(nullable=True)
    score_differential: Mapped[int | None] = mapped_column(nullable=True)
    win_probability: Mapped[float | None] = mapped_column(nullable=True)

    # Environment
    temperature: Mapped[float | None] = mapped_column(nullable=True)
    wind_speed: Mapped[float | None] = mapped_column(nullable=True)
    precipitation: Mapped[float | None] = mapped_column(nullable=True)
    venue: Mapped[str | None] = mapped_column(String(100), nullable=True)
    surface: Mapped[str | None] = mapped_column(String(30), nullable=True)

    __table_args__ = (
        _confidence_check("game_states"),
        Index("idx_game_states_game", "game_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<GameState(game_id={self.game_id!r}, timestamp={self.timestamp})>"


# =============================================================================
# Modeling Models
# =============================================================================


class Prediction(ProvenanceMixin, TimestampMixin, Base):
    """Model prediction with post-hoc outcome resolution.

    ``prediction_id`` identifies a prediction for its whole life; only the
    outcome columns (``actual_value``, ``is_validated``, ``accuracy``)
    change after creation.

    Attributes:
        timestamp: When the prediction was made (partitioning column).
        prediction_id: Globally unique prediction identifier.
        model_id: Producing model.
        prediction_type: player_performance, game_outcome or ownership.
        predicted_value: Model output.
        actual_value: Observed outcome once known.
        features: Feature vector used for the prediction.
        shap_values: Per-feature attributions.
        is_validated: Whether the outcome has been resolved.
        accuracy: Accuracy score once resolved.
    """

    __tablename__ = "predictions"

    timestamp: Mapped[datetime] = mapped_column(UtcDateTime, primary_key=True)
    prediction_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    model_id: Mapped[str] = mapped_column(String(64), nullable=False)
    player_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    game_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    prediction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    predicted_value: Mapped[float] = mapped_column(nullable=False)
    actual_value: Mapped[float | None] = mapped_column(nullable=True)
    features: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    shap_values: Mapped[dict[str, Any] | None] = mapped_column(
        JsonType, nullable=True
    )
    model_version: Mapped[str] = mapped_column(String(50), nullable=False)
    is_validated: Mapped[bool] = mapped_column(nullable=False, default=False)
    accuracy: Mapped[float | None] = mapped_column(nullable=True)

    __table_args__ = (
        _confidence_check("predictions"),
        Index("idx_predictions_model", "model_id", "timestamp"),
        Index("idx_predictions_prediction_id", "prediction_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Prediction(prediction_id={self.prediction_id!r}, "
            f"model_id={self.model_id!r})>"
        )


class Ownership(ProvenanceMixin, TimestampMixin, Base):
    """Daily-fantasy ownership projection and outcome.

    Attributes:
        timestamp: Observation time (partitioning column).
        player_id: Player identifier.
        contest_type: Contest format (gpp, cash, ...).
        projected_ownership: Projected roster percentage.
        actual_ownership: Observed roster percentage.
        salary: Contest salary.
    """

    __tablename__ = "ownership_data"

    timestamp: Mapped[datetime] = mapped_column(UtcDateTime, primary_key=True)
    player_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    contest_type: Mapped[str] = mapped_column(String(30), primary_key=True)
    projected_ownership: Mapped[float] = mapped_column(nullable=False)
    actual_ownership: Mapped[float | None] = mapped_column(nullable=True)
    salary: Mapped[int | None] = mapped_column(nullable=True)
    projected_points: Mapped[float | None] = mapped_column(nullable=True)
    actual_points: Mapped[float | None] = mapped_column(nullable=True)
    week: Mapped[int] = mapped_column(nullable=False)
    season: Mapped[int] = mapped_column(nullable=False)

    __table_args__ = (
        _confidence_check("ownership_data"),
        Index("idx_ownership_player_week", "player_id", "season", "week"),
    )

    def __repr__(self) -> str:
        return (
            f"<Ownership(player_id={self.player_id!r}, "
            f"contest_type={self.contest_type!r}, timestamp={self.timestamp})>"
        )


# =============================================================================
# Context Models
# =============================================================================


class InjuryReport(ProvenanceMixin, TimestampMixin, Base):
    """Player injury status report."""

    __tablename__ = "injury_reports"

    timestamp: Mapped[datetime] = mapped_column(UtcDateTime, primary_key=True)
    player_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    injury_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    body_part: Mapped[str | None] = mapped_column(String(50), nullable=True)
    severity: Mapped[str | None] = mapped_column(String(20), nullable=True)
    estimated_return: Mapped[str | None] = mapped_column(String(50), nullable=True)

    __table_args__ = (
        _confidence_check("injury_reports"),
        Index("idx_injury_player", "player_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<InjuryReport(player_id={self.player_id!r}, status={self.status!r})>"
        )


class WeatherObservation(ProvenanceMixin, TimestampMixin, Base):
    """Venue weather observation for a game."""

    __tablename__ = "weather_data"

    timestamp: Mapped[datetime] = mapped_column(UtcDateTime, primary_key=True)
    game_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    venue: Mapped[str] = mapped_column(String(100), nullable=False)
    temperature: Mapped[float] = mapped_column(nullable=False)
    wind_speed: Mapped[float | None] = mapped_column(nullable=True)
    wind_direction: Mapped[int | None] = mapped_column(nullable=True)
    precipitation: Mapped[float | None] = mapped_column(nullable=True)
    humidity: Mapped[float | None] = mapped_column(nullable=True)
    conditions: Mapped[str | None] = mapped_column(String(50), nullable=True)
    visibility: Mapped[float | None] = mapped_column(nullable=True)
    is_indoor: Mapped[bool] = mapped_column(nullable=False, default=False)

    __table_args__ = (
        _confidence_check("weather_data"),
        Index("idx_weather_game", "game_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<WeatherObservation(game_id={self.game_id!r}, venue={self.venue!r})>"
        )


# =============================================================================
# Catalog
# =============================================================================


class StoragePolicy(TimestampMixin, Base):
    """Registered compression, retention and refresh policies.

    One row per (table, policy type). Re-registering a policy updates the
    row in place, so repeated schema initialization never duplicates it.

    Attributes:
        table_name: Hypertable or view the policy applies to.
        policy_type: compression, retention or refresh.
        interval: Policy interval as a PostgreSQL interval string.
    """

    __tablename__ = "storage_policies"

    table_name: Mapped[str] = mapped_column(String(64), primary_key=True)
    policy_type: Mapped[str] = mapped_column(String(20), primary_key=True)
    interval: Mapped[str] = mapped_column(String(30), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StoragePolicy(table_name={self.table_name!r}, "
            f"policy_type={self.policy_type!r}, interval={self.interval!r})>"
        )
