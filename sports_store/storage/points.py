"""Typed time-series points and the entity registry.

Each entity kind has a Pydantic point model that validates an incoming
record, and an ``EntitySpec`` that ties it to its ORM table, natural key,
mutable columns and merge rule. ``ENTITY_SPECS`` covers every ``EntityType``
member; the write and query paths dispatch through it rather than on
strings.

Incoming records may use snake_case or camelCase keys.

Example:
    >>> from sports_store.storage.points import ENTITY_SPECS
    >>> from sports_store.types import EntityType
    >>> spec = ENTITY_SPECS[EntityType.PLAYER_STATS]
    >>> point = spec.point_model.model_validate({
    ...     "timestamp": "2024-09-08T17:00:00Z", "playerId": "P1", "gameId": "G1",
    ...     "team": "KC", "opponent": "BAL", "position": "QB", "week": 1,
    ...     "season": 2024, "fantasyPoints": 21.4, "dataSource": "espn",
    ...     "confidence": 0.9,
    ... })
    >>> spec.identity(point)
    (datetime.datetime(2024, 9, 8, 17, 0, tzinfo=datetime.timezone.utc), 'P1', 'G1')
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from sports_store.storage.models import (
    GameState,
    InjuryReport,
    Ownership,
    PlayerStat,
    Prediction,
    WeatherObservation,
)
from sports_store.storage.schema import Base, ensure_utc
from sports_store.types import EntityType


class BasePoint(BaseModel):
    """Fields every time-series point carries.

    Attributes:
        timestamp: Observation time, normalized to UTC.
        data_source: Feed that produced the point.
        confidence: Source confidence in [0, 1].
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
        allow_inf_nan=False,
        str_strip_whitespace=True,
    )

    entity_type: ClassVar[EntityType]

    timestamp: datetime
    data_source: str = Field(min_length=1, max_length=100)
    confidence: float = Field(ge=0.0, le=1.0)

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def to_row(self) -> dict[str, Any]:
        """Return column values keyed by column name."""
        return self.model_dump()


class PlayerStatPoint(BasePoint):
    """Per-game player statistics."""

    entity_type: ClassVar[EntityType] = EntityType.PLAYER_STATS

    player_id: str = Field(min_length=1, max_length=64)
    game_id: str = Field(min_length=1, max_length=64)
    team: str = Field(min_length=1, max_length=10)
    opponent: str = Field(min_length=1, max_length=10)
    position: str = Field(min_length=1, max_length=10)
    week: int = Field(ge=0, le=25)
    season: int = Field(ge=1900)
    fantasy_points: float

    passing_yards: int | None = None
    passing_tds: int | None = Field(
        default=None, validation_alias=AliasChoices("passing_tds", "passingTDs")
    )
    rushing_yards: int | None = None
    rushing_tds: int | None = Field(
        default=None, validation_alias=AliasChoices("rushing_tds", "rushingTDs")
    )
    receiving_yards: int | None = None
    receiving_tds: int | None = Field(
        default=None, validation_alias=AliasChoices("receiving_tds", "receivingTDs")
    )
    receptions: int | None = Field(default=None, ge=0)
    targets: int | None = Field(default=None, ge=0)

    snap_count: int | None = Field(default=None, ge=0)
    red_zone_targets: int | None = Field(default=None, ge=0)
    air_yards: float | None = None
    target_share: float | None = Field(default=None, ge=0.0, le=1.0)

    game_script: float | None = None
    weather_temp: float | None = None
    weather_wind: float | None = None


class GameStatePoint(BasePoint):
    """Live game snapshot."""

    entity_type: ClassVar[EntityType] = EntityType.GAME_STATES

    game_id: str = Field(min_length=1, max_length=64)
    home_team: str = Field(min_length=1, max_length=10)
    away_team: str = Field(min_length=1, max_length=10)
    week: int = Field(ge=0, le=25)
    season: int = Field(ge=1900)
    quarter: int = Field(ge=1, le=6)
    time_remaining: int = Field(ge=0)
    home_score: int = Field(ge=0)
    away_score: int = Field(ge=0)
    possession: str | None = None
    down: int | None = Field(default=None, ge=1, le=4)
    distance: int | None = Field(default=None, ge=0)
    yard_line: int | None = Field(default=None, ge=0, le=100)

    game_script: float | None = None
    score_differential: int | None = None
    win_probability: float | None = Field(default=None, ge=0.0, le=1.0)

    temperature: float | None = None
    wind_speed: float | None = None
    precipitation: float | None = None
    venue: str | None = None
    surface: str | None = None


class PredictionPoint(BasePoint):
    """Model prediction and its eventual outcome."""

    entity_type: ClassVar[EntityType] = EntityType.PREDICTIONS

    prediction_id: str = Field(min_length=1, max_length=64)
    model_id: str = Field(min_length=1, max_length=64)
    player_id: str | None = None
    game_id: str | None = None
    prediction_type: Literal["player_performance", "game_outcome", "ownership"]
    predicted_value: float
    actual_value: float | None = None
    features: dict[str, float] | None = None
    shap_values: dict[str, float] | None = None
    model_version: str = Field(min_length=1, max_length=50)
    is_validated: bool = False
    accuracy: float | None = None


class OwnershipPoint(BasePoint):
    """Ownership projection for a contest type."""

    entity_type: ClassVar[EntityType] = EntityType.OWNERSHIP

    player_id: str = Field(min_length=1, max_length=64)
    contest_type: str = Field(min_length=1, max_length=30)
    projected_ownership: float = Field(ge=0.0, le=100.0)
    actual_ownership: float | None = Field(default=None, ge=0.0, le=100.0)
    salary: int | None = Field(default=None, ge=0)
    projected_points: float | None = None
    actual_points: float | None = None
    week: int = Field(ge=0, le=25)
    season: int = Field(ge=1900)


class InjuryReportPoint(BasePoint):
    """Injury status report."""

    entity_type: ClassVar[EntityType] = EntityType.INJURIES

    player_id: str = Field(min_length=1, max_length=64)
    status: Literal["healthy", "questionable", "doubtful", "out"]
    injury_type: str | None = None
    body_part: str | None = None
    severity: str | None = None
    estimated_return: str | None = None


class WeatherPoint(BasePoint):
    """Venue weather observation."""

    entity_type: ClassVar[EntityType] = EntityType.WEATHER

    game_id: str = Field(min_length=1, max_length=64)
    venue: str = Field(min_length=1, max_length=100)
    temperature: float
    wind_speed: float | None = Field(default=None, ge=0.0)
    wind_direction: int | None = Field(default=None, ge=0, le=360)
    precipitation: float | None = Field(default=None, ge=0.0)
    humidity: float | None = Field(default=None, ge=0.0, le=100.0)
    conditions: str | None = None
    visibility: float | None = Field(default=None, ge=0.0)
    is_indoor: bool = False


SportsPoint = Union[
    PlayerStatPoint,
    GameStatePoint,
    PredictionPoint,
    OwnershipPoint,
    InjuryReportPoint,
    WeatherPoint,
]


# =============================================================================
# Entity Registry
# =============================================================================


@dataclass(frozen=True)
class EntitySpec:
    """How one entity kind is validated, keyed, stored and merged.

    Attributes:
        entity_type: Entity kind.
        point_model: Pydantic model for incoming points.
        orm_model: SQLAlchemy model for the hypertable.
        natural_key: Identifying columns, excluding timestamp.
        mutable_columns: Columns overwritten on a natural-key conflict.
        merge_confidence: Keep the maximum confidence on conflict.
        timestamp_in_identity: Whether the timestamp is part of identity.
            False for predictions, whose id is globally unique.
        segment_by: Column TimescaleDB compression segments on.
    """

    entity_type: EntityType
    point_model: type[BasePoint]
    orm_model: type[Base]
    natural_key: tuple[str, ...]
    mutable_columns: tuple[str, ...]
    merge_confidence: bool = True
    timestamp_in_identity: bool = True
    segment_by: str = ""

    @property
    def table_name(self) -> str:
        return self.orm_model.__tablename__

    @property
    def conflict_columns(self) -> tuple[str, ...]:
        """Primary-key columns used as the upsert conflict target."""
        return ("timestamp", *self.natural_key)

    @property
    def filter_columns(self) -> frozenset[str]:
        """Columns a query may filter on by equality."""
        return frozenset(self.orm_model.__table__.columns.keys())

    def identity(self, point: BasePoint) -> tuple[Any, ...]:
        """Return the key that identifies a point for in-batch deduplication."""
        values = tuple(getattr(point, column) for column in self.natural_key)
        if self.timestamp_in_identity:
            return (point.timestamp, *values)
        return values


def _mutable(model: type[BasePoint], key: tuple[str, ...]) -> tuple[str, ...]:
    return tuple(
        name for name in model.model_fields if name not in ("timestamp", *key)
    )


ENTITY_SPECS: dict[EntityType, EntitySpec] = {
    EntityType.PLAYER_STATS: EntitySpec(
        entity_type=EntityType.PLAYER_STATS,
        point_model=PlayerStatPoint,
        orm_model=PlayerStat,
        natural_key=("player_id", "game_id"),
        mutable_columns=_mutable(PlayerStatPoint, ("player_id", "game_id")),
        segment_by="player_id",
    ),
    EntityType.GAME_STATES: EntitySpec(
        entity_type=EntityType.GAME_STATES,
        point_model=GameStatePoint,
        orm_model=GameState,
        natural_key=("game_id",),
        mutable_columns=_mutable(GameStatePoint, ("game_id",)),
        segment_by="game_id",
    ),
    EntityType.PREDICTIONS: EntitySpec(
        entity_type=EntityType.PREDICTIONS,
        point_model=PredictionPoint,
        orm_model=Prediction,
        natural_key=("prediction_id",),
        mutable_columns=("actual_value", "is_validated", "accuracy"),
        merge_confidence=False,
        timestamp_in_identity=False,
        segment_by="model_id",
    ),
    EntityType.OWNERSHIP: EntitySpec(
        entity_type=EntityType.OWNERSHIP,
        point_model=OwnershipPoint,
        orm_model=Ownership,
        natural_key=("player_id", "contest_type"),
        mutable_columns=_mutable(OwnershipPoint, ("player_id", "contest_type")),
        segment_by="player_id",
    ),
    EntityType.INJURIES: EntitySpec(
        entity_type=EntityType.INJURIES,
        point_model=InjuryReportPoint,
        orm_model=InjuryReport,
        natural_key=("player_id",),
        mutable_columns=_mutable(InjuryReportPoint, ("player_id",)),
        segment_by="player_id",
    ),
    EntityType.WEATHER: EntitySpec(
        entity_type=EntityType.WEATHER,
        point_model=WeatherPoint,
        orm_model=WeatherObservation,
        natural_key=("game_id",),
        mutable_columns=_mutable(WeatherPoint, ("game_id",)),
        segment_by="game_id",
    ),
}

_missing = set(EntityType) - set(ENTITY_SPECS)
if _missing:
    raise RuntimeError(f"Entity registry is missing: {sorted(m.value for m in _missing)}")


def get_spec(entity_type: EntityType | str) -> EntitySpec:
    """Return the registry entry for an entity type or its string value."""
    return ENTITY_SPECS[EntityType(entity_type)]


def point_from_row(spec: EntitySpec, row: Any) -> BasePoint:
    """Build a typed point from an ORM instance or mapping row."""
    if isinstance(row, dict):
        data = row
    else:
        data = {name: getattr(row, name) for name in spec.point_model.model_fields}
    return spec.point_model.model_validate(data)
