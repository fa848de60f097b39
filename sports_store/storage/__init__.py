"""Storage layer for the sports store.

This module provides the relational side of the store: engine and session
management, ORM models for the hypertables, typed points, schema and policy
management, and the write and query paths.

Submodules:
    db: Database engine and session management
    schema: SQLAlchemy base class, mixins and UTC datetime type
    models: SQLAlchemy ORM model definitions
    points: Pydantic point models and the entity registry
    partitions: Hypertables, policies and continuous aggregates
    writer: Batched, deduplicated upserts
    query: Raw and aggregate reads

Example:
    >>> from sports_store.storage import Database, SchemaManager
    >>> database = Database(settings)
    >>> SchemaManager(database, settings).initialize_schema()
"""
from __future__ import annotations

from sports_store.storage.db import Database
from sports_store.storage.models import (
    GameState,
    InjuryReport,
    Ownership,
    PlayerStat,
    Prediction,
    StoragePolicy,
    WeatherObservation,
)
from sports_store.storage.partitions import SchemaManager
from sports_store.storage.points import (
    ENTITY_SPECS,
    BasePoint,
    EntitySpec,
    GameStatePoint,
    InjuryReportPoint,
    OwnershipPoint,
    PlayerStatPoint,
    PredictionPoint,
    WeatherPoint,
    get_spec,
)
from sports_store.storage.query import QueryFilters, QueryPath, QueryRequest
from sports_store.storage.schema import Base
from sports_store.storage.writer import InsertRequest, WritePath

__all__ = [
    # Database
    "Database",
    "Base",
    # Models
    "GameState",
    "InjuryReport",
    "Ownership",
    "PlayerStat",
    "Prediction",
    "StoragePolicy",
    "WeatherObservation",
    # Points
    "ENTITY_SPECS",
    "BasePoint",
    "EntitySpec",
    "GameStatePoint",
    "InjuryReportPoint",
    "OwnershipPoint",
    "PlayerStatPoint",
    "PredictionPoint",
    "WeatherPoint",
    "get_spec",
    # Paths
    "InsertRequest",
    "QueryFilters",
    "QueryPath",
    "QueryRequest",
    "SchemaManager",
    "WritePath",
]
