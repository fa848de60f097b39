"""Shared pytest fixtures for sports store tests.

This module contains fixtures used across multiple test modules:
- Configuration fixtures (file-backed SQLite settings)
- Database fixtures (engine, initialized schema)
- Manager fixtures (initialized SportsDataManager with a fake clock)
- Sample data fixtures (player stat, game state and prediction records)

Example:
    def test_something(manager, player_stat):
        manager.insert_data(InsertRequest(EntityType.PLAYER_STATS, [player_stat()]))
"""
from __future__ import annotations

from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from sports_store.cache.manager import SportsDataManager
from sports_store.config import Settings
from sports_store.storage.db import Database
from sports_store.storage.partitions import SchemaManager

UTC = timezone.utc


class FakeClock:
    """Settable UTC clock for cost-day and aggregate-window tests."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


# =============================================================================
# Configuration
# =============================================================================


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    """Return a factory for settings backed by a temporary SQLite file."""

    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "db_url": f"sqlite:///{tmp_path / 'data' / 'store.db'}",
            "log_dir": str(tmp_path / "logs"),
            "cache_sweep_interval": 3600.0,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def settings(make_settings: Callable[..., Settings]) -> Settings:
    """Provide default test settings."""
    return make_settings()


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def database(settings: Settings) -> Generator[Database, None, None]:
    """Provide a database on a fresh SQLite file."""
    db = Database(settings)
    yield db
    db.dispose()


@pytest.fixture
def schema(database: Database, settings: Settings) -> SchemaManager:
    """Provide a schema manager whose schema is already initialized."""
    manager = SchemaManager(database, settings)
    manager.initialize_schema()
    return manager


# =============================================================================
# Manager
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    """Provide a fake clock at Wednesday 2024-09-25 12:00 UTC."""
    return FakeClock(datetime(2024, 9, 25, 12, 0, tzinfo=UTC))


@pytest.fixture
def make_manager(
    make_settings: Callable[..., Settings], clock: FakeClock
) -> Generator[Callable[..., SportsDataManager], None, None]:
    """Return a factory for initialized managers; all are closed afterwards."""
    created: list[SportsDataManager] = []

    def _make(**overrides: Any) -> SportsDataManager:
        manager = SportsDataManager(make_settings(**overrides), clock=clock)
        manager.initialize()
        created.append(manager)
        return manager

    yield _make

    for manager in created:
        manager.close()


@pytest.fixture
def manager(make_manager: Callable[..., SportsDataManager]) -> SportsDataManager:
    """Provide an initialized manager with default settings."""
    return make_manager()


# =============================================================================
# Sample Data
# =============================================================================


@pytest.fixture
def player_stat() -> Callable[..., dict[str, Any]]:
    """Return a factory for PlayerStat records in camelCase."""

    def _make(**overrides: Any) -> dict[str, Any]:
        record: dict[str, Any] = {
            "timestamp": datetime(2024, 9, 8, 17, 0, tzinfo=UTC),
            "playerId": "P1",
            "gameId": "G1",
            "team": "KC",
            "opponent": "BAL",
            "position": "QB",
            "week": 1,
            "season": 2024,
            "fantasyPoints": 21.4,
            "snapCount": 60,
            "dataSource": "espn",
            "confidence": 0.9,
        }
        record.update(overrides)
        return record

    return _make


@pytest.fixture
def game_state() -> Callable[..., dict[str, Any]]:
    """Return a factory for GameState records in snake_case."""

    def _make(**overrides: Any) -> dict[str, Any]:
        record: dict[str, Any] = {
            "timestamp": datetime(2024, 9, 8, 18, 30, tzinfo=UTC),
            "game_id": "G1",
            "home_team": "KC",
            "away_team": "BAL",
            "week": 1,
            "season": 2024,
            "quarter": 2,
            "time_remaining": 420,
            "home_score": 10,
            "away_score": 7,
        }
        record.update(overrides)
        return record

    return _make


@pytest.fixture
def prediction() -> Callable[..., dict[str, Any]]:
    """Return a factory for Prediction records."""

    def _make(**overrides: Any) -> dict[str, Any]:
        record: dict[str, Any] = {
            "timestamp": datetime(2024, 9, 7, 12, 0, tzinfo=UTC),
            "predictionId": "PRED-1",
            "modelId": "fp-xgb",
            "playerId": "P1",
            "predictionType": "player_performance",
            "predictedValue": 19.5,
            "modelVersion": "1.4.0",
            "features": {"targets_l3": 8.0, "snap_share": 0.91},
        }
        record.update(overrides)
        return record

    return _make


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
