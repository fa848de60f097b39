"""Tests for configuration module."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from sports_store.config import DEFAULT_RETENTION, Settings, parse_interval
from sports_store.types import CacheStrategy, EntityType


class TestParseInterval:
    """Tests for parse_interval function."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("7 days", timedelta(days=7)),
            ("1 day", timedelta(days=1)),
            ("2 weeks", timedelta(weeks=2)),
            ("6 months", timedelta(days=180)),
            ("2 years", timedelta(days=730)),
            ("12 hours", timedelta(hours=12)),
        ],
    )
    def test_parses_supported_units(self, value: str, expected: timedelta) -> None:
        """Intervals should convert with 30-day months and 365-day years."""
        assert parse_interval(value) == expected

    @pytest.mark.parametrize("value", ["", "days", "seven days", "3 fortnights", "0 days"])
    def test_rejects_invalid_intervals(self, value: str) -> None:
        """Malformed or non-positive intervals should raise ValueError."""
        with pytest.raises(ValueError):
            parse_interval(value)


class TestSettings:
    """Tests for Settings class."""

    def test_default_values(self) -> None:
        """Settings should have the documented defaults."""
        settings = Settings()

        assert settings.db_pool_size == 20
        assert settings.compression_after_days == 7
        assert settings.cache_default_ttl == 300
        assert settings.cache_default_strategy is CacheStrategy.SMART
        assert settings.cache_max_entries == 1000
        assert settings.aggregate_cache_ttl == 3600
        assert settings.daily_cost_limit == 10.0
        assert settings.cost_warning_threshold == 0.8
        assert settings.smart_cache_threshold == 0.7
        assert settings.base_query_cost == 0.001
        assert settings.per_row_cost == 0.00001

    def test_default_database_is_postgres(self) -> None:
        """Without a URL override the store targets PostgreSQL via psycopg."""
        settings = Settings(db_host="tsdb", db_name="sports", db_ssl=True)

        url = settings.database_url
        assert url.drivername == "postgresql+psycopg"
        assert url.host == "tsdb"
        assert url.query["sslmode"] == "require"
        assert not settings.is_sqlite

    def test_url_override(self) -> None:
        """An explicit URL should win over discrete fields."""
        settings = Settings(db_url="sqlite:///data/sports.db")

        assert settings.database_url == "sqlite:///data/sports.db"
        assert settings.is_sqlite

    def test_env_aliases(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Environment variables should populate fields through aliases."""
        monkeypatch.setenv("SPORTS_DB_URL", "sqlite:///env.db")
        monkeypatch.setenv("DAILY_COST_LIMIT", "2.5")
        monkeypatch.setenv("CACHE_DEFAULT_STRATEGY", "always")

        settings = Settings()

        assert settings.db_url == "sqlite:///env.db"
        assert settings.daily_cost_limit == 2.5
        assert settings.cache_default_strategy is CacheStrategy.ALWAYS

    def test_validation_rejects_empty_log_dir(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Empty paths should be rejected."""
        monkeypatch.setenv("LOG_DIR", "   ")
        with pytest.raises(ValueError, match="cannot be empty"):
            Settings()

    def test_validation_rejects_warning_threshold_above_one(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Cost warning threshold must be a fraction."""
        monkeypatch.setenv("COST_WARNING_THRESHOLD", "1.5")
        with pytest.raises(ValueError):
            Settings()

    def test_retention_defaults(self) -> None:
        """Each entity should fall back to its default retention."""
        settings = Settings()

        for entity in EntityType:
            assert settings.retention_interval(entity) == DEFAULT_RETENTION[entity]
        assert settings.retention_horizon(EntityType.PLAYER_STATS) == timedelta(days=730)
        assert settings.retention_horizon(EntityType.PREDICTIONS) == timedelta(days=180)

    def test_retention_overrides_from_env(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Retention overrides should be read as a JSON object."""
        monkeypatch.setenv("RETENTION_OVERRIDES", '{"predictions": "1 year"}')

        settings = Settings()

        assert settings.retention_interval(EntityType.PREDICTIONS) == "1 year"
        assert settings.retention_interval(EntityType.WEATHER) == "1 year"

    def test_retention_overrides_must_parse(self) -> None:
        """Unparseable retention overrides should be rejected."""
        with pytest.raises(ValueError):
            Settings(retention_overrides={"weather": "forever"})

    def test_window_properties(self) -> None:
        """Routing thresholds should be exposed as timedeltas."""
        settings = Settings()

        assert settings.daily_view_max_window == timedelta(days=1)
        assert settings.weekly_view_min_window == timedelta(days=7)
        assert settings.compression_after == timedelta(days=7)

    def test_ensure_directories_creates_dirs(self, tmp_path: Path) -> None:
        """ensure_directories should create the log and SQLite directories."""
        settings = Settings(
            db_url=f"sqlite:///{tmp_path / 'data' / 'store.db'}",
            log_dir=str(tmp_path / "logs"),
        )
        settings.ensure_directories()

        assert (tmp_path / "data").exists()
        assert (tmp_path / "logs").exists()
