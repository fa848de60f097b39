"""Configuration management using Pydantic Settings.

This module defines the configuration object for the sports time-series store,
supporting environment variables and .env file loading. A single ``Settings``
instance is built at startup and handed to each component explicitly.

Example:
    >>> from sports_store.config import Settings
    >>> settings = Settings(db_url="sqlite:///data/sports.db")
    >>> settings.is_sqlite
    True
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import URL, make_url

from sports_store.types import CacheStrategy, EntityType

# Default retention horizons, expressed as PostgreSQL intervals
DEFAULT_RETENTION: dict[EntityType, str] = {
    EntityType.PLAYER_STATS: "2 years",
    EntityType.GAME_STATES: "1 year",
    EntityType.PREDICTIONS: "6 months",
    EntityType.OWNERSHIP: "1 year",
    EntityType.INJURIES: "6 months",
    EntityType.WEATHER: "1 year",
}

_INTERVAL_UNITS: dict[str, timedelta] = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}


def parse_interval(value: str) -> timedelta:
    """Convert a PostgreSQL-style interval string into a timedelta.

    Months count as 30 days and years as 365 days.

    Args:
        value: Interval such as "6 months" or "2 years".

    Returns:
        Equivalent timedelta.

    Raises:
        ValueError: If the interval cannot be parsed.

    Example:
        >>> parse_interval("7 days")
        datetime.timedelta(days=7)
    """
    parts = value.strip().lower().split()
    if len(parts) != 2:
        raise ValueError(f"Unsupported interval: {value!r}")
    amount, unit = parts
    unit = unit.rstrip("s")
    if unit not in _INTERVAL_UNITS:
        raise ValueError(f"Unsupported interval unit in {value!r}")
    try:
        count = int(amount)
    except ValueError as e:
        raise ValueError(f"Unsupported interval amount in {value!r}") from e
    if count <= 0:
        raise ValueError(f"Interval must be positive: {value!r}")
    return count * _INTERVAL_UNITS[unit]


class Settings(BaseSettings):
    """Store configuration loaded from environment variables.

    All settings can be overridden via environment variables or .env file.
    Environment variables take precedence over .env file values. Fields may
    also be passed by name to the constructor.

    Attributes:
        db_url: Full SQLAlchemy URL; overrides the discrete connection fields.
        db_host: PostgreSQL host.
        db_port: PostgreSQL port.
        db_name: Database name.
        db_user: Database user.
        db_password: Database password.
        db_ssl: Require TLS for PostgreSQL connections.
        db_pool_size: Connections kept in the pool.
        db_max_overflow: Extra connections allowed beyond the pool size.
        db_pool_timeout: Seconds to wait for a pooled connection.
        db_connect_timeout: Seconds to wait when opening a connection.
        db_statement_timeout_ms: Per-statement timeout in milliseconds.
        compression_enabled: Register columnar compression policies.
        compression_after_days: Age at which chunks are compressed.
        retention_overrides: Per-entity retention intervals.
        cache_enabled: Global cache switch.
        cache_default_ttl: Default cache entry lifetime in seconds.
        cache_default_strategy: Strategy used when a query names none.
        cache_cost_optimization: Let the smart strategy follow spend.
        cache_max_entries: Cache capacity before FIFO eviction.
        cache_sweep_interval: Seconds between expired-entry sweeps.
        aggregate_cache_ttl: Lifetime of cached player aggregates.
        daily_cost_limit: Hard per-UTC-day query spend ceiling.
        monthly_cost_budget: Monthly budget used for recommendations.
        cost_warning_threshold: Fraction of the daily limit that warns.
        smart_cache_threshold: Fraction of the daily limit that enables
            cache reads under the smart strategy.
        base_query_cost: Cost charged per executed query.
        per_row_cost: Cost charged per returned row.
        daily_view_max_window_hours: Largest aggregate window served by the
            daily view.
        weekly_view_min_window_days: Aggregate windows longer than this are
            served by the weekly view.
        log_level: Logging level.
        log_dir: Directory for log files.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Database connection
    db_url: str | None = Field(
        default=None,
        alias="SPORTS_DB_URL",
        description="Full SQLAlchemy database URL",
    )
    db_host: str = Field(default="localhost", alias="SPORTS_DB_HOST")
    db_port: int = Field(default=5432, alias="SPORTS_DB_PORT", ge=1, le=65535)
    db_name: str = Field(default="sports", alias="SPORTS_DB_NAME")
    db_user: str = Field(default="sports", alias="SPORTS_DB_USER")
    db_password: SecretStr = Field(
        default=SecretStr(""),
        alias="SPORTS_DB_PASSWORD",
    )
    db_ssl: bool = Field(default=False, alias="SPORTS_DB_SSL")

    # Pool and timeouts
    db_pool_size: int = Field(default=20, alias="SPORTS_DB_POOL_SIZE", ge=1)
    db_max_overflow: int = Field(default=0, alias="SPORTS_DB_MAX_OVERFLOW", ge=0)
    db_pool_timeout: float = Field(
        default=2.0,
        alias="SPORTS_DB_POOL_TIMEOUT",
        gt=0.0,
        description="Seconds to wait for a pooled connection",
    )
    db_connect_timeout: int = Field(
        default=5,
        alias="SPORTS_DB_CONNECT_TIMEOUT",
        ge=1,
    )
    db_statement_timeout_ms: int = Field(
        default=30_000,
        alias="SPORTS_DB_STATEMENT_TIMEOUT_MS",
        ge=1,
    )

    # Storage policies
    compression_enabled: bool = Field(default=True, alias="COMPRESSION_ENABLED")
    compression_after_days: int = Field(
        default=7,
        alias="COMPRESSION_AFTER_DAYS",
        ge=1,
    )
    retention_overrides: dict[EntityType, str] = Field(
        default_factory=dict,
        alias="RETENTION_OVERRIDES",
        description="Per-entity retention intervals, e.g. {\"predictions\": \"1 year\"}",
    )

    # Caching
    cache_enabled: bool = Field(default=True, alias="CACHE_ENABLED")
    cache_default_ttl: int = Field(default=300, alias="CACHE_DEFAULT_TTL", ge=1)
    cache_default_strategy: CacheStrategy = Field(
        default=CacheStrategy.SMART,
        alias="CACHE_DEFAULT_STRATEGY",
    )
    cache_cost_optimization: bool = Field(
        default=True,
        alias="CACHE_COST_OPTIMIZATION",
    )
    cache_max_entries: int = Field(default=1000, alias="CACHE_MAX_ENTRIES", ge=1)
    cache_sweep_interval: float = Field(
        default=300.0,
        alias="CACHE_SWEEP_INTERVAL",
        gt=0.0,
    )
    aggregate_cache_ttl: int = Field(
        default=3600,
        alias="AGGREGATE_CACHE_TTL",
        ge=1,
    )

    # Cost limits
    daily_cost_limit: float = Field(default=10.0, alias="DAILY_COST_LIMIT", gt=0.0)
    monthly_cost_budget: float = Field(
        default=300.0,
        alias="MONTHLY_COST_BUDGET",
        gt=0.0,
    )
    cost_warning_threshold: float = Field(
        default=0.8,
        alias="COST_WARNING_THRESHOLD",
        gt=0.0,
        le=1.0,
    )
    smart_cache_threshold: float = Field(
        default=0.7,
        alias="SMART_CACHE_THRESHOLD",
        ge=0.0,
        le=1.0,
    )
    base_query_cost: float = Field(default=0.001, alias="BASE_QUERY_COST", ge=0.0)
    per_row_cost: float = Field(default=0.00001, alias="PER_ROW_COST", ge=0.0)

    # Aggregate routing
    daily_view_max_window_hours: float = Field(
        default=24.0,
        alias="DAILY_VIEW_MAX_WINDOW_HOURS",
        gt=0.0,
    )
    weekly_view_min_window_days: float = Field(
        default=7.0,
        alias="WEEKLY_VIEW_MIN_WINDOW_DAYS",
        gt=0.0,
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    log_dir: str = Field(
        default="logs",
        alias="LOG_DIR",
        description="Directory for log files",
    )

    @field_validator("log_dir")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Ensure path strings are valid."""
        if not v or v.isspace():
            raise ValueError("Path cannot be empty or whitespace")
        return v

    @field_validator("retention_overrides")
    @classmethod
    def validate_retention(cls, v: dict[EntityType, str]) -> dict[EntityType, str]:
        """Ensure every override is a parseable interval."""
        for interval in v.values():
            parse_interval(interval)
        return v

    @property
    def database_url(self) -> str | URL:
        """Return the SQLAlchemy URL for the configured database."""
        if self.db_url:
            return self.db_url
        query = {"sslmode": "require"} if self.db_ssl else {}
        return URL.create(
            "postgresql+psycopg",
            username=self.db_user,
            password=self.db_password.get_secret_value() or None,
            host=self.db_host,
            port=self.db_port,
            database=self.db_name,
            query=query,
        )

    @property
    def is_sqlite(self) -> bool:
        """Return True when the configured backend is SQLite."""
        return make_url(self.database_url).get_backend_name() == "sqlite"

    @property
    def log_dir_obj(self) -> Path:
        """Return log directory as Path object."""
        return Path(self.log_dir)

    @property
    def compression_after(self) -> timedelta:
        """Return the compression age as a timedelta."""
        return timedelta(days=self.compression_after_days)

    @property
    def daily_view_max_window(self) -> timedelta:
        return timedelta(hours=self.daily_view_max_window_hours)

    @property
    def weekly_view_min_window(self) -> timedelta:
        return timedelta(days=self.weekly_view_min_window_days)

    def retention_interval(self, entity: EntityType) -> str:
        """Return the retention interval string for an entity."""
        return self.retention_overrides.get(entity, DEFAULT_RETENTION[entity])

    def retention_horizon(self, entity: EntityType) -> timedelta:
        """Return the retention horizon for an entity as a timedelta."""
        return parse_interval(self.retention_interval(entity))

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        self.log_dir_obj.mkdir(parents=True, exist_ok=True)
        url = make_url(self.database_url)
        if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
