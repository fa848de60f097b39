"""Hypertables, storage policies and continuous aggregates.

``SchemaManager`` declares the six hypertables, their indexes, compression
and retention policies, and the daily and weekly PlayerStat rollups. Every
step is idempotent, so ``initialize_schema`` runs on every process start.

On PostgreSQL with TimescaleDB the tables become hypertables, compression and
retention are background jobs, and rollups are real-time continuous
aggregates. On SQLite the tables stay plain, rollups are ordinary views, and
retention is applied by ``cleanup_old_data``. In both cases the registered
policies are recorded in the ``storage_policies`` catalog.

Example:
    >>> from sports_store.storage.partitions import SchemaManager
    >>> manager = SchemaManager(database, settings)
    >>> manager.initialize_schema()
    >>> manager.list_policies()[0]["policy_type"]
    'compression'
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import (
    Column,
    Connection,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    delete,
    select,
    text,
)
from sqlalchemy.exc import SQLAlchemyError

from sports_store.config import Settings
from sports_store.logging import FAIL, SUCCESS
from sports_store.storage.db import Database, dialect_insert, is_connectivity_error
from sports_store.storage.models import StoragePolicy
from sports_store.storage.points import ENTITY_SPECS, EntitySpec
from sports_store.storage.schema import Base, UtcDateTime
from sports_store.types import (
    AggregateSource,
    CleanupReport,
    ConnectivityError,
    EntityType,
    PolicyRecord,
    SchemaInitializationError,
)

logger = logging.getLogger(__name__)

# Monday 2000-01-03, TimescaleDB's default origin for time_bucket
BUCKET_ORIGIN = datetime(2000, 1, 3, tzinfo=timezone.utc)


# =============================================================================
# Rollup Definitions
# =============================================================================


@dataclass(frozen=True)
class RollupSpec:
    """A continuous aggregate over player_stats.

    Attributes:
        source: View name.
        width: Bucket width.
        pg_interval: Bucket width as a PostgreSQL interval.
        sqlite_modifiers: strftime modifiers that floor a timestamp to the
            bucket start.
        refresh_start_offset: Oldest bucket the refresh job recomputes.
        refresh_schedule: How often the refresh job runs.
    """

    source: AggregateSource
    width: timedelta
    pg_interval: str
    sqlite_modifiers: str
    refresh_start_offset: str
    refresh_schedule: str

    @property
    def name(self) -> str:
        return self.source.value


DAILY_ROLLUP = RollupSpec(
    source=AggregateSource.DAILY_VIEW,
    width=timedelta(days=1),
    pg_interval="1 day",
    sqlite_modifiers="",
    refresh_start_offset="3 days",
    refresh_schedule="1 hour",
)
WEEKLY_ROLLUP = RollupSpec(
    source=AggregateSource.WEEKLY_VIEW,
    width=timedelta(weeks=1),
    pg_interval="1 week",
    sqlite_modifiers=", 'weekday 0', '-6 days'",
    refresh_start_offset="4 weeks",
    refresh_schedule="1 day",
)
ROLLUPS = (DAILY_ROLLUP, WEEKLY_ROLLUP)

_ROLLUP_MEASURES = """
    AVG(fantasy_points) AS avg_fantasy_points,
    MAX(fantasy_points) AS max_fantasy_points,
    MIN(fantasy_points) AS min_fantasy_points,
    STDDEV(fantasy_points) AS fp_stddev,
    SUM(fantasy_points) AS total_fantasy_points,
    SUM(fantasy_points * fantasy_points) AS sum_sq_fantasy_points,
    SUM(snap_count) AS total_snaps,
    COUNT(*) AS game_count"""


def bucket_expression(dialect: str, rollup: RollupSpec) -> str:
    """Return the SQL expression flooring ``timestamp`` to a bucket start."""
    if dialect == "postgresql":
        return f"time_bucket(INTERVAL '{rollup.pg_interval}', timestamp)"
    # Matches SQLAlchemy's SQLite DATETIME storage format so comparisons hold
    return (
        "strftime('%Y-%m-%d 00:00:00.000000', timestamp"
        f"{rollup.sqlite_modifiers})"
    )


def rollup_sql(dialect: str, rollup: RollupSpec, where: str = "") -> str:
    """Return the SELECT that defines a rollup, optionally pre-filtered."""
    bucket = bucket_expression(dialect, rollup)
    where_clause = f"\nWHERE {where}" if where else ""
    return (
        f"SELECT\n    {bucket} AS bucket,\n"
        f"    player_id,\n    team,\n    position,{_ROLLUP_MEASURES}\n"
        f"FROM player_stats{where_clause}\n"
        f"GROUP BY {bucket}, player_id, team, position"
    )


def floor_to_bucket(value: datetime, rollup: RollupSpec) -> datetime:
    """Floor a timestamp to the start of its rollup bucket."""
    offset = (value - BUCKET_ORIGIN) // rollup.width
    return BUCKET_ORIGIN + offset * rollup.width


view_metadata = MetaData()


def _rollup_table(name: str) -> Table:
    return Table(
        name,
        view_metadata,
        Column("bucket", UtcDateTime),
        Column("player_id", String(64)),
        Column("team", String(10)),
        Column("position", String(10)),
        Column("avg_fantasy_points", Float),
        Column("max_fantasy_points", Float),
        Column("min_fantasy_points", Float),
        Column("fp_stddev", Float),
        Column("total_fantasy_points", Float),
        Column("sum_sq_fantasy_points", Float),
        Column("total_snaps", Integer),
        Column("game_count", Integer),
    )


# Read-only handles on the rollup views; never passed to create_all
ROLLUP_TABLES: dict[AggregateSource, Table] = {
    rollup.source: _rollup_table(rollup.name) for rollup in ROLLUPS
}


# =============================================================================
# Schema Manager
# =============================================================================


class SchemaManager:
    """Declares hypertables and registers their background policies.

    Attributes:
        database: Database wrapper.
        settings: Store configuration.
    """

    def __init__(self, database: Database, settings: Settings) -> None:
        self.database = database
        self.settings = settings
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def dialect(self) -> str:
        return self.database.dialect

    def initialize_schema(self) -> int:
        """Create tables, indexes, policies and rollups.

        Safe to call repeatedly; existing objects are left in place.

        Returns:
            Number of DDL steps executed.

        Raises:
            SchemaInitializationError: A step failed. ``step`` names it.
            ConnectivityError: The database could not be reached.
        """
        steps = self._plan()
        self.logger.info(f"Initializing schema on {self.dialect} ({len(steps)} steps)")
        try:
            with self.database.autocommit_scope() as conn:
                for name, action in steps:
                    self._run_step(conn, name, action)
        except SQLAlchemyError as e:
            # Failure to check out a connection, before any step ran
            if is_connectivity_error(e):
                raise ConnectivityError(str(e)) from e
            raise SchemaInitializationError("connect", str(e)) from e
        self.logger.info(f"{SUCCESS} Schema initialized")
        return len(steps)

    def _run_step(
        self,
        conn: Connection,
        name: str,
        action: Callable[[Connection], None],
    ) -> None:
        self.logger.debug(f"Schema step: {name}")
        try:
            action(conn)
        except SQLAlchemyError as e:
            self.logger.error(f"{FAIL} Schema step {name} failed: {e}")
            raise SchemaInitializationError(name, str(e)) from e

    def _plan(self) -> list[tuple[str, Callable[[Connection], None]]]:
        """Return the ordered, named DDL steps for this dialect."""
        steps: list[tuple[str, Callable[[Connection], None]]] = []
        postgres = self.database.is_postgres
        if postgres:
            steps.append(("extension:timescaledb", self._create_extension))

        for table in Base.metadata.sorted_tables:
            steps.append((f"create_table:{table.name}", _create_table(table)))
            for index in sorted(table.indexes, key=lambda i: i.name or ""):
                steps.append((f"create_index:{index.name}", _create_index(index)))

        for spec in ENTITY_SPECS.values():
            if postgres:
                steps.append(
                    (f"create_hypertable:{spec.table_name}", self._hypertable(spec))
                )
            if self.settings.compression_enabled:
                steps.append((f"compression:{spec.table_name}", self._compression(spec)))
            steps.append((f"retention:{spec.table_name}", self._retention(spec)))

        for rollup in ROLLUPS:
            steps.append((f"continuous_aggregate:{rollup.name}", self._rollup(rollup)))
        return steps

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _create_extension(self, conn: Connection) -> None:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS timescaledb"))

    def _hypertable(self, spec: EntitySpec) -> Callable[[Connection], None]:
        def action(conn: Connection) -> None:
            conn.execute(
                text(
                    "SELECT create_hypertable(CAST(:table AS regclass), 'timestamp', "
                    "if_not_exists => TRUE, migrate_data => TRUE)"
                ),
                {"table": spec.table_name},
            )

        return action

    def _compression(self, spec: EntitySpec) -> Callable[[Connection], None]:
        interval = f"{self.settings.compression_after_days} days"

        def action(conn: Connection) -> None:
            if self._policy_current(conn, spec.table_name, "compression", interval):
                return
            if self.database.is_postgres:
                enabled = conn.execute(
                    text(
                        "SELECT compression_enabled "
                        "FROM timescaledb_information.hypertables "
                        "WHERE hypertable_name = :table"
                    ),
                    {"table": spec.table_name},
                ).scalar()
                if not enabled:
                    conn.execute(
                        text(
                            f"ALTER TABLE {spec.table_name} SET ("
                            "timescaledb.compress, "
                            f"timescaledb.compress_segmentby = '{spec.segment_by}', "
                            "timescaledb.compress_orderby = 'timestamp DESC')"
                        )
                    )
                conn.execute(
                    text(
                        "SELECT remove_compression_policy("
                        "CAST(:table AS regclass), if_exists => TRUE)"
                    ),
                    {"table": spec.table_name},
                )
                conn.execute(
                    text(
                        "SELECT add_compression_policy(CAST(:table AS regclass), "
                        "CAST(:interval AS INTERVAL), if_not_exists => TRUE)"
                    ),
                    {"table": spec.table_name, "interval": interval},
                )
            self._record_policy(conn, spec.table_name, "compression", interval)

        return action

    def _retention(self, spec: EntitySpec) -> Callable[[Connection], None]:
        interval = self.settings.retention_interval(spec.entity_type)

        def action(conn: Connection) -> None:
            if self._policy_current(conn, spec.table_name, "retention", interval):
                return
            if self.database.is_postgres:
                conn.execute(
                    text(
                        "SELECT remove_retention_policy("
                        "CAST(:table AS regclass), if_exists => TRUE)"
                    ),
                    {"table": spec.table_name},
                )
                conn.execute(
                    text(
                        "SELECT add_retention_policy(CAST(:table AS regclass), "
                        "CAST(:interval AS INTERVAL), if_not_exists => TRUE)"
                    ),
                    {"table": spec.table_name, "interval": interval},
                )
            self._record_policy(conn, spec.table_name, "retention", interval)

        return action

    def _rollup(self, rollup: RollupSpec) -> Callable[[Connection], None]:
        def action(conn: Connection) -> None:
            body = rollup_sql(self.dialect, rollup)
            if self.database.is_postgres:
                conn.execute(
                    text(
                        f"CREATE MATERIALIZED VIEW IF NOT EXISTS {rollup.name}\n"
                        "WITH (timescaledb.continuous, "
                        "timescaledb.materialized_only = false) AS\n"
                        f"{body}\nWITH NO DATA"
                    )
                )
                conn.execute(
                    text(
                        "SELECT add_continuous_aggregate_policy("
                        "CAST(:view AS regclass), "
                        "start_offset => CAST(:start AS INTERVAL), "
                        "end_offset => INTERVAL '1 hour', "
                        "schedule_interval => CAST(:schedule AS INTERVAL), "
                        "if_not_exists => TRUE)"
                    ),
                    {
                        "view": rollup.name,
                        "start": rollup.refresh_start_offset,
                        "schedule": rollup.refresh_schedule,
                    },
                )
            else:
                conn.execute(text(f"CREATE VIEW IF NOT EXISTS {rollup.name} AS\n{body}"))
            self._record_policy(conn, rollup.name, "refresh", rollup.refresh_schedule)

        return action

    # -------------------------------------------------------------------------
    # Policy catalog
    # -------------------------------------------------------------------------

    def _policy_current(
        self, conn: Connection, table_name: str, policy_type: str, interval: str
    ) -> bool:
        current = conn.execute(
            select(StoragePolicy.interval).where(
                StoragePolicy.table_name == table_name,
                StoragePolicy.policy_type == policy_type,
            )
        ).scalar()
        return current == interval

    def _record_policy(
        self, conn: Connection, table_name: str, policy_type: str, interval: str
    ) -> None:
        insert = dialect_insert(self.dialect)
        stmt = insert(StoragePolicy.__table__).values(
            table_name=table_name,
            policy_type=policy_type,
            interval=interval,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["table_name", "policy_type"],
            set_={"interval": stmt.excluded.interval, "updated_at": datetime.now(timezone.utc)},
        )
        conn.execute(stmt)

    def list_policies(self) -> list[PolicyRecord]:
        """Return every registered policy, ordered by table and type."""
        with self.database.read_scope() as session:
            rows = session.execute(
                select(
                    StoragePolicy.table_name,
                    StoragePolicy.policy_type,
                    StoragePolicy.interval,
                ).order_by(StoragePolicy.table_name, StoragePolicy.policy_type)
            ).all()
        return [
            PolicyRecord(table_name=t, policy_type=p, interval=i) for t, p, i in rows
        ]

    def database_size_bytes(self) -> int:
        return self.database.database_size_bytes()

    # -------------------------------------------------------------------------
    # Retention
    # -------------------------------------------------------------------------

    def cleanup_old_data(self, now: datetime | None = None) -> CleanupReport:
        """Delete rows older than each entity's retention horizon.

        Each table is cleaned in its own transaction so a long purge on one
        hypertable never holds locks on another.

        Args:
            now: Reference time (defaults to the current UTC time).

        Returns:
            Deleted row counts and the resulting database size in bytes.
        """
        now = now or datetime.now(timezone.utc)
        per_table: dict[str, int] = {}
        for entity in EntityType:
            spec = ENTITY_SPECS[entity]
            cutoff = now - self.settings.retention_horizon(entity)
            model = spec.orm_model
            with self.database.session_scope() as session:
                result = session.execute(
                    delete(model).where(model.timestamp < cutoff),
                    execution_options={"synchronize_session": False},
                )
                per_table[spec.table_name] = result.rowcount or 0

        deleted = sum(per_table.values())
        size = self.database.database_size_bytes()
        self.logger.info(
            f"Retention cleanup removed {deleted} rows; database size {size} bytes"
        )
        return CleanupReport(deleted_rows=deleted, per_table=per_table, database_size=size)


def _create_table(table: Table) -> Callable[[Connection], None]:
    def action(conn: Connection) -> None:
        table.create(conn, checkfirst=True)

    return action


def _create_index(index: Index) -> Callable[[Connection], None]:
    def action(conn: Connection) -> None:
        index.create(conn, checkfirst=True)

    return action
