"""Database engine and session management.

This module wraps a bounded SQLAlchemy connection pool. Every operation
borrows a connection inside a ``with`` scope and returns it on every exit
path. Driver failures are translated into the store's error taxonomy:
transport and timeout problems become ``ConnectivityError``; anything else
raised inside a write scope becomes ``TransactionError`` after rollback.

Example:
    >>> from sports_store.config import Settings
    >>> from sports_store.storage.db import Database
    >>> database = Database(Settings(db_url="sqlite:///data/sports.db"))
    >>> with database.session_scope() as session:
    ...     session.execute(text("SELECT 1"))
"""
from __future__ import annotations

import logging
import math
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Connection, Engine, create_engine, event, func, make_url, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import (
    DBAPIError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from sports_store.config import Settings
from sports_store.types import ConnectivityError, TransactionError

logger = logging.getLogger(__name__)


class _SampleStdDev:
    """SQLite aggregate matching PostgreSQL ``stddev`` (sample, n - 1)."""

    def __init__(self) -> None:
        self.count = 0
        self.mean = 0.0
        self.m2 = 0.0

    def step(self, value: float | None) -> None:
        if value is None:
            return
        # Welford's online update
        self.count += 1
        delta = value - self.mean
        self.mean += delta / self.count
        self.m2 += delta * (value - self.mean)

    def finalize(self) -> float | None:
        if self.count < 2:
            return None
        return math.sqrt(self.m2 / (self.count - 1))


def _set_sqlite_pragmas(
    dbapi_connection: Any,
    connection_record: Any,
) -> None:
    """Set SQLite pragmas and register the stddev aggregate.

    Args:
        dbapi_connection: Raw DBAPI connection object.
        connection_record: Connection pool record (unused).
    """
    cursor = dbapi_connection.cursor()
    # WAL lets readers proceed while a batch write is open
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()
    dbapi_connection.create_aggregate("stddev", 1, _SampleStdDev)
    logger.debug("SQLite pragmas applied: journal_mode=WAL, stddev registered")


def is_connectivity_error(error: BaseException) -> bool:
    """Return True when an error means the database could not be reached."""
    if isinstance(error, (OperationalError, InterfaceError, PoolTimeoutError)):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


class Database:
    """Owns the engine, connection pool and session factory.

    Attributes:
        settings: Store configuration.
        engine: SQLAlchemy engine with a bounded pool.
    """

    def __init__(self, settings: Settings, engine: Engine | None = None) -> None:
        """Create the engine from settings unless one is supplied.

        Args:
            settings: Store configuration.
            engine: Pre-built engine (used by tests and embedding callers).
        """
        self.settings = settings
        self.engine = engine if engine is not None else self._create_engine()
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.debug(f"Database ready: {self.engine.url!r}")

    def _create_engine(self) -> Engine:
        settings = self.settings
        settings.ensure_directories()
        url = make_url(settings.database_url)
        pool_args: dict[str, Any] = {
            "pool_size": settings.db_pool_size,
            "max_overflow": settings.db_max_overflow,
            "pool_timeout": settings.db_pool_timeout,
        }
        if settings.is_sqlite:
            connect_args: dict[str, Any] = {
                "timeout": settings.db_connect_timeout,
                "check_same_thread": False,
            }
            if url.database in (None, "", ":memory:"):
                # In-memory SQLite lives in one connection; no queue pool
                pool_args = {"poolclass": StaticPool}
        else:
            connect_args = {
                "connect_timeout": settings.db_connect_timeout,
                "options": f"-c statement_timeout={settings.db_statement_timeout_ms}",
            }
        return create_engine(
            url,
            echo=False,
            pool_pre_ping=True,
            connect_args=connect_args,
            **pool_args,
        )

    @property
    def dialect(self) -> str:
        """Return the backend name (``postgresql`` or ``sqlite``)."""
        return self.engine.dialect.name

    @property
    def is_postgres(self) -> bool:
        return self.dialect == "postgresql"

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Session with all-or-nothing commit for one batch write.

        Commits on successful exit and rolls back on any exception. The
        session and its pooled connection are always released.

        Yields:
            SQLAlchemy Session instance.

        Raises:
            ConnectivityError: The database was unreachable or timed out.
            TransactionError: The transaction failed and was rolled back.
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            logger.debug("Session rolling back due to database error")
            session.rollback()
            if is_connectivity_error(e):
                raise ConnectivityError(str(e)) from e
            raise TransactionError(str(e)) from e
        except Exception:
            logger.debug("Session rolling back due to exception")
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def read_scope(self) -> Generator[Session, None, None]:
        """Session for read-only work; never commits.

        Yields:
            SQLAlchemy Session instance.

        Raises:
            ConnectivityError: The database was unreachable or timed out.
        """
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            if is_connectivity_error(e):
                raise ConnectivityError(str(e)) from e
            raise
        finally:
            session.close()

    @contextmanager
    def autocommit_scope(self) -> Generator[Connection, None, None]:
        """Connection in autocommit mode for DDL that refuses transactions.

        TimescaleDB continuous aggregates cannot be created inside a
        transaction block, so schema setup runs each step on its own.
        """
        with self.engine.connect() as conn:
            yield conn.execution_options(isolation_level="AUTOCOMMIT")

    def ping(self) -> bool:
        """Return True when the database answers ``SELECT 1``."""
        try:
            with self.engine.connect() as conn:
                return conn.execute(text("SELECT 1")).scalar() == 1
        except SQLAlchemyError as e:
            if is_connectivity_error(e):
                raise ConnectivityError(str(e)) from e
            raise

    def database_size_bytes(self) -> int:
        """Return the on-disk size of the current database in bytes."""
        with self.read_scope() as session:
            if self.is_postgres:
                size = session.execute(
                    text("SELECT pg_database_size(current_database())")
                ).scalar()
            else:
                page_count = session.execute(text("PRAGMA page_count")).scalar()
                page_size = session.execute(text("PRAGMA page_size")).scalar()
                size = (page_count or 0) * (page_size or 0)
        return int(size or 0)

    def dispose(self) -> None:
        """Close every pooled connection."""
        self.engine.dispose()
        logger.debug("Database engine disposed")


def dialect_insert(dialect: str) -> Any:
    """Return the ``insert`` construct that supports ON CONFLICT for a dialect.

    Raises:
        NotImplementedError: The dialect has no upsert support here.
    """
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"Upserts are not supported on {dialect}")


def greatest(dialect: str, *values: Any) -> Any:
    """Return a SQL expression for the larger of its arguments."""
    if dialect == "sqlite":
        # Multi-argument max() is scalar in SQLite
        return func.max(*values)
    return func.greatest(*values)
