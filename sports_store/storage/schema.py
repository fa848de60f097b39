"""SQLAlchemy base class and mixins for hypertable models.

This module provides the declarative base and the shared columns every
time-series table carries: provenance (``data_source``, ``confidence``) and
bookkeeping timestamps.

Example:
    >>> from sports_store.storage.schema import Base, ProvenanceMixin, TimestampMixin
    >>> class MyPoint(ProvenanceMixin, TimestampMixin, Base):
    ...     __tablename__ = "my_points"
    ...     timestamp: Mapped[datetime] = mapped_column(UtcDateTime, primary_key=True)
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, Float, String, TypeDecorator, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class UtcDateTime(TypeDecorator[datetime]):
    """Timezone-aware datetime stored as UTC on every backend.

    PostgreSQL keeps TIMESTAMPTZ natively. SQLite drops tzinfo, so values
    are normalized to UTC before binding and tagged as UTC when loaded.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        return ensure_utc(value)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        return ensure_utc(value)


def ensure_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all models."""

    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at bookkeeping columns.

    Attributes:
        created_at: When the row was first written.
        updated_at: When the row was last merged.
    """

    created_at: Mapped[datetime] = mapped_column(
        UtcDateTime,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UtcDateTime,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class ProvenanceMixin:
    """Mixin that adds the provenance columns every point carries.

    Attributes:
        data_source: Name of the feed that produced the point.
        confidence: Source confidence in [0, 1].
    """

    data_source: Mapped[str] = mapped_column(String(100), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)

