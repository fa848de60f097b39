"""Batched, deduplicated writes into the hypertables.

The write path validates each incoming record into its entity's point model,
optionally collapses duplicates inside the batch, and upserts the survivors
in a single transaction. Row-level validation failures are counted and
logged, never raised; a database failure rolls back the whole batch.

Example:
    >>> from sports_store.storage.writer import InsertRequest, WritePath
    >>> writer = WritePath(database)
    >>> result = writer.insert(InsertRequest(
    ...     entity_type=EntityType.INJURIES,
    ...     points=[{"timestamp": "2024-09-04T12:00:00Z", "playerId": "P1",
    ...              "status": "questionable"}],
    ...     source="team_report",
    ... ))
    >>> result.inserted
    1
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from sports_store.logging import SUCCESS
from sports_store.storage.db import Database, dialect_insert, greatest
from sports_store.storage.points import BasePoint, EntitySpec, get_spec
from sports_store.types import EntityType, InsertResult, PointValidationError

logger = logging.getLogger(__name__)

# Bound on IN-list size when resolving stored prediction timestamps
LOOKUP_CHUNK_SIZE = 500


@dataclass
class InsertRequest:
    """One batch write.

    Attributes:
        entity_type: Entity kind of every point in the batch.
        points: Mappings (snake_case or camelCase keys) or typed points.
        source: Default ``data_source`` for points that carry none.
        confidence: Default ``confidence`` for points that carry none.
        deduplicate: Collapse points sharing a natural key before writing.
    """

    entity_type: EntityType
    points: Sequence[Mapping[str, Any] | BasePoint] = field(default_factory=list)
    source: str = "unknown"
    confidence: float = 1.0
    deduplicate: bool = False

    def __post_init__(self) -> None:
        self.entity_type = EntityType(self.entity_type)


def deduplicate(
    spec: EntitySpec, points: Iterable[BasePoint]
) -> tuple[list[BasePoint], int]:
    """Collapse points with the same identity, keeping the last occurrence.

    The surviving point takes the position of the first occurrence.

    Args:
        spec: Entity registry entry providing the identity.
        points: Validated points in arrival order.

    Returns:
        Tuple of (unique points, number of points removed).
    """
    unique: list[BasePoint] = []
    positions: dict[tuple[Any, ...], int] = {}
    removed = 0
    for point in points:
        key = spec.identity(point)
        if key in positions:
            unique[positions[key]] = point
            removed += 1
        else:
            positions[key] = len(unique)
            unique.append(point)
    return unique, removed


class WritePath:
    """Validates and upserts batches of points.

    Attributes:
        database: Database wrapper providing transactional sessions.
    """

    def __init__(self, database: Database) -> None:
        self.database = database
        self.logger = logging.getLogger(self.__class__.__name__)

    def insert(self, request: InsertRequest) -> InsertResult:
        """Validate, deduplicate and upsert one batch.

        Args:
            request: The batch to write.

        Returns:
            InsertResult with inserted, deduplicated and error counts.

        Raises:
            TransactionError: The batch was rolled back; nothing persisted.
            ConnectivityError: The database could not be reached.
        """
        spec = get_spec(request.entity_type)
        points, errors = self._validate(spec, request)

        removed = 0
        if request.deduplicate:
            points, removed = deduplicate(spec, points)

        if not points:
            self.logger.debug(
                f"No valid {spec.entity_type.value} points to write "
                f"({errors} rejected)"
            )
            return InsertResult(inserted=0, deduplicated=removed, errors=errors)

        with self.database.session_scope() as session:
            self._upsert(session, spec, points)

        self.logger.info(
            f"{SUCCESS} Wrote {len(points)} {spec.entity_type.value} points "
            f"(deduplicated={removed}, errors={errors})"
        )
        return InsertResult(inserted=len(points), deduplicated=removed, errors=errors)

    def _validate(
        self, spec: EntitySpec, request: InsertRequest
    ) -> tuple[list[BasePoint], int]:
        """Return the points that validate and the count that did not."""
        valid: list[BasePoint] = []
        errors = 0
        for index, raw in enumerate(request.points):
            try:
                valid.append(self._coerce(spec, request, raw))
            except PointValidationError as e:
                errors += 1
                self.logger.debug(f"Dropped point {index}: {e}")
        return valid, errors

    def _coerce(
        self, spec: EntitySpec, request: InsertRequest, raw: Any
    ) -> BasePoint:
        """Turn one raw record into a typed point or raise PointValidationError."""
        if isinstance(raw, BasePoint):
            if not isinstance(raw, spec.point_model):
                raise PointValidationError(
                    f"{type(raw).__name__} is not a {spec.entity_type.value} point"
                )
            return raw
        if not isinstance(raw, Mapping):
            raise PointValidationError(f"Expected a mapping, got {type(raw).__name__}")

        data = dict(raw)
        if data.get("data_source") is None and data.get("dataSource") is None:
            data["data_source"] = request.source
        if data.get("confidence") is None:
            data["confidence"] = request.confidence
        try:
            return spec.point_model.model_validate(data)
        except ValidationError as e:
            fields = ", ".join(
                ".".join(str(part) for part in err["loc"]) for err in e.errors()
            )
            raise PointValidationError(f"invalid fields: {fields}") from e

    def _upsert(
        self, session: Session, spec: EntitySpec, points: list[BasePoint]
    ) -> None:
        """Upsert points on their natural key inside the caller's transaction."""
        dialect = self.database.dialect
        table = spec.orm_model.__table__
        rows = [point.to_row() for point in points]
        if not spec.timestamp_in_identity:
            self._anchor_timestamps(session, spec, rows)

        insert = dialect_insert(dialect)
        stmt = insert(table)
        updates: dict[str, Any] = {
            column: stmt.excluded[column] for column in spec.mutable_columns
        }
        if spec.merge_confidence:
            updates["confidence"] = greatest(
                dialect, table.c.confidence, stmt.excluded.confidence
            )
        updates["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(
            index_elements=list(spec.conflict_columns),
            set_=updates,
        )
        session.execute(stmt, rows)

    def _anchor_timestamps(
        self, session: Session, spec: EntitySpec, rows: list[dict[str, Any]]
    ) -> None:
        """Pin each row to the timestamp its identity was first stored with.

        Entities whose identity excludes the timestamp (predictions) still
        need the timestamp in the hypertable key. Re-sent rows are rewritten
        to the stored timestamp so the upsert lands on the existing row.
        """
        model = spec.orm_model
        key_column = spec.natural_key[0]
        ids = list(dict.fromkeys(row[key_column] for row in rows))

        anchors: dict[Any, datetime] = {}
        for start in range(0, len(ids), LOOKUP_CHUNK_SIZE):
            chunk = ids[start:start + LOOKUP_CHUNK_SIZE]
            key_attr = getattr(model, key_column)
            stored = session.execute(
                select(key_attr, model.timestamp).where(key_attr.in_(chunk))
            ).all()
            for key, timestamp in stored:
                anchors.setdefault(key, timestamp)

        for row in rows:
            row["timestamp"] = anchors.setdefault(row[key_column], row["timestamp"])
