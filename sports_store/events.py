"""Observer interface for store side effects.

The store announces schema readiness, writes, executed queries, cache
invalidations and cost warnings as small immutable event objects. Whatever
notification transport the surrounding system uses subscribes a callback
here; the storage core never depends on it.

Example:
    >>> from sports_store.events import EventPublisher, CostWarning
    >>> publisher = EventPublisher()
    >>> seen = []
    >>> unsubscribe = publisher.subscribe(seen.append)
    >>> publisher.publish(CostWarning(current_cost=8.1, limit=10.0, threshold=0.8))
    >>> len(seen)
    1
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sports_store.types import EntityType

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StoreEvent:
    """Base class for all store events."""

    occurred_at: datetime = field(default_factory=_utcnow, kw_only=True)


@dataclass(frozen=True)
class SchemaInitialized(StoreEvent):
    steps: int


@dataclass(frozen=True)
class DataInserted(StoreEvent):
    entity_type: EntityType
    inserted: int
    deduplicated: int
    errors: int
    source: str


@dataclass(frozen=True)
class DataQueried(StoreEvent):
    entity_type: EntityType
    result_count: int
    cached: bool


@dataclass(frozen=True)
class CacheInvalidated(StoreEvent):
    prefix: str
    removed: int


@dataclass(frozen=True)
class CostWarning(StoreEvent):
    current_cost: float
    limit: float
    threshold: float


EventCallback = Callable[[StoreEvent], None]


class EventPublisher:
    """Fan events out to subscribed callbacks.

    Callbacks run synchronously on the publishing thread. A failing callback
    is logged and does not stop delivery to the others or fail the store
    operation that published the event.
    """

    def __init__(self) -> None:
        self._subscribers: list[EventCallback] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register a callback and return a function that removes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: StoreEvent) -> None:
        """Deliver an event to every subscriber."""
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception(
                    f"Event subscriber failed for {type(event).__name__}"
                )
