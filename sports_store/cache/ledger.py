"""Per-UTC-day query cost ledger.

The cache manager prices each executed query and records the charge against
the current UTC day. Today's tally is consulted before running a query, to
enforce the daily ceiling and to decide whether to read the cache.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone

from sports_store.types import DailyCost

logger = logging.getLogger(__name__)

# Days of history kept for month-to-date reporting
HISTORY_DAYS = 31


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CostLedger:
    """Thread-safe running tally of query cost per UTC day."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._days: dict[date, DailyCost] = {}
        self._lock = threading.RLock()

    def current_day(self) -> date:
        """Return the ledger's current UTC date."""
        return self._clock().astimezone(timezone.utc).date()

    def record(self, cost: float) -> float:
        """Add cost to today's tally and return the new total."""
        with self._lock:
            day = self.current_day()
            tally = self._days.get(day)
            if tally is None:
                tally = self._days[day] = DailyCost(day=day)
                self._prune(day)
            tally.cost += cost
            tally.queries += 1
            return tally.cost

    def today(self) -> DailyCost:
        """Return a copy of today's tally."""
        with self._lock:
            day = self.current_day()
            tally = self._days.get(day)
            if tally is None:
                return DailyCost(day=day)
            return DailyCost(day=day, cost=tally.cost, queries=tally.queries)

    def month_to_date(self) -> DailyCost:
        """Return today's month summed into one tally dated today."""
        with self._lock:
            day = self.current_day()
            month = [
                tally for d, tally in self._days.items()
                if (d.year, d.month) == (day.year, day.month)
            ]
            return DailyCost(
                day=day,
                cost=sum(t.cost for t in month),
                queries=sum(t.queries for t in month),
            )

    def clear(self) -> None:
        with self._lock:
            self._days.clear()

    def _prune(self, today: date) -> None:
        cutoff = today - timedelta(days=HISTORY_DAYS)
        for day in [d for d in self._days if d < cutoff]:
            del self._days[day]
