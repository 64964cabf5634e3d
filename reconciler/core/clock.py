"""Injected time sources. Jobs never read the wall clock directly."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Protocol


def utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; leave aware ones alone."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    def now(self) -> datetime:
        return utc_now()


class FixedClock:
    """Always returns the same instant."""

    def __init__(self, instant: datetime):
        self._instant = ensure_aware(instant)

    def now(self) -> datetime:
        return self._instant


class SequenceClock:
    """Returns the given instants in order, then keeps repeating the last one."""

    def __init__(self, instants: Iterable[datetime]):
        self._instants: List[datetime] = [ensure_aware(i) for i in instants]
        if not self._instants:
            raise ValueError("SequenceClock needs at least one instant")
        self._index = 0

    def now(self) -> datetime:
        instant = self._instants[min(self._index, len(self._instants) - 1)]
        self._index += 1
        return instant
