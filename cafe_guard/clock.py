"""Clock abstraction shared by every time-dependent security component.

Expiry, blocking and grace periods are all evaluated lazily against
``clock.now()`` at check time. Production code uses :class:`SystemClock`;
tests inject a :class:`ManualClock` and move time explicitly.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Source of the current instant. Must return timezone-aware UTC datetimes."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """A clock that only moves when told to.

    Thread-safe so concurrency tests can advance time while workers read it.
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, instant: datetime) -> None:
        with self._lock:
            self._now = instant

    def advance(self, **delta: float) -> datetime:
        """Move forward by ``timedelta(**delta)`` and return the new instant."""
        with self._lock:
            self._now = self._now + timedelta(**delta)
            return self._now
