"""Thread-safe keyed record store.

The CSRF token manager, the API key manager and the rate limiter all keep
memory-resident records keyed by an opaque string, with creation, lookup and
prune-by-predicate as the only operations they need. Each store has its own
lock; stores never lock each other, so cross-store sequences are not atomic.
"""

from __future__ import annotations

import threading
from typing import Callable, Generic, Iterator, Optional, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class RecordStore(Generic[K, V]):
    """A dict guarded by a single lock.

    Iteration helpers return snapshots so callers never hold the lock while
    doing their own work.
    """

    def __init__(self) -> None:
        self._records: dict[K, V] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._records

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._records[key] = value

    def get(self, key: K) -> Optional[V]:
        with self._lock:
            return self._records.get(key)

    def get_or_create(self, key: K, factory: Callable[[], V]) -> V:
        """Return the record for ``key``, creating it atomically if absent."""
        with self._lock:
            value = self._records.get(key)
            if value is None:
                value = factory()
                self._records[key] = value
            return value

    def pop(self, key: K) -> Optional[V]:
        with self._lock:
            return self._records.pop(key, None)

    def pop_if(self, key: K, predicate: Callable[[V], bool]) -> Optional[V]:
        """Remove and return the record only if ``predicate(record)`` holds.

        The check and the removal happen under the same lock, so at most one
        concurrent caller can win a given record.
        """
        with self._lock:
            value = self._records.get(key)
            if value is None or not predicate(value):
                return None
            del self._records[key]
            return value

    def remove_where(self, predicate: Callable[[V], bool]) -> list[V]:
        """Remove every record matching ``predicate``; return the removed records."""
        with self._lock:
            doomed = [k for k, v in self._records.items() if predicate(v)]
            return [self._records.pop(k) for k in doomed]

    def values(self) -> list[V]:
        """Snapshot of all records, in insertion order."""
        with self._lock:
            return list(self._records.values())

    def items(self) -> Iterator[tuple[K, V]]:
        with self._lock:
            snapshot = list(self._records.items())
        return iter(snapshot)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
