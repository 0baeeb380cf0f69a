"""Sliding-window rate limiter with escalating blocks.

One :class:`RateWindow` per ``"<client>:<endpoint>"`` key holds the request
timestamps of the trailing hour. One :class:`BlockState` per client holds the
instant the client's block ends. Both live in independently locked stores.

Check order for ``admit()`` (first failing check wins, later ones are skipped):

  a. client blocked and block unexpired        → reject "blocked"
     (the window is neither created nor touched)
  b. prune the window to the trailing hour
  c. requests in last minute ≥ max_per_minute  → block, reject (retry 60s)
  d. requests in last hour   ≥ max_per_hour    → block, reject (retry 3600s)
  e. auth endpoint and hour count ≥ auth limit → block, reject (retry 3600s)
  f. admit

``admit()`` does not record. The pipeline calls ``record()`` after an
admission, so two requests admitted back to back can both record. Limiting is
approximate by design; the two steps must stay separately locked.
"""

from __future__ import annotations

import math
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from cafe_guard.clock import Clock, SystemClock
from cafe_guard.config import RateLimitConfig
from cafe_guard.errors import AdmissionDenied
from cafe_guard.store import RecordStore
from cafe_guard.utils.logger import get_logger

logger = get_logger(__name__)

MINUTE = timedelta(minutes=1)
HOUR = timedelta(hours=1)

REASON_BLOCKED = "blocked"
REASON_PER_MINUTE = "per-minute limit"
REASON_PER_HOUR = "per-hour limit"
REASON_AUTH = "auth limit"


class RateWindow:
    """Timestamps of one (client, endpoint) pair, oldest first.

    All mutation goes through the window's own lock; windows for different
    keys never contend.
    """

    __slots__ = ("key", "timestamps", "last_seen", "lock")

    def __init__(self, key: str, now: datetime) -> None:
        self.key = key
        self.timestamps: deque[datetime] = deque()
        self.last_seen = now
        self.lock = threading.Lock()

    def prune(self, now: datetime) -> None:
        """Drop timestamps outside the trailing hour. Caller holds ``lock``."""
        cutoff = now - HOUR
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()

    def count_since(self, cutoff: datetime) -> int:
        """Timestamps strictly younger than ``cutoff``. Caller holds ``lock``."""
        count = 0
        for ts in reversed(self.timestamps):
            if ts <= cutoff:
                break
            count += 1
        return count


@dataclass(frozen=True)
class BlockState:
    client_id: str
    blocked_until: datetime


@dataclass(frozen=True)
class RateDecision:
    """Outcome of ``RateLimiter.admit()``.

    ``retry_after`` is only meaningful when ``allowed`` is False.
    """

    allowed: bool
    client_id: str
    endpoint: str
    reason: Optional[str] = None
    message: Optional[str] = None
    retry_after: int = 0
    minute_count: int = 0
    hour_count: int = 0

    def as_error(self) -> AdmissionDenied:
        """The rejection as an ``AdmissionDenied``. Only valid when not allowed."""
        if self.allowed:
            raise ValueError("an admitted request has no rejection")
        return AdmissionDenied(self.message or "", self.retry_after, self.reason or REASON_BLOCKED)


@dataclass
class RateLimiter:
    config: RateLimitConfig = field(default_factory=RateLimitConfig)
    clock: Clock = field(default_factory=SystemClock)

    def __post_init__(self) -> None:
        self._windows: RecordStore[str, RateWindow] = RecordStore()
        self._blocks: RecordStore[str, BlockState] = RecordStore()
        self._patterns = tuple(p.lower() for p in self.config.auth_endpoint_patterns)
        self._sweep_lock = threading.Lock()
        self._last_sweep = self.clock.now()

    # ── Public API ────────────────────────────────────────────────────────

    def admit(self, client_id: str, endpoint: str) -> RateDecision:
        """Decide whether a request from ``client_id`` to ``endpoint`` may proceed.

        Never raises. The caller must short-circuit on a rejection and call
        ``record()`` only on admission.
        """
        now = self.clock.now()
        self._maybe_sweep(now)

        block = self.active_block(client_id)
        if block is not None:
            remaining = (block.blocked_until - now).total_seconds()
            logger.warning(
                "Blocked request rejected",
                client_id=client_id,
                endpoint=endpoint,
                retry_after=math.ceil(remaining),
            )
            return RateDecision(
                allowed=False,
                client_id=client_id,
                endpoint=endpoint,
                reason=REASON_BLOCKED,
                message="Too many requests. Please try again later.",
                retry_after=max(1, math.ceil(remaining)),
            )

        window = self._window(client_id, endpoint, now)
        with window.lock:
            window.prune(now)
            window.last_seen = now
            minute_count = window.count_since(now - MINUTE)
            hour_count = len(window.timestamps)

        def reject(reason: str, message: str, retry_after: int) -> RateDecision:
            return RateDecision(
                allowed=False,
                client_id=client_id,
                endpoint=endpoint,
                reason=reason,
                message=message,
                retry_after=retry_after,
                minute_count=minute_count,
                hour_count=hour_count,
            )

        if minute_count >= self.config.max_per_minute:
            self.block(client_id, now)
            logger.warning(
                "Rate limit exceeded", client_id=client_id, endpoint=endpoint, window="minute"
            )
            return reject(
                REASON_PER_MINUTE,
                f"Rate limit exceeded. Maximum {self.config.max_per_minute} requests per minute.",
                60,
            )

        if hour_count >= self.config.max_per_hour:
            self.block(client_id, now)
            logger.warning(
                "Rate limit exceeded", client_id=client_id, endpoint=endpoint, window="hour"
            )
            return reject(
                REASON_PER_HOUR,
                f"Rate limit exceeded. Maximum {self.config.max_per_hour} requests per hour.",
                3600,
            )

        if self.is_auth_endpoint(endpoint) and hour_count >= self.config.max_auth_per_hour:
            self.block(client_id, now)
            logger.warning("Login rate limit exceeded", client_id=client_id, endpoint=endpoint)
            return reject(
                REASON_AUTH,
                "Too many login attempts. Please try again later.",
                3600,
            )

        return RateDecision(
            allowed=True,
            client_id=client_id,
            endpoint=endpoint,
            minute_count=minute_count,
            hour_count=hour_count,
        )

    def record(self, client_id: str, endpoint: str) -> int:
        """Append ``now`` to the window. Returns the request count of the last minute."""
        now = self.clock.now()
        window = self._window(client_id, endpoint, now)
        with window.lock:
            window.timestamps.append(now)
            window.last_seen = now
            return window.count_since(now - MINUTE)

    def active_block(self, client_id: str) -> Optional[BlockState]:
        """Return the client's unexpired block, deleting an expired one."""
        now = self.clock.now()
        block = self._blocks.get(client_id)
        if block is None:
            return None
        if block.blocked_until > now:
            return block
        self._blocks.pop_if(client_id, lambda b: b.blocked_until <= now)
        return None

    def block(self, client_id: str, now: Optional[datetime] = None) -> BlockState:
        """Block ``client_id`` for ``block_minutes`` from ``now`` (create or extend)."""
        now = now or self.clock.now()
        state = BlockState(
            client_id=client_id,
            blocked_until=now + timedelta(minutes=self.config.block_minutes),
        )
        self._blocks.put(client_id, state)
        return state

    def is_auth_endpoint(self, endpoint: str) -> bool:
        lowered = endpoint.lower()
        return any(pattern in lowered for pattern in self._patterns)

    def sweep_idle(self) -> int:
        """Delete windows that have been empty and untouched for ``window_idle_seconds``.

        Also drops expired blocks. Returns the number of windows removed.
        """
        now = self.clock.now()
        idle_cutoff = now - timedelta(seconds=self.config.window_idle_seconds)

        def idle(window: RateWindow) -> bool:
            with window.lock:
                window.prune(now)
                return not window.timestamps and window.last_seen <= idle_cutoff

        removed = self._windows.remove_where(idle)
        self._blocks.remove_where(lambda b: b.blocked_until <= now)
        if removed:
            logger.debug("Idle rate windows swept", removed=len(removed))
        return len(removed)

    @property
    def window_count(self) -> int:
        return len(self._windows)

    @property
    def blocked_count(self) -> int:
        now = self.clock.now()
        return sum(1 for b in self._blocks.values() if b.blocked_until > now)

    def reset(self) -> None:
        self._windows.clear()
        self._blocks.clear()

    # ── Internals ─────────────────────────────────────────────────────────

    def _window(self, client_id: str, endpoint: str, now: datetime) -> RateWindow:
        key = f"{client_id}:{endpoint}"
        return self._windows.get_or_create(key, lambda: RateWindow(key, now))

    def _maybe_sweep(self, now: datetime) -> None:
        interval = timedelta(seconds=self.config.sweep_interval_seconds)
        with self._sweep_lock:
            if now - self._last_sweep < interval:
                return
            self._last_sweep = now
        self.sweep_idle()
