"""Sliding-window rate limiting.

Public API:
  - RateLimiter          admit / record / sweep_idle
  - RateDecision         result of ``admit()``
  - resolve_client_id()  client identity from request headers
"""

from cafe_guard.ratelimit.identity import resolve_client_id
from cafe_guard.ratelimit.limiter import BlockState, RateDecision, RateLimiter, RateWindow

__all__ = [
    "BlockState",
    "RateDecision",
    "RateLimiter",
    "RateWindow",
    "resolve_client_id",
]
