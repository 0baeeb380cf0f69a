"""SecurityContext: every piece of process-wide security state in one place.

Built once by the application lifespan (``app.state.security``) and passed to
the middleware, dependencies and routes from there. Tests build their own
with ``create_security_context(clock=ManualClock())``. Nothing in cafe_guard
keeps security state in module globals.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from cafe_guard.audit.logger import AuditLogger
from cafe_guard.auth.csrf import CsrfTokenManager
from cafe_guard.auth.keys import ApiKeyManager
from cafe_guard.auth.resolver import AuthorizationResolver
from cafe_guard.auth.tokens import TokenCodec
from cafe_guard.clock import Clock, SystemClock
from cafe_guard.config import Config
from cafe_guard.models.outlet import InMemoryOutletDirectory, OutletDirectory
from cafe_guard.ratelimit.limiter import RateLimiter
from cafe_guard.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class SecurityContext:
    config: Config
    clock: Clock
    rate_limiter: RateLimiter
    csrf: CsrfTokenManager
    api_keys: ApiKeyManager
    audit: AuditLogger
    tokens: TokenCodec
    outlets: OutletDirectory
    resolver: AuthorizationResolver

    def sweep(self) -> dict[str, int]:
        """Run every maintenance sweep once. Correctness never depends on it."""
        return {
            "csrf_tokens": self.csrf.sweep_expired(),
            "api_keys": self.api_keys.sweep_expired(),
            "rate_windows": self.rate_limiter.sweep_idle(),
        }

    def sizes(self) -> dict[str, Any]:
        return {
            "rate_windows": self.rate_limiter.window_count,
            "blocked_clients": self.rate_limiter.blocked_count,
            "csrf_tokens": len(self.csrf),
            "api_keys": len(self.api_keys),
            "audit_entries": len(self.audit),
            "audit_capacity": self.audit.capacity,
            "audit_sink_failures": self.audit.sink_failures,
        }


def create_security_context(
    config: Optional[Config] = None,
    clock: Optional[Clock] = None,
    outlets: Optional[OutletDirectory] = None,
) -> SecurityContext:
    config = config or Config.defaults()
    clock = clock or SystemClock()
    if outlets is None:
        outlets = InMemoryOutletDirectory.from_seeds(config.outlets)

    audit = AuditLogger(capacity=config.audit.capacity, clock=clock)
    tokens = TokenCodec(config.auth, clock=clock)
    context = SecurityContext(
        config=config,
        clock=clock,
        rate_limiter=RateLimiter(config.rate_limit, clock),
        csrf=CsrfTokenManager(config.csrf, clock),
        api_keys=ApiKeyManager(config.api_keys, clock),
        audit=audit,
        tokens=tokens,
        outlets=outlets,
        resolver=AuthorizationResolver(tokens, outlets, audit),
    )
    logger.info(
        "Security context created",
        max_per_minute=config.rate_limit.max_per_minute,
        audit_capacity=config.audit.capacity,
        outlets=len(config.outlets),
    )
    return context
