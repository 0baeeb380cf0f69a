"""Rate-limit middleware.

First gate of the request pipeline. For every request:

  1. assign a ULID request id (all log lines of the request carry it)
  2. resolve the client id and the endpoint name
  3. ``admit()``; on rejection answer 429 immediately, the handler never runs,
     and a Security audit event is recorded
  4. ``record()``; run the handler; attach ``X-RateLimit-*`` headers

The endpoint name is the matched route's name (the handler function name for
FastAPI routes). Requests that match no route fall back to the URL path.
"""

from __future__ import annotations

import time
from datetime import timedelta

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Match

from cafe_guard.audit.models import SecuritySeverity
from cafe_guard.models.rejection import rejection_from_error
from cafe_guard.ratelimit.identity import resolve_client_id
from cafe_guard.utils.logger import clear_request_id, get_logger, set_request_id
from cafe_guard.utils.ulid import generate_ulid

logger = get_logger(__name__)


def endpoint_name(request: Request) -> str:
    router = getattr(request.app, "router", None)
    for route in getattr(router, "routes", []):
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            name = getattr(route, "name", None)
            if name:
                return name
            break
    return request.url.path


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Admit or reject each request against the app's ``RateLimiter``.

    Reads the limiter from ``app.state.security``. Before the lifespan has
    built it, requests pass through untouched.
    """

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        set_request_id(generate_ulid())
        try:
            security = getattr(request.app.state, "security", None)
            if security is None:
                return await call_next(request)

            limiter = security.rate_limiter
            client_id = resolve_client_id(request.headers)
            endpoint = endpoint_name(request)

            decision = limiter.admit(client_id, endpoint)
            if not decision.allowed:
                security.audit.log_security_event(
                    "Rate Limit Exceeded",
                    severity=SecuritySeverity.MEDIUM,
                    ip_address=client_id,
                    user_agent=request.headers.get("user-agent"),
                    details=f"{decision.reason} on {endpoint}",
                )
                return rejection_from_error(decision.as_error())

            minute_count = limiter.record(client_id, endpoint)
            started = time.perf_counter()
            response = await call_next(request)
            elapsed_ms = (time.perf_counter() - started) * 1000

            limit = limiter.config.max_per_minute
            reset_at = limiter.clock.now() + timedelta(minutes=1)
            response.headers["X-RateLimit-Limit"] = str(limit)
            response.headers["X-RateLimit-Remaining"] = str(max(0, limit - minute_count))
            response.headers["X-RateLimit-Reset"] = str(int(reset_at.timestamp()))

            if security.config.audit.log_api_calls:
                security.audit.log_api_call(
                    endpoint=request.url.path,
                    method=request.method,
                    status_code=response.status_code,
                    response_time_ms=round(elapsed_ms, 2),
                    ip_address=client_id,
                )
            return response
        finally:
            clear_request_id()
