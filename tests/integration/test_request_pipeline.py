"""Integration tests for the request pipeline: rate limiting, security headers,
health and the rejection envelope.

Uses httpx.AsyncClient over ASGITransport with app.state fast-tracked to ready
(see conftest.py); the lifespan itself is covered in test_app_lifespan.py.
"""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from cafe_guard.audit import AuditCategory
from cafe_guard.http.headers import SECURITY_HEADERS


@pytest.fixture
def app(app: FastAPI) -> FastAPI:
    """Add stand-in business routes the way the host API would mount them."""

    @app.post("/auth/Login", name="login")
    async def login() -> dict[str, bool]:
        return {"success": True}

    @app.get("/orders", name="list_orders")
    async def list_orders() -> dict[str, list]:
        return {"orders": []}

    @app.get("/boom", name="boom")
    async def boom() -> dict:
        raise RuntimeError("kaboom")

    return app


def _assert_security_headers(response) -> None:
    for name, value in SECURITY_HEADERS.items():
        assert response.headers[name] == value
    assert "x-powered-by" not in response.headers


# ─── Rate limiting ────────────────────────────────────────────────────────────


class TestRateLimiting:
    async def test_success_carries_rate_limit_headers(self, client: AsyncClient) -> None:
        first = await client.get("/orders")
        second = await client.get("/orders")

        assert first.status_code == 200
        assert first.headers["X-RateLimit-Limit"] == "600"
        assert first.headers["X-RateLimit-Remaining"] == "599"
        assert second.headers["X-RateLimit-Remaining"] == "598"
        assert int(second.headers["X-RateLimit-Reset"]) > 0

    async def test_eleventh_login_is_rejected(self, client: AsyncClient, security) -> None:
        for _ in range(10):
            assert (await client.post("/auth/Login")).status_code == 200

        response = await client.post("/auth/Login")

        assert response.status_code == 429
        assert response.json() == {
            "success": False,
            "error": "Too many login attempts. Please try again later.",
            "retryAfter": 3600,
        }
        assert response.headers["Retry-After"] == "3600"
        _assert_security_headers(response)

        event = security.audit.entries()[-1]
        assert event.category is AuditCategory.SECURITY
        assert event.action == "Rate Limit Exceeded"
        assert event.details == "auth limit on login"
        assert event.ip_address == "unknown"

    async def test_block_applies_to_every_endpoint(self, client: AsyncClient, clock) -> None:
        headers = {"X-Forwarded-For": "203.0.113.9"}
        for _ in range(11):
            await client.post("/auth/Login", headers=headers)

        blocked = await client.get("/orders", headers=headers)
        assert blocked.status_code == 429
        assert blocked.json()["error"] == "Too many requests. Please try again later."
        assert blocked.json()["retryAfter"] == 300

        other = await client.get("/orders", headers={"X-Forwarded-For": "203.0.113.10"})
        assert other.status_code == 200

        clock.advance(minutes=5)
        assert (await client.get("/orders", headers=headers)).status_code == 200

    async def test_per_minute_limit(self, client: AsyncClient, security) -> None:
        security.rate_limiter.config.max_per_minute = 3
        headers = {"X-Real-IP": "198.51.100.4"}
        for _ in range(3):
            assert (await client.get("/orders", headers=headers)).status_code == 200

        response = await client.get("/orders", headers=headers)

        assert response.status_code == 429
        assert response.json()["error"] == "Rate limit exceeded. Maximum 3 requests per minute."
        assert response.json()["retryAfter"] == 60

    async def test_api_calls_audited_when_enabled(self, client: AsyncClient, security) -> None:
        security.config.audit.log_api_calls = True
        await client.get("/orders")

        entry = security.audit.entries()[-1]
        assert entry.category is AuditCategory.API_USAGE
        assert entry.action == "GET /orders"
        assert entry.status_code == 200


# ─── Headers and envelopes ────────────────────────────────────────────────────


class TestResponses:
    async def test_security_headers_on_success(self, client: AsyncClient) -> None:
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "cafe_guard"
        _assert_security_headers(response)

    async def test_unknown_route_uses_envelope(self, client: AsyncClient) -> None:
        response = await client.get("/nope")
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Not Found"}
        _assert_security_headers(response)

    async def test_unhandled_error_is_opaque(self, app: FastAPI) -> None:
        transport = ASGITransport(app=app, raise_app_exceptions=False)  # type: ignore[arg-type]
        async with AsyncClient(transport=transport, base_url="http://test") as raw_client:
            response = await raw_client.get("/boom")

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Internal server error"}
        assert "kaboom" not in response.text
        _assert_security_headers(response)


# ─── Health ───────────────────────────────────────────────────────────────────


class TestHealth:
    async def test_ready(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        body = response.json()

        assert response.status_code == 200
        assert body["status"] == "ok"
        assert body["stores"]["audit_capacity"] == 10_000

    async def test_not_ready(self, client: AsyncClient, app: FastAPI) -> None:
        app.state.ready = False
        response = await client.get("/health")
        assert response.status_code == 503
        assert response.json() == {"success": False, "error": "cafe_guard is starting up"}
