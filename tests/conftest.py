"""Root test configuration for cafe_guard.

Every time-dependent component is built on a ManualClock so expiry, blocking
and grace periods are exercised by moving time explicitly.

Outlet fixture layout:
    O1  Main Street   active
    O2  Harbour       active
    O3  Old Town      inactive
"""

from __future__ import annotations

from typing import Callable, Iterable, Optional

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from cafe_guard.clock import ManualClock
from cafe_guard.config import Config
from cafe_guard.context import SecurityContext, create_security_context
from cafe_guard.main import create_app
from cafe_guard.models.outlet import InMemoryOutletDirectory, Outlet


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Keep config discovery away from the developer's real config files."""
    monkeypatch.delenv("CAFE_GUARD_CONFIG", raising=False)
    monkeypatch.delenv("CAFE_GUARD_PORT", raising=False)
    monkeypatch.delenv("CAFE_GUARD_JWT_SECRET", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def config() -> Config:
    return Config.defaults()


@pytest.fixture
def outlets() -> InMemoryOutletDirectory:
    return InMemoryOutletDirectory(
        [
            Outlet("O1", "Main Street"),
            Outlet("O2", "Harbour"),
            Outlet("O3", "Old Town", is_active=False),
        ]
    )


@pytest.fixture
def security(config: Config, clock: ManualClock, outlets: InMemoryOutletDirectory) -> SecurityContext:
    return create_security_context(config, clock=clock, outlets=outlets)


@pytest.fixture
def make_token(security: SecurityContext) -> Callable[..., str]:
    """Build a signed bearer token the way the external AuthService does."""

    def _make(
        user_id: str = "u-1",
        role: str = "staff",
        default_outlet_id: Optional[str] = None,
        assigned_outlets: Iterable[str] = (),
        **kwargs,
    ) -> str:
        return security.tokens.encode(
            user_id,
            role,
            default_outlet_id=default_outlet_id,
            assigned_outlets=assigned_outlets,
            **kwargs,
        )

    return _make


@pytest.fixture
def auth_header(make_token) -> Callable[..., dict[str, str]]:
    def _header(**kwargs) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(**kwargs)}"}

    return _header


@pytest.fixture
def app(config: Config, clock: ManualClock, outlets, security: SecurityContext) -> FastAPI:
    """App with state fast-tracked to ready, without running the lifespan."""
    application = create_app(config=config, clock=clock, outlets=outlets)
    application.state.security = security
    application.state.ready = True
    return application


@pytest.fixture
async def client(app: FastAPI):
    transport = ASGITransport(app=app)  # type: ignore[arg-type]
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
