"""Unit tests for SecurityContext.sweep()/sizes() and the periodic sweep task."""

from __future__ import annotations

import asyncio

import pytest

from cafe_guard.context import SecurityContext
from cafe_guard.maintenance import run_periodic_sweep


class TestContextSweep:
    def test_sweep_removes_expired_state(self, security: SecurityContext, clock) -> None:
        security.csrf.issue("alice")
        key = security.api_keys.issue("svc")
        security.api_keys.revoke(key)
        security.rate_limiter.record("10.0.0.1", "list_orders")
        clock.advance(hours=2)

        removed = security.sweep()

        assert removed == {"csrf_tokens": 1, "api_keys": 1, "rate_windows": 1}
        sizes = security.sizes()
        assert sizes["csrf_tokens"] == 0
        assert sizes["api_keys"] == 0
        assert sizes["rate_windows"] == 0

    def test_sweep_keeps_live_state(self, security: SecurityContext) -> None:
        security.csrf.issue("alice")
        security.api_keys.issue("svc")
        security.rate_limiter.record("10.0.0.1", "list_orders")

        assert security.sweep() == {"csrf_tokens": 0, "api_keys": 0, "rate_windows": 0}


class FlakySecurity:
    """Fails the first sweep, then counts."""

    def __init__(self) -> None:
        self.calls = 0

    def sweep(self) -> dict[str, int]:
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("store unavailable")
        return {"csrf_tokens": self.calls}


async def test_periodic_sweep_survives_errors_and_cancels() -> None:
    security = FlakySecurity()
    task = asyncio.create_task(run_periodic_sweep(security, 0))  # type: ignore[arg-type]

    for _ in range(100):
        await asyncio.sleep(0)
        if security.calls >= 3:
            break
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert security.calls >= 3
