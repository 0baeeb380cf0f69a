"""Health endpoint.

  GET /health  503 while the lifespan is still starting, 200 afterwards with
               the size of every in-memory security store.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from cafe_guard import __version__

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    security = getattr(request.app.state, "security", None)
    if not getattr(request.app.state, "ready", False) or security is None:
        raise HTTPException(status_code=503, detail="cafe_guard is starting up")

    return {
        "status": "ok",
        "version": __version__,
        "stores": security.sizes(),
    }
