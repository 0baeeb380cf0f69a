"""Programmatic uvicorn entry point for cafe_guard.

Usage:
    python -m cafe_guard.run
    cafe-guard                 # via pyproject.toml [project.scripts]

Binds to config.server.host/port (127.0.0.1:7071 by default). The ``Server``
response header is disabled at the uvicorn level.
"""

from __future__ import annotations

import uvicorn

from cafe_guard.config import load_config

# Max concurrent connections; uvicorn answers 503 beyond this.
UVICORN_LIMIT_CONCURRENCY: int = 100

UVICORN_BACKLOG: int = 50

# Low keep-alive reduces the Slow Loris window.
UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


def main() -> None:
    """Start cafe_guard.

    Raises:
        SystemExit: Propagated from load_config() on config errors.
    """
    config = load_config()

    uvicorn.run(
        "cafe_guard.main:app",
        host=config.server.host,
        port=config.server.port,
        limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
        backlog=UVICORN_BACKLOG,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
        server_header=False,
    )


if __name__ == "__main__":
    main()
