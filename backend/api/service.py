"""
matchcast API entrypoint.

Serves the catalog, resolver and presence routes. The aggregation loop lives
inside the app lifespan, so each worker process refreshes its own catalog.
"""
from __future__ import annotations

import os

import uvicorn

from shared.config import Settings, get_settings


def _listen_port(settings: Settings) -> int:
    # Hosting platforms inject PORT; it wins over MC_API_PORT.
    raw = os.environ.get("PORT")
    return int(raw) if raw else settings.api_port


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "api.app:app",
        host=settings.api_host,
        port=_listen_port(settings),
        workers=settings.api_workers,
        log_level=settings.log_level.lower(),
        access_log=False,
        timeout_keep_alive=30,
        limit_concurrency=1000,
    )


if __name__ == "__main__":
    main()
