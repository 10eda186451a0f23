"""
FastAPI application factory for the matchcast API service.

Creates the app with:
- REST routes (matches, sports, streams, livescores, teams, viewers)
- Middleware stack
- System endpoints (/health, /ready, /status)
- Lifespan management: builds the service container and runs the aggregation loop
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI

from shared.config import get_settings
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server
from shared.utils.redis_manager import RedisManager

from api.container import build_services, needs_redis
from api.dependencies import get_services, init_dependencies
from api.middleware import setup_middleware
from api.routes.livescores import router as livescores_router
from api.routes.matches import router as matches_router
from api.routes.sports import router as sports_router
from api.routes.streams import router as streams_router
from api.routes.teams import router as teams_router
from api.routes.viewers import router as viewers_router

logger = get_logger(__name__)

_CONNECT_RETRY_ATTEMPTS = 5
_CONNECT_RETRY_BASE_DELAY_S = 1.0


async def _connect_with_retry(connect_fn, name: str) -> None:
    """Call async connect_fn(); retry with exponential backoff on failure."""
    for attempt in range(1, _CONNECT_RETRY_ATTEMPTS + 1):
        try:
            await connect_fn()
            return
        except Exception as exc:
            if attempt == _CONNECT_RETRY_ATTEMPTS:
                raise
            delay = _CONNECT_RETRY_BASE_DELAY_S * (2 ** (attempt - 1))
            logger.warning(
                "connect_retry",
                name=name,
                attempt=attempt,
                max_attempts=_CONNECT_RETRY_ATTEMPTS,
                delay_s=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for tests; the caller initializes dependencies itself."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup: logging, metrics, Redis (when a backend needs it), service
    container, aggregation loop. Shutdown: cancel the loop, close clients.
    """
    settings = get_settings()
    setup_logging("api")
    start_metrics_server()

    redis: Optional[RedisManager] = None
    if needs_redis(settings):
        redis = RedisManager(settings)
        await _connect_with_retry(redis.connect, "Redis")

    services = build_services(settings, redis=redis)
    await services.fetcher.start()
    init_dependencies(services)

    aggregation_task = asyncio.create_task(services.aggregator.run_forever(), name="aggregation-loop")
    logger.info("api_service_started", host=settings.api_host, port=settings.api_port)

    yield

    aggregation_task.cancel()
    try:
        await aggregation_task
    except asyncio.CancelledError:
        pass
    await services.close()
    init_dependencies(None)
    logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for testing."""
    app = FastAPI(
        title="matchcast API",
        description="Aggregated live sports catalog and stream resolution",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    setup_middleware(app)

    app.include_router(matches_router)
    app.include_router(sports_router)
    app.include_router(streams_router)
    app.include_router(livescores_router)
    app.include_router(teams_router)
    app.include_router(viewers_router)

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "api"}

    @app.get("/ready", tags=["system"])
    async def readiness() -> dict[str, Any]:
        """Readiness probe: cache backend and presence store reachable."""
        services = get_services()
        cache_ok = await services.aggregator.cache.ping()
        presence_ok = await services.presence.ping()
        return {
            "status": "ok" if (cache_ok and presence_ok) else "degraded",
            "cache": cache_ok,
            "presence": presence_ok,
        }

    @app.get("/status", tags=["system"])
    async def system_status() -> dict[str, Any]:
        """Last aggregation cycle, per-provider results and transport breaker states."""
        services = get_services()
        aggregator = services.aggregator
        cycle = aggregator.last_cycle
        return {
            "status": "ok" if cycle is not None and not cycle.stale else "degraded",
            "aggregator": {
                "state": aggregator.state.value,
                "interval_s": services.settings.aggregation_interval_s,
                "last_cycle": cycle.model_dump(mode="json") if cycle else None,
            },
            "transports": [t.name for t in services.fetcher.transports],
            "breakers": [b.stats for b in services.fetcher.breakers.values()],
        }

    return app


app = create_app()
