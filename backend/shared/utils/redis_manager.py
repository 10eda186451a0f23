"""
Redis connection manager for matchcast.
Provides the async connection pool plus typed helpers for cache envelopes and viewer presence.
"""
from __future__ import annotations

import json
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Key namespaces ──────────────────────────────────────────────────────
CACHE_KEY = "cache:{namespace}:{key}"
CACHE_PATTERN = "cache:{namespace}:*"
PRESENCE_KEY = "presence:match:{match_id}"


def _fmt(template: str, **kwargs: Any) -> str:
    return template.format(**kwargs)


class RedisManager:
    """Manages async Redis connection pool and provides typed helpers."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._pool: Optional[Redis] = None

    async def connect(self) -> None:
        """Initialize the connection pool."""
        self._pool = aioredis.from_url(
            self._settings.redis_url_str,
            max_connections=self._settings.redis_max_connections,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
            retry_on_timeout=True,
        )
        await self._pool.ping()
        logger.info("redis_connected", url=self._settings.redis_url_str)

    async def disconnect(self) -> None:
        """Graceful shutdown."""
        if self._pool:
            await self._pool.aclose()
            logger.info("redis_disconnected")

    @property
    def client(self) -> Redis:
        if self._pool is None:
            raise RuntimeError("RedisManager not connected. Call connect() first.")
        return self._pool

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except Exception as exc:
            logger.warning("redis_ping_failed", error=str(exc))
            return False

    # ── Cache envelopes ─────────────────────────────────────────────────
    async def set_envelope(self, namespace: str, key: str, envelope: dict[str, Any], ttl_s: int) -> None:
        """Store a JSON envelope; Redis expiry is the stale-retention horizon, not the freshness TTL."""
        await self.client.set(
            _fmt(CACHE_KEY, namespace=namespace, key=key),
            json.dumps(envelope, default=str),
            ex=max(1, ttl_s),
        )

    async def get_envelope(self, namespace: str, key: str) -> Optional[dict[str, Any]]:
        raw = await self.client.get(_fmt(CACHE_KEY, namespace=namespace, key=key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("redis_envelope_corrupt", namespace=namespace, key=key)
            return None

    async def delete_envelope(self, namespace: str, key: str) -> None:
        await self.client.delete(_fmt(CACHE_KEY, namespace=namespace, key=key))

    async def clear_namespace(self, namespace: str) -> int:
        """Delete every cache key in a namespace. Returns number of keys removed."""
        removed = 0
        async for key in self.client.scan_iter(match=_fmt(CACHE_PATTERN, namespace=namespace), count=500):
            removed += await self.client.delete(key)
        return removed

    # ── Viewer presence ─────────────────────────────────────────────────
    async def touch_presence(self, match_id: str, session_id: str, now: float, ttl_s: int) -> None:
        """Record a heartbeat: session scored by last-seen time, key kept alive for ttl_s."""
        key = _fmt(PRESENCE_KEY, match_id=match_id)
        pipe = self.client.pipeline(transaction=True)
        pipe.zadd(key, {session_id: now})
        pipe.expire(key, ttl_s * 2)
        await pipe.execute()

    async def remove_presence(self, match_id: str, session_id: str) -> None:
        await self.client.zrem(_fmt(PRESENCE_KEY, match_id=match_id), session_id)

    async def count_presence(self, match_id: str, now: float, timeout_s: int) -> int:
        """Drop sessions silent for longer than timeout_s, then count the rest."""
        key = _fmt(PRESENCE_KEY, match_id=match_id)
        pipe = self.client.pipeline(transaction=True)
        pipe.zremrangebyscore(key, "-inf", f"({now - timeout_s}")
        pipe.zcard(key)
        results = await pipe.execute()
        return int(results[1])
