"""
TTL cache layer.

Each component that caches gets its own CacheLayer instance, constructed with an
explicit namespace and TTL and injected into it; there is no module-level cache.
Two backends share one contract:

  get(key)       -> value while younger than its TTL, else None
  get_stale(key) -> last value while younger than TTL + stale retention, else None
  set(key, v)    -> last write wins

Values must be JSON-compatible (callers store ``model_dump(mode="json")``).
"""
from __future__ import annotations

import abc
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

from redis.exceptions import RedisError

from shared.config import BackendKind, Settings, get_settings
from shared.utils.logging import get_logger
from shared.utils.metrics import CACHE_LOOKUPS
from shared.utils.redis_manager import RedisManager

logger = get_logger(__name__)


class CacheLayer(abc.ABC):
    """Async TTL key/value store."""

    def __init__(self, namespace: str, ttl_s: float, stale_ttl_s: float = 0.0) -> None:
        self.namespace = namespace
        self.ttl_s = ttl_s
        self.stale_ttl_s = stale_ttl_s

    def _record(self, result: str) -> None:
        CACHE_LOOKUPS.labels(namespace=self.namespace, result=result).inc()

    @abc.abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abc.abstractmethod
    async def get_stale(self, key: str) -> Optional[Any]:
        ...

    @abc.abstractmethod
    async def set(self, key: str, value: Any, ttl_s: float | None = None) -> None:
        ...

    @abc.abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abc.abstractmethod
    async def clear(self) -> None:
        ...

    async def ping(self) -> bool:
        return True


@dataclass
class _Entry:
    value: Any
    expires_at: float
    stale_until: float


class TTLCache(CacheLayer):
    """
    In-process cache with an injectable clock and a bounded entry count.

    Entries are kept past their TTL only for get_stale(); the oldest entries
    are evicted first once max_entries is exceeded.
    """

    def __init__(
        self,
        namespace: str,
        ttl_s: float,
        stale_ttl_s: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 5000,
    ) -> None:
        super().__init__(namespace, ttl_s, stale_ttl_s)
        self._clock = clock
        self._max_entries = max_entries
        self._entries: OrderedDict[str, _Entry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        now = self._clock()
        if entry is None or now >= entry.expires_at:
            if entry is not None and now >= entry.stale_until:
                del self._entries[key]
            self._record("miss")
            return None
        self._record("hit")
        return entry.value

    async def get_stale(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None or self._clock() >= entry.stale_until:
            self._record("stale_miss")
            return None
        self._record("stale_hit")
        return entry.value

    async def set(self, key: str, value: Any, ttl_s: float | None = None) -> None:
        ttl = self.ttl_s if ttl_s is None else ttl_s
        now = self._clock()
        self._entries.pop(key, None)
        self._entries[key] = _Entry(value=value, expires_at=now + ttl, stale_until=now + ttl + self.stale_ttl_s)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()


class RedisTTLCache(CacheLayer):
    """
    Redis-backed cache. Each value is stored in a JSON envelope {"v", "exp"}
    where exp is the wall-clock freshness deadline; the Redis key itself lives
    until the stale horizon. Redis errors degrade to cache misses.
    """

    def __init__(
        self,
        namespace: str,
        ttl_s: float,
        redis: RedisManager,
        stale_ttl_s: float = 0.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(namespace, ttl_s, stale_ttl_s)
        self._redis = redis
        self._clock = clock

    async def _load(self, key: str) -> Optional[dict[str, Any]]:
        try:
            return await self._redis.get_envelope(self.namespace, key)
        except RedisError as exc:
            logger.warning("cache_read_failed", namespace=self.namespace, key=key, error=str(exc))
            return None

    async def get(self, key: str) -> Optional[Any]:
        envelope = await self._load(key)
        if envelope is None or self._clock() >= float(envelope.get("exp", 0)):
            self._record("miss")
            return None
        self._record("hit")
        return envelope.get("v")

    async def get_stale(self, key: str) -> Optional[Any]:
        envelope = await self._load(key)
        if envelope is None:
            self._record("stale_miss")
            return None
        self._record("stale_hit")
        return envelope.get("v")

    async def set(self, key: str, value: Any, ttl_s: float | None = None) -> None:
        ttl = self.ttl_s if ttl_s is None else ttl_s
        envelope = {"v": value, "exp": self._clock() + ttl}
        try:
            await self._redis.set_envelope(self.namespace, key, envelope, int(ttl + self.stale_ttl_s) + 1)
        except RedisError as exc:
            logger.warning("cache_write_failed", namespace=self.namespace, key=key, error=str(exc))

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete_envelope(self.namespace, key)
        except RedisError as exc:
            logger.warning("cache_delete_failed", namespace=self.namespace, key=key, error=str(exc))

    async def clear(self) -> None:
        try:
            removed = await self._redis.clear_namespace(self.namespace)
            logger.info("cache_cleared", namespace=self.namespace, removed=removed)
        except RedisError as exc:
            logger.warning("cache_clear_failed", namespace=self.namespace, error=str(exc))

    async def ping(self) -> bool:
        return await self._redis.ping()


def build_cache(
    namespace: str,
    ttl_s: float,
    settings: Settings | None = None,
    redis: RedisManager | None = None,
) -> CacheLayer:
    """Construct the configured backend for one namespace."""
    settings = settings or get_settings()
    if settings.cache_backend == BackendKind.REDIS:
        if redis is None:
            raise ValueError("Redis cache backend selected but no RedisManager was provided")
        return RedisTTLCache(namespace, ttl_s, redis, stale_ttl_s=settings.cache_stale_retention_s)
    return TTLCache(
        namespace,
        ttl_s,
        stale_ttl_s=settings.cache_stale_retention_s,
        max_entries=settings.cache_max_entries,
    )
