"""
Viewer presence store.

Narrow heartbeat interface behind /viewers: a session counts toward a match
while its last heartbeat is younger than the presence timeout.
"""
from __future__ import annotations

import abc
import time
from typing import Callable

from redis.exceptions import RedisError

from shared.utils.logging import get_logger
from shared.utils.redis_manager import RedisManager

logger = get_logger(__name__)


class PresenceStore(abc.ABC):
    def __init__(self, timeout_s: int = 60, clock: Callable[[], float] = time.time) -> None:
        self.timeout_s = timeout_s
        self._clock = clock

    @abc.abstractmethod
    async def heartbeat(self, match_id: str, session_id: str) -> int:
        """Record a heartbeat and return the current viewer count."""
        ...

    @abc.abstractmethod
    async def leave(self, match_id: str, session_id: str) -> int:
        ...

    @abc.abstractmethod
    async def get_viewer_count(self, match_id: str) -> int:
        ...

    async def ping(self) -> bool:
        return True


class InMemoryPresenceStore(PresenceStore):
    """Single-process store: match id → {session id: last seen}."""

    def __init__(self, timeout_s: int = 60, clock: Callable[[], float] = time.time) -> None:
        super().__init__(timeout_s, clock)
        self._sessions: dict[str, dict[str, float]] = {}

    def _prune(self, match_id: str) -> dict[str, float]:
        sessions = self._sessions.get(match_id, {})
        cutoff = self._clock() - self.timeout_s
        live = {sid: seen for sid, seen in sessions.items() if seen >= cutoff}
        if live:
            self._sessions[match_id] = live
        else:
            self._sessions.pop(match_id, None)
        return live

    async def heartbeat(self, match_id: str, session_id: str) -> int:
        self._sessions.setdefault(match_id, {})[session_id] = self._clock()
        return len(self._prune(match_id))

    async def leave(self, match_id: str, session_id: str) -> int:
        self._sessions.get(match_id, {}).pop(session_id, None)
        return len(self._prune(match_id))

    async def get_viewer_count(self, match_id: str) -> int:
        return len(self._prune(match_id))


class RedisPresenceStore(PresenceStore):
    """Sorted set per match scored by last heartbeat; shared across API workers."""

    def __init__(
        self,
        redis: RedisManager,
        timeout_s: int = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(timeout_s, clock)
        self._redis = redis

    async def heartbeat(self, match_id: str, session_id: str) -> int:
        now = self._clock()
        try:
            await self._redis.touch_presence(match_id, session_id, now, self.timeout_s)
            return await self._redis.count_presence(match_id, now, self.timeout_s)
        except RedisError as exc:
            logger.warning("presence_heartbeat_failed", match_id=match_id, error=str(exc))
            return 0

    async def leave(self, match_id: str, session_id: str) -> int:
        try:
            await self._redis.remove_presence(match_id, session_id)
            return await self._redis.count_presence(match_id, self._clock(), self.timeout_s)
        except RedisError as exc:
            logger.warning("presence_leave_failed", match_id=match_id, error=str(exc))
            return 0

    async def get_viewer_count(self, match_id: str) -> int:
        try:
            return await self._redis.count_presence(match_id, self._clock(), self.timeout_s)
        except RedisError as exc:
            logger.warning("presence_count_failed", match_id=match_id, error=str(exc))
            return 0

    async def ping(self) -> bool:
        return await self._redis.ping()
