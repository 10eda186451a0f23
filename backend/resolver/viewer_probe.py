"""
ViewerCountProbe: best-effort per-stream viewer counts.

Counts come from the stream listing API (max of `viewers` across the listed
streams). Only genuine positive counts are returned or cached; every failure
is None, never an exception and never a made-up number.
"""
from __future__ import annotations

import asyncio
import math
from typing import Iterable, Optional
from urllib.parse import quote

from shared.config import Settings, get_settings
from shared.models.domain import CanonicalMatch, Source, ViewerSample
from shared.utils.cache import CacheLayer
from shared.utils.http_client import FallbackFetcher, TransportChainExhausted
from shared.utils.logging import get_logger
from shared.utils.metrics import VIEWER_PROBES

logger = get_logger(__name__)


def sample_key(source: str, source_id: str) -> str:
    return f"{source}:{source_id}"


def _max_viewers(data: object) -> Optional[int]:
    if not isinstance(data, list) or not data:
        return None
    counts = []
    for item in data:
        if not isinstance(item, dict):
            continue
        value = item.get("viewers")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if (isinstance(value, float) and not math.isfinite(value)) or value < 0:
            continue
        counts.append(int(value))
    best = max(counts, default=0)
    return best if best > 0 else None


class ViewerCountProbe:
    def __init__(
        self,
        fetcher: FallbackFetcher,
        cache: CacheLayer,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._fetcher = fetcher
        self._cache = cache
        self._api_base = self._settings.stream_api_base.rstrip("/")
        self._preferred = list(self._settings.viewer_preferred_sources)

    def _url(self, source: str, source_id: str) -> str:
        return f"{self._api_base}/stream/{quote(source, safe='')}/{quote(source_id, safe='')}"

    async def probe(self, source: str, source_id: str) -> Optional[int]:
        """Viewer count for one (source, id), or None. A cache hit skips the network."""
        key = sample_key(source, source_id)
        cached = await self._cache.get(key)
        if cached is not None:
            VIEWER_PROBES.labels(outcome="cached").inc()
            return ViewerSample.model_validate(cached).count

        try:
            result = await self._fetcher.get(
                self._url(source, source_id),
                timeout_s=self._settings.viewer_probe_timeout_s,
                headers={"Accept": "application/json"},
            )
            count = _max_viewers(result.response.json())
        except TransportChainExhausted as exc:
            VIEWER_PROBES.labels(outcome="failed").inc()
            logger.debug("viewer_probe_failed", key=key, error=str(exc))
            return None
        except ValueError:
            VIEWER_PROBES.labels(outcome="parse_failure").inc()
            logger.debug("viewer_probe_bad_body", key=key)
            return None

        if count is None:
            VIEWER_PROBES.labels(outcome="empty").inc()
            return None
        VIEWER_PROBES.labels(outcome="ok").inc()
        await self._cache.set(key, ViewerSample(count=count).model_dump(mode="json"))
        return count

    async def probe_many(self, pairs: Iterable[tuple[str, str]]) -> dict[tuple[str, str], Optional[int]]:
        """Probe several pairs with bounded concurrency; one failure never cancels the rest."""
        unique = list(dict.fromkeys(pairs))[: self._settings.viewer_probe_batch_limit]
        sem = asyncio.Semaphore(max(1, self._settings.viewer_probe_concurrency))

        async def _one(pair: tuple[str, str]) -> Optional[int]:
            async with sem:
                return await self.probe(*pair)

        results = await asyncio.gather(*(_one(p) for p in unique), return_exceptions=True)
        out: dict[tuple[str, str], Optional[int]] = {}
        for pair, result in zip(unique, results):
            if isinstance(result, BaseException):
                logger.warning("viewer_probe_task_failed", source=pair[0], id=pair[1], error=str(result))
                result = None
            out[pair] = result
        return out

    def pick_source(self, match: CanonicalMatch) -> Optional[Source]:
        """A preferred source when present, else the first non-channel source."""
        candidates = [s for s in match.sources if not s.is_channel]
        for src in candidates:
            if src.source in self._preferred:
                return src
        return candidates[0] if candidates else None

    async def probe_match(self, match: CanonicalMatch, is_live: bool) -> Optional[int]:
        """Probe the match's best source; matches that are not live are never probed."""
        if not is_live:
            return None
        src = self.pick_source(match)
        if src is None:
            return None
        return await self.probe(src.source, src.id)

    async def clear(self, key: Optional[str] = None) -> None:
        """Drop one sample by key, or every sample."""
        if key is None:
            await self._cache.clear()
        else:
            await self._cache.delete(key)
