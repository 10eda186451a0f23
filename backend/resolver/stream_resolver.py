"""
StreamResolver: embed URL → playable media URL.

The walk is an explicit breadth-first worklist bounded by depth, a visited set,
an iframe cap per page, a concurrency limit per level and a total time budget.
Within a level, pages are fetched concurrently but inspected in discovery order,
so the winner is deterministic for identical pages.

Outcomes:
  direct media URL        returned immediately, no network
  found / not found       cached under the embed URL for the resolution TTL
  root fetch failed       None, not cached (the next request retries)
  budget exceeded         None, not cached
"""
from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Iterable, Optional
from urllib.parse import urlparse

from shared.config import Settings, get_settings
from shared.models.domain import StreamResolution
from shared.models.enums import StreamKind
from shared.utils.cache import CacheLayer
from shared.utils.http_client import FallbackFetcher, TransportChainExhausted
from shared.utils.logging import get_logger
from shared.utils.metrics import STREAM_RESOLUTIONS

from resolver.extractors import (
    DEFAULT_EXTRACTORS,
    Extractor,
    IframeExtractor,
    classify_kind,
    extract_media_url,
    is_direct_media_url,
    normalize_url,
)

logger = get_logger(__name__)

_PLAYLIST_MARKER = "#EXTM3U"


@dataclass
class _Page:
    url: str
    depth: int
    ok: bool = False
    media_url: Optional[str] = None
    kind: StreamKind = StreamKind.UNRESOLVED
    extractor: Optional[str] = None
    iframes: list[str] = field(default_factory=list)


class StreamResolver:
    """
    Args:
        fetcher: Shared FallbackFetcher (direct, then proxy transports).
        cache: CacheLayer holding StreamResolution dumps keyed by embed URL.
        extractors: Ordered extractor list; first hit wins.
    """

    def __init__(
        self,
        fetcher: FallbackFetcher,
        cache: CacheLayer,
        settings: Settings | None = None,
        extractors: Iterable[Extractor] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._fetcher = fetcher
        self._cache = cache
        self._extractors = tuple(extractors) if extractors is not None else DEFAULT_EXTRACTORS
        self._iframes = IframeExtractor(max_per_page=self._settings.resolver_max_iframes_per_page)
        self._user_agents = itertools.cycle(self._settings.resolver_user_agents)

    async def resolve(self, embed_url: str, max_depth: Optional[int] = None) -> Optional[StreamResolution]:
        """Resolve an embed URL. Returns None for "no stream"; never raises."""
        url = normalize_url(embed_url, embed_url)
        if url is None:
            STREAM_RESOLUTIONS.labels(outcome="invalid").inc()
            return None

        if is_direct_media_url(url):
            STREAM_RESOLUTIONS.labels(outcome="direct").inc()
            return StreamResolution(embed_url=url, resolved_url=url, kind=classify_kind(url), via=url)

        cached = await self._cache.get(url)
        if cached is not None:
            STREAM_RESOLUTIONS.labels(outcome="cached").inc()
            resolution = StreamResolution.model_validate(cached)
            return resolution if resolution.found else None

        depth = self._settings.resolver_max_depth if max_depth is None else max_depth
        try:
            resolution = await asyncio.wait_for(self._walk(url, depth), timeout=self._settings.resolver_total_timeout_s)
        except asyncio.TimeoutError:
            STREAM_RESOLUTIONS.labels(outcome="timeout").inc()
            logger.warning("stream_resolve_timeout", embed_url=url)
            return None
        except Exception as exc:
            STREAM_RESOLUTIONS.labels(outcome="error").inc()
            logger.error("stream_resolve_error", embed_url=url, error=str(exc))
            return None

        if resolution is None:
            STREAM_RESOLUTIONS.labels(outcome="failed").inc()
            return None

        await self._cache.set(url, resolution.model_dump(mode="json"))
        if resolution.found:
            STREAM_RESOLUTIONS.labels(outcome="found").inc()
            logger.info("stream_resolved", embed_url=url, resolved=resolution.resolved_url, kind=resolution.kind.value)
            return resolution
        STREAM_RESOLUTIONS.labels(outcome="not_found").inc()
        logger.info("stream_not_found", embed_url=url)
        return None

    async def invalidate(self, embed_url: str) -> None:
        await self._cache.delete(embed_url)

    # ── Walk ────────────────────────────────────────────────────────────

    async def _walk(self, root: str, max_depth: int) -> Optional[StreamResolution]:
        """None when the root page could not be fetched at all; otherwise a definitive result."""
        visited = {root}
        frontier: list[tuple[str, Optional[str]]] = [(root, None)]
        sem = asyncio.Semaphore(max(1, self._settings.resolver_concurrency))
        depth = 0

        while frontier:
            async def _bounded(url: str, referer: Optional[str], level: int = depth) -> _Page:
                async with sem:
                    return await self._inspect(url, referer, level)

            pages = await asyncio.gather(*(_bounded(u, r) for u, r in frontier), return_exceptions=True)

            next_frontier: list[tuple[str, Optional[str]]] = []
            for (url, _), page in zip(frontier, pages):
                if isinstance(page, BaseException):
                    logger.debug("resolver_page_error", url=url, error=str(page))
                    continue
                if depth == 0 and not page.ok:
                    return None
                if page.media_url:
                    return StreamResolution(
                        embed_url=root,
                        resolved_url=page.media_url,
                        kind=page.kind,
                        via=page.url,
                    )
                if depth < max_depth:
                    for child in page.iframes:
                        if child not in visited:
                            visited.add(child)
                            next_frontier.append((child, page.url))
            frontier = next_frontier
            depth += 1

        return StreamResolution(embed_url=root, kind=StreamKind.UNRESOLVED)

    def _headers(self, referer: Optional[str]) -> dict[str, str]:
        headers = {
            "User-Agent": next(self._user_agents),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
            "Cache-Control": "no-cache",
        }
        if referer:
            parsed = urlparse(referer)
            headers["Referer"] = referer
            headers["Origin"] = f"{parsed.scheme}://{parsed.netloc}"
        return headers

    async def _inspect(self, url: str, referer: Optional[str], depth: int) -> _Page:
        page = _Page(url=url, depth=depth)
        try:
            result = await self._fetcher.get(
                url,
                timeout_s=self._settings.embed_fetch_timeout_s,
                headers=self._headers(referer),
                max_bytes=self._settings.resolver_max_html_bytes,
            )
        except TransportChainExhausted as exc:
            logger.debug("resolver_fetch_failed", url=url, depth=depth, error=str(exc))
            return page

        page.ok = True
        response = result.response
        content_type = response.headers.get("content-type", "").lower()
        body = response.text

        if "mpegurl" in content_type or body.lstrip().startswith(_PLAYLIST_MARKER):
            # through a proxy, response.url is the relay address, not the playlist
            page.media_url = str(response.url) if result.transport == "direct" else url
            page.kind = StreamKind.HLS
            page.extractor = "playlist_body"
            return page

        page.media_url, page.extractor = extract_media_url(body, url, self._extractors)
        page.kind = classify_kind(page.media_url)
        if page.media_url is None:
            page.iframes = self._iframes.extract_all(body, url)
        logger.debug(
            "resolver_page_inspected",
            url=url,
            depth=depth,
            extractor=page.extractor,
            iframes=len(page.iframes),
        )
        return page
