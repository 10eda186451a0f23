"""
Service container for the API process.
Builds every cache, provider and engine once per process and owns their lifecycle.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from shared.config import BackendKind, Settings, get_settings
from shared.utils.cache import build_cache
from shared.utils.http_client import FallbackFetcher
from shared.utils.logging import get_logger
from shared.utils.redis_manager import RedisManager

from api.presence import InMemoryPresenceStore, PresenceStore, RedisPresenceStore
from ingest.aggregator import Aggregator
from ingest.normalization.normalizer import MatchNormalizer
from ingest.providers.channels import ChannelDirectoryProvider
from ingest.providers.livescore import LiveScoreProvider
from ingest.providers.match_list import MatchListProvider
from ingest.providers.stream_listing import StreamListingProvider
from ingest.providers.team_directory import TeamDirectoryProvider
from resolver.stream_resolver import StreamResolver
from resolver.viewer_probe import ViewerCountProbe

logger = get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    fetcher: FallbackFetcher
    aggregator: Aggregator
    resolver: StreamResolver
    probe: ViewerCountProbe
    presence: PresenceStore
    streams: StreamListingProvider
    teams: TeamDirectoryProvider
    normalizer: MatchNormalizer
    redis: Optional[RedisManager] = None

    async def close(self) -> None:
        await self.fetcher.close()
        if self.redis is not None:
            await self.redis.disconnect()


def needs_redis(settings: Settings) -> bool:
    return BackendKind.REDIS in (settings.cache_backend, settings.presence_backend)


def build_services(
    settings: Settings | None = None,
    fetcher: FallbackFetcher | None = None,
    redis: RedisManager | None = None,
) -> Services:
    """Wire the object graph. Each component gets its own cache namespace and TTL."""
    settings = settings or get_settings()
    fetcher = fetcher or FallbackFetcher(settings=settings)

    def cache(namespace: str, ttl_s: float):
        return build_cache(namespace, ttl_s, settings=settings, redis=redis)

    match_list_cache = cache("match_list", settings.match_list_ttl_s)
    match_lists = [
        MatchListProvider(name, url, fetcher, match_list_cache, timeout_s=settings.match_list_timeout_s)
        for name, url in settings.match_list_sources.items()
    ]
    livescores = LiveScoreProvider(
        base_url=settings.livescore_base_url,
        api_key=settings.livescore_api_key,
        sports=settings.livescore_sports,
        fetcher=fetcher,
        cache=cache("livescore", settings.livescore_ttl_s),
        timeout_s=settings.livescore_timeout_s,
    )
    channels = ChannelDirectoryProvider(
        url=settings.channel_directory_url,
        fetcher=fetcher,
        cache=cache("channels", settings.channel_ttl_s),
        timeout_s=settings.channel_timeout_s,
    )
    normalizer = MatchNormalizer()
    aggregator = Aggregator(
        match_lists=match_lists,
        cache=cache("catalog", settings.catalog_ttl_s),
        livescores=livescores,
        channels=channels,
        settings=settings,
        normalizer=normalizer,
    )

    if settings.presence_backend == BackendKind.REDIS and redis is not None:
        presence: PresenceStore = RedisPresenceStore(redis, timeout_s=settings.presence_timeout_s)
    else:
        presence = InMemoryPresenceStore(timeout_s=settings.presence_timeout_s)

    return Services(
        settings=settings,
        fetcher=fetcher,
        aggregator=aggregator,
        resolver=StreamResolver(fetcher, cache("resolution", settings.resolution_ttl_s), settings=settings),
        probe=ViewerCountProbe(fetcher, cache("viewers", settings.viewer_sample_ttl_s), settings=settings),
        presence=presence,
        streams=StreamListingProvider(
            api_base=settings.stream_api_base,
            fetcher=fetcher,
            cache=cache("stream_listing", settings.stream_listing_ttl_s),
            timeout_s=settings.stream_listing_timeout_s,
        ),
        teams=TeamDirectoryProvider(
            search_url=settings.team_search_url,
            fetcher=fetcher,
            cache=cache("teams", settings.team_ttl_s),
            timeout_s=settings.team_search_timeout_s,
        ),
        normalizer=normalizer,
        redis=redis,
    )
