"""
Tertiary channel directory provider.
When the directory is unreachable a static list of common sports channels is served.
"""
from __future__ import annotations

from typing import Any

from shared.utils.cache import CacheLayer
from shared.utils.http_client import FallbackFetcher
from shared.utils.logging import get_logger

from ingest.providers.base import ProviderClient, ProviderParseError, ProviderRecord, ProviderResult

logger = get_logger(__name__)

_PLAYER = "https://cdn-live.tv/api/v1/vip/damitv/channels/player/?name={slug}&code={code}"
_IMAGES = "https://api.cdn-live.tv/api/v1/channels/images6318"


def _static(name: str, code: str, image: str, viewers: int) -> ProviderRecord:
    return {
        "name": name,
        "code": code,
        "url": _PLAYER.format(slug=name.lower().replace(" ", "+"), code=code),
        "image": f"{_IMAGES}/{image}",
        "viewers": viewers,
    }


STATIC_CHANNELS: list[ProviderRecord] = [
    _static("ESPN", "us", "united-states/espn.svg", 50),
    _static("ESPN 2", "us", "united-states/espn-2.svg", 10),
    _static("Sky Sports Main Event", "gb", "united-kingdom/sky-sports-main.svg", 30),
    _static("Sky Sports Premier League", "gb", "united-kingdom/sky-sports-pl.svg", 40),
    _static("BT Sport 1", "gb", "united-kingdom/bt-sport-1.svg", 20),
    _static("TNT", "us", "united-states/tnt.png", 25),
    _static("NBC", "us", "united-states/nbc.png", 20),
    _static("FOX Sports 1", "us", "united-states/fox-sport-1.svg", 15),
    _static("CBS Sports Network", "us", "united-states/cbs-sports-network.svg", 10),
    _static("beIN SPORTS", "us", "united-states/bein-sports.webp", 20),
    _static("DAZN 1", "gb", "united-kingdom/dazn-1.png", 25),
    _static("Star Sports 1", "in", "india/star-sports-1.svg", 30),
    _static("Willow Cricket", "us", "united-states/willow-cricket-1.svg", 15),
    _static("NBA TV", "us", "united-states/nba-tv.svg", 20),
    _static("NFL Network", "us", "united-states/nfl-network.svg", 25),
    _static("ABC", "us", "united-states/abc.png", 15),
]


class ChannelDirectoryProvider(ProviderClient):
    """Flat list of {name, code, url, image, viewers} channel records."""

    def __init__(
        self,
        url: str,
        fetcher: FallbackFetcher,
        cache: CacheLayer,
        timeout_s: float = 8.0,
        name: str = "channels",
    ) -> None:
        super().__init__(name=name, fetcher=fetcher, cache=cache, timeout_s=timeout_s)
        self._url = url

    async def _fetch_records(self, key: str | None) -> list[ProviderRecord]:
        data: Any = await self._get_json(self._url, headers={"Accept": "application/json"})
        if isinstance(data, dict):
            data = data.get("channels", [])
        if not isinstance(data, list):
            raise ProviderParseError(f"{self._name}: expected a channel list")
        records = self._dict_records(data)
        if not records:
            raise ProviderParseError(f"{self._name}: empty channel directory")
        return records

    async def fetch(self, key: str | None = None) -> ProviderResult:
        result = await super().fetch(key)
        if not result.success:
            logger.info("channel_directory_static_fallback", channels=len(STATIC_CHANNELS))
            result.records = [dict(ch) for ch in STATIC_CHANNELS]
        return result
