"""
Stream listing provider: the concrete streams behind one (source, id) pair.
"""
from __future__ import annotations

from typing import Any
from urllib.parse import quote

from shared.utils.cache import CacheLayer
from shared.utils.http_client import FallbackFetcher

from ingest.providers.base import ProviderClient, ProviderParseError, ProviderRecord


def listing_key(source: str, source_id: str) -> str:
    return f"{source}/{source_id}"


class StreamListingProvider(ProviderClient):
    """GET {api_base}/stream/{source}/{id} -> [{id, streamNo, language, hd, embedUrl, source, viewers}]"""

    def __init__(
        self,
        api_base: str,
        fetcher: FallbackFetcher,
        cache: CacheLayer,
        timeout_s: float = 8.0,
        name: str = "streams",
    ) -> None:
        super().__init__(name=name, fetcher=fetcher, cache=cache, timeout_s=timeout_s)
        self._api_base = api_base.rstrip("/")

    def url_for(self, source: str, source_id: str) -> str:
        return f"{self._api_base}/stream/{quote(source, safe='')}/{quote(source_id, safe='')}"

    async def _fetch_records(self, key: str | None) -> list[ProviderRecord]:
        if not key or "/" not in key:
            raise ValueError("stream listing requires a 'source/id' key")
        source, source_id = key.split("/", 1)
        data: Any = await self._get_json(self.url_for(source, source_id))
        if not isinstance(data, list):
            raise ProviderParseError(f"{self._name}: expected a stream list for {key}")
        return self._dict_records(data)
