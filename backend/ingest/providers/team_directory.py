"""
Team directory provider (TheSportsDB team search).
"""
from __future__ import annotations

from typing import Any
from urllib.parse import urlencode

from shared.utils.cache import CacheLayer
from shared.utils.http_client import FallbackFetcher

from ingest.providers.base import ProviderClient, ProviderRecord


class TeamDirectoryProvider(ProviderClient):
    def __init__(
        self,
        search_url: str,
        fetcher: FallbackFetcher,
        cache: CacheLayer,
        timeout_s: float = 8.0,
        name: str = "teams",
    ) -> None:
        super().__init__(name=name, fetcher=fetcher, cache=cache, timeout_s=timeout_s)
        self._search_url = search_url

    def _cache_key(self, key: str | None) -> str:
        return super()._cache_key((key or "").strip().lower())

    async def _fetch_records(self, key: str | None) -> list[ProviderRecord]:
        name = (key or "").strip()
        if not name:
            return []
        data: Any = await self._get_json(f"{self._search_url}?{urlencode({'t': name})}")
        # Unknown teams come back as {"teams": null}
        teams = data.get("teams") if isinstance(data, dict) else None
        return self._dict_records(teams or [])
