"""
Primary match-list providers.
Each configured source returns an array of matches with team names, a category,
a start date and the playable sources for the fixture.
"""
from __future__ import annotations

from typing import Any

from shared.utils.cache import CacheLayer
from shared.utils.http_client import FallbackFetcher

from ingest.providers.base import ProviderClient, ProviderParseError, ProviderRecord

_ENVELOPE_KEYS = ("matches", "data", "events")


class MatchListProvider(ProviderClient):
    """One primary match-list endpoint (westream, streamed, ...)."""

    def __init__(
        self,
        name: str,
        url: str,
        fetcher: FallbackFetcher,
        cache: CacheLayer,
        timeout_s: float = 15.0,
    ) -> None:
        super().__init__(name=name, fetcher=fetcher, cache=cache, timeout_s=timeout_s)
        self._url = url

    @property
    def url(self) -> str:
        return self._url

    async def _fetch_records(self, key: str | None) -> list[ProviderRecord]:
        data: Any = await self._get_json(self._url, headers={"Accept": "application/json"})
        if isinstance(data, dict):
            for envelope in _ENVELOPE_KEYS:
                if isinstance(data.get(envelope), list):
                    data = data[envelope]
                    break
        if not isinstance(data, list):
            raise ProviderParseError(f"{self._name}: expected a list of matches, got {type(data).__name__}")
        return self._dict_records(data)
