"""
Secondary live-score provider (TheSportsDB v2 livescore).
Records are partitioned by sport upstream; each partition is fetched concurrently
and a failing partition only drops its own records.
"""
from __future__ import annotations

import asyncio
from typing import Any

from shared.utils.cache import CacheLayer
from shared.utils.http_client import FallbackFetcher
from shared.utils.logging import get_logger

from ingest.providers.base import ProviderClient, ProviderRecord

logger = get_logger(__name__)

SPORT_PARTITION_KEY = "_partition"


class LiveScoreProvider(ProviderClient):
    """Fetches every configured sport partition and concatenates the results."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        sports: list[str],
        fetcher: FallbackFetcher,
        cache: CacheLayer,
        timeout_s: float = 8.0,
        name: str = "livescore",
    ) -> None:
        super().__init__(name=name, fetcher=fetcher, cache=cache, timeout_s=timeout_s)
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._sports = list(sports)

    @property
    def sports(self) -> list[str]:
        return list(self._sports)

    async def _fetch_partition(self, sport: str) -> list[ProviderRecord]:
        data: Any = await self._get_json(
            f"{self._base_url}/{sport}",
            headers={"X-API-KEY": self._api_key, "Accept": "application/json"},
        )
        items = []
        if isinstance(data, dict):
            items = data.get("livescore") or data.get("events") or []
        records = self._dict_records(items)
        for record in records:
            record.setdefault(SPORT_PARTITION_KEY, sport)
        return records

    async def _fetch_records(self, key: str | None) -> list[ProviderRecord]:
        sports = [key] if key else self._sports
        results = await asyncio.gather(
            *(self._fetch_partition(sport) for sport in sports),
            return_exceptions=True,
        )

        records: list[ProviderRecord] = []
        failures: list[BaseException] = []
        for sport, result in zip(sports, results):
            if isinstance(result, BaseException):
                failures.append(result)
                logger.info("livescore_partition_failed", sport=sport, error=str(result))
                continue
            records.extend(result)

        # Only a total outage fails the provider; partial data is still data.
        if failures and len(failures) == len(sports):
            raise failures[0]
        return records
