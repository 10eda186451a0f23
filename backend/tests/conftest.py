"""Shared fixtures: settings, an httpx.MockTransport-backed fetcher and record builders."""
from __future__ import annotations

from typing import Any, Callable

import httpx
import pytest

from shared.config import Settings
from shared.utils.http_client import DirectTransport, FallbackFetcher, ProxyTransport

# 2026-10-18T12:00:00Z
NOW_MS = 1_792_324_800_000
HOUR_MS = 3_600_000


class FakeClock:
    """Manually advanced clock, in seconds."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings() -> Settings:
    return Settings(
        proxy_prefixes=["https://relay.test/?url="],
        metrics_enabled=False,
        breaker_failure_threshold=3,
        breaker_recovery_timeout_s=30.0,
        resolver_total_timeout_s=5.0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_fetcher(
    handler: Callable[[httpx.Request], Any],
    settings: Settings,
    proxies: tuple[str, ...] = (),
) -> FallbackFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
    transports = [DirectTransport(), *(ProxyTransport(p) for p in proxies)]
    return FallbackFetcher(transports=transports, client=client, settings=settings)


def primary_record(
    home: str,
    away: str,
    *,
    id: str | None = None,
    category: str = "football",
    date: int = NOW_MS,
    sources: list[tuple[str, str]] | None = None,
    popular: bool = False,
    poster: str | None = None,
) -> dict[str, Any]:
    return {
        "id": id or f"{home}-{away}".lower().replace(" ", "-"),
        "title": f"{home} vs {away}",
        "category": category,
        "date": date,
        "popular": popular,
        "poster": poster,
        "teams": {"home": {"name": home}, "away": {"name": away}},
        "sources": [{"source": s, "id": i} for s, i in (sources or [("alpha", "a1")])],
    }


def livescore_record(home: str, away: str, **extra: Any) -> dict[str, Any]:
    record = {
        "idEvent": f"ev-{home}-{away}",
        "strHomeTeam": home,
        "strAwayTeam": away,
        "strSport": "Soccer",
    }
    record.update(extra)
    return record
