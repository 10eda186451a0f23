"""
Unit tests for the Aggregator cycle: merge across match-list providers,
enrichment, catalog window, ordering and the stale fallback.
"""
from __future__ import annotations

import asyncio
from typing import Any, Optional

import httpx
import pytest

from conftest import HOUR_MS, NOW_MS, FakeClock, livescore_record, make_fetcher, primary_record
from ingest.aggregator import CATALOG_KEY, Aggregator
from ingest.providers.base import ProviderResult
from ingest.providers.match_list import MatchListProvider
from shared.config import Settings
from shared.models.enums import AggregatorState, ProviderErrorKind, Sport
from shared.utils.cache import TTLCache


class FakeProvider:
    """Stands in for a ProviderClient; returns canned records or fails."""

    def __init__(self, name: str, records: Optional[list[dict[str, Any]]] = None, fail: bool = False,
                 explode: bool = False) -> None:
        self.name = name
        self.records = records or []
        self.fail = fail
        self.explode = explode
        self.calls = 0

    async def fetch(self, key: Optional[str] = None) -> ProviderResult:
        self.calls += 1
        if self.explode:
            raise RuntimeError("boom")
        if self.fail:
            return ProviderResult(
                provider=self.name,
                success=False,
                error="timeout",
                error_kind=ProviderErrorKind.UNAVAILABLE,
            )
        return ProviderResult(provider=self.name, success=True, records=[dict(r) if isinstance(r, dict) else r for r in self.records])


@pytest.fixture
def cache(clock: FakeClock) -> TTLCache:
    return TTLCache("catalog", ttl_s=60, stale_ttl_s=3600, clock=clock)


def _aggregator(settings: Settings, cache: TTLCache, *match_lists, livescores=None, channels=None) -> Aggregator:
    return Aggregator(
        match_lists=list(match_lists),
        cache=cache,
        livescores=livescores,
        channels=channels,
        settings=settings,
        clock=lambda: NOW_MS,
    )


# ── Merging ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_providers_merge_on_team_keywords(settings: Settings, cache: TTLCache) -> None:
    x = FakeProvider("x", [primary_record("Arsenal", "Manchester United", id="x1", sources=[("alpha", "1")])])
    y = FakeProvider("y", [primary_record("Arsenal", "Man Utd", id="y1", sources=[("bravo", "2")], popular=True)])
    catalog = await _aggregator(settings, cache, x, y).refresh()

    assert len(catalog.matches) == 1
    match = catalog.matches[0]
    assert match.id == "x1"
    assert [s.key for s in match.sources] == [("alpha", "1"), ("bravo", "2")]
    assert match.popular


@pytest.mark.asyncio
async def test_merge_requires_same_sport(settings: Settings, cache: TTLCache) -> None:
    x = FakeProvider("x", [primary_record("Lions", "Tigers", id="x1")])
    y = FakeProvider("y", [primary_record("Lions", "Tigers", id="y1", category="rugby")])
    catalog = await _aggregator(settings, cache, x, y).refresh()
    assert {m.id for m in catalog.matches} == {"x1", "y1"}


@pytest.mark.asyncio
async def test_colliding_ids_are_prefixed(settings: Settings, cache: TTLCache) -> None:
    x = FakeProvider("x", [primary_record("Arsenal", "Chelsea", id="100")])
    y = FakeProvider("y", [primary_record("Lakers", "Celtics", id="100", category="basketball")])
    catalog = await _aggregator(settings, cache, x, y).refresh()
    assert sorted(m.id for m in catalog.matches) == ["100", "y-100"]


@pytest.mark.asyncio
async def test_placeholder_team_never_catalogued(settings: Settings, cache: TTLCache) -> None:
    x = FakeProvider("x", [primary_record("Arsenal", "TBD", id="x1"), primary_record("Arsenal", "Chelsea", id="x2")])
    catalog = await _aggregator(settings, cache, x).refresh()
    assert [m.id for m in catalog.matches] == ["x2"]


@pytest.mark.asyncio
async def test_sources_never_duplicated(settings: Settings, cache: TTLCache) -> None:
    x = FakeProvider("x", [primary_record("Arsenal", "Chelsea", id="x1", sources=[("alpha", "1"), ("bravo", "2")])])
    y = FakeProvider("y", [primary_record("Arsenal", "Chelsea", id="y1", sources=[("bravo", "2"), ("alpha", "1")])])
    catalog = await _aggregator(settings, cache, x, y).refresh()
    keys = [s.key for m in catalog.matches for s in m.sources]
    assert len(keys) == len(set(keys)) == 2


# ── Enrichment ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_live_scores_and_channels_enrich(settings: Settings, cache: TTLCache) -> None:
    x = FakeProvider("x", [primary_record("Arsenal", "Chelsea", id="x1", date=NOW_MS - HOUR_MS)])
    live = FakeProvider("livescore", [
        livescore_record("Arsenal FC", "Chelsea FC", intHomeScore="1", intAwayScore="0",
                         strProgress="55'", strTVStation="ESPN"),
    ])
    channels = FakeProvider("channels", [{"name": "ESPN", "url": "https://c/espn", "viewers": 5}])
    agg = _aggregator(settings, cache, x, livescores=live, channels=channels)
    catalog = await agg.refresh()

    match = catalog.matches[0]
    assert match.recognized and match.popular
    assert match.score is not None and match.score.home == "1"
    assert match.progress == "55'"
    assert match.sources[-1].is_channel
    assert match.sources[-1].id == "https://c/espn"
    # live 25, football 15, recognized 8; the primary never flagged it popular
    assert match.priority == 48


@pytest.mark.asyncio
async def test_failed_livescores_do_not_block_catalog(settings: Settings, cache: TTLCache) -> None:
    x = FakeProvider("x", [primary_record("Arsenal", "Chelsea", id="x1")])
    agg = _aggregator(settings, cache, x, livescores=FakeProvider("livescore", fail=True))
    catalog = await agg.refresh()
    assert [m.id for m in catalog.matches] == ["x1"]
    assert catalog.failed_providers == ["livescore"]
    assert agg.last_cycle is not None and agg.last_cycle.outcome == "partial"


@pytest.mark.asyncio
async def test_raising_provider_is_isolated(settings: Settings, cache: TTLCache) -> None:
    x = FakeProvider("x", [primary_record("Arsenal", "Chelsea", id="x1")])
    agg = _aggregator(settings, cache, x, FakeProvider("y", explode=True))
    catalog = await agg.refresh()
    assert [m.id for m in catalog.matches] == ["x1"]
    assert "y" in catalog.failed_providers


@pytest.mark.asyncio
async def test_unparseable_records_are_skipped(settings: Settings, cache: TTLCache) -> None:
    x = FakeProvider("x", [
        primary_record("Arsenal", "Chelsea", id="good"),
        primary_record("Lakers", "Celtics", id="nan", category="basketball", date=float("nan")),
        primary_record("Bulls", "Knicks", id="inf", category="basketball", date=float("inf")),
        primary_record("Heat", "Magic", id="huge", category="basketball", date="1e400"),
        "not-a-record",
    ])
    live = FakeProvider("livescore", [livescore_record("Arsenal", "Chelsea"), ["junk"]])
    channels = FakeProvider("channels", [7, {"name": "ESPN", "url": "https://c/espn", "viewers": float("inf")}])
    agg = _aggregator(settings, cache, x, livescores=live, channels=channels)

    catalog = await agg.refresh()
    assert [m.id for m in catalog.matches] == ["good"]
    assert catalog.matches[0].recognized
    assert not catalog.stale
    assert agg.last_cycle is not None and agg.last_cycle.outcome == "ok"


# ── Catalog window and ordering ─────────────────────────────────────────

@pytest.mark.asyncio
async def test_catalog_window(settings: Settings, cache: TTLCache) -> None:
    x = FakeProvider("x", [
        primary_record("Arsenal", "Chelsea", id="ended", date=NOW_MS - 5 * HOUR_MS),
        primary_record("Everton", "Fulham", id="grace", date=NOW_MS - 3 * HOUR_MS),
        primary_record("Lakers", "Celtics", id="far", category="basketball", date=NOW_MS + 30 * HOUR_MS),
        primary_record("Nadal", "Federer", id="tennis", category="tennis"),
        primary_record("Leeds", "Burnley", id="soon", date=NOW_MS + 2 * HOUR_MS),
    ])
    catalog = await _aggregator(settings, cache, x).refresh()
    assert sorted(m.id for m in catalog.matches) == ["grace", "soon"]


@pytest.mark.asyncio
async def test_sorted_by_priority_then_start(settings: Settings, cache: TTLCache) -> None:
    x = FakeProvider("x", [
        primary_record("Leeds", "Burnley", id="later", date=NOW_MS + 2 * HOUR_MS),
        primary_record("Everton", "Fulham", id="earlier", date=NOW_MS + HOUR_MS),
        primary_record("Arsenal", "Chelsea", id="live", date=NOW_MS - 10 * 60 * 1000),
    ])
    agg = _aggregator(settings, cache, x)
    first = await agg.refresh()
    second = await agg.refresh()
    assert [m.id for m in first.matches] == ["live", "earlier", "later"]
    assert [m.id for m in second.matches] == [m.id for m in first.matches]
    assert agg.is_live(first.matches[0])
    assert [m.id for m in agg.live_matches(first)] == ["live"]


# ── Stale fallback and caching ──────────────────────────────────────────

@pytest.mark.asyncio
async def test_all_primary_failures_serve_stale(settings: Settings, cache: TTLCache, clock: FakeClock) -> None:
    x = FakeProvider("x", [primary_record("Arsenal", "Chelsea", id="x1")])
    agg = _aggregator(settings, cache, x)
    await agg.refresh()

    x.fail = True
    clock.advance(120)
    await agg.refresh()
    catalog = await agg.get_catalog()
    assert catalog.stale
    assert [m.id for m in catalog.matches] == ["x1"]
    assert catalog.failed_providers == ["x"]
    assert agg.last_cycle is not None and agg.last_cycle.outcome == "stale"


@pytest.mark.asyncio
async def test_no_previous_catalog_returns_empty_stale(settings: Settings, cache: TTLCache) -> None:
    agg = _aggregator(settings, cache, FakeProvider("x", fail=True))
    catalog = await agg.refresh()
    assert catalog.stale
    assert catalog.matches == []


@pytest.mark.asyncio
async def test_catalog_reads_are_served_from_cache(settings: Settings, cache: TTLCache, clock: FakeClock) -> None:
    x = FakeProvider("x", [primary_record("Arsenal", "Chelsea", id="x1")])
    agg = _aggregator(settings, cache, x)
    await agg.get_catalog()
    catalog = await agg.get_catalog()
    assert catalog.cached
    assert x.calls == 1
    assert agg.state == AggregatorState.CACHED

    clock.advance(61)
    late = await agg.get_catalog()
    assert late.stale
    assert [m.id for m in late.matches] == ["x1"]
    assert x.calls == 1


@pytest.mark.asyncio
async def test_reads_during_outage_wait_for_next_cycle(
    settings: Settings, cache: TTLCache, clock: FakeClock
) -> None:
    x = FakeProvider("x", [primary_record("Arsenal", "Chelsea", id="x1")])
    agg = _aggregator(settings, cache, x)
    await agg.refresh()

    x.fail = True
    clock.advance(61)
    await agg.refresh()
    for _ in range(5):
        catalog = await agg.get_catalog()
        assert catalog.stale
        assert [m.id for m in catalog.matches] == ["x1"]
    assert x.calls == 2


@pytest.mark.asyncio
async def test_cold_start_reads_share_one_cycle(settings: Settings, cache: TTLCache) -> None:
    x = FakeProvider("x", [primary_record("Arsenal", "Chelsea", id="x1")])
    agg = _aggregator(settings, cache, x)
    catalogs = await asyncio.gather(*(agg.get_catalog() for _ in range(5)))
    assert x.calls == 1
    assert all([m.id for m in c.matches] == ["x1"] for c in catalogs)


@pytest.mark.asyncio
async def test_cold_start_outage_is_not_retried_within_interval(settings: Settings, cache: TTLCache) -> None:
    x = FakeProvider("x", fail=True)
    agg = _aggregator(settings, cache, x)
    for _ in range(3):
        catalog = await agg.get_catalog()
        assert catalog.stale
        assert catalog.matches == []
    assert catalog.failed_providers == ["x"]
    assert x.calls == 1


@pytest.mark.asyncio
async def test_catalog_is_cached_as_json(settings: Settings, cache: TTLCache) -> None:
    x = FakeProvider("x", [primary_record("Arsenal", "Chelsea", id="x1")])
    await _aggregator(settings, cache, x).refresh()
    stored = await cache.get(CATALOG_KEY)
    assert stored["matches"][0]["sport"] == "football"


# ── Read helpers ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_popular_and_team_lookup(settings: Settings, cache: TTLCache) -> None:
    x = FakeProvider("x", [
        primary_record("Arsenal", "Chelsea", id="a", popular=True),
        primary_record("Lakers", "Celtics", id="b", category="basketball"),
    ])
    agg = _aggregator(settings, cache, x)
    catalog = await agg.refresh()
    assert [m.id for m in agg.popular_matches(catalog)] == ["a"]
    assert [m.id for m in Aggregator.matches_for_team(catalog, "Boston Celtics")] == ["b"]


@pytest.mark.asyncio
async def test_live_scores_by_sport(settings: Settings, cache: TTLCache) -> None:
    live = FakeProvider("livescore", [
        livescore_record("Arsenal", "Chelsea"),
        livescore_record("Lakers", "Celtics", strSport="Basketball"),
    ])
    agg = _aggregator(settings, cache, FakeProvider("x"), livescores=live)
    scores, cached = await agg.get_live_scores(Sport.BASKETBALL)
    assert [s.home_team for s in scores] == ["Lakers"]
    assert not cached


# ── End to end over the transport chain ─────────────────────────────────

@pytest.mark.asyncio
async def test_match_list_over_mock_transport(settings: Settings, cache: TTLCache) -> None:
    body = [primary_record("Arsenal", "Chelsea", id="x1", date=NOW_MS // 1000)]

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.example.com":
            return httpx.Response(403)
        return httpx.Response(200, json=body)

    fetcher = make_fetcher(handler, settings, proxies=("https://relay.test/?url=",))
    provider = MatchListProvider("x", "https://api.example.com/matches", fetcher, TTLCache("ml", 60))
    catalog = await _aggregator(settings, cache, provider).refresh()
    assert [m.id for m in catalog.matches] == ["x1"]
    assert catalog.matches[0].start_time == NOW_MS
