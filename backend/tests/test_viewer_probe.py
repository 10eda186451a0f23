"""Unit tests for the best-effort viewer count probe."""
from __future__ import annotations

import asyncio

import httpx
import pytest

from conftest import NOW_MS, FakeClock, make_fetcher
from resolver.viewer_probe import ViewerCountProbe, sample_key
from shared.config import Settings
from shared.models.domain import CanonicalMatch, MatchTeams, Source, TeamRef
from shared.models.enums import Sport
from shared.utils.cache import TTLCache


class Listing:
    """Serves /api/stream/{source}/{id} with canned viewer counts."""

    def __init__(self, counts: dict[str, list] | None = None, status: int = 200) -> None:
        self.counts = counts or {}
        self.status = status
        self.paths: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.paths.append(request.url.path)
        if self.status != 200:
            return httpx.Response(self.status)
        source_id = request.url.path.rsplit("/", 1)[-1]
        if source_id == "broken":
            return httpx.Response(200, text="<html>")
        streams = [{"id": f"s{i}", "viewers": v} for i, v in enumerate(self.counts.get(source_id, []))]
        return httpx.Response(200, json=streams)


@pytest.fixture
def sample_cache(clock: FakeClock) -> TTLCache:
    return TTLCache("viewers", ttl_s=180, clock=clock)


def _probe(listing: Listing, settings: Settings, cache: TTLCache) -> ViewerCountProbe:
    return ViewerCountProbe(make_fetcher(listing, settings), cache, settings=settings)


def _match(*sources: Source) -> CanonicalMatch:
    return CanonicalMatch(
        id="m1",
        title="Arsenal vs Chelsea",
        category="football",
        sport=Sport.FOOTBALL,
        start_time=NOW_MS,
        teams=MatchTeams(home=TeamRef(name="Arsenal"), away=TeamRef(name="Chelsea")),
        sources=list(sources),
    )


@pytest.mark.asyncio
async def test_probe_returns_max_and_caches(settings: Settings, sample_cache: TTLCache) -> None:
    listing = Listing({"a1": [120, 45, 300]})
    probe = _probe(listing, settings, sample_cache)
    assert await probe.probe("alpha", "a1") == 300
    assert await probe.probe("alpha", "a1") == 300
    assert listing.paths == ["/api/stream/alpha/a1"]
    assert await sample_cache.get(sample_key("alpha", "a1")) is not None


@pytest.mark.asyncio
async def test_zero_viewers_is_none_and_not_cached(settings: Settings, sample_cache: TTLCache) -> None:
    listing = Listing({"a1": [0, 0]})
    probe = _probe(listing, settings, sample_cache)
    assert await probe.probe("alpha", "a1") is None
    assert await probe.probe("alpha", "a1") is None
    assert len(listing.paths) == 2


@pytest.mark.asyncio
async def test_upstream_failure_is_none(settings: Settings, sample_cache: TTLCache) -> None:
    probe = _probe(Listing(status=503), settings, sample_cache)
    assert await probe.probe("alpha", "a1") is None


@pytest.mark.asyncio
async def test_bad_body_is_none(settings: Settings, sample_cache: TTLCache) -> None:
    probe = _probe(Listing(), settings, sample_cache)
    assert await probe.probe("alpha", "broken") is None


@pytest.mark.asyncio
async def test_probe_many_dedupes_and_isolates(settings: Settings, sample_cache: TTLCache) -> None:
    listing = Listing({"a1": [10], "b1": [20]})
    probe = _probe(listing, settings, sample_cache)
    out = await probe.probe_many([("alpha", "a1"), ("bravo", "b1"), ("alpha", "a1"), ("charlie", "broken")])
    assert out == {("alpha", "a1"): 10, ("bravo", "b1"): 20, ("charlie", "broken"): None}
    assert len(listing.paths) == 3


@pytest.mark.asyncio
async def test_probe_many_respects_batch_limit(sample_cache: TTLCache) -> None:
    settings = Settings(viewer_probe_batch_limit=2, proxy_prefixes=[])
    listing = Listing({str(i): [i + 1] for i in range(5)})
    probe = _probe(listing, settings, sample_cache)
    out = await probe.probe_many([("alpha", str(i)) for i in range(5)])
    assert len(out) == 2


@pytest.mark.asyncio
async def test_probe_many_bounds_requests_in_flight(sample_cache: TTLCache) -> None:
    settings = Settings(viewer_probe_concurrency=6, proxy_prefixes=[], metrics_enabled=False)
    in_flight = 0
    peak = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return httpx.Response(200, json=[{"viewers": 5}])

    probe = ViewerCountProbe(make_fetcher(handler, settings), sample_cache, settings=settings)
    out = await probe.probe_many([("alpha", str(i)) for i in range(20)])
    assert len(out) == 20
    assert 1 < peak <= settings.viewer_probe_concurrency


@pytest.mark.asyncio
async def test_non_finite_viewers_are_ignored(settings: Settings, sample_cache: TTLCache) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text='[{"viewers": Infinity}, {"viewers": NaN}, {"viewers": 12}]')

    probe = ViewerCountProbe(make_fetcher(handler, settings), sample_cache, settings=settings)
    assert await probe.probe("alpha", "a1") == 12


# ── Match-level probing ─────────────────────────────────────────────────

def test_pick_source_prefers_known_sources(settings: Settings, sample_cache: TTLCache) -> None:
    probe = _probe(Listing(), settings, sample_cache)
    match = _match(
        Source(source="zulu", id="z1"),
        Source(source="cdn", id="https://c/1", is_channel=True),
        Source(source="charlie", id="c1"),
    )
    assert probe.pick_source(match).key == ("charlie", "c1")


def test_pick_source_falls_back_to_first(settings: Settings, sample_cache: TTLCache) -> None:
    probe = _probe(Listing(), settings, sample_cache)
    match = _match(Source(source="zulu", id="z1"), Source(source="yankee", id="y1"))
    assert probe.pick_source(match).key == ("zulu", "z1")


@pytest.mark.asyncio
async def test_match_not_live_is_not_probed(settings: Settings, sample_cache: TTLCache) -> None:
    listing = Listing({"a1": [50]})
    probe = _probe(listing, settings, sample_cache)
    assert await probe.probe_match(_match(Source(source="alpha", id="a1")), is_live=False) is None
    assert listing.paths == []


@pytest.mark.asyncio
async def test_live_match_is_probed(settings: Settings, sample_cache: TTLCache) -> None:
    listing = Listing({"a1": [50]})
    probe = _probe(listing, settings, sample_cache)
    assert await probe.probe_match(_match(Source(source="alpha", id="a1")), is_live=True) == 50


@pytest.mark.asyncio
async def test_clear(settings: Settings, sample_cache: TTLCache) -> None:
    listing = Listing({"a1": [50]})
    probe = _probe(listing, settings, sample_cache)
    await probe.probe("alpha", "a1")
    await probe.clear()
    await probe.probe("alpha", "a1")
    assert len(listing.paths) == 2
