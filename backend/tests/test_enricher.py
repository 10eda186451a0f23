"""Unit tests for secondary enrichment, broadcaster channels and priority scoring."""
from __future__ import annotations

import pytest

from conftest import NOW_MS
from ingest.enrichment.enricher import (
    CHANNEL_SOURCE,
    Enricher,
    channel_sources,
    match_broadcaster_channels,
)
from shared.config import Settings
from shared.models.domain import CanonicalMatch, Channel, LiveScore, MatchTeams, Source, TeamRef
from shared.models.enums import Sport


def _match(**kw) -> CanonicalMatch:
    defaults = dict(
        id="m1",
        title="Arsenal vs Chelsea",
        category="football",
        sport=Sport.FOOTBALL,
        start_time=NOW_MS,
        teams=MatchTeams(home=TeamRef(name="Arsenal"), away=TeamRef(name="Chelsea")),
        sources=[Source(source="alpha", id="a1")],
    )
    defaults.update(kw)
    return CanonicalMatch(**defaults)


def _live(**kw) -> LiveScore:
    defaults = dict(id="ev1", sport=Sport.FOOTBALL, home_team="Arsenal", away_team="Chelsea")
    defaults.update(kw)
    return LiveScore(**defaults)


CHANNELS = [
    Channel(name="Sky Sports Main Event", url="https://c/sky-main", viewers=50),
    Channel(name="Sky Sports Football", url="https://c/sky-football", viewers=500),
    Channel(name="Sky Sports Premier League", url="https://c/sky-pl", viewers=300),
    Channel(name="Sky Sports Action", url="https://c/sky-action", viewers=10),
    Channel(name="ESPN", url="https://c/espn", viewers=900),
]


@pytest.fixture
def enricher(settings: Settings) -> Enricher:
    return Enricher(settings)


# ── Broadcaster channels ────────────────────────────────────────────────

class TestBroadcasterChannels:

    def test_top_three_by_viewers(self) -> None:
        found = match_broadcaster_channels("Sky Sports", CHANNELS)
        assert [c.name for c in found] == [
            "Sky Sports Football",
            "Sky Sports Premier League",
            "Sky Sports Main Event",
        ]

    def test_no_broadcaster(self) -> None:
        assert match_broadcaster_channels(None, CHANNELS) == []

    def test_unknown_broadcaster(self) -> None:
        assert match_broadcaster_channels("Local Access 9", CHANNELS) == []

    def test_channel_sources_shape(self) -> None:
        sources = channel_sources(CHANNELS[:1])
        assert sources[0].source == CHANNEL_SOURCE
        assert sources[0].id == "https://c/sky-main"
        assert sources[0].is_channel


# ── Enrichment ──────────────────────────────────────────────────────────

class TestEnrich:

    def test_without_live_score_returns_copy(self, enricher: Enricher) -> None:
        match = _match()
        out = enricher.enrich(match, None, CHANNELS)
        assert out == match
        assert out is not match
        assert not out.recognized

    def test_merges_secondary_fields(self, enricher: Enricher) -> None:
        live = _live(
            home_score="2",
            away_score="1",
            progress="67'",
            league="English Premier League",
            home_badge="https://b/ars.png",
            broadcaster="Sky Sports",
        )
        out = enricher.enrich(_match(), live, CHANNELS)
        assert out.score is not None and (out.score.home, out.score.away) == ("2", "1")
        assert out.progress == "67'"
        assert out.tournament == "English Premier League"
        assert out.teams.home.badge == "https://b/ars.png"
        assert out.recognized and out.popular

    def test_channel_backups_appended_after_primary(self, enricher: Enricher) -> None:
        out = enricher.enrich(_match(), _live(broadcaster="Sky Sports"), CHANNELS)
        assert out.sources[0].key == ("alpha", "a1")
        assert [s.is_channel for s in out.sources] == [False, True, True, True]

    def test_input_match_is_not_mutated(self, enricher: Enricher) -> None:
        match = _match()
        enricher.enrich(match, _live(broadcaster="ESPN", home_score="1", away_score="0"), CHANNELS)
        assert match.score is None
        assert len(match.sources) == 1
        assert not match.recognized

    def test_enrichment_is_idempotent_on_sources(self, enricher: Enricher) -> None:
        live = _live(broadcaster="Sky Sports")
        once = enricher.enrich(_match(), live, CHANNELS)
        twice = enricher.enrich(once, live, CHANNELS)
        assert [s.key for s in twice.sources] == [s.key for s in once.sources]


# ── Priority ────────────────────────────────────────────────────────────

class TestPriority:

    def test_live_football_popular(self, enricher: Enricher) -> None:
        assert enricher.compute_priority(_match(popular=True), is_live=True) == 25 + 15 + 10

    def test_not_live_other_sport(self, enricher: Enricher) -> None:
        match = _match(sport=Sport.TENNIS, category="tennis")
        assert enricher.compute_priority(match, is_live=False) == 0

    def test_all_signals(self, enricher: Enricher) -> None:
        match = _match(
            popular=True,
            recognized=True,
            tournament="English Premier League",
            poster="https://p/1.jpg",
            sources=[Source(source="alpha", id="1"), Source(source="bravo", id="2"), Source(source="charlie", id="3")],
        )
        assert enricher.compute_priority(match, is_live=True) == 25 + 15 + 10 + 8 + 5 + 3 + 2

    def test_channel_sources_do_not_count(self, enricher: Enricher) -> None:
        match = _match(
            sources=[
                Source(source="alpha", id="1"),
                Source(source="cdn", id="https://c/1", is_channel=True),
                Source(source="cdn", id="https://c/2", is_channel=True),
            ],
        )
        assert enricher.compute_priority(match, is_live=False) == 15

    def test_primary_popular_override(self, enricher: Enricher) -> None:
        match = _match(popular=True, recognized=True)
        assert enricher.compute_priority(match, is_live=False, primary_popular=False) == 15 + 8

    def test_top_league_substring(self, enricher: Enricher) -> None:
        assert enricher.is_top_league("UEFA Champions League - Group A")
        assert not enricher.is_top_league("Sunday League")
        assert not enricher.is_top_league(None)
