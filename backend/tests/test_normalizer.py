"""
Unit tests for provider record normalization: team-name validation, timestamp
units, sport categories and each provider shape.
"""
from __future__ import annotations

import pytest

from conftest import NOW_MS, livescore_record, primary_record
from ingest.normalization.normalizer import MatchNormalizer, is_valid_team_name, to_epoch_ms
from ingest.providers.livescore import SPORT_PARTITION_KEY
from shared.models.enums import Sport, normalize_sport_category


@pytest.fixture
def normalizer() -> MatchNormalizer:
    return MatchNormalizer()


# ── Team names ──────────────────────────────────────────────────────────

@pytest.mark.parametrize("name", ["TBD", "tba", "Team 1", "Winner", "A", "", None, 42])
def test_placeholder_names_are_invalid(name) -> None:
    assert not is_valid_team_name(name)


@pytest.mark.parametrize("name", ["Arsenal", "PSG", "LA"])
def test_real_names_are_valid(name: str) -> None:
    assert is_valid_team_name(name)


# ── Timestamps ──────────────────────────────────────────────────────────

class TestEpochMs:

    def test_milliseconds_kept(self) -> None:
        assert to_epoch_ms(NOW_MS) == NOW_MS

    def test_seconds_scaled(self) -> None:
        assert to_epoch_ms(NOW_MS // 1000) == NOW_MS

    def test_numeric_string(self) -> None:
        assert to_epoch_ms(str(NOW_MS)) == NOW_MS

    def test_iso_string(self) -> None:
        assert to_epoch_ms("2026-10-18T12:00:00Z") == NOW_MS

    def test_naive_iso_is_utc(self) -> None:
        assert to_epoch_ms("2026-10-18T12:00:00") == NOW_MS

    @pytest.mark.parametrize(
        "value",
        [None, "", "soon", 0, -5, True, {}, float("nan"), float("inf"), "1e400", "Infinity"],
    )
    def test_unparseable(self, value) -> None:
        assert to_epoch_ms(value) is None


# ── Sport categories ────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "category,sport",
    [
        ("football", Sport.FOOTBALL),
        ("Soccer", Sport.FOOTBALL),
        ("american-football", Sport.AMERICAN_FOOTBALL),
        ("NFL", Sport.AMERICAN_FOOTBALL),
        ("cricket", Sport.CRICKET),
        ("MMA", Sport.FIGHTING),
        ("motor-sports", Sport.MOTORSPORT),
        ("curling", Sport.OTHER),
        (None, Sport.OTHER),
    ],
)
def test_sport_category(category, sport: Sport) -> None:
    assert normalize_sport_category(category) == sport


# ── Primary records ─────────────────────────────────────────────────────

class TestPrimary:

    def test_valid_record(self, normalizer: MatchNormalizer) -> None:
        record = primary_record("Arsenal", "Chelsea", id="m1", sources=[("alpha", "a1"), ("bravo", "b1")])
        match = normalizer.normalize_primary(record, "westream")
        assert match is not None
        assert match.id == "m1"
        assert match.sport == Sport.FOOTBALL
        assert match.start_time == NOW_MS
        assert match.provider == "westream"
        assert [s.key for s in match.sources] == [("alpha", "a1"), ("bravo", "b1")]
        assert match.priority == 0
        assert not match.recognized

    def test_placeholder_team_dropped(self, normalizer: MatchNormalizer) -> None:
        assert normalizer.normalize_primary(primary_record("TBD", "Chelsea"), "p") is None

    def test_missing_away_team_dropped(self, normalizer: MatchNormalizer) -> None:
        record = primary_record("Arsenal", "Chelsea")
        del record["teams"]["away"]
        assert normalizer.normalize_primary(record, "p") is None

    def test_no_sources_dropped(self, normalizer: MatchNormalizer) -> None:
        record = primary_record("Arsenal", "Chelsea")
        record["sources"] = []
        assert normalizer.normalize_primary(record, "p") is None

    def test_bad_date_dropped(self, normalizer: MatchNormalizer) -> None:
        record = primary_record("Arsenal", "Chelsea")
        record["date"] = "tomorrow"
        assert normalizer.normalize_primary(record, "p") is None

    def test_duplicate_sources_collapsed(self, normalizer: MatchNormalizer) -> None:
        record = primary_record("Arsenal", "Chelsea", sources=[("alpha", "a1"), ("alpha", "a1")])
        match = normalizer.normalize_primary(record, "p")
        assert match is not None
        assert len(match.sources) == 1

    def test_seconds_date(self, normalizer: MatchNormalizer) -> None:
        match = normalizer.normalize_primary(primary_record("Arsenal", "Chelsea", date=NOW_MS // 1000), "p")
        assert match is not None
        assert match.start_time == NOW_MS


# ── Secondary / tertiary shapes ─────────────────────────────────────────

class TestSecondary:

    def test_livescore(self, normalizer: MatchNormalizer) -> None:
        record = livescore_record(
            "Arsenal",
            "Chelsea",
            intHomeScore="2",
            intAwayScore="1",
            strProgress="67'",
            strLeague="English Premier League",
            strTVStation="Sky Sports",
        )
        live = normalizer.normalize_livescore(record)
        assert live is not None
        assert live.sport == Sport.FOOTBALL
        assert (live.home_score, live.away_score) == ("2", "1")
        assert live.broadcaster == "Sky Sports"

    def test_livescore_sport_from_partition(self, normalizer: MatchNormalizer) -> None:
        record = {"strHomeTeam": "Lakers", "strAwayTeam": "Celtics", SPORT_PARTITION_KEY: "basketball"}
        live = normalizer.normalize_livescore(record)
        assert live is not None
        assert live.sport == Sport.BASKETBALL

    def test_livescore_without_teams(self, normalizer: MatchNormalizer) -> None:
        assert normalizer.normalize_livescore({"strHomeTeam": "Lakers"}) is None

    def test_channel(self, normalizer: MatchNormalizer) -> None:
        ch = normalizer.normalize_channel({"name": "ESPN", "code": "us", "url": "https://c/espn", "viewers": "12"})
        assert ch is not None
        assert ch.viewers == 12
        assert ch.country_code == "us"

    def test_channel_non_finite_viewers(self, normalizer: MatchNormalizer) -> None:
        ch = normalizer.normalize_channel({"name": "ESPN", "url": "https://c/espn", "viewers": float("inf")})
        assert ch is not None
        assert ch.viewers == 0

    def test_channel_without_url(self, normalizer: MatchNormalizer) -> None:
        assert normalizer.normalize_channel({"name": "ESPN"}) is None

    def test_stream(self, normalizer: MatchNormalizer) -> None:
        stream = normalizer.normalize_stream(
            {"id": "s1", "streamNo": 2, "language": "English", "hd": True, "embedUrl": "https://e/1", "viewers": 40},
            "alpha",
        )
        assert stream is not None
        assert stream.stream_no == 2
        assert stream.source == "alpha"
        assert stream.hd

    def test_stream_without_embed(self, normalizer: MatchNormalizer) -> None:
        assert normalizer.normalize_stream({"id": "s1"}, "alpha") is None

    def test_team(self, normalizer: MatchNormalizer) -> None:
        team = normalizer.normalize_team({"idTeam": "133604", "strTeam": "Arsenal", "strBadge": "https://b/a.png"})
        assert team is not None
        assert team.badge == "https://b/a.png"
