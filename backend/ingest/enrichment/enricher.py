"""
Enrichment: fold secondary live-score data and broadcaster channels into a
primary CanonicalMatch, and compute its priority score.
"""
from __future__ import annotations

from typing import Iterable, Optional

from shared.config import Settings, get_settings
from shared.models.domain import CanonicalMatch, Channel, LiveScore, Score, Source, TeamRef, dedupe_sources

CHANNEL_SOURCE = "cdn"
MAX_CHANNEL_SOURCES = 3

# Broadcaster substring → channel-name keywords.
BROADCASTER_CHANNELS: dict[str, tuple[str, ...]] = {
    "espn": ("espn",),
    "sky sports": ("sky sport",),
    "bt sport": ("bt sport",),
    "bein sports": ("bein",),
    "dazn": ("dazn",),
    "nbc": ("nbc", "peacock"),
    "cbs": ("cbs sport", "paramount"),
    "fox": ("fox sport", "fox"),
    "tnt": ("tnt",),
    "abc": ("abc",),
    "star sports": ("star sport",),
    "sony sports": ("sony sport",),
    "willow": ("willow",),
    "supersport": ("super sport",),
    "peacock": ("peacock",),
    "amazon prime": ("prime",),
    "paramount+": ("paramount", "cbs"),
    "optus sport": ("optus",),
    "tsn": ("tsn",),
    "sportsnet": ("sportsnet",),
    "canal+": ("canal",),
    "movistar": ("movistar",),
    "eleven sports": ("eleven",),
}


def match_broadcaster_channels(
    broadcaster: Optional[str],
    channels: Iterable[Channel],
    limit: int = MAX_CHANNEL_SOURCES,
) -> list[Channel]:
    """Channels carrying a broadcaster, most-watched first, at most `limit`."""
    if not broadcaster:
        return []
    wanted = broadcaster.lower()
    first_word = wanted.split(" ")[0]
    pool = list(channels)
    matched: dict[str, Channel] = {}

    for key, keywords in BROADCASTER_CHANNELS.items():
        if key not in wanted:
            continue
        for ch in pool:
            if ch.name not in matched and any(kw in ch.name.lower() for kw in keywords):
                matched[ch.name] = ch

    for ch in pool:
        name = ch.name.lower()
        if ch.name not in matched and (name in wanted or (first_word and first_word in name)):
            matched[ch.name] = ch

    ranked = sorted(matched.values(), key=lambda c: c.viewers, reverse=True)
    return ranked[:limit]


def channel_sources(channels: Iterable[Channel]) -> list[Source]:
    return [
        Source(source=CHANNEL_SOURCE, id=ch.url, name=ch.name, image=ch.image, is_channel=True)
        for ch in channels
    ]


class Enricher:
    """Applies secondary data and priority weights; both are recomputed every cycle."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._top_leagues = [league.lower() for league in self._settings.top_leagues]
        self._priority_sports = set(self._settings.priority_sports)

    def enrich(
        self,
        match: CanonicalMatch,
        live: Optional[LiveScore],
        channels: Iterable[Channel] = (),
    ) -> CanonicalMatch:
        """Return a copy of `match` with secondary fields and channel backups merged in."""
        if live is None:
            return match.model_copy(deep=True)

        teams = match.teams.model_copy(deep=True)
        teams.home = TeamRef(name=teams.home.name, badge=live.home_badge or teams.home.badge)
        teams.away = TeamRef(name=teams.away.name, badge=live.away_badge or teams.away.badge)

        score = match.score
        if live.home_score is not None and live.away_score is not None:
            score = Score(home=live.home_score, away=live.away_score)

        backups = channel_sources(match_broadcaster_channels(live.broadcaster, channels))
        return match.model_copy(
            update={
                "teams": teams,
                "score": score,
                "progress": live.progress or match.progress,
                "status": live.status or match.status,
                "broadcaster": live.broadcaster or match.broadcaster,
                "tournament": live.league or match.tournament,
                "poster": live.poster or match.poster,
                "recognized": True,
                "popular": True,
                "sources": dedupe_sources([*match.sources, *backups]),
            },
            deep=True,
        )

    def is_top_league(self, tournament: Optional[str]) -> bool:
        league = (tournament or "").lower()
        return bool(league) and any(top in league for top in self._top_leagues)

    def compute_priority(self, match: CanonicalMatch, is_live: bool, primary_popular: Optional[bool] = None) -> int:
        """
        Weighted sum of ranking signals.

        `primary_popular` is the primary provider's own flag; it defaults to
        match.popular, which after enrichment also reflects recognition.
        """
        s = self._settings
        popular = match.popular if primary_popular is None else primary_popular
        primary_sources = [src for src in match.sources if not src.is_channel]
        priority = 0
        if is_live:
            priority += s.priority_live_bonus
        if match.sport.value in self._priority_sports:
            priority += s.priority_sport_bonus
        if popular:
            priority += s.priority_popular_bonus
        if match.recognized:
            priority += s.priority_recognized_bonus
        if self.is_top_league(match.tournament):
            priority += s.priority_top_league_bonus
        if match.poster:
            priority += s.priority_poster_bonus
        if len(primary_sources) >= s.priority_sources_min:
            priority += s.priority_sources_bonus
        return priority
