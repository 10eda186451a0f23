"""Domain enumerations for matchcast."""
from __future__ import annotations

import re
from enum import Enum


class Sport(str, Enum):
    FOOTBALL = "football"
    AMERICAN_FOOTBALL = "american_football"
    CRICKET = "cricket"
    BASKETBALL = "basketball"
    FIGHTING = "fighting"
    MOTORSPORT = "motorsport"
    BASEBALL = "baseball"
    RUGBY = "rugby"
    HOCKEY = "hockey"
    TENNIS = "tennis"
    OTHER = "other"


class StreamKind(str, Enum):
    HLS = "hls"
    MP4 = "mp4"
    UNRESOLVED = "unresolved"


class ProviderErrorKind(str, Enum):
    UNAVAILABLE = "unavailable"
    RATE_LIMITED = "rate_limited"
    PARSE_FAILURE = "parse_failure"
    CIRCUIT_OPEN = "circuit_open"


class AggregatorState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    MERGING = "merging"
    SORTING = "sorting"
    CACHED = "cached"


# Checked in order: "american football" must not fall through to football.
_SPORT_KEYWORDS: tuple[tuple[Sport, tuple[str, ...]], ...] = (
    (Sport.AMERICAN_FOOTBALL, ("american", "nfl", "ncaaf")),
    (Sport.FOOTBALL, ("football", "soccer")),
    (Sport.CRICKET, ("cricket",)),
    (Sport.BASKETBALL, ("basketball", "nba")),
    (Sport.FIGHTING, ("mma", "ufc", "fight", "boxing", "wrestling")),
    (Sport.MOTORSPORT, ("motor", "f1", "formula", "racing", "motogp", "nascar")),
    (Sport.BASEBALL, ("baseball", "mlb")),
    (Sport.RUGBY, ("rugby",)),
    (Sport.HOCKEY, ("hockey", "nhl")),
    (Sport.TENNIS, ("tennis",)),
)


def normalize_sport_category(category: str | None) -> Sport:
    """Map a free-text provider category ("Ice Hockey", "american-football") to a Sport."""
    cat = re.sub(r"[^a-z0-9]", "", (category or "").lower())
    if not cat:
        return Sport.OTHER
    for sport, keywords in _SPORT_KEYWORDS:
        if any(kw in cat for kw in keywords):
            return sport
    return Sport.OTHER
