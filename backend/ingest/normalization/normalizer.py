"""
Normalization layer for the ingest package.
Maps each provider's raw record shape onto the canonical models. Raw records never
travel past this module: anything that cannot be normalized returns None and is
skipped by the caller.
"""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Optional

from shared.models.domain import (
    CanonicalMatch,
    Channel,
    LiveScore,
    MatchTeams,
    Source,
    StreamInfo,
    TeamInfo,
    TeamRef,
    dedupe_sources,
)
from shared.models.enums import normalize_sport_category
from shared.utils.logging import get_logger

from ingest.providers.livescore import SPORT_PARTITION_KEY

logger = get_logger(__name__)

PLACEHOLDER_TEAM_NAMES = frozenset({
    "tbd", "tba", "unknown", "n/a", "winner", "loser",
    "team 1", "team 2", "player 1", "player 2",
})

# Per-record failures a caller catches to skip one record and keep its siblings.
RECORD_ERRORS = (ValueError, TypeError, OverflowError, AttributeError)

# Anything below this is a seconds timestamp (1e12 ms is September 2001).
_MS_THRESHOLD = 1_000_000_000_000


def is_valid_team_name(name: Any) -> bool:
    """At least two characters and not a bracket placeholder such as "TBD" or "Team 1"."""
    if not isinstance(name, str):
        return False
    stripped = name.strip()
    if len(stripped) < 2:
        return False
    return stripped.lower() not in PLACEHOLDER_TEAM_NAMES


def to_epoch_ms(value: Any) -> Optional[int]:
    """Accept epoch seconds or milliseconds, numeric or numeric string, or an ISO-8601 string."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            number = float(text)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return int(parsed.timestamp() * 1000)
    else:
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    if number < _MS_THRESHOLD:
        number *= 1000
    return int(number)


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _team(raw: Any) -> Optional[TeamRef]:
    if not isinstance(raw, dict) or not is_valid_team_name(raw.get("name")):
        return None
    return TeamRef(name=raw["name"].strip(), badge=_opt_str(raw.get("badge")))


class MatchNormalizer:
    """Pure record → canonical model conversions for every provider shape."""

    # ── Primary match list ──────────────────────────────────────────────
    def normalize_primary(self, record: dict[str, Any], provider: str) -> Optional[CanonicalMatch]:
        """
        Returns None when either team name is missing or a placeholder, when the
        record carries no usable source, or when it has no parseable start time.
        """
        teams = record.get("teams") or {}
        if not isinstance(teams, dict):
            return None
        home = _team(teams.get("home"))
        away = _team(teams.get("away"))
        if home is None or away is None:
            logger.debug("normalize_skipped_teams", provider=provider, title=record.get("title"))
            return None

        sources = self._sources(record.get("sources"))
        if not sources:
            logger.debug("normalize_skipped_sources", provider=provider, title=record.get("title"))
            return None

        start_time = to_epoch_ms(record.get("date"))
        record_id = _opt_str(record.get("id"))
        if start_time is None or record_id is None:
            logger.debug("normalize_skipped_fields", provider=provider, id=record_id)
            return None

        category = _opt_str(record.get("category")) or "other"
        return CanonicalMatch(
            id=record_id,
            title=_opt_str(record.get("title")) or f"{home.name} vs {away.name}",
            category=category,
            sport=normalize_sport_category(category),
            start_time=start_time,
            teams=MatchTeams(home=home, away=away),
            sources=sources,
            poster=_opt_str(record.get("poster")),
            popular=bool(record.get("popular")),
            provider=provider,
        )

    @staticmethod
    def _sources(raw: Any) -> list[Source]:
        if not isinstance(raw, list):
            return []
        out: list[Source] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            source = _opt_str(item.get("source"))
            source_id = _opt_str(item.get("id"))
            if source and source_id:
                out.append(Source(source=source, id=source_id))
        return dedupe_sources(out)

    # ── Secondary live scores ───────────────────────────────────────────
    def normalize_livescore(self, record: dict[str, Any]) -> Optional[LiveScore]:
        home = _opt_str(record.get("strHomeTeam"))
        away = _opt_str(record.get("strAwayTeam"))
        if not home or not away:
            return None
        sport_hint = record.get("strSport") or record.get(SPORT_PARTITION_KEY)
        start_time = to_epoch_ms(record.get("strTimestamp"))
        if start_time is None and record.get("dateEvent"):
            start_time = to_epoch_ms(f"{record['dateEvent']}T{record.get('strTime') or '00:00:00'}")
        return LiveScore(
            id=_opt_str(record.get("idEvent")) or f"{home}-{away}",
            sport=normalize_sport_category(sport_hint),
            home_team=home,
            away_team=away,
            home_score=_opt_str(record.get("intHomeScore")),
            away_score=_opt_str(record.get("intAwayScore")),
            progress=_opt_str(record.get("strProgress")),
            status=_opt_str(record.get("strStatus")),
            league=_opt_str(record.get("strLeague")),
            broadcaster=_opt_str(record.get("strTVStation")),
            home_badge=_opt_str(record.get("strHomeTeamBadge")),
            away_badge=_opt_str(record.get("strAwayTeamBadge")),
            poster=_opt_str(record.get("strThumb")) or _opt_str(record.get("strPoster")),
            start_time=start_time,
        )

    # ── Channel directory ───────────────────────────────────────────────
    def normalize_channel(self, record: dict[str, Any]) -> Optional[Channel]:
        name = _opt_str(record.get("name"))
        url = _opt_str(record.get("url"))
        if not name or not url:
            return None
        try:
            viewers = int(record.get("viewers") or 0)
        except (TypeError, ValueError, OverflowError):
            viewers = 0
        return Channel(
            name=name,
            country_code=_opt_str(record.get("code")) or "",
            url=url,
            image=_opt_str(record.get("image")),
            viewers=viewers,
        )

    # ── Stream listing ──────────────────────────────────────────────────
    def normalize_stream(self, record: dict[str, Any], source: str) -> Optional[StreamInfo]:
        embed_url = _opt_str(record.get("embedUrl"))
        if not embed_url:
            return None
        try:
            stream_no = int(record.get("streamNo") or 1)
            viewers = int(record.get("viewers") or 0)
        except (TypeError, ValueError, OverflowError):
            logger.debug("normalize_stream_bad_numbers", source=source, embed_url=embed_url)
            return None
        return StreamInfo(
            id=_opt_str(record.get("id")) or embed_url,
            stream_no=stream_no,
            language=_opt_str(record.get("language")) or "",
            hd=bool(record.get("hd")),
            embed_url=embed_url,
            source=_opt_str(record.get("source")) or source,
            viewers=viewers,
        )

    # ── Team directory ──────────────────────────────────────────────────
    def normalize_team(self, record: dict[str, Any]) -> Optional[TeamInfo]:
        team_id = _opt_str(record.get("idTeam"))
        name = _opt_str(record.get("strTeam"))
        if not team_id or not name:
            return None
        return TeamInfo(
            id=team_id,
            name=name,
            short_name=_opt_str(record.get("strTeamShort")),
            sport=_opt_str(record.get("strSport")),
            league=_opt_str(record.get("strLeague")),
            country=_opt_str(record.get("strCountry")),
            badge=_opt_str(record.get("strBadge")) or _opt_str(record.get("strTeamBadge")),
            stadium=_opt_str(record.get("strStadium")),
            description=_opt_str(record.get("strDescriptionEN")),
        )
