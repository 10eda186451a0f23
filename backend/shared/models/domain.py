"""
Pydantic v2 domain models shared across matchcast packages.
These are the canonical wire/internal representations; provider record shapes
never leave the ingest package.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.models.enums import ProviderErrorKind, Sport, StreamKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Teams and sources ───────────────────────────────────────────────────
class TeamRef(DomainModel):
    name: str
    badge: Optional[str] = None


class MatchTeams(DomainModel):
    home: TeamRef
    away: TeamRef


class Source(DomainModel):
    """One concrete playable endpoint for a match, identified by (source, id)."""
    source: str
    id: str
    name: Optional[str] = None
    image: Optional[str] = None
    is_channel: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return (self.source, self.id)


def dedupe_sources(sources: Iterable[Source]) -> list[Source]:
    """Keep the first occurrence of each (source, id) pair, preserving order."""
    seen: set[tuple[str, str]] = set()
    out: list[Source] = []
    for src in sources:
        if src.key in seen:
            continue
        seen.add(src.key)
        out.append(src)
    return out


class Score(DomainModel):
    # Kept as strings: live-score providers send "2", "145/3", "" etc.
    home: str
    away: str


# ── Canonical match ─────────────────────────────────────────────────────
class CanonicalMatch(DomainModel):
    """
    One real-world event merged from one or more provider records.

    Liveness is deliberately absent: it is computed from (start_time, sport, now)
    at read time. `priority` is recomputed wholesale every aggregation cycle.
    """
    id: str
    title: str
    category: str
    sport: Sport
    start_time: int = Field(description="Epoch milliseconds")
    teams: MatchTeams
    sources: list[Source] = Field(default_factory=list)
    priority: int = 0
    score: Optional[Score] = None
    progress: Optional[str] = None
    status: Optional[str] = None
    broadcaster: Optional[str] = None
    tournament: Optional[str] = None
    poster: Optional[str] = None
    popular: bool = False
    recognized: bool = False
    provider: str = ""


# ── Secondary / tertiary provider outputs ───────────────────────────────
class LiveScore(DomainModel):
    id: str
    sport: Sport
    home_team: str
    away_team: str
    home_score: Optional[str] = None
    away_score: Optional[str] = None
    progress: Optional[str] = None
    status: Optional[str] = None
    league: Optional[str] = None
    broadcaster: Optional[str] = None
    home_badge: Optional[str] = None
    away_badge: Optional[str] = None
    poster: Optional[str] = None
    start_time: Optional[int] = None


class Channel(DomainModel):
    name: str
    country_code: str = ""
    url: str
    image: Optional[str] = None
    viewers: int = 0


class StreamInfo(DomainModel):
    """One entry of an upstream stream listing for a Source."""
    id: str
    stream_no: int = 1
    language: str = ""
    hd: bool = False
    embed_url: str
    source: str
    viewers: int = 0


class TeamInfo(DomainModel):
    id: str
    name: str
    short_name: Optional[str] = None
    sport: Optional[str] = None
    league: Optional[str] = None
    country: Optional[str] = None
    badge: Optional[str] = None
    stadium: Optional[str] = None
    description: Optional[str] = None


# ── Resolution / viewers ────────────────────────────────────────────────
class StreamResolution(DomainModel):
    embed_url: str
    resolved_url: Optional[str] = None
    kind: StreamKind = StreamKind.UNRESOLVED
    resolved_at: datetime = Field(default_factory=utcnow)
    via: Optional[str] = Field(default=None, description="Page the media URL was found on")

    @property
    def found(self) -> bool:
        return self.resolved_url is not None


class ViewerSample(DomainModel):
    count: int
    sampled_at: datetime = Field(default_factory=utcnow)


# ── Aggregation outputs ─────────────────────────────────────────────────
class ProviderStatus(DomainModel):
    provider: str
    success: bool
    records: int = 0
    cached: bool = False
    error: Optional[str] = None
    error_kind: Optional[ProviderErrorKind] = None
    latency_ms: float = 0.0


class Catalog(DomainModel):
    matches: list[CanonicalMatch] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=utcnow)
    stale: bool = False
    cached: bool = False
    failed_providers: list[str] = Field(default_factory=list)


class CycleReport(DomainModel):
    """Outcome of one aggregation cycle, exposed through /status."""
    outcome: str
    started_at: datetime
    duration_ms: float
    match_count: int
    stale: bool
    providers: list[ProviderStatus] = Field(default_factory=list)
