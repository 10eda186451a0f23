"""
Fuzzy cross-provider fixture matching on team-name keywords.

Providers share no identifiers, so two records are the same fixture when the
keyword overlap between their team names scores at least MATCH_THRESHOLD:

    +2 per keyword found in the same-side team of the candidate
    +1 per keyword found in the opposite-side team

Keywords "match" by substring containment in either direction, so "man" hits
"manchester". Only the single best candidate at or above the threshold is taken.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Optional, TypeVar

MATCH_THRESHOLD = 4
SAME_SIDE_POINTS = 2
OPPOSITE_SIDE_POINTS = 1
MIN_KEYWORD_LEN = 3

_STOPWORDS = (
    "fc", "sc", "cf", "afc", "united", "city", "club", "the", "de", "la", "los", "las", "el",
    "real", "sporting", "athletic", "atletico", "inter", "ac", "as", "ss", "us", "fk", "sk",
    "bk", "if", "gk",
)
_STOPWORD_RE = re.compile(r"\b(?:" + "|".join(_STOPWORDS) + r")\b")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_WS_RE = re.compile(r"\s+")

T = TypeVar("T")


def normalize_team_name(name: str) -> str:
    """Lower-case, strip punctuation and generic club tokens, collapse whitespace."""
    text = _WS_RE.sub(" ", (name or "").lower())
    text = _NON_ALNUM_RE.sub("", text)
    text = _STOPWORD_RE.sub("", text)
    return _WS_RE.sub(" ", text).strip()


def team_keywords(name: str) -> list[str]:
    """
    Keywords of at least three characters.

    A name made only of short or generic tokens ("AC", "Real") would otherwise
    yield nothing; it falls back to its compacted raw form so identical names
    still score against each other.
    """
    words = [w for w in normalize_team_name(name).split(" ") if len(w) >= MIN_KEYWORD_LEN]
    if words:
        return words
    compact = re.sub(r"[^a-z0-9]", "", (name or "").lower())
    return [compact] if compact else []


def _hits(keyword: str, others: list[str]) -> bool:
    return any(keyword in other or other in keyword for other in others)


def score_pair(home_a: str, away_a: str, home_b: str, away_b: str) -> int:
    """Keyword-overlap score of fixture A against candidate fixture B."""
    a_home, a_away = team_keywords(home_a), team_keywords(away_a)
    b_home, b_away = team_keywords(home_b), team_keywords(away_b)
    score = 0
    for kw in a_home:
        if _hits(kw, b_home):
            score += SAME_SIDE_POINTS
        if _hits(kw, b_away):
            score += OPPOSITE_SIDE_POINTS
    for kw in a_away:
        if _hits(kw, b_away):
            score += SAME_SIDE_POINTS
        if _hits(kw, b_home):
            score += OPPOSITE_SIDE_POINTS
    return score


@dataclass(frozen=True)
class MatchCandidate(Generic[T]):
    item: T
    score: int


class TeamMatcher:
    """Finds the best-scoring counterpart for a fixture among another provider's records."""

    def __init__(self, threshold: int = MATCH_THRESHOLD) -> None:
        self.threshold = threshold

    def find_best_match(
        self,
        home: str,
        away: str,
        candidates: Iterable[T],
        teams_of: Callable[[T], tuple[str, str]],
        start_time_of: Callable[[T], Optional[int]] = lambda _: None,
    ) -> Optional[MatchCandidate[T]]:
        """
        Highest score at or above the threshold wins. Ties go to the most recently
        dated candidate, then to the earliest in input order. Returns None when
        nothing reaches the threshold, even with a single candidate.
        """
        if not home or not away:
            return None
        best: Optional[MatchCandidate[T]] = None
        best_start = -1
        for candidate in candidates:
            cand_home, cand_away = teams_of(candidate)
            score = score_pair(home, away, cand_home or "", cand_away or "")
            if score < self.threshold:
                continue
            start = start_time_of(candidate) or 0
            if best is None or score > best.score or (score == best.score and start > best_start):
                best = MatchCandidate(item=candidate, score=score)
                best_start = start
        return best
