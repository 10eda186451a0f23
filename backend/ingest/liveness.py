"""
Liveness classification.

A match is live iff start_time <= now <= start_time + window(sport). Nothing is
stored: every caller evaluates against its own `now`. A recognized match whose
secondary provider reports a terminal progress or status is narrowed to not-live.
"""
from __future__ import annotations

import re
import time
from typing import Optional

from shared.config import Settings, get_settings
from shared.models.domain import CanonicalMatch
from shared.models.enums import Sport

MS_PER_HOUR = 3_600_000
# Whole tokens only: "Halftime" and "Left" must not read as "FT".
_TERMINAL_PROGRESS = re.compile(r"\b(?:ft|aet|finished|ended|postponed|cancell?ed|abandoned)\b")


def now_ms() -> int:
    return int(time.time() * 1000)


def is_terminal_progress(value: Optional[str]) -> bool:
    text = (value or "").strip().lower()
    return bool(_TERMINAL_PROGRESS.search(text))


class LivenessClassifier:
    """Per-sport live windows, configured in hours."""

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self._windows_h = dict(settings.liveness_windows_h)
        self._default_h = self._windows_h.get("default", 3.0)

    def window_ms(self, sport: Sport | str) -> int:
        key = sport.value if isinstance(sport, Sport) else str(sport)
        return int(self._windows_h.get(key, self._default_h) * MS_PER_HOUR)

    def is_live(self, start_ms: int, sport: Sport | str, at_ms: int) -> bool:
        return start_ms <= at_ms <= start_ms + self.window_ms(sport)

    def window_end(self, match: CanonicalMatch) -> int:
        return match.start_time + self.window_ms(match.sport)

    def is_live_match(self, match: CanonicalMatch, at_ms: Optional[int] = None) -> bool:
        at = now_ms() if at_ms is None else at_ms
        if not self.is_live(match.start_time, match.sport, at):
            return False
        if match.recognized and (is_terminal_progress(match.progress) or is_terminal_progress(match.status)):
            return False
        return True
