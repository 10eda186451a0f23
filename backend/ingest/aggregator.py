"""
Aggregator: builds the ranked match catalog.

One cycle:
  1. Fetching   fan out to every provider concurrently (bounded); each result is
                awaited independently so one failure never cancels the others.
  2. Merging    normalize primary records, merge the match-list providers into one
                list through TeamMatcher, enrich from live scores and channels.
  3. Sorting    priority desc, start time asc, id asc.
  4. Cached     the catalog is written to its CacheLayer.

If every match-list provider fails, the last catalog still inside the stale
retention horizon is served with stale=True. refresh() never raises.
A record that fails to normalize is skipped; its siblings are kept.
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from shared.config import Settings, get_settings
from shared.models.domain import (
    CanonicalMatch,
    Catalog,
    Channel,
    CycleReport,
    LiveScore,
    dedupe_sources,
)
from shared.models.enums import AggregatorState, ProviderErrorKind, Sport
from shared.utils.cache import CacheLayer
from shared.utils.logging import get_logger
from shared.utils.metrics import (
    AGGREGATION_CYCLES,
    AGGREGATION_DURATION,
    CATALOG_MATCHES,
    LIVE_MATCHES,
)

from ingest.enrichment.enricher import Enricher
from ingest.liveness import LivenessClassifier, now_ms
from ingest.matching.team_matcher import TeamMatcher, team_keywords
from ingest.normalization.normalizer import RECORD_ERRORS, MatchNormalizer
from ingest.providers.base import ProviderClient, ProviderResult

logger = get_logger(__name__)

CATALOG_KEY = "catalog"
MS_PER_HOUR = 3_600_000


class Aggregator:
    """
    Orchestrates providers → normalizer → matcher/enricher → liveness → sort → cache.

    Args:
        match_lists: Primary match-list providers; the first successful one leads the merge.
        livescores: Secondary live-score provider (optional).
        channels: Channel directory provider (optional).
        cache: CacheLayer for the finished catalog.
        clock: Epoch-millisecond clock, injectable for tests.
    """

    def __init__(
        self,
        match_lists: Sequence[ProviderClient],
        cache: CacheLayer,
        livescores: Optional[ProviderClient] = None,
        channels: Optional[ProviderClient] = None,
        settings: Settings | None = None,
        normalizer: MatchNormalizer | None = None,
        matcher: TeamMatcher | None = None,
        enricher: Enricher | None = None,
        liveness: LivenessClassifier | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._settings = settings or get_settings()
        self._match_lists = list(match_lists)
        self._livescores = livescores
        self._channels = channels
        self._cache = cache
        self._normalizer = normalizer or MatchNormalizer()
        self._matcher = matcher or TeamMatcher()
        self._enricher = enricher or Enricher(self._settings)
        self._liveness = liveness or LivenessClassifier(self._settings)
        self._clock = clock
        self._state = AggregatorState.IDLE
        self._last_cycle: Optional[CycleReport] = None
        self._last_attempt_ms: Optional[int] = None
        self._refresh_lock = asyncio.Lock()
        self._excluded = [s.lower() for s in self._settings.excluded_sports]

    @property
    def state(self) -> AggregatorState:
        return self._state

    @property
    def last_cycle(self) -> Optional[CycleReport]:
        return self._last_cycle

    @property
    def liveness(self) -> LivenessClassifier:
        return self._liveness

    @property
    def cache(self) -> CacheLayer:
        return self._cache

    # ── Public API ──────────────────────────────────────────────────────

    async def get_catalog(self) -> Catalog:
        """
        Serve the cached catalog.

        Past its TTL the previous catalog is served with stale=True until the next
        cycle of run_forever replaces it. A cycle runs inline only when no catalog
        exists at all and none was attempted within the last interval; concurrent
        callers share that one cycle.
        """
        catalog = await self._serveable_catalog()
        if catalog is not None:
            return catalog
        async with self._refresh_lock:
            catalog = await self._serveable_catalog()
            if catalog is not None:
                return catalog
            if self._attempted_recently():
                return Catalog(stale=True, failed_providers=self._last_failures())
            return await self.refresh()

    async def refresh(self) -> Catalog:
        """Run one aggregation cycle. Never raises."""
        started = datetime.now(timezone.utc)
        self._last_attempt_ms = self._clock()
        t0 = time.perf_counter()
        results: list[ProviderResult] = []
        try:
            self._state = AggregatorState.FETCHING
            results = await self._fetch_all()
            primary = results[: len(self._match_lists)]

            if self._match_lists and not any(r.success for r in primary):
                catalog = await self._stale_catalog(results)
                outcome = "stale"
            else:
                self._state = AggregatorState.MERGING
                matches = self._build(results)
                self._state = AggregatorState.SORTING
                matches.sort(key=lambda m: (-m.priority, m.start_time, m.id))
                catalog = Catalog(
                    matches=matches,
                    generated_at=started,
                    failed_providers=[r.provider for r in results if not r.success],
                )
                await self._cache.set(CATALOG_KEY, catalog.model_dump(mode="json"))
                outcome = "partial" if catalog.failed_providers else "ok"
        except Exception as exc:
            logger.exception("aggregation_cycle_error", error=str(exc))
            catalog = await self._stale_catalog(results)
            outcome = "error"

        duration = time.perf_counter() - t0
        self._state = AggregatorState.CACHED if outcome in ("ok", "partial") else AggregatorState.IDLE
        self._record_cycle(catalog, outcome, started, duration, results)
        return catalog

    async def run_forever(self, stop: asyncio.Event | None = None) -> None:
        """Refresh immediately, then once per aggregation interval until cancelled or stopped."""
        interval = self._settings.aggregation_interval_s
        logger.info("aggregator_loop_started", interval_s=interval)
        while stop is None or not stop.is_set():
            await self.refresh()
            try:
                if stop is None:
                    await asyncio.sleep(interval)
                else:
                    await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
        logger.info("aggregator_loop_stopped")

    def is_live(self, match: CanonicalMatch, at_ms: Optional[int] = None) -> bool:
        return self._liveness.is_live_match(match, self._clock() if at_ms is None else at_ms)

    def live_matches(self, catalog: Catalog, at_ms: Optional[int] = None) -> list[CanonicalMatch]:
        at = self._clock() if at_ms is None else at_ms
        return [m for m in catalog.matches if self._liveness.is_live_match(m, at)]

    def popular_matches(self, catalog: Catalog, limit: Optional[int] = None) -> list[CanonicalMatch]:
        limit = self._settings.popular_limit if limit is None else limit
        return [m for m in catalog.matches if m.popular][:limit]

    async def get_live_scores(self, sport: Sport | None = None) -> tuple[list[LiveScore], bool]:
        """Normalized secondary records, optionally for one sport. Returns (scores, cached)."""
        if self._livescores is None:
            return [], False
        result = await self._livescores.fetch()
        scores = self._normalize_livescores(result)
        if sport is not None:
            scores = [s for s in scores if s.sport == sport]
        return scores, result.cached

    @staticmethod
    def matches_for_team(catalog: Catalog, team_name: str) -> list[CanonicalMatch]:
        """Catalogued matches where either side shares a keyword with `team_name`."""
        wanted = team_keywords(team_name)
        if not wanted:
            return []
        found = []
        for match in catalog.matches:
            keywords = team_keywords(match.teams.home.name) + team_keywords(match.teams.away.name)
            if any(w in k or k in w for w in wanted for k in keywords):
                found.append(match)
        return found

    # ── Catalog reads ───────────────────────────────────────────────────

    async def _serveable_catalog(self) -> Optional[Catalog]:
        fresh = await self._cache.get(CATALOG_KEY)
        if fresh is not None:
            catalog = Catalog.model_validate(fresh)
            catalog.cached = True
            return catalog
        try:
            previous = await self._cache.get_stale(CATALOG_KEY)
        except Exception as exc:
            logger.error("stale_catalog_read_failed", error=str(exc))
            return None
        if previous is None:
            return None
        catalog = Catalog.model_validate(previous)
        catalog.cached = True
        catalog.stale = True
        catalog.failed_providers = self._last_failures() or catalog.failed_providers
        return catalog

    def _attempted_recently(self) -> bool:
        if self._last_attempt_ms is None:
            return False
        return self._clock() - self._last_attempt_ms < self._settings.aggregation_interval_s * 1000

    def _last_failures(self) -> list[str]:
        if self._last_cycle is None:
            return []
        return [p.provider for p in self._last_cycle.providers if not p.success]

    # ── Cycle internals ─────────────────────────────────────────────────

    async def _fetch_all(self) -> list[ProviderResult]:
        providers: list[ProviderClient] = [*self._match_lists]
        if self._livescores is not None:
            providers.append(self._livescores)
        if self._channels is not None:
            providers.append(self._channels)

        sem = asyncio.Semaphore(max(1, self._settings.provider_concurrency))

        async def _one(provider: ProviderClient) -> ProviderResult:
            async with sem:
                return await provider.fetch()

        raw = await asyncio.gather(*(_one(p) for p in providers), return_exceptions=True)
        results: list[ProviderResult] = []
        for provider, item in zip(providers, raw):
            if isinstance(item, BaseException):
                logger.error("provider_task_failed", provider=provider.name, error=str(item))
                item = ProviderResult(
                    provider=provider.name,
                    success=False,
                    error=str(item),
                    error_kind=ProviderErrorKind.UNAVAILABLE,
                )
            results.append(item)
        return results

    def _build(self, results: list[ProviderResult]) -> list[CanonicalMatch]:
        primary = results[: len(self._match_lists)]
        rest = results[len(self._match_lists):]
        live_result = rest[0] if self._livescores is not None and rest else None
        channel_result = rest[-1] if self._channels is not None and rest else None

        merged = self._merge_primary(primary)
        live_scores = self._normalize_livescores(live_result)
        channels = self._normalize_channels(channel_result)

        now = self._clock()
        out: list[CanonicalMatch] = []
        for match in merged:
            if not self._in_catalog_window(match, now):
                continue
            live = self._find_live_score(match, live_scores)
            enriched = self._enricher.enrich(match, live, channels)
            is_live = self._liveness.is_live_match(enriched, now)
            enriched.priority = self._enricher.compute_priority(enriched, is_live, primary_popular=match.popular)
            out.append(enriched)
        return out

    def _merge_primary(self, results: list[ProviderResult]) -> list[CanonicalMatch]:
        merged: list[CanonicalMatch] = []
        ids: set[str] = set()
        for result in results:
            if not result.success:
                continue
            for record in result.records:
                try:
                    match = self._normalizer.normalize_primary(record, result.provider)
                except RECORD_ERRORS as exc:
                    logger.debug("primary_record_skipped", provider=result.provider, error=str(exc))
                    continue
                if match is None:
                    continue
                if merged:
                    same_sport = [m for m in merged if m.sport == match.sport]
                    hit = self._matcher.find_best_match(
                        match.teams.home.name,
                        match.teams.away.name,
                        same_sport,
                        teams_of=lambda m: (m.teams.home.name, m.teams.away.name),
                        start_time_of=lambda m: m.start_time,
                    )
                    if hit is not None:
                        self._absorb(hit.item, match)
                        continue
                if match.id in ids:
                    match.id = f"{result.provider}-{match.id}"
                ids.add(match.id)
                merged.append(match)
        return merged

    @staticmethod
    def _absorb(target: CanonicalMatch, other: CanonicalMatch) -> None:
        target.sources = dedupe_sources([*target.sources, *other.sources])
        target.popular = target.popular or other.popular
        target.poster = target.poster or other.poster
        if target.teams.home.badge is None:
            target.teams.home.badge = other.teams.home.badge
        if target.teams.away.badge is None:
            target.teams.away.badge = other.teams.away.badge

    def _normalize_livescores(self, result: Optional[ProviderResult]) -> list[LiveScore]:
        if result is None or not result.success:
            return []
        scores = []
        for record in result.records:
            try:
                score = self._normalizer.normalize_livescore(record)
            except RECORD_ERRORS as exc:
                logger.debug("livescore_record_skipped", error=str(exc))
                continue
            if score is not None:
                scores.append(score)
        return scores

    def _normalize_channels(self, result: Optional[ProviderResult]) -> list[Channel]:
        # The channel provider substitutes its static list on failure, so records are used regardless.
        if result is None:
            return []
        channels = []
        for record in result.records:
            try:
                channel = self._normalizer.normalize_channel(record)
            except RECORD_ERRORS as exc:
                logger.debug("channel_record_skipped", error=str(exc))
                continue
            if channel is not None:
                channels.append(channel)
        return channels

    def _find_live_score(self, match: CanonicalMatch, scores: list[LiveScore]) -> Optional[LiveScore]:
        hit = self._matcher.find_best_match(
            match.teams.home.name,
            match.teams.away.name,
            scores,
            teams_of=lambda s: (s.home_team, s.away_team),
            start_time_of=lambda s: s.start_time,
        )
        return hit.item if hit is not None else None

    def _in_catalog_window(self, match: CanonicalMatch, now: int) -> bool:
        category = match.category.lower()
        if any(ex in category for ex in self._excluded):
            return False
        grace_ms = int(self._settings.catalog_grace_h * MS_PER_HOUR)
        lookahead_ms = int(self._settings.catalog_lookahead_h * MS_PER_HOUR)
        if now > self._liveness.window_end(match) + grace_ms:
            return False
        if match.start_time > now + lookahead_ms:
            return False
        return True

    async def _stale_catalog(self, results: list[ProviderResult]) -> Catalog:
        failed = [r.provider for r in results if not r.success]
        try:
            previous = await self._cache.get_stale(CATALOG_KEY)
        except Exception as exc:
            logger.error("stale_catalog_read_failed", error=str(exc))
            previous = None
        if previous is None:
            logger.warning("aggregation_no_stale_catalog", failed=failed)
            return Catalog(stale=True, failed_providers=failed)
        catalog = Catalog.model_validate(previous)
        catalog.stale = True
        catalog.cached = True
        catalog.failed_providers = failed
        logger.warning("aggregation_serving_stale", failed=failed, matches=len(catalog.matches))
        return catalog

    def _record_cycle(
        self,
        catalog: Catalog,
        outcome: str,
        started: datetime,
        duration_s: float,
        results: list[ProviderResult],
    ) -> None:
        AGGREGATION_CYCLES.labels(outcome=outcome).inc()
        AGGREGATION_DURATION.observe(duration_s)
        CATALOG_MATCHES.set(len(catalog.matches))
        now = self._clock()
        per_sport: dict[str, int] = {sport.value: 0 for sport in Sport}
        for match in catalog.matches:
            if self._liveness.is_live_match(match, now):
                per_sport[match.sport.value] += 1
        for sport, count in per_sport.items():
            LIVE_MATCHES.labels(sport=sport).set(count)

        self._last_cycle = CycleReport(
            outcome=outcome,
            started_at=started,
            duration_ms=round(duration_s * 1000, 1),
            match_count=len(catalog.matches),
            stale=catalog.stale,
            providers=[r.status() for r in results],
        )
        logger.info(
            "aggregation_cycle_complete",
            outcome=outcome,
            matches=len(catalog.matches),
            duration_ms=self._last_cycle.duration_ms,
            failed=catalog.failed_providers,
        )
