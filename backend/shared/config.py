"""
Central configuration for all matchcast services.
Uses pydantic-settings for env-based config with validation.
"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class BackendKind(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


class Settings(BaseSettings):
    """Root settings shared across all services."""

    model_config = SettingsConfigDict(
        env_prefix="MC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = "INFO"
    instance_id: str = Field(default="", description="Pod/container ID bound into every log line")

    # ── Storage backends ─────────────────────────────────────
    cache_backend: BackendKind = BackendKind.MEMORY
    presence_backend: BackendKind = BackendKind.MEMORY
    redis_url: RedisDsn = Field(default="redis://redis:6379/0")
    redis_max_connections: int = 50
    cache_max_entries: int = 5000
    cache_stale_retention_s: int = 3600

    # ── API ──────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_workers: int = 1
    cors_origins: list[str] = ["*"]
    page_size_default: int = 20
    page_size_max: int = 100

    # ── Upstream providers ───────────────────────────────────
    match_list_sources: dict[str, str] = Field(
        default={
            "westream": "https://westream.top/matches",
            "streamed": "https://streamed.pk/api/matches/all",
        },
        description="Primary match-list providers by name; the first one listed leads the merge.",
    )
    livescore_base_url: str = "https://www.thesportsdb.com/api/v2/json/livescore"
    livescore_api_key: str = "3"
    livescore_sports: list[str] = ["soccer", "basketball", "nfl", "cricket", "mma"]
    channel_directory_url: str = "https://cdn-live.tv/api/v1/vip/damitv/channels/"
    stream_api_base: str = "https://streamed.pk/api"
    team_search_url: str = "https://www.thesportsdb.com/api/v1/json/3/searchteams.php"
    proxy_prefixes: list[str] = Field(
        default=[
            "https://api.allorigins.win/raw?url=",
            "https://corsproxy.io/?",
        ],
        description="Ordered egress fallbacks tried after a direct request fails.",
    )

    # ── Timeouts (seconds) ───────────────────────────────────
    match_list_timeout_s: float = 15.0
    livescore_timeout_s: float = 8.0
    channel_timeout_s: float = 8.0
    stream_listing_timeout_s: float = 8.0
    embed_fetch_timeout_s: float = 10.0
    viewer_probe_timeout_s: float = 4.0
    team_search_timeout_s: float = 8.0

    # ── TTLs (seconds) ───────────────────────────────────────
    catalog_ttl_s: int = 60
    match_list_ttl_s: int = 60
    livescore_ttl_s: int = 60
    channel_ttl_s: int = 300
    stream_listing_ttl_s: int = 120
    resolution_ttl_s: int = 600
    viewer_sample_ttl_s: int = 180
    team_ttl_s: int = 3600

    # ── Aggregation ──────────────────────────────────────────
    aggregation_interval_s: float = 60.0
    provider_concurrency: int = 4
    catalog_lookahead_h: float = 24.0
    catalog_grace_h: float = 1.0
    popular_limit: int = 50
    excluded_sports: list[str] = [
        "tennis", "golf", "hockey", "ice hockey", "nhl", "darts",
        "billiards", "snooker", "pool", "other",
    ]
    liveness_windows_h: dict[str, float] = Field(
        default={
            "football": 2.5,
            "american_football": 4.0,
            "cricket": 6.0,
            "basketball": 3.0,
            "fighting": 5.0,
            "motorsport": 3.0,
            "baseball": 4.0,
            "rugby": 2.0,
            "default": 3.0,
        },
        description="Hours after kick-off a match counts as live. Heuristic, pending owner review.",
    )

    # ── Priority weights ─────────────────────────────────────
    priority_live_bonus: int = 25
    priority_sport_bonus: int = 15
    priority_popular_bonus: int = 10
    priority_recognized_bonus: int = 8
    priority_top_league_bonus: int = 5
    priority_poster_bonus: int = 3
    priority_sources_bonus: int = 2
    priority_sources_min: int = 3
    priority_sports: list[str] = [
        "football", "cricket", "basketball", "american_football", "fighting", "motorsport",
    ]
    top_leagues: list[str] = [
        "english premier league", "spanish la liga", "german bundesliga", "italian serie a",
        "french ligue 1", "uefa champions league", "uefa europa league", "fa cup",
        "copa del rey", "mls", "major league soccer", "nba", "nfl", "nhl",
        "ipl", "bbl", "psl", "t20", "test", "odi",
        "ufc", "bellator", "pfl",
        "formula 1", "f1", "motogp", "nascar", "indycar",
        "bundesliga", "premier league", "la liga", "serie a", "ligue 1",
    ]

    # ── Stream resolver ──────────────────────────────────────
    resolver_max_depth: int = 2
    resolver_concurrency: int = 3
    resolver_max_iframes_per_page: int = 5
    resolver_max_html_bytes: int = 2_000_000
    resolver_total_timeout_s: float = 25.0
    resolver_user_agents: list[str] = [
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
        "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1",
    ]

    # ── Viewers ──────────────────────────────────────────────
    viewer_probe_concurrency: int = 6
    viewer_probe_batch_limit: int = 20
    viewer_preferred_sources: list[str] = ["admin", "alpha", "charlie"]
    presence_timeout_s: int = 60

    # ── Transport circuit breakers ───────────────────────────
    breaker_failure_threshold: int = 5
    breaker_recovery_timeout_s: float = 60.0

    # ── Observability ────────────────────────────────────────
    metrics_enabled: bool = True
    metrics_port: int = 9090

    @property
    def redis_url_str(self) -> str:
        return str(self.redis_url)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton access to validated settings."""
    return Settings()
