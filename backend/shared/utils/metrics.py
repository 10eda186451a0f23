"""
Prometheus metrics for matchcast.
Module-level collectors; label cardinality is bounded by provider/transport/sport names.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
PROVIDER_REQUESTS = Counter(
    "mc_provider_requests_total",
    "Provider fetches by outcome",
    ["provider", "status"],
)
TRANSPORT_ATTEMPTS = Counter(
    "mc_transport_attempts_total",
    "HTTP attempts per egress transport",
    ["transport", "status"],
)
TRANSPORT_FALLBACKS = Counter(
    "mc_transport_fallbacks_total",
    "Requests that succeeded only after falling back past the first transport",
    ["transport"],
)
CACHE_LOOKUPS = Counter(
    "mc_cache_lookups_total",
    "Cache lookups by namespace and result",
    ["namespace", "result"],
)
AGGREGATION_CYCLES = Counter(
    "mc_aggregation_cycles_total",
    "Aggregation cycles by outcome",
    ["outcome"],
)
STREAM_RESOLUTIONS = Counter(
    "mc_stream_resolutions_total",
    "Stream resolution requests by outcome",
    ["outcome"],
)
VIEWER_PROBES = Counter(
    "mc_viewer_probes_total",
    "Viewer count probes by outcome",
    ["outcome"],
)

# ── Histograms ──────────────────────────────────────────────────────────
PROVIDER_LATENCY = Histogram(
    "mc_provider_latency_seconds",
    "Provider fetch latency in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0),
)
AGGREGATION_DURATION = Histogram(
    "mc_aggregation_duration_seconds",
    "Wall time of one aggregation cycle",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
CATALOG_MATCHES = Gauge(
    "mc_catalog_matches",
    "Number of matches in the current catalog",
)
LIVE_MATCHES = Gauge(
    "mc_live_matches",
    "Number of live matches in the current catalog",
    ["sport"],
)


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        if labels:
            histogram.labels(**labels).observe(elapsed)
        else:
            histogram.observe(elapsed)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
