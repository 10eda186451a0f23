"""
Abstract base class for all upstream providers.
Defines the contract that every provider client must implement.
"""
from __future__ import annotations

import abc
import time
from typing import Any, Optional

from shared.models.domain import ProviderStatus
from shared.models.enums import ProviderErrorKind
from shared.utils.cache import CacheLayer
from shared.utils.http_client import FallbackFetcher, TransportChainExhausted
from shared.utils.logging import get_logger
from shared.utils.metrics import PROVIDER_LATENCY, PROVIDER_REQUESTS, atrack_latency

logger = get_logger(__name__)

ProviderRecord = dict[str, Any]


class ProviderParseError(ValueError):
    """Upstream answered 2xx but the body was not the expected shape."""


class ProviderResult:
    """Container for provider fetch results with metadata."""

    def __init__(
        self,
        provider: str,
        success: bool,
        latency_ms: float = 0.0,
        records: Optional[list[ProviderRecord]] = None,
        error: Optional[str] = None,
        error_kind: Optional[ProviderErrorKind] = None,
        cached: bool = False,
    ) -> None:
        self.provider = provider
        self.success = success
        self.latency_ms = latency_ms
        self.records = records if records is not None else []
        self.error = error
        self.error_kind = error_kind
        self.cached = cached

    def status(self) -> ProviderStatus:
        return ProviderStatus(
            provider=self.provider,
            success=self.success,
            records=len(self.records),
            cached=self.cached,
            error=self.error,
            error_kind=self.error_kind,
            latency_ms=round(self.latency_ms, 1),
        )


def classify_transport_failure(exc: TransportChainExhausted) -> ProviderErrorKind:
    if exc.circuit_open:
        return ProviderErrorKind.CIRCUIT_OPEN
    if exc.rate_limited:
        return ProviderErrorKind.RATE_LIMITED
    return ProviderErrorKind.UNAVAILABLE


class ProviderClient(abc.ABC):
    """
    Abstract base class for upstream providers.

    fetch() never raises: transport, parse and unexpected failures all come back
    as ProviderResult(success=False). Successful record lists are cached under a
    key scoped to the provider; a cache hit skips the network entirely.
    """

    def __init__(
        self,
        name: str,
        fetcher: FallbackFetcher,
        cache: CacheLayer,
        timeout_s: float,
    ) -> None:
        self._name = name
        self._fetcher = fetcher
        self._cache = cache
        self._timeout_s = timeout_s

    @property
    def name(self) -> str:
        return self._name

    def _cache_key(self, key: str | None) -> str:
        return f"{self._name}:{key or 'all'}"

    async def fetch(self, key: str | None = None) -> ProviderResult:
        """
        Fetch raw records, from cache when fresh.

        Args:
            key: Provider-specific lookup argument (e.g. "source/id"); None for list providers.
        """
        cache_key = self._cache_key(key)
        cached = await self._cache.get(cache_key)
        if cached is not None:
            PROVIDER_REQUESTS.labels(provider=self._name, status="cached").inc()
            return ProviderResult(provider=self._name, success=True, records=cached, cached=True)

        start = time.perf_counter()
        kind: Optional[ProviderErrorKind] = None
        error = ""
        records: list[ProviderRecord] = []
        try:
            async with atrack_latency(PROVIDER_LATENCY, provider=self._name):
                records = await self._fetch_records(key)
        except TransportChainExhausted as exc:
            kind = classify_transport_failure(exc)
            error = str(exc)
        except ProviderParseError as exc:
            kind = ProviderErrorKind.PARSE_FAILURE
            error = str(exc)
        except Exception as exc:
            kind = ProviderErrorKind.UNAVAILABLE
            error = f"{exc.__class__.__name__}: {exc}"
            logger.error("provider_fetch_unexpected_error", provider=self._name, key=key, error=error)
        latency_ms = (time.perf_counter() - start) * 1000

        if kind is not None:
            PROVIDER_REQUESTS.labels(provider=self._name, status=kind.value).inc()
            logger.warning(
                "provider_fetch_failed",
                provider=self._name,
                key=key,
                error_kind=kind.value,
                error=error,
            )
            return ProviderResult(
                provider=self._name,
                success=False,
                latency_ms=latency_ms,
                error=error,
                error_kind=kind,
            )

        PROVIDER_REQUESTS.labels(provider=self._name, status="ok").inc()
        await self._cache.set(cache_key, records)
        logger.debug("provider_fetch_ok", provider=self._name, key=key, records=len(records))
        return ProviderResult(provider=self._name, success=True, latency_ms=latency_ms, records=records)

    async def _get_json(self, url: str, headers: dict[str, str] | None = None) -> Any:
        """GET through the transport chain and decode JSON, mapping bad bodies to ProviderParseError."""
        result = await self._fetcher.get(url, timeout_s=self._timeout_s, headers=headers)
        try:
            return result.response.json()
        except ValueError as exc:
            raise ProviderParseError(f"{self._name}: response from {result.transport} is not JSON") from exc

    @staticmethod
    def _dict_records(items: Any) -> list[ProviderRecord]:
        """Keep only object-shaped entries; anything else is skipped as a per-record parse failure."""
        if not isinstance(items, list):
            return []
        return [item for item in items if isinstance(item, dict)]

    # ── Abstract methods (each provider implements these) ───────────────
    @abc.abstractmethod
    async def _fetch_records(self, key: str | None) -> list[ProviderRecord]:
        """Perform the upstream call(s) and return raw records."""
        ...
