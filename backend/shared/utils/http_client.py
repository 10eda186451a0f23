"""
Async HTTP egress with an ordered transport fallback chain.

Every upstream call in matchcast goes through FallbackFetcher.get(): a direct
attempt first, then each configured proxy prefix in order, each attempt with
its own hard timeout. The first 2xx response wins; when every transport fails
the caller receives TransportChainExhausted carrying all attempt errors.
"""
from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Optional, Sequence
from urllib.parse import quote, urlparse

import httpx

from shared.config import Settings, get_settings
from shared.utils.circuit_breaker import CircuitBreaker
from shared.utils.logging import get_logger
from shared.utils.metrics import TRANSPORT_ATTEMPTS, TRANSPORT_FALLBACKS

logger = get_logger(__name__)

_BLOCKING_STATUSES = (403, 429)
_WIRE_HEADERS = frozenset({"content-encoding", "content-length", "transfer-encoding"})


class TransportError(Exception):
    """One failed attempt through one transport."""

    def __init__(self, transport: str, url: str, reason: str, status: int | None = None) -> None:
        self.transport = transport
        self.url = url
        self.reason = reason
        self.status = status
        super().__init__(f"{transport}: {reason}")

    @property
    def rate_limited(self) -> bool:
        return self.status in _BLOCKING_STATUSES


class TransportChainExhausted(Exception):
    """Every transport in the chain failed (or was skipped) for a URL."""

    def __init__(self, url: str, errors: list[TransportError]) -> None:
        self.url = url
        self.errors = errors
        summary = "; ".join(str(e) for e in errors) or "no transport available"
        super().__init__(f"all transports failed for {url}: {summary}")

    @property
    def rate_limited(self) -> bool:
        return bool(self.errors) and any(e.rate_limited for e in self.errors)

    @property
    def circuit_open(self) -> bool:
        return bool(self.errors) and all(e.reason == "circuit_open" for e in self.errors)


class Transport(abc.ABC):
    """An egress strategy: how a target URL is actually requested."""

    name: str

    @abc.abstractmethod
    def wrap(self, url: str) -> str:
        """Return the URL to request in order to reach `url` through this transport."""
        ...


class DirectTransport(Transport):
    name = "direct"

    def wrap(self, url: str) -> str:
        return url


class ProxyTransport(Transport):
    """Prefix-style relay: the encoded target URL is appended to the prefix."""

    def __init__(self, prefix: str) -> None:
        self.prefix = prefix
        host = urlparse(prefix).netloc or prefix
        self.name = f"proxy:{host}"

    def wrap(self, url: str) -> str:
        return f"{self.prefix}{quote(url, safe='')}"


def build_transport_chain(settings: Settings | None = None) -> list[Transport]:
    """Direct first, then each configured proxy prefix in order."""
    settings = settings or get_settings()
    chain: list[Transport] = [DirectTransport()]
    chain.extend(ProxyTransport(p) for p in settings.proxy_prefixes if p)
    return chain


@dataclass
class FetchResult:
    response: httpx.Response
    transport: str
    errors: list[TransportError] = field(default_factory=list)

    @property
    def fell_back(self) -> bool:
        return bool(self.errors)


class FallbackFetcher:
    """
    Shared async HTTP client that walks the transport chain.

    One instance is shared by every ProviderClient, the StreamResolver and the
    ViewerCountProbe; each caller passes its own timeout.
    """

    def __init__(
        self,
        transports: Sequence[Transport] | None = None,
        client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._transports = list(transports) if transports is not None else build_transport_chain(self._settings)
        self._client: Optional[httpx.AsyncClient] = client
        self._owns_client = client is None
        # keyed by "<transport>@<target host>" so one dead upstream never blocks the others
        self._breakers: dict[str, CircuitBreaker] = {}

    @property
    def transports(self) -> list[Transport]:
        return list(self._transports)

    @property
    def breakers(self) -> dict[str, CircuitBreaker]:
        return self._breakers

    def _breaker_for(self, transport: Transport, url: str) -> CircuitBreaker:
        key = f"{transport.name}@{urlparse(url).netloc}"
        breaker = self._breakers.get(key)
        if breaker is None:
            breaker = CircuitBreaker(
                name=key,
                failure_threshold=self._settings.breaker_failure_threshold,
                recovery_timeout_s=self._settings.breaker_recovery_timeout_s,
            )
            self._breakers[key] = breaker
        return breaker

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            )

    async def close(self) -> None:
        """Close the underlying httpx client if this fetcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def get(
        self,
        url: str,
        *,
        timeout_s: float,
        headers: dict[str, str] | None = None,
        transports: Sequence[Transport] | None = None,
        max_bytes: int | None = None,
    ) -> FetchResult:
        """
        GET `url` through the first transport that answers with a 2xx.

        With `max_bytes` the body is streamed and reading stops once that many
        bytes have arrived; the returned response holds at most `max_bytes`.

        Raises:
            TransportChainExhausted: every transport failed, timed out or was skipped.
        """
        if self._client is None:
            raise RuntimeError("FallbackFetcher not started. Call start() first.")

        chain = list(transports) if transports is not None else self._transports
        errors: list[TransportError] = []

        for transport in chain:
            breaker = self._breaker_for(transport, url)
            if not breaker.allow():
                errors.append(TransportError(transport.name, url, "circuit_open"))
                continue

            target = transport.wrap(url)
            try:
                resp = await self._send(target, headers, timeout_s, max_bytes)
            except httpx.TimeoutException:
                err = TransportError(transport.name, url, "timeout")
            except httpx.HTTPError as exc:
                err = TransportError(transport.name, url, f"network: {exc.__class__.__name__}")
            else:
                if resp.is_success:
                    TRANSPORT_ATTEMPTS.labels(transport=transport.name, status="ok").inc()
                    breaker.record_success()
                    if errors:
                        TRANSPORT_FALLBACKS.labels(transport=transport.name).inc()
                        logger.info(
                            "transport_fallback_succeeded",
                            url=url,
                            transport=transport.name,
                            failed=[e.transport for e in errors],
                        )
                    return FetchResult(response=resp, transport=transport.name, errors=errors)
                err = TransportError(transport.name, url, f"http_{resp.status_code}", resp.status_code)

            TRANSPORT_ATTEMPTS.labels(transport=transport.name, status=err.reason.split(":")[0]).inc()
            breaker.record_failure(err.reason)
            logger.debug(
                "transport_attempt_failed",
                url=url,
                transport=transport.name,
                reason=err.reason,
            )
            errors.append(err)

        raise TransportChainExhausted(url, errors)

    async def _send(
        self,
        target: str,
        headers: dict[str, str] | None,
        timeout_s: float,
        max_bytes: int | None,
    ) -> httpx.Response:
        timeout = httpx.Timeout(timeout_s, connect=min(timeout_s, 5.0))
        if max_bytes is None:
            return await self._client.get(target, headers=headers, timeout=timeout)

        body = bytearray()
        async with self._client.stream("GET", target, headers=headers, timeout=timeout) as resp:
            async for chunk in resp.aiter_bytes():
                body.extend(chunk)
                if len(body) >= max_bytes:
                    logger.debug("response_body_truncated", url=target, max_bytes=max_bytes)
                    break
        # body is already decoded, so the wire encoding headers no longer apply
        kept = [(k, v) for k, v in resp.headers.multi_items() if k.lower() not in _WIRE_HEADERS]
        return httpx.Response(
            resp.status_code,
            headers=kept,
            content=bytes(body[:max_bytes]),
            request=resp.request,
        )
