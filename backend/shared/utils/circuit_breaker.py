"""
Circuit breaker for egress transports.

States:
  CLOSED     normal operation, attempts pass through
  OPEN       too many consecutive failures, the transport is skipped
  HALF_OPEN  after cooldown, one probe attempt is let through to test recovery

The breaker is consulted synchronously by the fallback fetcher; it never
performs I/O itself, so no locking is needed inside a single event loop.
"""
from __future__ import annotations

import time
from enum import Enum
from typing import Any, Callable

from shared.utils.logging import get_logger

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    Args:
        name: Identifier for logging (the transport name).
        failure_threshold: Consecutive failures before opening the circuit.
        recovery_timeout_s: Seconds to stay OPEN before allowing a probe.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout_s = recovery_timeout_s
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN:
            if self._clock() - self._last_failure_time >= self.recovery_timeout_s:
                return CircuitState.HALF_OPEN
        return self._state

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
        }

    def allow(self) -> bool:
        """Return True if an attempt may go through this transport now."""
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN and not self._probe_in_flight:
            self._probe_in_flight = True
            return True
        return False

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("circuit_breaker_closed", name=self.name)
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._probe_in_flight = False

    def record_failure(self, error: str = "") -> None:
        self._failure_count += 1
        self._last_failure_time = self._clock()
        was_probe = self._probe_in_flight
        self._probe_in_flight = False

        if was_probe:
            self._state = CircuitState.OPEN
            logger.warning("circuit_breaker_reopened", name=self.name, error=error)
        elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "circuit_breaker_opened",
                name=self.name,
                failures=self._failure_count,
                error=error,
            )
