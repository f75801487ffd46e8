"""
Resilience Helpers
==================

Circuit breaker shared by outbound API clients so that an unreachable
upstream fails fast instead of stalling every tracked issue in a sweep.
"""

import time
from typing import Callable, Optional

from shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    CLOSED passes everything. After ``failure_threshold`` failures in a row
    it goes OPEN and rejects calls for ``recovery_timeout`` seconds. Then a
    single probe is let through (HALF_OPEN): success closes the circuit,
    failure re-opens it for another full timeout. A probe that never
    reports back is written off after one more timeout.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None
        self._probe_in_flight = False
        self._probe_started_at: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._clock() - self._opened_at >= self.recovery_timeout:
            self._state = CircuitState.HALF_OPEN
            self._probe_in_flight = False
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def allow_request(self) -> bool:
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state != CircuitState.HALF_OPEN:
            return False
        now = self._clock()
        if self._probe_in_flight and now - self._probe_started_at < self.recovery_timeout:
            return False
        if self._probe_in_flight:
            logger.warning("Circuit breaker probe never settled, allowing another", extra={"circuit": self.name})
        self._probe_in_flight = True
        self._probe_started_at = now
        return True

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("Circuit breaker closed", extra={"circuit": self.name})
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._probe_in_flight = False

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        probe_failed = self._state == CircuitState.HALF_OPEN
        if probe_failed or self._consecutive_failures >= self.failure_threshold:
            self._open(probe_failed)

    def _open(self, probe_failed: bool) -> None:
        already_open = self._state == CircuitState.OPEN
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._probe_in_flight = False
        if not already_open:
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "circuit": self.name,
                    "consecutive_failures": self._consecutive_failures,
                    "probe_failed": probe_failed,
                    "recovery_timeout": self.recovery_timeout
                }
            )
