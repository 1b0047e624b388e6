"""
Circuit breaker for HTTP collaborators.

Tracks endpoint health so a failing aggregator does not get hammered by
every concurrent saga, and so sponsored-route lookups fail fast (which
sends the swap step straight to its direct route).
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Awaitable,
    Callable,
    List,
    Optional,
    TypeVar,
)

from blobferry.config import CircuitBreakerConfig
from blobferry.errors.storage import CircuitBreakerOpenError

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    """Normal operation - requests are allowed."""

    OPEN = "open"
    """Circuit is open - requests are blocked."""

    HALF_OPEN = "half_open"
    """Testing recovery - limited requests allowed."""


@dataclass
class CircuitBreakerState:
    """Internal state of circuit breaker."""

    state: CircuitState = CircuitState.CLOSED
    failures: int = 0
    successes: int = 0
    last_failure_time: float = 0
    failure_times: List[float] = field(default_factory=list)
    """Timestamps of failures within window (in ms)."""


class CircuitBreaker:
    """
    Circuit breaker for one remote endpoint.

    States:
    - CLOSED: Normal operation, requests allowed
    - OPEN: Circuit tripped, requests blocked
    - HALF_OPEN: Testing if service recovered

    Example:
        ```python
        breaker = CircuitBreaker(
            CircuitBreakerConfig(failure_threshold=5, reset_timeout_ms=60000),
            endpoint="https://aggregator.astroswap.org",
        )
        route = await breaker.execute(fetch_route)
        ```
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        *,
        endpoint: str = "unknown",
    ) -> None:
        self.config = config or CircuitBreakerConfig()
        self.endpoint = endpoint
        self._state = CircuitBreakerState()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state.state

    @property
    def is_open(self) -> bool:
        return self._state.state == CircuitState.OPEN

    @property
    def is_closed(self) -> bool:
        return self._state.state == CircuitState.CLOSED

    @property
    def failure_count(self) -> int:
        return self._state.failures

    def _check_reset_timeout(self) -> None:
        """Move OPEN to HALF_OPEN once the reset timeout has elapsed."""
        if self._state.state != CircuitState.OPEN:
            return

        elapsed_ms = (time.time() - self._state.last_failure_time) * 1000
        if elapsed_ms >= self.config.reset_timeout_ms:
            self._state.state = CircuitState.HALF_OPEN
            self._state.successes = 0

    def _clean_old_failures(self) -> None:
        current_time_ms = time.time() * 1000
        window_start = current_time_ms - self.config.failure_window_ms

        self._state.failure_times = [
            t for t in self._state.failure_times if t > window_start
        ]
        self._state.failures = len(self._state.failure_times)

    async def record_success(self) -> None:
        """
        Record a successful operation.

        In HALF_OPEN state, counts successes toward recovery.
        Once success_threshold is reached, transitions to CLOSED.
        """
        async with self._lock:
            if self._state.state == CircuitState.HALF_OPEN:
                self._state.successes += 1

                if self._state.successes >= self.config.success_threshold:
                    self._state = CircuitBreakerState()

    async def record_failure(self) -> None:
        """
        Record a failed operation.

        Opens the circuit once the threshold is reached inside the window.
        Any failure in HALF_OPEN reopens it immediately.
        """
        async with self._lock:
            self._state.failure_times.append(time.time() * 1000)
            self._state.last_failure_time = time.time()
            self._clean_old_failures()

            if self._state.state == CircuitState.HALF_OPEN:
                self._state.state = CircuitState.OPEN
            elif self._state.failures >= self.config.failure_threshold:
                self._state.state = CircuitState.OPEN

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Execute function with circuit breaker protection.

        Raises:
            CircuitBreakerOpenError: If the circuit is open
        """
        if not self.config.enabled:
            return await fn()

        async with self._lock:
            self._check_reset_timeout()

        if self.is_open:
            reset_at = self._state.last_failure_time + (
                self.config.reset_timeout_ms / 1000
            )
            raise CircuitBreakerOpenError(self.endpoint, reset_at=reset_at)

        try:
            result = await fn()
        except Exception:
            await self.record_failure()
            raise
        await self.record_success()
        return result

    def reset(self) -> None:
        """Manually reset circuit breaker to closed state."""
        self._state = CircuitBreakerState()

    def get_stats(self) -> dict:
        return {
            "endpoint": self.endpoint,
            "state": self._state.state.value,
            "failures": self._state.failures,
            "successes": self._state.successes,
            "last_failure_time": self._state.last_failure_time,
        }
