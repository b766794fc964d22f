"""
Cache Circuit Breaker

Guards the primary key-value backend. While the circuit is open the caller
routes operations to the in-memory fallback instead of waiting on a backend
that keeps failing.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from .exceptions import (
    CacheCircuitBreakerOpenException,
    CacheConnectionException,
    CacheOperationTimeoutException,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

BACKEND_FAILURES = (
    CacheConnectionException,
    CacheOperationTimeoutException,
    ConnectionError,
    TimeoutError,
)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Thresholds for opening and closing the circuit."""

    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    # Probes that must succeed in half-open before closing
    success_threshold: int = 2
    failure_exceptions: tuple = BACKEND_FAILURES


@dataclass
class BreakerCounters:
    calls: int = 0
    successes: int = 0
    failures: int = 0
    rejections: int = 0
    trips: int = 0

    @property
    def failure_rate(self) -> float:
        return self.failures / self.calls if self.calls else 0.0


class CacheCircuitBreaker:
    """
    Circuit breaker for key-value backend operations.

    Consecutive backend failures up to ``failure_threshold`` open the
    circuit. After ``recovery_timeout`` seconds the next call is let through
    as a probe (half-open); ``success_threshold`` successful probes close the
    circuit and a single failed probe opens it again. Exceptions outside
    ``failure_exceptions`` propagate without counting.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = asyncio.Lock()
        self.counters = BreakerCounters()
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.probe_successes = 0
        self.opened_at: Optional[float] = None

    def _cooled_down(self) -> bool:
        if self.opened_at is None:
            return True
        return self._clock() - self.opened_at >= self.config.recovery_timeout

    @property
    def is_open(self) -> bool:
        """True while calls are being rejected."""
        return self.state == CircuitState.OPEN and not self._cooled_down()

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """
        Run ``func`` unless the circuit is open.

        Raises:
            CacheCircuitBreakerOpenException: If the circuit is open
        """
        await self._admit()
        try:
            result = await func(*args, **kwargs)
        except self.config.failure_exceptions as e:
            await self._on_failure(type(e).__name__)
            raise
        await self._on_success()
        return result

    async def _admit(self) -> None:
        async with self._lock:
            self.counters.calls += 1
            if self.state != CircuitState.OPEN:
                return
            if not self._cooled_down():
                self.counters.rejections += 1
                raise CacheCircuitBreakerOpenException()
            self.state = CircuitState.HALF_OPEN
            self.probe_successes = 0
            logger.info("Cache circuit half-open, probing primary backend")

    async def _on_success(self) -> None:
        async with self._lock:
            self.counters.successes += 1
            self.failure_count = 0
            if self.state != CircuitState.HALF_OPEN:
                return
            self.probe_successes += 1
            if self.probe_successes >= self.config.success_threshold:
                self.state = CircuitState.CLOSED
                self.probe_successes = 0
                self.opened_at = None
                logger.info("Cache circuit closed, primary backend recovered")

    async def _on_failure(self, failure_type: str) -> None:
        async with self._lock:
            self.counters.failures += 1
            self.failure_count += 1
            probing = self.state == CircuitState.HALF_OPEN
            tripped = (
                self.state == CircuitState.CLOSED
                and self.failure_count >= self.config.failure_threshold
            )
            if not (probing or tripped):
                return

            self.state = CircuitState.OPEN
            self.opened_at = self._clock()
            self.probe_successes = 0
            self.counters.trips += 1
            logger.error(
                f"Cache circuit opened after {failure_type}",
                extra={
                    "failure_count": self.failure_count,
                    "threshold": self.config.failure_threshold,
                    "probe": probing,
                },
            )

    def reset(self) -> None:
        """Force the circuit back to CLOSED."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.probe_successes = 0
        self.opened_at = None

    def get_state(self) -> dict:
        """Snapshot of breaker state for stats endpoints."""
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "total_calls": self.counters.calls,
            "failed_calls": self.counters.failures,
            "rejected_calls": self.counters.rejections,
            "circuit_opens": self.counters.trips,
            "failure_rate": self.counters.failure_rate,
        }
