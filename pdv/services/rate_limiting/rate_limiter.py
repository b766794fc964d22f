"""
Rate Limiter Service

Process-local fixed-window rate limiting and suspicious-client tracking.
All mutable state lives in an explicit ``RateLimitState`` owned by the
limiter instance, with a periodic cleanup task and a ``reset()`` for tests.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from ...core.config import Settings

logger = logging.getLogger(__name__)


class RateLimitResult(BaseModel):
    """Result of rate limit check."""

    allowed: bool = Field(..., description="Whether request is allowed")
    current_count: int = Field(..., description="Current request count")
    remaining_requests: int = Field(..., description="Remaining requests")
    reset_seconds: int = Field(..., description="Seconds until reset")
    limit: int = Field(..., description="Rate limit threshold")
    window: int = Field(..., description="Time window in seconds")
    identifier: str = Field(..., description="Rate limit identifier")
    limit_type: str = Field(..., description="Type of rate limit")
    retry_after: Optional[int] = Field(None, description="Retry-After header value")


class RateLimitConfig(BaseModel):
    """Rate limit configuration."""

    requests_per_window: int = Field(
        ..., ge=1, description="Number of allowed requests"
    )
    window_seconds: int = Field(..., ge=1, description="Time window in seconds")


@dataclass
class WindowCounter:
    """Request count inside one fixed window."""

    count: int
    window_start: float


@dataclass
class SuspicionRecord:
    """Suspicious requests seen from one client."""

    count: int = 0
    last_seen: float = 0.0
    reasons: List[str] = field(default_factory=list)


@dataclass
class RateLimitState:
    """Mutable limiter state, keyed by client identifier."""

    windows: Dict[str, WindowCounter] = field(default_factory=dict)
    suspicious: Dict[str, SuspicionRecord] = field(default_factory=dict)
    blocked_until: Dict[str, float] = field(default_factory=dict)

    def clear(self) -> None:
        self.windows.clear()
        self.suspicious.clear()
        self.blocked_until.clear()


class RateLimiter:
    """
    Fixed-window limiter per client IP.

    A client that reaches ``suspicious_threshold`` suspicious requests is
    blocked for one window.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        state: Optional[RateLimitState] = None,
        suspicious_threshold: int = 10,
        cleanup_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.state = state or RateLimitState()
        self.suspicious_threshold = suspicious_threshold
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._cleanup_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimiter":
        return cls(
            RateLimitConfig(
                requests_per_window=settings.RATE_LIMIT_MAX,
                window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
            ),
            suspicious_threshold=settings.SUSPICIOUS_REQUEST_THRESHOLD,
            cleanup_interval=settings.RATE_LIMIT_CLEANUP_INTERVAL_SECONDS,
        )

    async def check_ip_rate_limit(self, ip: str, cost: int = 1) -> RateLimitResult:
        """
        Count a request against the client's current window.

        Args:
            ip: Client IP address
            cost: Request cost

        Returns:
            RateLimitResult with allowance and remaining quota
        """
        now = self._clock()
        window = self.config.window_seconds
        limit = self.config.requests_per_window

        counter = self.state.windows.get(ip)
        if counter is None or now - counter.window_start >= window:
            counter = WindowCounter(count=0, window_start=now)
            self.state.windows[ip] = counter

        counter.count += cost
        allowed = counter.count <= limit
        reset_seconds = max(1, math.ceil(counter.window_start + window - now))

        if not allowed:
            logger.warning(
                f"Rate limit exceeded for {ip}",
                extra={"ip": ip, "count": counter.count, "limit": limit},
            )

        return RateLimitResult(
            allowed=allowed,
            current_count=counter.count,
            remaining_requests=max(0, limit - counter.count),
            reset_seconds=reset_seconds,
            limit=limit,
            window=window,
            identifier=ip,
            limit_type="ip",
            retry_after=None if allowed else reset_seconds,
        )

    def is_blocked(self, ip: str) -> bool:
        """True while the client is serving a block."""
        until = self.state.blocked_until.get(ip)
        if until is None:
            return False
        if self._clock() >= until:
            del self.state.blocked_until[ip]
            self.state.suspicious.pop(ip, None)
            return False
        return True

    def record_suspicious(self, ip: str, reason: str) -> bool:
        """
        Record a suspicious request.

        Returns:
            True if this request pushed the client over the block threshold
        """
        now = self._clock()
        record = self.state.suspicious.setdefault(ip, SuspicionRecord())
        record.count += 1
        record.last_seen = now
        record.reasons = (record.reasons + [reason])[-5:]

        logger.warning(
            f"Suspicious activity from {ip}: {reason}",
            extra={"ip": ip, "count": record.count},
        )

        if (
            record.count >= self.suspicious_threshold
            and ip not in self.state.blocked_until
        ):
            self.state.blocked_until[ip] = now + self.config.window_seconds
            logger.error(f"IP {ip} blocked after repeated suspicious activity")
            return True
        return False

    def cleanup(self) -> int:
        """Drop expired windows, stale suspicion records and finished blocks."""
        now = self._clock()
        window = self.config.window_seconds
        removed = 0

        for ip in [
            ip
            for ip, counter in self.state.windows.items()
            if now - counter.window_start >= window
        ]:
            del self.state.windows[ip]
            removed += 1

        for ip in [
            ip for ip, until in self.state.blocked_until.items() if now >= until
        ]:
            del self.state.blocked_until[ip]
            removed += 1

        for ip in [
            ip
            for ip, record in self.state.suspicious.items()
            if now - record.last_seen >= window and ip not in self.state.blocked_until
        ]:
            del self.state.suspicious[ip]
            removed += 1

        return removed

    async def start(self) -> None:
        """Start the periodic cleanup task."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("Rate limiter cleanup task started")

    async def stop(self) -> None:
        """Cancel the cleanup task."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    def reset(self) -> None:
        """Forget every counter, suspicion record and block."""
        self.state.clear()

    async def _cleanup_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.cleanup_interval)
                removed = self.cleanup()
                if removed:
                    logger.debug(f"Rate limiter cleanup removed {removed} entries")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Rate limiter cleanup failed: {e}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "tracked_clients": len(self.state.windows),
            "suspicious_clients": len(self.state.suspicious),
            "blocked_clients": len(self.state.blocked_until),
            "limit": self.config.requests_per_window,
            "window_seconds": self.config.window_seconds,
        }
