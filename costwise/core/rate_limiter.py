"""
Request-level rate limiter.

Fixed-window counter per client identifier. Each identifier gets a bucket
the first time it is seen; the bucket resets when its window has elapsed.
Fixed windows allow up to 2x the limit in a burst straddling a window
boundary.

State is in-process only. Elapsed buckets are dropped by sweep(), which the
maintenance scheduler calls periodically.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Presets
# =============================================================================


@dataclass(frozen=True)
class RateLimitConfig:
    """Window length and request budget."""

    window_ms: int
    max_requests: int


RATE_LIMITS: Dict[str, RateLimitConfig] = {
    # Endpoints that reach upstream government APIs
    "heavy": RateLimitConfig(window_ms=60_000, max_requests=30),
    # Lookup/search style endpoints
    "search": RateLimitConfig(window_ms=60_000, max_requests=60),
}


# =============================================================================
# Buckets
# =============================================================================


@dataclass
class RateLimitBucket:
    """Request count for one identifier in its current window."""

    identifier: str
    count: int
    reset_time: float  # epoch milliseconds


@dataclass
class RateLimitResult:
    """Outcome of a single check_and_consume call."""

    allowed: bool
    remaining: int
    reset_time: float  # epoch milliseconds
    retry_after: Optional[int] = None  # seconds, only when rejected

    def headers(self) -> Dict[str, str]:
        """Response headers describing this result."""
        headers = {
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_time / 1000)),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class FixedWindowRateLimiter:
    """
    Per-identifier fixed-window rate limiter.

    Args:
        clock: Returns the current epoch time in seconds (injectable for tests)
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._buckets: Dict[str, RateLimitBucket] = {}
        self._lock = threading.Lock()

        # Statistics
        self.total_requests = 0
        self.total_rejected = 0

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def check_and_consume(
        self,
        identifier: str,
        window_ms: int,
        max_requests: int,
    ) -> RateLimitResult:
        """
        Count one request for identifier and decide whether it may proceed.

        Args:
            identifier: Client identifier (IP, API key, ...)
            window_ms: Window length in milliseconds
            max_requests: Requests allowed per window

        Returns:
            RateLimitResult with remaining budget and window reset time
        """
        with self._lock:
            now = self._now_ms()
            self.total_requests += 1
            bucket = self._buckets.get(identifier)

            if bucket is None or now > bucket.reset_time:
                bucket = RateLimitBucket(
                    identifier=identifier,
                    count=1,
                    reset_time=now + window_ms,
                )
                self._buckets[identifier] = bucket
                return RateLimitResult(
                    allowed=True,
                    remaining=max(0, max_requests - 1),
                    reset_time=bucket.reset_time,
                )

            bucket.count += 1

            if bucket.count > max_requests:
                self.total_rejected += 1
                retry_after = max(1, math.ceil((bucket.reset_time - now) / 1000))
                logger.info(
                    f"Rate limit exceeded for '{identifier}': "
                    f"{bucket.count}/{max_requests}, retry in {retry_after}s"
                )
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_time=bucket.reset_time,
                    retry_after=retry_after,
                )

            return RateLimitResult(
                allowed=True,
                remaining=max_requests - bucket.count,
                reset_time=bucket.reset_time,
            )

    def check_preset(
        self,
        identifier: str,
        preset: str = "heavy",
        limits: Optional[Mapping[str, RateLimitConfig]] = None,
    ) -> RateLimitResult:
        """
        check_and_consume using a named preset.

        Args:
            identifier: Bucket key
            preset: Key into limits
            limits: Preset table; RATE_LIMITS when omitted
        """
        config = (limits or RATE_LIMITS)[preset]
        return self.check_and_consume(identifier, config.window_ms, config.max_requests)

    def sweep(self) -> int:
        """
        Drop buckets whose window has elapsed.

        Returns:
            Number of buckets removed
        """
        with self._lock:
            now = self._now_ms()
            expired = [
                identifier
                for identifier, bucket in self._buckets.items()
                if now > bucket.reset_time
            ]
            for identifier in expired:
                del self._buckets[identifier]

        if expired:
            logger.debug(f"Rate limit sweep removed {len(expired)} buckets")
        return len(expired)

    def reset(self, identifier: Optional[str] = None) -> None:
        """Forget one identifier's bucket, or all buckets."""
        with self._lock:
            if identifier is None:
                self._buckets.clear()
            else:
                self._buckets.pop(identifier, None)

    def get_stats(self) -> Dict[str, Any]:
        """Runtime statistics."""
        with self._lock:
            return {
                "active_buckets": len(self._buckets),
                "total_requests": self.total_requests,
                "total_rejected": self.total_rejected,
            }


# =============================================================================
# Singleton
# =============================================================================

_rate_limiter: Optional[FixedWindowRateLimiter] = None


def get_rate_limiter() -> FixedWindowRateLimiter:
    """Get the global rate limiter instance."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = FixedWindowRateLimiter()
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Reset the global rate limiter (for testing)."""
    global _rate_limiter
    _rate_limiter = None
