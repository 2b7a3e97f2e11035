"""
Rate limiter for webhook intake.

Token bucket per requester, in-memory, with periodic cleanup of idle buckets.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock

from conduit.common.logging_setup import get_logger

logger = get_logger(__name__)


@dataclass
class TokenBucket:
    tokens: float
    last_update: float


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int


class RateLimiter:
    """
    Thread-safe token bucket rate limiter.

    Each identifier gets a bucket of `capacity` tokens refilled at `rate` tokens
    per second; a request takes one token or is limited.
    """

    def __init__(
        self,
        rate: float = 10,
        capacity: int = 20,
        cleanup_interval: int = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        if rate <= 0 or capacity <= 0:
            raise ValueError("rate and capacity must be positive")
        self.rate = rate
        self.capacity = capacity
        self.cleanup_interval = cleanup_interval
        self.clock = clock

        self.buckets: dict[str, TokenBucket] = {}
        self.lock = Lock()
        self.last_cleanup = clock()

    def allow(self, identifier: str, cost: int = 1) -> RateLimitDecision:
        with self.lock:
            now = self.clock()
            if now - self.last_cleanup > self.cleanup_interval:
                self._cleanup(now)

            bucket = self.buckets.get(identifier)
            if bucket is None:
                bucket = self.buckets[identifier] = TokenBucket(tokens=self.capacity, last_update=now)

            bucket.tokens = min(self.capacity, bucket.tokens + (now - bucket.last_update) * self.rate)
            bucket.last_update = now

            if bucket.tokens >= cost:
                bucket.tokens -= cost
                return RateLimitDecision(allowed=True, remaining=int(bucket.tokens), retry_after=0)

            retry_after = int((cost - bucket.tokens) / self.rate) + 1
            return RateLimitDecision(allowed=False, remaining=0, retry_after=retry_after)

    def _cleanup(self, now: float) -> None:
        idle_threshold = now - self.cleanup_interval
        before_count = len(self.buckets)
        self.buckets = {k: v for k, v in self.buckets.items() if v.last_update > idle_threshold}

        removed = before_count - len(self.buckets)
        if removed > 0:
            logger.info(f"Rate limiter cleanup, removed={removed}")
        self.last_cleanup = now

    def reset(self, identifier: str) -> None:
        with self.lock:
            self.buckets.pop(identifier, None)
