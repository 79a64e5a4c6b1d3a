"""
auth/ratelimit.py -- Fixed-window login attempt counters.

Two independent bucket families are kept: one keyed by client network
address (Scope.IP) and one keyed by login identifier (Scope.IDENTIFIER).
Each scope has its own policy (max attempts per window).

Algorithm (per key):
  - no bucket, or now >= window_start + window  -> new window, count 0
  - count += 1 (never past max_attempts + 1)
  - allowed while count <= max_attempts

Once a bucket is over the limit it stays at max_attempts + 1 until the
window ends, so every further check in the same window is denied without
growing the counter. reset() clears a bucket after a successful login.

The read-increment-compare sequence runs under a per-key lock, so concurrent
requests for the same key can never let more than max_attempts through.

Counters live in process memory. Running several worker processes
multiplies the effective limit by the worker count.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING

from auth.clock import Clock, utc_now
from auth.locks import KeyedLock

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("forcemap.auth")


class Scope(str, Enum):
    IP = "ip"
    IDENTIFIER = "identifier"


@dataclass(frozen=True)
class RateLimitPolicy:
    max_attempts: int
    window_seconds: int

    @property
    def window(self) -> timedelta:
        return timedelta(seconds=self.window_seconds)


@dataclass
class RateLimitBucket:
    key: str
    window_start: datetime
    attempt_count: int = 0


class RateLimiter:
    """In-memory fixed-window limiter with one policy per scope.

    Usage:
        limiter = RateLimiter({Scope.IP: RateLimitPolicy(10, 900),
                               Scope.IDENTIFIER: RateLimitPolicy(5, 900)})
        if not limiter.check_and_increment("10.0.0.1", Scope.IP):
            wait = limiter.retry_after("10.0.0.1", Scope.IP)
    """

    def __init__(self, policies: dict[Scope, RateLimitPolicy], clock: Clock = utc_now) -> None:
        missing = set(Scope) - set(policies)
        if missing:
            raise ValueError(f"Missing rate limit policy for scopes: {sorted(s.value for s in missing)}")
        self._policies = dict(policies)
        self._clock = clock
        self._buckets: dict[tuple[Scope, str], RateLimitBucket] = {}
        self._locks = KeyedLock()

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utc_now) -> RateLimiter:
        window = settings.rate_limit_window_seconds
        return cls(
            {
                Scope.IP: RateLimitPolicy(settings.rate_limit_ip_max_attempts, window),
                Scope.IDENTIFIER: RateLimitPolicy(settings.rate_limit_identifier_max_attempts, window),
            },
            clock=clock,
        )

    def policy(self, scope: Scope) -> RateLimitPolicy:
        return self._policies[scope]

    def check_and_increment(self, key: str, scope: Scope) -> bool:
        """Count one attempt for key and return whether it is within the limit."""
        policy = self._policies[scope]
        now = self._clock()
        with self._locks.hold((scope, key)):
            bucket = self._buckets.get((scope, key))
            if bucket is None or now >= bucket.window_start + policy.window:
                bucket = RateLimitBucket(key=key, window_start=now)
                self._buckets[(scope, key)] = bucket
            if bucket.attempt_count > policy.max_attempts:
                return False
            bucket.attempt_count += 1
            allowed = bucket.attempt_count <= policy.max_attempts
        if not allowed:
            logger.info("Rate limit reached for %s scope (max=%d)", scope.value, policy.max_attempts)
        return allowed

    def reset(self, key: str, scope: Scope) -> None:
        with self._locks.hold((scope, key)):
            self._buckets.pop((scope, key), None)

    def retry_after(self, key: str, scope: Scope) -> int:
        """Seconds until the current window for key ends (0 if there is none)."""
        policy = self._policies[scope]
        bucket = self._buckets.get((scope, key))
        if bucket is None:
            return 0
        remaining = (bucket.window_start + policy.window - self._clock()).total_seconds()
        return max(0, math.ceil(remaining))

    def get_bucket(self, key: str, scope: Scope) -> RateLimitBucket | None:
        return self._buckets.get((scope, key))

    def purge_expired(self) -> int:
        """Drop buckets whose window has ended. Returns the number removed."""
        now = self._clock()
        removed = 0
        for (scope, key), bucket in list(self._buckets.items()):
            with self._locks.hold((scope, key)):
                current = self._buckets.get((scope, key))
                if current is bucket and now >= bucket.window_start + self._policies[scope].window:
                    del self._buckets[(scope, key)]
                    removed += 1
        return removed
