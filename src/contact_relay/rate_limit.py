# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""In-memory per-identity rate limiting with pluggable policies.

The limiter decides, per source identity (the client IP address), whether a
new submission may proceed. The counting strategy is a policy object, so the
pipeline only ever depends on the boolean answer of
:meth:`RateLimiter.should_allow_access`.

Three policies are provided:

- :class:`FixedWindowPolicy`: at most ``limit`` hits per aligned window.
- :class:`SlidingWindowPolicy`: at most ``limit`` hits in the trailing
  ``window_seconds``; avoids bursts at window boundaries.
- :class:`TokenBucketPolicy`: ``capacity`` burst, refilled continuously.

Example:
    Using the rate limiter::

        limiter = RateLimiter(SlidingWindowPolicy(limit=5, window_seconds=60))
        if not await limiter.should_allow_access(client_ip):
            return Outcome.rate_limited()
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Callable
from typing import Protocol

from .logger import get_logger

POLICY_NAMES = ("fixed_window", "sliding_window", "token_bucket")
UNKNOWN_IDENTITY = "unknown"

logger = get_logger("RateLimiter")


class RateLimitPolicy(Protocol):
    """Counting strategy used by :class:`RateLimiter`.

    Implementations keep their own per-identity state. They are never called
    concurrently; the limiter serializes access.
    """

    def hit(self, identity: str, now: float) -> bool:
        """Record an attempt and return True when it is allowed."""
        ...

    def prune(self, now: float) -> int:
        """Drop state that can no longer influence a decision; return count."""
        ...


class FixedWindowPolicy:
    """Allow ``limit`` hits per identity in each aligned window.

    Windows start at multiples of ``window_seconds`` on the limiter's clock.
    """

    def __init__(self, limit: int, window_seconds: float):
        if limit < 1 or window_seconds <= 0:
            raise ValueError("limit and window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self._counters: dict[str, tuple[int, int]] = {}

    def _window(self, now: float) -> int:
        return int(now // self.window_seconds)

    def hit(self, identity: str, now: float) -> bool:
        window = self._window(now)
        current, count = self._counters.get(identity, (window, 0))
        if current != window:
            count = 0
        if count >= self.limit:
            self._counters[identity] = (window, count)
            return False
        self._counters[identity] = (window, count + 1)
        return True

    def prune(self, now: float) -> int:
        window = self._window(now)
        stale = [key for key, (w, _) in self._counters.items() if w != window]
        for key in stale:
            del self._counters[key]
        return len(stale)


class SlidingWindowPolicy:
    """Allow ``limit`` hits per identity within the trailing window.

    Only accepted hits are remembered, so a denied request does not extend
    the time a client has to wait.
    """

    def __init__(self, limit: int, window_seconds: float):
        if limit < 1 or window_seconds <= 0:
            raise ValueError("limit and window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self._hits: dict[str, deque[float]] = {}

    def _evict(self, hits: deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def hit(self, identity: str, now: float) -> bool:
        hits = self._hits.setdefault(identity, deque())
        self._evict(hits, now)
        if len(hits) >= self.limit:
            return False
        hits.append(now)
        return True

    def prune(self, now: float) -> int:
        stale = []
        for key, hits in self._hits.items():
            self._evict(hits, now)
            if not hits:
                stale.append(key)
        for key in stale:
            del self._hits[key]
        return len(stale)


class TokenBucketPolicy:
    """Token bucket: bursts up to ``capacity``, refilled at a steady rate."""

    def __init__(self, capacity: int, refill_per_second: float):
        if capacity < 1 or refill_per_second <= 0:
            raise ValueError("capacity and refill_per_second must be positive")
        self.capacity = capacity
        self.refill_per_second = refill_per_second
        self._buckets: dict[str, tuple[float, float]] = {}

    def _level(self, identity: str, now: float) -> float:
        tokens, updated = self._buckets.get(identity, (float(self.capacity), now))
        return min(float(self.capacity), tokens + (now - updated) * self.refill_per_second)

    def hit(self, identity: str, now: float) -> bool:
        tokens = self._level(identity, now)
        if tokens < 1:
            self._buckets[identity] = (tokens, now)
            return False
        self._buckets[identity] = (tokens - 1, now)
        return True

    def prune(self, now: float) -> int:
        # A full bucket behaves exactly like a missing one.
        full = [key for key in self._buckets if self._level(key, now) >= self.capacity]
        for key in full:
            del self._buckets[key]
        return len(full)


def create_policy(name: str, limit: int, window_seconds: float) -> RateLimitPolicy:
    """Build a policy from its configuration name.

    For ``token_bucket`` the bucket holds ``limit`` tokens and refills
    ``limit`` tokens every ``window_seconds``.

    Raises:
        ValueError: If the policy name is unknown or the numbers are invalid.
    """
    if name == "fixed_window":
        return FixedWindowPolicy(limit, window_seconds)
    if name == "sliding_window":
        return SlidingWindowPolicy(limit, window_seconds)
    if name == "token_bucket":
        return TokenBucketPolicy(limit, limit / window_seconds)
    raise ValueError(f"Unknown rate limit policy: {name!r} (expected one of {', '.join(POLICY_NAMES)})")


class RateLimiter:
    """Process-wide, in-memory limiter keyed by source identity.

    Policy updates are serialized with an ``asyncio.Lock`` so concurrent
    requests from the same identity cannot undercount. Idle identities are
    pruned every ``prune_interval`` seconds to keep memory bounded.

    Attributes:
        policy: The counting strategy.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        policy: RateLimitPolicy,
        *,
        clock: Callable[[], float] = time.monotonic,
        prune_interval: float = 300.0,
    ):
        self.policy = policy
        self.clock = clock
        self._prune_interval = prune_interval
        self._last_prune = clock()
        self._lock = asyncio.Lock()

    async def should_allow_access(self, identity: str | None) -> bool:
        """Record one attempt for ``identity`` and decide whether it may proceed.

        Args:
            identity: Source identity, usually the client IP. Empty or None
                values share the ``"unknown"`` bucket.

        Returns:
            True if the request is within the limit, False if it must be
            rejected.
        """
        key = identity or UNKNOWN_IDENTITY
        async with self._lock:
            now = self.clock()
            if now - self._last_prune >= self._prune_interval:
                pruned = self.policy.prune(now)
                self._last_prune = now
                if pruned:
                    logger.debug("Pruned %d idle rate limit entries", pruned)
            return self.policy.hit(key, now)
