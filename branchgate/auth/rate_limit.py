"""
Request throttling for unauthenticated auth endpoints.

Keys are composite: (purpose, origin address, identity address), so one
origin hammering one account is throttled without affecting other accounts
or other origins. Redis INCR with TTL is used when available; otherwise an
in-memory sliding window. Both take an injectable time source.
"""
import os
import math
import time
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import redis

logger = logging.getLogger(__name__)

# purpose -> (max requests, window seconds)
DEFAULT_LIMITS: Dict[str, Tuple[int, int]] = {
    "login": (5, 900),                  # 5 per 15 minutes
    "registration": (5, 3600),
    "verification": (3, 3600),
    "verification-resend": (3, 3600),
    "password-reset": (3, 3600),
}

# Seconds between sweeps of idle in-memory keys
PRUNE_INTERVAL = 60


@dataclass(frozen=True)
class RateLimitDecision:
    """Allow/deny plus how long to wait when denied."""
    allowed: bool
    retry_after: int = 0
    remaining: int = 0


class RateLimiter:
    """
    Redis-backed rate limiter with in-memory fallback.

    Example usage:
        limiter = RateLimiter(redis_client=None)
        decision = limiter.hit("login", "10.0.0.1", "branch@client.com")
        if not decision.allowed:
            ...
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        limits: Optional[Dict[str, Tuple[int, int]]] = None,
        time_source: Callable[[], float] = time.time,
    ):
        self.redis = redis_client
        self.limits = dict(DEFAULT_LIMITS)
        if limits:
            self.limits.update(limits)
        self.time_source = time_source
        # In-memory fallback storage, guarded by _lock (handlers run on a threadpool)
        self._memory_store: Dict[str, List[float]] = {}
        self._lock = threading.Lock()
        self._last_prune = time_source()

    @staticmethod
    def make_key(purpose: str, origin_address: Optional[str], identity_address: Optional[str]) -> str:
        identity = (identity_address or "unknown").strip().lower()
        return f"{purpose}:{origin_address or 'unknown'}:{identity}"

    def _limit_for(self, purpose: str) -> Tuple[int, int]:
        if purpose not in self.limits:
            raise ValueError(f"No rate limit configured for purpose '{purpose}'")
        return self.limits[purpose]

    # ------------------------------------------
    # Redis backend
    # ------------------------------------------

    def _hit_redis(self, key: str, limit: int, window_seconds: int) -> Optional[RateLimitDecision]:
        """Returns None when Redis is unavailable, so the caller falls back."""
        full_key = f"branchgate:auth_ratelimit:{key}"
        try:
            count = self.redis.get(full_key)
            count = int(count) if count else 0
            if count >= limit:
                ttl = self.redis.ttl(full_key)
                retry_after = ttl if ttl and ttl > 0 else window_seconds
                return RateLimitDecision(allowed=False, retry_after=retry_after)

            pipe = self.redis.pipeline()
            pipe.incr(full_key)
            pipe.ttl(full_key)
            results = pipe.execute()
            if results[1] is None or results[1] < 0:
                # First hit in this window
                self.redis.expire(full_key, window_seconds)
            return RateLimitDecision(allowed=True, remaining=max(0, limit - results[0]))
        except redis.RedisError as e:
            logger.warning(f"Redis error in auth rate limit: {e}")
            return None

    # ------------------------------------------
    # In-memory backend
    # ------------------------------------------

    def _hit_memory(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        with self._lock:
            now = self.time_source()
            if now - self._last_prune >= PRUNE_INTERVAL:
                self._prune(now)

            timestamps = [ts for ts in self._memory_store.get(key, []) if now - ts < window_seconds]

            if len(timestamps) >= limit:
                self._memory_store[key] = timestamps
                retry_after = math.ceil(window_seconds - (now - timestamps[0]))
                return RateLimitDecision(allowed=False, retry_after=max(1, retry_after))

            timestamps.append(now)
            self._memory_store[key] = timestamps
            return RateLimitDecision(allowed=True, remaining=limit - len(timestamps))

    def _prune(self, now: float) -> None:
        """Drop keys whose newest hit is outside their purpose's window. Caller holds the lock."""
        stale = []
        for key, timestamps in self._memory_store.items():
            purpose = key.split(":", 1)[0]
            _, window_seconds = self.limits.get(purpose, (0, 0))
            if not timestamps or now - timestamps[-1] >= window_seconds:
                stale.append(key)
        for key in stale:
            del self._memory_store[key]
        self._last_prune = now
        if stale:
            logger.debug(f"Pruned {len(stale)} idle rate limit keys")

    # ------------------------------------------
    # Public API
    # ------------------------------------------

    def hit(
        self,
        purpose: str,
        origin_address: Optional[str],
        identity_address: Optional[str],
    ) -> RateLimitDecision:
        """
        Count one request and decide whether it may proceed.

        Denied requests are not counted, so the window is not extended by
        retries during a block.
        """
        if os.getenv("RATE_LIMIT_ENABLED", "true").lower() != "true":
            return RateLimitDecision(allowed=True)

        limit, window_seconds = self._limit_for(purpose)
        key = self.make_key(purpose, origin_address, identity_address)

        if self.redis is not None:
            decision = self._hit_redis(key, limit, window_seconds)
            if decision is not None:
                return decision

        return self._hit_memory(key, limit, window_seconds)

    def reset(self, purpose: str, origin_address: Optional[str], identity_address: Optional[str]) -> None:
        """Forget the counter for one key."""
        key = self.make_key(purpose, origin_address, identity_address)
        with self._lock:
            self._memory_store.pop(key, None)
        if self.redis is not None:
            try:
                self.redis.delete(f"branchgate:auth_ratelimit:{key}")
            except redis.RedisError as e:
                logger.warning(f"Redis error clearing rate limit: {e}")
