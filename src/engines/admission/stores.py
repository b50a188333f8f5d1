"""
Rate Limit Counter Stores

Two stores implement the same fixed-window counter:

- RedisCounterStore: shared across instances. Every failure to talk to Redis
  comes back as a StoreUnavailable value instead of an exception, so the
  controller's fallback is a plain branch on the return type.
- InMemoryCounterStore: per-process counters guarded by an asyncio.Lock.

Both reject without incrementing once `count` reached the limit, and replace
(never increment) an entry whose window has expired.
"""

import asyncio
import math
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

from redis.exceptions import RedisError

from src.core.clock import Clock, SystemClock
from src.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitEntry:
    """Counter snapshot after an admission attempt."""
    count: int
    window_reset_at: float   # epoch seconds
    allowed: bool


@dataclass(frozen=True)
class StoreUnavailable:
    """The shared store could not be reached."""
    reason: str


StoreResult = Union[RateLimitEntry, StoreUnavailable]


# =============================================================================
# In-process store
# =============================================================================

class InMemoryCounterStore:
    """Per-process counters keyed by `<class>:<identifier>`."""

    backend = "memory"

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()
        self._entries: Dict[str, Tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def increment(self, key: str, limit: int, window_seconds: float) -> RateLimitEntry:
        async with self._lock:
            now = self.clock.now()
            count, reset_at = self._entries.get(key, (0, 0.0))

            if now >= reset_at:
                count, reset_at = 0, now + window_seconds

            if count >= limit:
                self._entries[key] = (count, reset_at)
                return RateLimitEntry(count=count, window_reset_at=reset_at, allowed=False)

            count += 1
            self._entries[key] = (count, reset_at)
            return RateLimitEntry(count=count, window_reset_at=reset_at, allowed=True)

    async def cleanup(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        async with self._lock:
            now = self.clock.now()
            expired = [key for key, (_, reset_at) in self._entries.items() if now >= reset_at]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.debug("rate_limit_entries_cleaned", removed=len(expired), remaining=len(self._entries))
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# Redis store
# =============================================================================

# Atomic check-and-increment. Returns {count, pttl_ms, allowed}.
_INCREMENT_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if not current then
    redis.call('SET', KEYS[1], 1, 'PX', ARGV[2])
    return {1, tonumber(ARGV[2]), 1}
end
local count = tonumber(current)
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[2])
    ttl = tonumber(ARGV[2])
end
if count >= tonumber(ARGV[1]) then
    return {count, ttl, 0}
end
count = redis.call('INCR', KEYS[1])
return {count, ttl, 1}
"""


class RedisCounterStore:
    """Shared counters in Redis, keys expire with their window."""

    backend = "redis"

    def __init__(self, redis_client, clock: Optional[Clock] = None, prefix: str = "ratelimit"):
        self.redis = redis_client
        self.clock = clock or SystemClock()
        self.prefix = prefix
        self._script = redis_client.register_script(_INCREMENT_SCRIPT)

    async def increment(self, key: str, limit: int, window_seconds: float) -> StoreResult:
        window_ms = max(1, int(math.ceil(window_seconds * 1000)))
        try:
            count, ttl_ms, allowed = await self._script(
                keys=[f"{self.prefix}:{key}"],
                args=[limit, window_ms]
            )
        except (RedisError, OSError) as e:
            return StoreUnavailable(reason=f"{type(e).__name__}: {e}")

        now = self.clock.now()
        return RateLimitEntry(
            count=int(count),
            window_reset_at=now + int(ttl_ms) / 1000.0,
            allowed=bool(int(allowed)),
        )
