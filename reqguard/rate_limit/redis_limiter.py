"""
Redis Rate Limiter
==================
Redis-backed fixed-window rate limiter using Lua scripts for atomic operations.
"""

import time
from typing import Optional
import structlog
from redis.exceptions import NoScriptError

from .models import RateLimitInfo

logger = structlog.get_logger(__name__)

# Lua script for an atomic fixed-window counter in Redis
FIXED_WINDOW_SCRIPT = """
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local now = tonumber(ARGV[3])

local window_start = math.floor(now / window) * window
local reset_at = window_start + window
local count = 0

local bucket = redis.call('HMGET', key, 'window', 'count')
if bucket[1] and tonumber(bucket[1]) >= window_start then
    count = tonumber(bucket[2]) or 0
end

if count >= limit then
    return {0, 0, limit, reset_at, reset_at - now}
end

count = count + 1
redis.call('HSET', key, 'window', window_start, 'count', count)
redis.call('EXPIRE', key, window * 2)

return {1, limit - count, limit, reset_at, 0}
"""


class RedisRateLimiter:
    """
    Redis-backed fixed-window rate limiter.

    Uses Lua scripts for atomic operations.
    """

    def __init__(self, redis_client):
        """
        Args:
            redis_client: Async Redis client
        """
        self.redis = redis_client
        self._script_sha: Optional[str] = None

    async def _ensure_script(self) -> str:
        """Load Lua script into Redis if needed."""
        if self._script_sha is None:
            self._script_sha = await self.redis.script_load(FIXED_WINDOW_SCRIPT)
        return self._script_sha

    async def check(self, key: str, limit: int, window: int) -> RateLimitInfo:
        """
        Count a request against a key using Redis.

        Args:
            key: Rate limit key
            limit: Requests allowed per window
            window: Window size in seconds

        Returns:
            RateLimitInfo with decision

        Raises:
            redis.exceptions.RedisError: If Redis is unreachable
        """
        now = int(time.time())
        script_sha = await self._ensure_script()

        try:
            result = await self.redis.evalsha(script_sha, 1, key, limit, window, now)
        except NoScriptError:
            # Script cache flushed (e.g. Redis restart), reload once
            self._script_sha = None
            script_sha = await self._ensure_script()
            result = await self.redis.evalsha(script_sha, 1, key, limit, window, now)

        allowed, remaining, limit_value, reset_at, retry_after = result

        return RateLimitInfo(
            allowed=bool(allowed),
            remaining=int(remaining),
            limit=int(limit_value),
            reset_at=int(reset_at),
            retry_after=int(retry_after) if retry_after else None,
            window=window,
        )
