"""
Sliding Window Rate Limiter
===========================
Sliding window rate limiter using Redis sorted sets.
"""

import time
import uuid
from typing import Optional

from .models import RateLimitInfo

SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local member = ARGV[4]

redis.call('ZREMRANGEBYSCORE', key, 0, now - window)
local count = redis.call('ZCARD', key)

if count >= limit then
    local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
    local retry_after = window
    if oldest[2] then
        retry_after = math.ceil(tonumber(oldest[2]) + window - now)
    end
    return {0, 0, limit, retry_after}
end

redis.call('ZADD', key, now, member)
redis.call('EXPIRE', key, window * 2)
return {1, limit - count - 1, limit, 0}
"""


class SlidingWindowLimiter:
    """
    Sliding window rate limiter using Redis sorted sets.

    More accurate than a fixed window but slightly more expensive.
    """

    def __init__(self, redis_client):
        self.redis = redis_client
        self._script_sha: Optional[str] = None

    async def check(self, key: str, limit: int, window: int) -> RateLimitInfo:
        """Check using sliding window algorithm."""
        if self._script_sha is None:
            self._script_sha = await self.redis.script_load(SLIDING_WINDOW_SCRIPT)

        now = time.time()
        allowed, remaining, limit_value, retry_after = await self.redis.evalsha(
            self._script_sha,
            1,
            key,
            limit,
            window,
            now,
            f"{now}:{uuid.uuid4().hex[:8]}",
        )

        return RateLimitInfo(
            allowed=bool(allowed),
            remaining=int(remaining),
            limit=int(limit_value),
            reset_at=int(now + window),
            retry_after=int(retry_after) if retry_after else None,
            window=window,
        )
