"""
Category Rate Limiter
=====================
Per-(client, category) quotas on top of a counter backend.
"""

import hashlib
import time
from typing import Dict, Optional, Union
import structlog

from reqguard.request import SecurityRequest
from .models import CategoryLimit, DEFAULT_LIMITS, RateLimitCategory, RateLimitInfo

logger = structlog.get_logger(__name__)


def client_identity(request: SecurityRequest) -> str:
    """
    Derive the rate limit identity of a request.

    Authenticated callers are keyed by user id; anonymous callers by a
    digest of client IP and user agent.
    """
    if request.user_id:
        return f"user:{request.user_id}"
    raw = f"{request.client_ip}:{request.user_agent or ''}"
    return f"anon:{hashlib.sha256(raw.encode()).hexdigest()[:16]}"


class CategoryRateLimiter:
    """
    Applies category quotas using a counter backend.

    The backend must expose ``async check(key, limit, window)`` and perform
    the increment-and-compare atomically (InMemoryRateLimiter,
    RedisRateLimiter, SlidingWindowLimiter). Backend failures fail open.
    """

    def __init__(
        self,
        backend,
        limits: Optional[Dict[RateLimitCategory, CategoryLimit]] = None,
        prefix: str = "ratelimit",
    ):
        """
        Args:
            backend: Counter backend
            limits: Per-category overrides merged over DEFAULT_LIMITS
            prefix: Key namespace
        """
        self.backend = backend
        self.limits: Dict[RateLimitCategory, CategoryLimit] = dict(DEFAULT_LIMITS)
        if limits:
            self.limits.update({RateLimitCategory(k): v for k, v in limits.items()})
        self.prefix = prefix

    def get_key(self, client_id: str, category: RateLimitCategory) -> str:
        """Generate a rate limit key."""
        return f"{self.prefix}:{category.value}:{client_id}"

    async def check(
        self,
        client_id: str,
        category: Union[RateLimitCategory, str] = RateLimitCategory.API,
    ) -> RateLimitInfo:
        """
        Count one request for a client in a category.

        Args:
            client_id: Identity from client_identity()
            category: Quota category

        Returns:
            RateLimitInfo; `allowed` is False once the window quota is spent
        """
        category = RateLimitCategory(category)
        quota = self.limits[category]

        try:
            info = await self.backend.check(
                self.get_key(client_id, category),
                quota.limit,
                quota.window_seconds,
            )
        except Exception as e:
            logger.error(
                "Rate limit check failed",
                error=str(e),
                category=category.value,
            )
            # Fail open in case of backend issues
            return RateLimitInfo(
                allowed=True,
                remaining=quota.limit,
                limit=quota.limit,
                reset_at=int(time.time()) + quota.window_seconds,
                window=quota.window_seconds,
                degraded=True,
            )

        if not info.allowed:
            logger.warning(
                "rate_limit_exceeded",
                client_id=client_id,
                category=category.value,
                reset_at=info.reset_at,
            )
        return info

    async def check_request(
        self,
        request: SecurityRequest,
        category: Union[RateLimitCategory, str] = RateLimitCategory.API,
    ) -> RateLimitInfo:
        """Check using the identity derived from a request."""
        return await self.check(client_identity(request), category)
