"""
Rate Limit Models
=================
Data models for rate limiting categories and results.
"""

from typing import Dict, Optional
from dataclasses import dataclass
from enum import Enum


class RateLimitResult(str, Enum):
    """Rate limit decision result."""
    ALLOWED = "allowed"
    BLOCKED = "blocked"
    DEGRADED = "degraded"


class RateLimitCategory(str, Enum):
    """Route families with independent quotas."""
    AUTH = "auth"
    API = "api"
    BOOKING = "booking"
    SEARCH = "search"
    UPLOAD = "upload"
    ADMIN = "admin"


@dataclass(frozen=True)
class CategoryLimit:
    """Quota for one category: `limit` requests per `window_seconds`."""
    limit: int
    window_seconds: int


DEFAULT_LIMITS: Dict[RateLimitCategory, CategoryLimit] = {
    RateLimitCategory.AUTH: CategoryLimit(limit=5, window_seconds=15 * 60),
    RateLimitCategory.API: CategoryLimit(limit=1000, window_seconds=60),
    RateLimitCategory.BOOKING: CategoryLimit(limit=10, window_seconds=5 * 60),
    RateLimitCategory.SEARCH: CategoryLimit(limit=100, window_seconds=60),
    RateLimitCategory.UPLOAD: CategoryLimit(limit=20, window_seconds=5 * 60),
    RateLimitCategory.ADMIN: CategoryLimit(limit=200, window_seconds=60),
}


@dataclass
class RateLimitInfo:
    """Rate limit check result with quota information."""
    allowed: bool
    remaining: int
    limit: int
    reset_at: int  # Unix timestamp
    retry_after: Optional[int] = None  # Seconds until retry allowed
    window: Optional[int] = None  # Window size in seconds
    degraded: bool = False  # Backend failed and the check failed open

    @property
    def result(self) -> RateLimitResult:
        if self.degraded:
            return RateLimitResult.DEGRADED
        return RateLimitResult.ALLOWED if self.allowed else RateLimitResult.BLOCKED
