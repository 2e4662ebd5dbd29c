"""
Rate Limiting Module
====================
Fixed and sliding window limiters with per-category quotas.
"""

from .models import (
    RateLimitResult,
    RateLimitInfo,
    RateLimitCategory,
    CategoryLimit,
    DEFAULT_LIMITS,
)
from .in_memory import InMemoryRateLimiter
from .redis_limiter import RedisRateLimiter, FIXED_WINDOW_SCRIPT
from .sliding_window import SlidingWindowLimiter, SLIDING_WINDOW_SCRIPT
from .limiter import CategoryRateLimiter, client_identity

__all__ = [
    # Models
    "RateLimitResult",
    "RateLimitInfo",
    "RateLimitCategory",
    "CategoryLimit",
    "DEFAULT_LIMITS",
    # Backends
    "InMemoryRateLimiter",
    "RedisRateLimiter",
    "SlidingWindowLimiter",
    # Scripts
    "FIXED_WINDOW_SCRIPT",
    "SLIDING_WINDOW_SCRIPT",
    # Category limiter
    "CategoryRateLimiter",
    "client_identity",
]
