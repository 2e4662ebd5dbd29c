"""
Unit Tests for Rate Limiting
============================
"""

import pytest
from unittest.mock import AsyncMock

from reqguard.rate_limit import RateLimitCategory
from reqguard.request import SecurityRequest, SessionIdentity


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestInMemoryRateLimiter:
    """Tests for the fixed-window in-memory backend."""

    @pytest.mark.asyncio
    async def test_enforces_limit(self):
        """Should allow `limit` requests then block."""
        from reqguard.rate_limit import InMemoryRateLimiter

        limiter = InMemoryRateLimiter()

        for i in range(5):
            result = await limiter.check("user1", 5, 60)
            assert result.allowed is True
            assert result.remaining == 4 - i

        result = await limiter.check("user1", 5, 60)
        assert result.allowed is False
        assert result.remaining == 0
        assert result.retry_after >= 1

    @pytest.mark.asyncio
    async def test_separate_keys(self):
        """Different keys should have separate limits."""
        from reqguard.rate_limit import InMemoryRateLimiter

        limiter = InMemoryRateLimiter()

        await limiter.check("user1", 2, 60)
        await limiter.check("user1", 2, 60)

        assert (await limiter.check("user1", 2, 60)).allowed is False
        assert (await limiter.check("user2", 2, 60)).allowed is True

    @pytest.mark.asyncio
    async def test_window_reset(self):
        """A new window should start a fresh count."""
        from reqguard.rate_limit import InMemoryRateLimiter

        clock = FakeClock(now=1_700_000_000.0)
        limiter = InMemoryRateLimiter(clock=clock)

        await limiter.check("k", 1, 60)
        assert (await limiter.check("k", 1, 60)).allowed is False

        clock.now += 60
        assert (await limiter.check("k", 1, 60)).allowed is True

    @pytest.mark.asyncio
    async def test_rejections_not_counted(self):
        """Blocked requests should not push the window further."""
        from reqguard.rate_limit import InMemoryRateLimiter

        clock = FakeClock(now=1_700_000_000.0)
        limiter = InMemoryRateLimiter(clock=clock)

        await limiter.check("k", 2, 60)
        await limiter.check("k", 2, 60)
        for _ in range(10):
            await limiter.check("k", 2, 60)

        clock.now += 60
        result = await limiter.check("k", 2, 60)
        assert result.allowed is True
        assert result.remaining == 1

    @pytest.mark.asyncio
    async def test_reset_key(self):
        from reqguard.rate_limit import InMemoryRateLimiter

        limiter = InMemoryRateLimiter()
        await limiter.check("k", 1, 60)
        limiter.reset("k")

        assert (await limiter.check("k", 1, 60)).allowed is True

    @pytest.mark.asyncio
    async def test_concurrent_checks_admit_exactly_limit(self):
        """Concurrent checks on one key should never admit more than the limit."""
        import asyncio
        from reqguard.rate_limit import InMemoryRateLimiter

        limiter = InMemoryRateLimiter()

        results = await asyncio.gather(*(limiter.check("k", 10, 60) for _ in range(15)))

        assert sum(r.allowed for r in results) == 10

    @pytest.mark.asyncio
    async def test_expired_buckets_swept(self):
        """Buckets from ended windows should be dropped."""
        from reqguard.rate_limit import InMemoryRateLimiter

        clock = FakeClock(now=1_700_000_000.0)
        limiter = InMemoryRateLimiter(clock=clock, sweep_interval=60)

        for i in range(50):
            await limiter.check(f"anon:{i}", 5, 60)
        assert len(limiter) == 50

        clock.now += 120
        await limiter.check("anon:fresh", 5, 60)

        assert len(limiter) == 1

    @pytest.mark.asyncio
    async def test_live_buckets_kept_by_sweep(self):
        from reqguard.rate_limit import InMemoryRateLimiter

        clock = FakeClock(now=1_700_000_000.0)
        limiter = InMemoryRateLimiter(clock=clock, sweep_interval=60)

        await limiter.check("long", 1, 3600)
        clock.now += 120
        await limiter.check("other", 1, 60)

        assert (await limiter.check("long", 1, 3600)).allowed is False


class TestCategoryRateLimiter:
    """Tests for per-category quotas."""

    @pytest.mark.asyncio
    async def test_eleventh_request_blocked(self):
        """With a 10/60s quota the 11th request should be rejected."""
        from reqguard.rate_limit import (
            CategoryLimit,
            CategoryRateLimiter,
            InMemoryRateLimiter,
            RateLimitCategory,
        )

        limiter = CategoryRateLimiter(
            InMemoryRateLimiter(),
            limits={RateLimitCategory.AUTH: CategoryLimit(limit=10, window_seconds=60)},
        )

        results = [await limiter.check("anon:abc", RateLimitCategory.AUTH) for _ in range(11)]

        assert all(r.allowed for r in results[:10])
        assert results[10].allowed is False
        assert results[10].limit == 10
        assert results[10].window == 60

    @pytest.mark.asyncio
    @pytest.mark.parametrize("category", list(RateLimitCategory))
    async def test_one_rejection_past_default_quota(self, category):
        """limit + 1 requests in one window should produce exactly one rejection."""
        from reqguard.rate_limit import DEFAULT_LIMITS, CategoryRateLimiter, InMemoryRateLimiter

        clock = FakeClock(now=1_700_000_000.0)
        limiter = CategoryRateLimiter(InMemoryRateLimiter(clock=clock))
        quota = DEFAULT_LIMITS[category]

        results = [await limiter.check("anon:abc", category) for _ in range(quota.limit + 1)]

        assert [r.allowed for r in results].count(False) == 1
        assert results[-1].allowed is False
        assert results[-1].window == quota.window_seconds

    @pytest.mark.asyncio
    async def test_default_auth_quota(self):
        """Auth defaults to 5 requests per 15 minutes."""
        from reqguard.rate_limit import CategoryRateLimiter, InMemoryRateLimiter

        limiter = CategoryRateLimiter(InMemoryRateLimiter())
        results = [await limiter.check("anon:abc", "auth") for _ in range(6)]

        assert [r.allowed for r in results] == [True] * 5 + [False]
        assert results[0].window == 900

    @pytest.mark.asyncio
    async def test_categories_independent(self):
        """Exhausting one category should not affect another."""
        from reqguard.rate_limit import CategoryRateLimiter, InMemoryRateLimiter

        limiter = CategoryRateLimiter(InMemoryRateLimiter())
        for _ in range(6):
            await limiter.check("anon:abc", "auth")

        assert (await limiter.check("anon:abc", "search")).allowed is True

    @pytest.mark.asyncio
    async def test_fails_open_on_backend_error(self):
        """Backend errors should allow the request and flag it degraded."""
        from reqguard.rate_limit import CategoryRateLimiter, RateLimitResult

        backend = AsyncMock()
        backend.check.side_effect = ConnectionError("redis down")
        limiter = CategoryRateLimiter(backend)

        result = await limiter.check("anon:abc", "api")

        assert result.allowed is True
        assert result.degraded is True
        assert result.result == RateLimitResult.DEGRADED

    @pytest.mark.asyncio
    async def test_key_format(self):
        """Keys should be namespaced by category and client."""
        from reqguard.rate_limit import CategoryRateLimiter, InMemoryRateLimiter, RateLimitCategory

        limiter = CategoryRateLimiter(InMemoryRateLimiter())
        assert limiter.get_key("user:42", RateLimitCategory.BOOKING) == "ratelimit:booking:user:42"


class TestClientIdentity:
    """Tests for request identity derivation."""

    def test_authenticated_user(self):
        from reqguard.rate_limit import client_identity

        request = SecurityRequest(
            method="GET", path="/", identity=SessionIdentity(user_id="42", role="customer")
        )
        assert client_identity(request) == "user:42"

    def test_anonymous_digest(self):
        """Anonymous identity should depend on both IP and user agent."""
        from reqguard.rate_limit import client_identity

        a = SecurityRequest(method="GET", path="/", headers={"x-forwarded-for": "1.2.3.4", "user-agent": "curl"})
        b = SecurityRequest(method="GET", path="/", headers={"x-forwarded-for": "1.2.3.4", "user-agent": "firefox"})

        assert client_identity(a).startswith("anon:")
        assert client_identity(a) != client_identity(b)
        assert client_identity(a) == client_identity(
            SecurityRequest(method="POST", path="/x", headers={"X-Forwarded-For": "1.2.3.4, 10.0.0.1", "User-Agent": "curl"})
        )

    def test_untrusted_user_header_ignored(self):
        """A client-supplied user id header should not change identity."""
        from reqguard.rate_limit import client_identity

        request = SecurityRequest(method="GET", path="/", headers={"x-user-id": "admin"})
        assert client_identity(request).startswith("anon:")


class TestRedisBackends:
    """Tests for the Redis backends with a mocked client."""

    @pytest.mark.asyncio
    async def test_fixed_window_allowed(self):
        from reqguard.rate_limit import RedisRateLimiter

        redis = AsyncMock()
        redis.script_load.return_value = "sha1"
        redis.evalsha.return_value = [1, 9, 10, 1_700_000_060, 0]
        limiter = RedisRateLimiter(redis)

        result = await limiter.check("ratelimit:api:anon:abc", 10, 60)

        assert result.allowed is True
        assert result.remaining == 9
        assert result.retry_after is None
        redis.script_load.assert_awaited_once()
        assert redis.evalsha.await_args.args[:4] == ("sha1", 1, "ratelimit:api:anon:abc", 10)

    @pytest.mark.asyncio
    async def test_fixed_window_blocked(self):
        from reqguard.rate_limit import RedisRateLimiter

        redis = AsyncMock()
        redis.script_load.return_value = "sha1"
        redis.evalsha.return_value = [0, 0, 10, 1_700_000_060, 42]
        limiter = RedisRateLimiter(redis)

        result = await limiter.check("k", 10, 60)

        assert result.allowed is False
        assert result.retry_after == 42

    @pytest.mark.asyncio
    async def test_script_reloaded_after_flush(self):
        """NoScriptError should reload the script once and retry."""
        from redis.exceptions import NoScriptError
        from reqguard.rate_limit import RedisRateLimiter

        redis = AsyncMock()
        redis.script_load.side_effect = ["sha1", "sha2"]
        redis.evalsha.side_effect = [NoScriptError("NOSCRIPT"), [1, 4, 5, 1_700_000_060, 0]]
        limiter = RedisRateLimiter(redis)

        result = await limiter.check("k", 5, 60)

        assert result.allowed is True
        assert redis.script_load.await_count == 2

    @pytest.mark.asyncio
    async def test_sliding_window(self):
        from reqguard.rate_limit import SlidingWindowLimiter

        redis = AsyncMock()
        redis.script_load.return_value = "sha1"
        redis.evalsha.return_value = [0, 0, 3, 12]
        limiter = SlidingWindowLimiter(redis)

        result = await limiter.check("k", 3, 60)

        assert result.allowed is False
        assert result.limit == 3
        assert result.retry_after == 12
