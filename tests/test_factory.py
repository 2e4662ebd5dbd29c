"""
Unit Tests for the Pipeline Factory
===================================
"""

import json
import pytest
from unittest.mock import AsyncMock, patch

from reqguard.request import SecurityRequest


def make_settings(tmp_path, **overrides):
    from reqguard.config import Settings

    values = dict(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'audit.db'}",
        audit_fallback_dir=str(tmp_path / "logs"),
        csrf_token_ttl_seconds=60,
    )
    values.update(overrides)
    return Settings(**values)


class TestBuildAlertDispatcher:
    """Tests for alert channel wiring."""

    def test_no_destinations(self, tmp_path):
        from reqguard.factory import build_alert_dispatcher

        assert build_alert_dispatcher(make_settings(tmp_path)).channels == []

    @pytest.mark.asyncio
    async def test_slack_and_email(self, tmp_path):
        from reqguard.factory import build_alert_dispatcher

        dispatcher = build_alert_dispatcher(make_settings(
            tmp_path,
            slack_webhook_url="https://hooks.example.com/T1",
            alert_emails=["ops@example.com"],
            smtp_host="smtp.example.com",
            smtp_port=2525,
        ))

        slack, email = dispatcher.channels
        assert slack.name == "slack"
        assert slack.webhook_url == "https://hooks.example.com/T1"
        assert email.recipients == ["ops@example.com"]
        assert email.smtp_port == 2525
        await dispatcher.aclose()

    def test_email_needs_smtp_host(self, tmp_path):
        from reqguard.factory import build_alert_dispatcher

        dispatcher = build_alert_dispatcher(make_settings(tmp_path, alert_emails=["ops@example.com"]))

        assert dispatcher.channels == []


class TestBuildPipeline:
    """Tests for building a pipeline from settings."""

    @pytest.mark.asyncio
    async def test_in_memory_backends(self, tmp_path):
        """Without REDIS_URL, counters and CSRF hashes stay in process."""
        from reqguard.csrf import InMemoryCSRFHashStore
        from reqguard.factory import build_pipeline
        from reqguard.rate_limit import InMemoryRateLimiter

        components = await build_pipeline(make_settings(tmp_path))
        try:
            pipeline = components.pipeline
            assert isinstance(pipeline.rate_limiter.backend, InMemoryRateLimiter)
            assert isinstance(pipeline.csrf.hash_store, InMemoryCSRFHashStore)
            assert pipeline.csrf.hash_store.ttl_seconds == 60
            assert str(pipeline.audit.fallback_path) == str(tmp_path / "logs" / "audit_fallback.jsonl")
            assert components.redis is None
        finally:
            await components.aclose()

    @pytest.mark.asyncio
    async def test_settings_flow_into_requests(self, tmp_path):
        """The settings size limit applies and rejections land in the SQL store."""
        from reqguard.audit import AuditEventType, AuditFilter
        from reqguard.factory import build_pipeline

        components = await build_pipeline(make_settings(tmp_path, max_request_size=10))
        try:
            async def handler(request):
                return {"ok": True}

            response = await components.pipeline.handle(
                SecurityRequest(
                    method="POST",
                    path="/api/bookings",
                    headers={"content-type": "application/json"},
                    body=json.dumps({"notes": "x" * 100}).encode(),
                ),
                handler,
            )

            assert response.status_code == 413
            events = await components.pipeline.audit.get_logs(
                AuditFilter(event_type=AuditEventType.SECURITY_VIOLATION)
            )
            assert len(events) == 1
        finally:
            await components.aclose()

    @pytest.mark.asyncio
    async def test_redis_backends(self, tmp_path):
        """With REDIS_URL, counters and CSRF hashes share one Redis client."""
        from reqguard.csrf import RedisCSRFHashStore
        from reqguard.factory import build_pipeline
        from reqguard.rate_limit import RedisRateLimiter

        client = AsyncMock()
        with patch("reqguard.factory.redis.from_url", return_value=client) as from_url:
            components = await build_pipeline(make_settings(tmp_path, redis_url="redis://cache:6379/0"))

        try:
            from_url.assert_called_once_with("redis://cache:6379/0", decode_responses=True)
            assert isinstance(components.pipeline.rate_limiter.backend, RedisRateLimiter)
            hash_store = components.pipeline.csrf.hash_store
            assert isinstance(hash_store, RedisCSRFHashStore)
            assert hash_store.redis is client
            assert hash_store.ttl_seconds == 60
        finally:
            await components.aclose()

        client.aclose.assert_awaited_once()
