"""
Unit Tests for Alerts
=====================
"""

import json
import pytest
import httpx
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from tenacity import wait_none

from reqguard.alerts import AlertChannel


def make_snapshot(**kwargs):
    from reqguard.alerts import MonitoringSnapshot

    return MonitoringSnapshot(
        environment="production",
        timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        **kwargs,
    )


class RecordingChannel(AlertChannel):
    """Channel stub recording messages; optionally failing."""

    def __init__(self, name="stub", fail=False, categories=None):
        super().__init__(categories)
        self.name = name
        self.fail = fail
        self.messages = []

    async def send(self, message):
        if self.fail:
            raise RuntimeError("channel down")
        self.messages.append(message)


class TestDigest:
    """Tests for digest formatting and gating."""

    def test_format_digest(self):
        """Sections should appear in severity order with bullet items."""
        from reqguard.alerts import format_alert_digest

        digest = format_alert_digest(make_snapshot(
            counts={"bookings": 0, "providers": 12},
            errors=["bookings query failed"],
            warnings=["slow response"],
            empty_states=["no bookings today"],
        ))

        lines = digest.splitlines()
        assert lines[0] == "🔍 Monitoring Alert - PRODUCTION"
        assert lines[1] == "⏰ 2024-05-01T12:00:00+00:00"
        assert "🚨 ERRORS (1):" in digest
        assert "• bookings query failed" in digest
        assert digest.index("🚨 ERRORS") < digest.index("⚡ WARNINGS") < digest.index("📭 EMPTY STATES")
        assert "⚠️ MISSING DATA" not in digest
        assert digest.endswith("📊 COUNTS:\n• bookings: 0\n• providers: 12")

    def test_should_alert(self):
        """Only errors or missing data should trigger an alert."""
        from reqguard.alerts import should_alert

        assert should_alert(make_snapshot(errors=["x"])) is True
        assert should_alert(make_snapshot(missing_data=["x"])) is True
        assert should_alert(make_snapshot(warnings=["x"], empty_states=["y"])) is False


class TestAlertDispatcher:
    """Tests for delivery and failure containment."""

    @pytest.mark.asyncio
    async def test_failure_contained(self):
        """One failing channel should not stop the others or raise."""
        from reqguard.alerts import AlertDispatcher

        broken = RecordingChannel("broken", fail=True)
        working = RecordingChannel("working")
        dispatcher = AlertDispatcher([broken, working])

        results = await dispatcher.send("hello")

        assert results == {"broken": False, "working": True}
        assert working.messages == ["hello"]

    @pytest.mark.asyncio
    async def test_category_routing(self):
        """Channels should only receive categories they subscribe to."""
        from reqguard.alerts import AlertDispatcher

        payments = RecordingChannel("payments", categories=["payment"])
        everything = RecordingChannel("everything")
        dispatcher = AlertDispatcher([payments, everything])

        await dispatcher.send("db down", category="database")

        assert payments.messages == []
        assert everything.messages == ["db down"]

    @pytest.mark.asyncio
    async def test_notify_is_background(self):
        """notify should schedule delivery without awaiting it."""
        from reqguard.alerts import AlertDispatcher

        channel = RecordingChannel()
        dispatcher = AlertDispatcher([channel])

        dispatcher.notify("queued")
        assert channel.messages == []

        await dispatcher.drain()
        assert channel.messages == ["queued"]

    @pytest.mark.asyncio
    async def test_send_digest_gated(self):
        from reqguard.alerts import AlertDispatcher

        channel = RecordingChannel()
        dispatcher = AlertDispatcher([channel])

        assert await dispatcher.send_digest(make_snapshot(warnings=["slow"])) is False
        assert await dispatcher.send_digest(make_snapshot(errors=["down"])) is True
        assert len(channel.messages) == 1


class TestSlackWebhookChannel:
    """Tests for the Slack webhook channel."""

    @pytest.mark.asyncio
    async def test_posts_payload(self):
        from reqguard.alerts import SlackWebhookChannel

        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, text="ok")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        channel = SlackWebhookChannel("https://hooks.example.com/T1", client=client)

        await channel.send("digest text")
        await channel.aclose()

        body = json.loads(requests[0].content)
        assert body == {
            "text": "digest text",
            "username": "Security Monitor",
            "icon_emoji": ":rotating_light:",
        }

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        """5xx responses should be retried, then succeed."""
        from reqguard.alerts import SlackWebhookChannel

        statuses = iter([503, 502, 200])

        def handler(request):
            return httpx.Response(next(statuses))

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        channel = SlackWebhookChannel("https://hooks.example.com/T1", client=client)

        with patch.object(SlackWebhookChannel.send.retry, "wait", wait_none()):
            await channel.send("digest text")

        assert next(statuses, None) is None

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        """4xx responses should fail immediately."""
        from reqguard.alerts import AlertDeliveryError, SlackWebhookChannel

        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        channel = SlackWebhookChannel("https://hooks.example.com/T1", client=client)

        with pytest.raises(AlertDeliveryError) as exc_info:
            await channel.send("digest text")

        assert exc_info.value.status_code == 404
        assert len(calls) == 1


class TestEmailAlertChannel:
    """Tests for the SMTP channel."""

    @pytest.mark.asyncio
    async def test_sends_message(self):
        from reqguard.alerts import EmailAlertChannel

        with patch("reqguard.alerts.channels.smtplib.SMTP") as smtp_cls:
            smtp = MagicMock()
            smtp_cls.return_value.__enter__.return_value = smtp
            channel = EmailAlertChannel("smtp.example.com", ["ops@example.com"], use_tls=False)

            await channel.send("digest text")

        smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=10.0)
        message = smtp.send_message.call_args.args[0]
        assert message["To"] == "ops@example.com"
        assert "digest text" in message.get_content()
