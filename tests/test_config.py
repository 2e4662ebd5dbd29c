"""
Unit Tests for Configuration, Envelope and Headers
==================================================
"""

import json
import logging
from datetime import datetime, timezone

from starlette.applications import Starlette
from starlette.responses import HTMLResponse, JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient


class TestRouteSecurityConfig:
    """Tests for route presets."""

    def test_auth_preset(self):
        from reqguard.config import MB, RouteSecurityConfig
        from reqguard.rate_limit import RateLimitCategory

        config = RouteSecurityConfig.auth()

        assert config.rate_limit_category == RateLimitCategory.AUTH
        assert config.enable_csrf is True
        assert config.validate_origin is True
        assert config.max_request_size == 1 * MB
        assert config.log_requests is True

    def test_role_presets(self):
        from reqguard.config import RouteSecurityConfig

        assert RouteSecurityConfig.booking().allowed_roles == ["customer", "admin"]
        assert RouteSecurityConfig.admin().allowed_roles == ["admin"]
        assert RouteSecurityConfig.provider().allowed_roles == ["provider", "admin"]

    def test_public_preset_skips_csrf(self):
        from reqguard.config import RouteSecurityConfig

        config = RouteSecurityConfig.public()

        assert config.enable_csrf is False
        assert config.validate_origin is False
        assert config.require_auth is False
        assert config.sanitize_input is True

    def test_default_disables_checks(self):
        from reqguard.config import RouteSecurityConfig

        config = RouteSecurityConfig()

        assert config.rate_limit_category is None
        assert config.max_request_size is None


class TestSettings:
    """Tests for environment settings."""

    def test_defaults(self, monkeypatch):
        from reqguard.config import Settings

        for name in ("ALLOWED_ORIGINS", "REQGUARD_ENV", "REDIS_URL", "ALERT_EMAIL"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings.from_env()

        assert settings.allowed_origins == ["http://localhost:3000", "http://localhost:3001"]
        assert settings.redis_url is None
        assert settings.alert_emails == []
        assert settings.is_production is False

    def test_from_env(self, monkeypatch):
        from reqguard.config import Settings

        monkeypatch.setenv("REQGUARD_ENV", "production")
        monkeypatch.setenv("ALLOWED_ORIGINS", "https://app.example.com, https://admin.example.com")
        monkeypatch.setenv("ALERT_EMAIL", "ops@example.com,sec@example.com")
        monkeypatch.setenv("AUDIT_FALLBACK_DIR", "/var/log/reqguard")

        settings = Settings.from_env()

        assert settings.is_production is True
        assert settings.allowed_origins == ["https://app.example.com", "https://admin.example.com"]
        assert settings.alert_emails == ["ops@example.com", "sec@example.com"]
        assert settings.audit_fallback_path == "/var/log/reqguard/audit_fallback.jsonl"


class TestEnvelope:
    """Tests for the response envelope."""

    def test_absent_fields_omitted(self):
        from reqguard.envelope import APIResponse

        body = APIResponse(
            success=False,
            error="Invalid origin",
            timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
            request_id="req_1_abcdefghi",
        ).to_dict()

        assert body == {
            "success": False,
            "error": "Invalid origin",
            "timestamp": "2024-05-01T12:00:00+00:00",
            "requestId": "req_1_abcdefghi",
        }

    def test_pipeline_response_to_starlette(self):
        from reqguard.envelope import PipelineResponse

        response = PipelineResponse.ok({"id": 1}, status_code=201)
        response.headers["X-Request-ID"] = "req_1"

        starlette_response = response.to_starlette()

        assert starlette_response.status_code == 201
        assert starlette_response.headers["x-request-id"] == "req_1"
        assert json.loads(starlette_response.body)["data"] == {"id": 1}


class TestSecurityHeaders:
    """Tests for header helpers and middleware."""

    def test_rate_limit_headers_allowed(self):
        from reqguard.rate_limit import RateLimitInfo
        from reqguard.security_headers import get_rate_limit_headers

        headers = get_rate_limit_headers(
            RateLimitInfo(allowed=True, remaining=4, limit=5, reset_at=1_700_000_900, window=900)
        )

        assert headers == {
            "X-RateLimit-Limit": "5",
            "X-RateLimit-Remaining": "4",
            "X-RateLimit-Reset": "1700000900",
            "X-RateLimit-Window": "900",
        }

    def test_rate_limit_headers_blocked(self):
        from reqguard.rate_limit import RateLimitInfo
        from reqguard.security_headers import get_rate_limit_headers

        headers = get_rate_limit_headers(
            RateLimitInfo(allowed=False, remaining=0, limit=5, reset_at=1_700_000_900, retry_after=30)
        )

        assert headers["Retry-After"] == "30"
        assert "X-RateLimit-Window" not in headers

    def test_middleware(self):
        """HTML responses get a CSP; every response gets the base set."""
        from reqguard.security_headers import SecurityHeadersMiddleware

        async def page(request):
            return HTMLResponse("<p>hi</p>")

        async def data(request):
            return JSONResponse({"ok": True})

        app = Starlette(routes=[Route("/page", page), Route("/data", data)])
        app.add_middleware(SecurityHeadersMiddleware)
        client = TestClient(app)

        html = client.get("/page")
        plain = client.get("/data")

        assert "default-src 'self'" in html.headers["content-security-policy"]
        assert "content-security-policy" not in plain.headers
        assert plain.headers["x-content-type-options"] == "nosniff"
        assert plain.headers["strict-transport-security"].startswith("max-age=31536000")


class TestLogging:
    """Tests for logging setup."""

    def test_setup_logging(self):
        import structlog
        from reqguard.log_config import setup_logging

        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configured = setup_logging("bookings-api", level="warning", json_output=False)

            assert configured is root
            assert root.level == logging.WARNING
            assert len(root.handlers) == 1
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
            structlog.reset_defaults()
