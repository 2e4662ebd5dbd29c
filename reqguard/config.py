"""
Configuration
=============
Process settings read from the environment, and per-route security policy.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import structlog

from reqguard.rate_limit.models import RateLimitCategory

logger = structlog.get_logger(__name__)

MB = 1024 * 1024

ALLOWED_CONTENT_TYPES: Tuple[str, ...] = (
    "application/json",
    "application/x-www-form-urlencoded",
    "multipart/form-data",
    "text/plain",
)

DEFAULT_ORIGINS = "http://localhost:3000,http://localhost:3001"


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Settings:
    """Process-wide settings."""
    environment: str = "development"
    allowed_origins: List[str] = field(default_factory=lambda: _split_list(DEFAULT_ORIGINS))
    redis_url: Optional[str] = None
    database_url: str = "sqlite+aiosqlite:///./reqguard.db"
    slack_webhook_url: Optional[str] = None
    alert_emails: List[str] = field(default_factory=list)
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    audit_fallback_dir: str = "./logs"
    csrf_token_ttl_seconds: int = 3600
    max_request_size: int = MB
    allowed_content_types: Tuple[str, ...] = ALLOWED_CONTENT_TYPES

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod", "staging")

    @property
    def audit_fallback_path(self) -> str:
        return os.path.join(self.audit_fallback_dir, "audit_fallback.jsonl")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        settings = cls(
            environment=os.getenv("REQGUARD_ENV", "development"),
            allowed_origins=_split_list(os.getenv("ALLOWED_ORIGINS", DEFAULT_ORIGINS)),
            redis_url=os.getenv("REDIS_URL") or None,
            database_url=os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./reqguard.db"),
            slack_webhook_url=os.getenv("SLACK_WEBHOOK_URL") or None,
            alert_emails=_split_list(os.getenv("ALERT_EMAIL", "")),
            smtp_host=os.getenv("SMTP_HOST") or None,
            smtp_port=int(os.getenv("SMTP_PORT", "587")),
            audit_fallback_dir=os.getenv("AUDIT_FALLBACK_DIR", "./logs"),
            csrf_token_ttl_seconds=int(os.getenv("CSRF_TOKEN_TTL_SECONDS", "3600")),
            max_request_size=int(os.getenv("MAX_REQUEST_SIZE", str(MB))),
        )
        if "*" in settings.allowed_origins:
            logger.warning(
                "Origin wildcard detected! Origin checks will reject every request.",
                origins=settings.allowed_origins,
            )
        return settings


@dataclass
class RouteSecurityConfig:
    """
    Security policy for one route.

    Unset fields disable the corresponding check; use the presets for the
    common route families.
    """
    rate_limit_category: Optional[RateLimitCategory] = None
    require_auth: bool = False
    allowed_roles: Optional[List[str]] = None
    enable_csrf: bool = False
    validate_origin: bool = False
    max_request_size: Optional[int] = None
    sanitize_input: bool = False
    log_requests: bool = False

    @classmethod
    def auth(cls) -> "RouteSecurityConfig":
        return cls(
            rate_limit_category=RateLimitCategory.AUTH,
            require_auth=False,
            enable_csrf=True,
            validate_origin=True,
            max_request_size=1 * MB,
            sanitize_input=True,
            log_requests=True,
        )

    @classmethod
    def booking(cls) -> "RouteSecurityConfig":
        return cls(
            rate_limit_category=RateLimitCategory.BOOKING,
            require_auth=True,
            allowed_roles=["customer", "admin"],
            enable_csrf=True,
            validate_origin=True,
            max_request_size=5 * MB,
            sanitize_input=True,
            log_requests=True,
        )

    @classmethod
    def admin(cls) -> "RouteSecurityConfig":
        return cls(
            rate_limit_category=RateLimitCategory.ADMIN,
            require_auth=True,
            allowed_roles=["admin"],
            enable_csrf=True,
            validate_origin=True,
            max_request_size=10 * MB,
            sanitize_input=True,
            log_requests=True,
        )

    @classmethod
    def provider(cls) -> "RouteSecurityConfig":
        return cls(
            rate_limit_category=RateLimitCategory.API,
            require_auth=True,
            allowed_roles=["provider", "admin"],
            enable_csrf=True,
            validate_origin=True,
            max_request_size=10 * MB,
            sanitize_input=True,
            log_requests=True,
        )

    @classmethod
    def public(cls) -> "RouteSecurityConfig":
        return cls(
            rate_limit_category=RateLimitCategory.SEARCH,
            require_auth=False,
            enable_csrf=False,
            validate_origin=False,
            max_request_size=1 * MB,
            sanitize_input=True,
            log_requests=False,
        )
