"""
Reqguard Core Library
=====================
Request security pipeline: rate limiting, origin and CSRF checks, input
sanitization, audit trail and error alerting for web services.
"""

__version__ = "0.1.0"

# Configuration
from reqguard.config import Settings, RouteSecurityConfig, ALLOWED_CONTENT_TYPES
from reqguard.log_config import setup_logging

# Database
from reqguard.database import (
    Base,
    create_async_engine,
    create_session_factory,
    create_tables,
    close_engine,
)

# Requests and responses
from reqguard.request import SecurityRequest, SessionIdentity, SessionProvider
from reqguard.envelope import APIResponse, PipelineResponse, create_api_response
from reqguard.security_headers import (
    SECURITY_HEADERS,
    SecurityHeadersMiddleware,
    apply_security_headers,
    get_rate_limit_headers,
)

# Errors
from reqguard.exceptions import (
    FieldError,
    SecurityPipelineError,
    RateLimitExceeded,
    InvalidOrigin,
    CSRFValidationFailed,
    PayloadTooLarge,
    UnsupportedContentType,
    ValidationFailed,
    Unauthorized,
    Forbidden,
    InternalError,
)

# Patterns and sanitization
from reqguard.patterns import PatternCategory, get_patterns
from reqguard.sanitizer import (
    validate_input,
    sanitize_input,
    sanitize_object_recursively,
    sanitize_string,
    validate_request_body,
    validate_query_params,
    safe_string,
)

# CSRF
from reqguard.csrf import (
    CSRFProtection,
    CSRFPair,
    InMemoryCSRFHashStore,
    RedisCSRFHashStore,
    generate_token,
    generate_token_hash,
    validate_token,
)

# Rate Limiting
from reqguard.rate_limit import (
    CategoryRateLimiter,
    InMemoryRateLimiter,
    RedisRateLimiter,
    SlidingWindowLimiter,
    RateLimitCategory,
    RateLimitInfo,
    RateLimitResult,
)

# Audit
from reqguard.audit import (
    AuditEventType,
    AuditLogLevel,
    AuditEvent,
    AuditFilter,
    AuditStats,
    ErrorRecord,
    AuditLogger,
    InMemoryAuditStore,
    SQLAlchemyAuditStore,
)

# Alerts
from reqguard.alerts import (
    AlertDispatcher,
    SlackWebhookChannel,
    EmailAlertChannel,
    MonitoringSnapshot,
    format_alert_digest,
    should_alert,
)

# Pipeline
from reqguard.pipeline import SecurityPipeline
from reqguard.factory import PipelineComponents, build_pipeline

__all__ = [
    "__version__",
    # Configuration
    "Settings",
    "RouteSecurityConfig",
    "ALLOWED_CONTENT_TYPES",
    "setup_logging",
    # Database
    "Base",
    "create_async_engine",
    "create_session_factory",
    "create_tables",
    "close_engine",
    # Requests and responses
    "SecurityRequest",
    "SessionIdentity",
    "SessionProvider",
    "APIResponse",
    "PipelineResponse",
    "create_api_response",
    "SECURITY_HEADERS",
    "SecurityHeadersMiddleware",
    "apply_security_headers",
    "get_rate_limit_headers",
    # Errors
    "FieldError",
    "SecurityPipelineError",
    "RateLimitExceeded",
    "InvalidOrigin",
    "CSRFValidationFailed",
    "PayloadTooLarge",
    "UnsupportedContentType",
    "ValidationFailed",
    "Unauthorized",
    "Forbidden",
    "InternalError",
    # Patterns and sanitization
    "PatternCategory",
    "get_patterns",
    "validate_input",
    "sanitize_input",
    "sanitize_object_recursively",
    "sanitize_string",
    "validate_request_body",
    "validate_query_params",
    "safe_string",
    # CSRF
    "CSRFProtection",
    "CSRFPair",
    "InMemoryCSRFHashStore",
    "RedisCSRFHashStore",
    "generate_token",
    "generate_token_hash",
    "validate_token",
    # Rate Limiting
    "CategoryRateLimiter",
    "InMemoryRateLimiter",
    "RedisRateLimiter",
    "SlidingWindowLimiter",
    "RateLimitCategory",
    "RateLimitInfo",
    "RateLimitResult",
    # Audit
    "AuditEventType",
    "AuditLogLevel",
    "AuditEvent",
    "AuditFilter",
    "AuditStats",
    "ErrorRecord",
    "AuditLogger",
    "InMemoryAuditStore",
    "SQLAlchemyAuditStore",
    # Alerts
    "AlertDispatcher",
    "SlackWebhookChannel",
    "EmailAlertChannel",
    "MonitoringSnapshot",
    "format_alert_digest",
    "should_alert",
    # Pipeline
    "SecurityPipeline",
    "PipelineComponents",
    "build_pipeline",
]
