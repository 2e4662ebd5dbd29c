"""
Audit Module
============
Audit trail, deduplicated error records and their stores.
"""

from .event_types import AuditEventType, AuditLogLevel
from .models import (
    AuditEvent,
    AuditFilter,
    AuditStats,
    ErrorMetadata,
    ErrorRecord,
    GenericMetadata,
    RateLimitMetadata,
    RequestMetadata,
    ResponseMetadata,
    SecurityViolationMetadata,
    TopUser,
    redact_sensitive,
)
from .fingerprint import categorize_error, compute_fingerprint
from .store import AuditStore, InMemoryAuditStore
from .sql_store import SQLAlchemyAuditStore
from .logger import AuditLogger

__all__ = [
    # Event types
    "AuditEventType",
    "AuditLogLevel",
    # Models
    "AuditEvent",
    "AuditFilter",
    "AuditStats",
    "ErrorRecord",
    "TopUser",
    "RateLimitMetadata",
    "RequestMetadata",
    "ResponseMetadata",
    "SecurityViolationMetadata",
    "ErrorMetadata",
    "GenericMetadata",
    "redact_sensitive",
    # Fingerprinting
    "compute_fingerprint",
    "categorize_error",
    # Stores
    "AuditStore",
    "InMemoryAuditStore",
    "SQLAlchemyAuditStore",
    # Logger
    "AuditLogger",
]
