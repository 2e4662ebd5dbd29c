"""
Audit Models
=============
Data models for audit log entries, typed metadata payloads, queries and
deduplicated error records.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Type, Union
from dataclasses import dataclass, asdict, field, fields

from .event_types import AuditEventType, AuditLogLevel

SENSITIVE_KEYS = {
    "password",
    "passwd",
    "secret",
    "token",
    "authorization",
    "cookie",
    "api_key",
    "apikey",
    "x-api-key",
    "x-csrf-token",
    "x-csrf-secret",
    "access_token",
    "refresh_token",
    "private_key",
    "credit_card",
    "card_number",
    "cvv",
}
REDACTED = "[REDACTED]"


def redact_sensitive(value: Any, depth: int = 0, max_depth: int = 6) -> Any:
    """Replace values under secret-looking keys before they reach the audit trail."""
    if depth > max_depth:
        return "[TRUNCATED]"
    if isinstance(value, dict):
        return {
            k: REDACTED if isinstance(k, str) and k.lower() in SENSITIVE_KEYS
            else redact_sensitive(v, depth + 1, max_depth)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact_sensitive(v, depth + 1, max_depth) for v in value]
    return value


# ============================================================================
# Metadata payloads
# ============================================================================

@dataclass
class RateLimitMetadata:
    category: str
    limit: int
    remaining: int
    reset_at: int
    client_id: Optional[str] = None
    kind: str = field(default="rate_limit", init=False)


@dataclass
class RequestMetadata:
    method: str
    path: str
    content_type: Optional[str] = None
    content_length: Optional[int] = None
    kind: str = field(default="request", init=False)


@dataclass
class ResponseMetadata:
    method: str
    path: str
    status_code: int
    duration_ms: Optional[float] = None
    kind: str = field(default="response", init=False)


@dataclass
class SecurityViolationMetadata:
    violation: str
    method: str
    path: str
    origin: Optional[str] = None
    detail: Optional[str] = None
    kind: str = field(default="security_violation", init=False)


@dataclass
class ErrorMetadata:
    method: str
    path: str
    error_type: str
    category: str
    fingerprint: Optional[str] = None
    kind: str = field(default="error", init=False)


@dataclass
class GenericMetadata:
    """Free-form payload for events without a dedicated schema."""
    data: Dict[str, Any] = field(default_factory=dict)
    kind: str = field(default="generic", init=False)


MetadataPayload = Union[
    RateLimitMetadata,
    RequestMetadata,
    ResponseMetadata,
    SecurityViolationMetadata,
    ErrorMetadata,
    GenericMetadata,
]

_PAYLOAD_TYPES: Dict[str, Type] = {
    "rate_limit": RateLimitMetadata,
    "request": RequestMetadata,
    "response": ResponseMetadata,
    "security_violation": SecurityViolationMetadata,
    "error": ErrorMetadata,
}


def metadata_to_dict(metadata: Union[MetadataPayload, Dict[str, Any], None]) -> Dict[str, Any]:
    """Flatten a payload (or plain dict) into the stored JSON form."""
    if metadata is None:
        return {}
    if isinstance(metadata, GenericMetadata):
        return {"kind": "generic", **metadata.data}
    if isinstance(metadata, dict):
        return dict(metadata)
    return asdict(metadata)


def parse_metadata(data: Optional[Dict[str, Any]]) -> MetadataPayload:
    """
    Rebuild the typed payload from a stored metadata dict.

    Unknown kinds, missing kinds and dicts that do not fit their declared
    kind come back as GenericMetadata.
    """
    data = dict(data or {})
    kind = data.pop("kind", "generic")
    payload_type = _PAYLOAD_TYPES.get(kind)
    if payload_type is not None:
        names = {f.name for f in fields(payload_type) if f.init}
        if set(data) <= names:
            try:
                return payload_type(**data)
            except TypeError:
                pass
    return GenericMetadata(data=data)


# ============================================================================
# Events
# ============================================================================

@dataclass(frozen=True)
class AuditEvent:
    """An audit log entry. Never mutated after it is written."""
    id: str
    timestamp: datetime
    level: AuditLogLevel
    event_type: AuditEventType
    action: str
    description: str
    success: bool
    user_id: Optional[str] = None
    user_role: Optional[str] = None
    target_resource_type: Optional[str] = None
    target_resource_id: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    session_id: Optional[str] = None

    @property
    def payload(self) -> MetadataPayload:
        return parse_metadata(self.metadata)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        d["level"] = self.level.value
        d["event_type"] = self.event_type.value
        return d


@dataclass
class AuditFilter:
    """Query over the audit trail; results are newest first."""
    user_id: Optional[str] = None
    event_type: Optional[AuditEventType] = None
    level: Optional[AuditLogLevel] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    success: Optional[bool] = None
    limit: int = 100
    offset: int = 0

    def matches(self, event: AuditEvent) -> bool:
        if self.user_id is not None and event.user_id != self.user_id:
            return False
        if self.event_type is not None and event.event_type != AuditEventType(self.event_type):
            return False
        if self.level is not None and event.level != AuditLogLevel(self.level):
            return False
        if self.start_date is not None and event.timestamp < self.start_date:
            return False
        if self.end_date is not None and event.timestamp > self.end_date:
            return False
        if self.success is not None and event.success != self.success:
            return False
        return True


@dataclass
class TopUser:
    user_id: str
    event_count: int


@dataclass
class AuditStats:
    """Aggregates over a time window."""
    total_events: int
    events_by_type: Dict[str, int]
    events_by_level: Dict[str, int]
    failure_rate: float
    top_users: List[TopUser]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# Error records
# ============================================================================

@dataclass
class ErrorRecord:
    """Deduplicated ERROR/WARNING occurrence, one row per fingerprint."""
    id: str
    fingerprint: str
    level: AuditLogLevel
    message: str
    component: Optional[str]
    category: str
    first_seen: datetime
    last_seen: datetime
    count: int = 1
    stack: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["level"] = self.level.value
        d["first_seen"] = self.first_seen.isoformat()
        d["last_seen"] = self.last_seen.isoformat()
        return d
