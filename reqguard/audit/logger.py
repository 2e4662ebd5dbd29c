"""
Audit Logger
=============
High-level audit logging interface.

Writes never raise into the caller: if the store fails, the event goes to a
local JSONL fallback file and the structured log, and the request carries
on. ERROR and WARNING events are also folded into the fingerprint-deduped
error stream; new ERROR rows are handed to the alert dispatcher.
"""

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import structlog

from reqguard.request import SecurityRequest
from .event_types import AuditEventType, AuditLogLevel
from .fingerprint import categorize_error, compute_fingerprint, first_stack_frame, format_stack
from .models import (
    AuditEvent,
    AuditFilter,
    AuditStats,
    ErrorRecord,
    MetadataPayload,
    TopUser,
    metadata_to_dict,
    redact_sensitive,
)
from .store import AuditStore

logger = structlog.get_logger(__name__)

_DEDUP_LEVELS = (AuditLogLevel.ERROR, AuditLogLevel.WARNING)


class AuditLogger:
    """
    Records audit events to a store.

    Args:
        store: Audit store (in-memory or SQL)
        alerts: Optional AlertDispatcher notified of ERROR-level records
        fallback_path: JSONL file receiving events the store rejected
        service_name: Written into fallback entries
    """

    def __init__(
        self,
        store: AuditStore,
        alerts=None,
        fallback_path: Optional[Union[str, Path]] = None,
        service_name: str = "reqguard",
    ):
        self.store = store
        self.alerts = alerts
        self.fallback_path = Path(fallback_path) if fallback_path else None
        self.service_name = service_name

    async def log(
        self,
        event_type: AuditEventType,
        action: str,
        description: str,
        level: AuditLogLevel = AuditLogLevel.INFO,
        success: bool = True,
        user_id: Optional[str] = None,
        user_role: Optional[str] = None,
        target_resource_type: Optional[str] = None,
        target_resource_id: Optional[str] = None,
        error_message: Optional[str] = None,
        metadata: Union[MetadataPayload, Dict[str, Any], None] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        request_id: Optional[str] = None,
        session_id: Optional[str] = None,
        component: Optional[str] = None,
        stack: Optional[str] = None,
        first_frame: Optional[str] = None,
        dedup: bool = True,
    ) -> AuditEvent:
        """
        Create and store an audit log entry.

        Args:
            event_type: Type of event
            action: Short machine-friendly action name
            description: Human-readable description
            level: Severity
            success: Outcome of the audited operation
            user_id: Acting user
            user_role: Acting user's role
            target_resource_type: Type of affected resource
            target_resource_id: ID of affected resource
            error_message: Failure detail (kept out of responses)
            metadata: Typed payload or plain dict; secret-looking keys are redacted
            ip_address: Client IP address
            user_agent: Client user agent
            request_id: Pipeline request id
            session_id: Caller's session id
            component: Source component, used for error fingerprints
            stack: Stack trace stored on the error record
            first_frame: Innermost stack frame, used for error fingerprints
            dedup: Fold ERROR/WARNING events into the error stream

        Returns:
            The created AuditEvent (returned even if persisting it failed)
        """
        event = AuditEvent(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
            level=AuditLogLevel(level),
            event_type=AuditEventType(event_type),
            action=action,
            description=description,
            success=success,
            user_id=user_id,
            user_role=user_role,
            target_resource_type=target_resource_type,
            target_resource_id=target_resource_id,
            error_message=error_message,
            metadata=redact_sensitive(metadata_to_dict(metadata)),
            ip_address=ip_address,
            user_agent=user_agent,
            request_id=request_id,
            session_id=session_id,
        )

        try:
            await self.store.append(event)
        except Exception as e:
            logger.error(
                "Audit store write failed",
                error=str(e),
                event_id=event.id,
                event_type=event.event_type.value,
            )
            self._log_to_fallback(event.to_dict(), f"store_error: {e}")
        else:
            logger.info(
                "Audit event logged",
                event_id=event.id,
                event_type=event.event_type.value,
                level=event.level.value,
                success=success,
            )

        if dedup and event.level in _DEDUP_LEVELS:
            await self.record_error(
                message=error_message or description,
                level=event.level,
                component=component or event.event_type.value,
                first_frame=first_frame,
                stack=stack,
                context={
                    "event_id": event.id,
                    "event_type": event.event_type.value,
                    "request_id": request_id,
                    "user_id": user_id,
                },
            )

        return event

    async def record_error(
        self,
        message: str,
        level: AuditLogLevel = AuditLogLevel.ERROR,
        component: Optional[str] = None,
        first_frame: Optional[str] = None,
        stack: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        category: Optional[str] = None,
    ) -> Optional[ErrorRecord]:
        """
        Fold an occurrence into the deduplicated error stream.

        Returns:
            The updated ErrorRecord, or None if the store failed
        """
        level = AuditLogLevel(level)
        category = category or categorize_error(message, stack or "")
        fingerprint = compute_fingerprint(message, first_frame, component)

        try:
            record = await self.store.record_error(
                fingerprint=fingerprint,
                level=level,
                message=message,
                category=category,
                seen_at=datetime.now(timezone.utc),
                component=component,
                stack=stack,
                context=redact_sensitive(context or {}),
            )
        except Exception as e:
            logger.error("Error record write failed", error=str(e), fingerprint=fingerprint)
            self._log_to_fallback(
                {"fingerprint": fingerprint, "level": level.value, "message": message, "component": component},
                f"store_error: {e}",
            )
            return None

        if self.alerts is not None and level == AuditLogLevel.ERROR and record.count == 1:
            self.alerts.notify(
                f"[{record.category}] {record.level.value}: {record.message} "
                f"(component={record.component}, fingerprint={record.fingerprint})",
                category=record.category,
            )
        return record

    async def record_exception(
        self,
        exc: BaseException,
        component: str = "api",
        request: Optional[SecurityRequest] = None,
        context: Optional[Dict[str, Any]] = None,
        category: Optional[str] = None,
    ) -> Optional[ErrorRecord]:
        """Record an exception at ERROR, keyed by its innermost frame."""
        context = dict(context or {})
        if request is not None:
            context.setdefault("method", request.method)
            context.setdefault("path", request.path)
            context.setdefault("request_id", request.request_id)
            context.setdefault("user_id", request.user_id)
        stack = format_stack(exc)
        message = str(exc) or type(exc).__name__
        return await self.record_error(
            message=message,
            level=AuditLogLevel.ERROR,
            component=component,
            first_frame=first_stack_frame(exc),
            stack=stack,
            context=context,
            category=category or categorize_error(message, stack, type(exc).__name__),
        )

    def _log_to_fallback(self, event_data: Dict[str, Any], reason: str) -> None:
        """Append to the local JSONL file for later replay."""
        if self.fallback_path is None:
            return
        try:
            self.fallback_path.parent.mkdir(parents=True, exist_ok=True)
            fallback_entry = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "service": self.service_name,
                "fallback_reason": reason,
                "event": event_data,
            }
            with open(self.fallback_path, "a") as f:
                f.write(json.dumps(fallback_entry, default=str) + "\n")
        except OSError as e:
            logger.error("Failed to write audit fallback", error=str(e))

    # ------------------------------------------------------------------
    # Convenience constructors
    # ------------------------------------------------------------------

    async def log_from_request(
        self,
        request: SecurityRequest,
        event_type: AuditEventType,
        action: str,
        description: str,
        **kwargs,
    ) -> AuditEvent:
        """Log with client address, user agent, request and session ids taken from the request."""
        kwargs.setdefault("ip_address", request.client_ip)
        kwargs.setdefault("user_agent", request.user_agent or "unknown")
        kwargs.setdefault("request_id", request.request_id or request.header("x-request-id"))
        kwargs.setdefault("session_id", request.session_id)
        if request.identity is not None:
            kwargs.setdefault("user_id", request.identity.user_id)
            kwargs.setdefault("user_role", request.identity.role)
        return await self.log(event_type, action, description, **kwargs)

    async def _log_maybe_request(self, request: Optional[SecurityRequest], **entry) -> AuditEvent:
        if request is not None:
            event_type = entry.pop("event_type")
            action = entry.pop("action")
            description = entry.pop("description")
            return await self.log_from_request(request, event_type, action, description, **entry)
        return await self.log(**entry)

    async def log_auth(
        self,
        event_type: AuditEventType,
        user_id: Optional[str],
        success: bool,
        request: Optional[SecurityRequest] = None,
        metadata: Union[MetadataPayload, Dict[str, Any], None] = None,
        error_message: Optional[str] = None,
    ) -> AuditEvent:
        """Authentication outcome: INFO on success, WARNING on failure."""
        event_type = AuditEventType(event_type)
        readable = event_type.value.replace("_", " ")
        if not success and error_message is None:
            error_message = f"{readable} failed"
        return await self._log_maybe_request(
            request,
            event_type=event_type,
            action=readable,
            description=f"User {'successfully' if success else 'failed to'} {readable}",
            level=AuditLogLevel.INFO if success else AuditLogLevel.WARNING,
            success=success,
            user_id=user_id,
            metadata=metadata,
            error_message=error_message,
            component="auth",
        )

    async def log_admin_action(
        self,
        admin_user_id: str,
        action: str,
        target_resource_type: str,
        target_resource_id: str,
        success: bool,
        request: Optional[SecurityRequest] = None,
        metadata: Union[MetadataPayload, Dict[str, Any], None] = None,
        error_message: Optional[str] = None,
    ) -> AuditEvent:
        """Administrative action: INFO on success, ERROR on failure."""
        return await self._log_maybe_request(
            request,
            event_type=AuditEventType.ADMIN_ACTION,
            action=action,
            description=f"Admin {action} on {target_resource_type} {target_resource_id}",
            level=AuditLogLevel.INFO if success else AuditLogLevel.ERROR,
            success=success,
            user_id=admin_user_id,
            user_role="admin",
            target_resource_type=target_resource_type,
            target_resource_id=target_resource_id,
            metadata=metadata,
            error_message=error_message,
            component="admin",
        )

    async def log_security_event(
        self,
        event_type: AuditEventType,
        description: str,
        request: Optional[SecurityRequest] = None,
        user_id: Optional[str] = None,
        metadata: Union[MetadataPayload, Dict[str, Any], None] = None,
    ) -> AuditEvent:
        """Security event: always WARNING and unsuccessful."""
        entry: Dict[str, Any] = dict(
            event_type=event_type,
            action="security_event",
            description=description,
            level=AuditLogLevel.WARNING,
            success=False,
            metadata=metadata,
            error_message=description,
            component="security",
        )
        if user_id is not None:
            entry["user_id"] = user_id
        return await self._log_maybe_request(request, **entry)

    async def log_user_registration(
        self,
        user_id: str,
        email: str,
        role: str,
        request: Optional[SecurityRequest] = None,
    ) -> AuditEvent:
        return await self._log_maybe_request(
            request,
            event_type=AuditEventType.USER_CREATED,
            action="user_registration",
            description=f"New {role} user registered with email {email}",
            user_id=user_id,
            metadata={"email": email, "role": role},
        )

    async def log_booking_created(
        self,
        user_id: str,
        booking_id: str,
        service_id: str,
        amount: float,
        request: Optional[SecurityRequest] = None,
    ) -> AuditEvent:
        return await self._log_maybe_request(
            request,
            event_type=AuditEventType.BOOKING_CREATED,
            action="create_booking",
            description=f"User created booking {booking_id} for service {service_id}",
            user_id=user_id,
            target_resource_type="booking",
            target_resource_id=booking_id,
            metadata={"service_id": service_id, "amount": amount},
        )

    async def log_payment_processed(
        self,
        user_id: str,
        payment_id: str,
        amount: float,
        success: bool,
        request: Optional[SecurityRequest] = None,
        error_message: Optional[str] = None,
    ) -> AuditEvent:
        if not success and error_message is None:
            error_message = f"Payment {payment_id} failed"
        return await self._log_maybe_request(
            request,
            event_type=AuditEventType.PAYMENT_PROCESSED if success else AuditEventType.PAYMENT_FAILED,
            action="process_payment",
            description=(
                f"Payment {'processed successfully' if success else 'failed'} "
                f"for amount ${amount}"
            ),
            level=AuditLogLevel.INFO if success else AuditLogLevel.ERROR,
            success=success,
            user_id=user_id,
            target_resource_type="payment",
            target_resource_id=payment_id,
            metadata={"amount": amount, "payment_id": payment_id},
            error_message=error_message,
            component="payment",
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_logs(self, audit_filter: Optional[AuditFilter] = None) -> List[AuditEvent]:
        """Matching events, newest first (default page size 100)."""
        return await self.store.query(audit_filter or AuditFilter())

    async def get_stats(self, start: datetime, end: datetime) -> AuditStats:
        """
        Aggregate events with start <= timestamp <= end.

        Returns:
            AuditStats; failure_rate is 0.0 for an empty window and top_users
            holds at most 10 users ordered by event count, ties broken by
            most recent activity
        """
        events = await self.store.events_between(start, end)

        by_type: Dict[str, int] = {}
        by_level: Dict[str, int] = {}
        user_counts: Dict[str, int] = {}
        user_last_seen: Dict[str, datetime] = {}
        failures = 0

        for event in events:
            by_type[event.event_type.value] = by_type.get(event.event_type.value, 0) + 1
            by_level[event.level.value] = by_level.get(event.level.value, 0) + 1
            if event.user_id:
                user_counts[event.user_id] = user_counts.get(event.user_id, 0) + 1
                last = user_last_seen.get(event.user_id)
                if last is None or event.timestamp > last:
                    user_last_seen[event.user_id] = event.timestamp
            if not event.success:
                failures += 1

        ranked = sorted(
            user_counts,
            key=lambda uid: (user_counts[uid], user_last_seen[uid]),
            reverse=True,
        )[:10]

        return AuditStats(
            total_events=len(events),
            events_by_type=by_type,
            events_by_level=by_level,
            failure_rate=failures / len(events) if events else 0.0,
            top_users=[TopUser(user_id=uid, event_count=user_counts[uid]) for uid in ranked],
        )

    async def get_errors(
        self,
        level: Optional[AuditLogLevel] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ErrorRecord]:
        """Deduplicated error rows, most recently seen first."""
        return await self.store.list_errors(level=level, limit=limit, offset=offset)
