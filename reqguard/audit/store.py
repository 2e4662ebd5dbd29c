"""
Audit Store
===========
Storage interface for audit events and deduplicated error records, plus an
in-memory implementation for single-process use and tests.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import replace
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from .event_types import AuditLogLevel
from .models import AuditEvent, AuditFilter, ErrorRecord


def sort_newest_first(events: List[AuditEvent]) -> List[AuditEvent]:
    """Order by timestamp descending, ties broken by id descending."""
    return sorted(events, key=lambda e: (e.timestamp, e.id), reverse=True)


class AuditStore(ABC):
    """Append-only audit trail with fingerprint-deduplicated error rows."""

    @abstractmethod
    async def append(self, event: AuditEvent) -> None:
        ...

    @abstractmethod
    async def query(self, audit_filter: AuditFilter) -> List[AuditEvent]:
        """Return one page of matching events, newest first."""

    @abstractmethod
    async def events_between(self, start: datetime, end: datetime) -> List[AuditEvent]:
        """Return every event with start <= timestamp <= end."""

    @abstractmethod
    async def record_error(
        self,
        fingerprint: str,
        level: AuditLogLevel,
        message: str,
        category: str,
        seen_at: datetime,
        component: Optional[str] = None,
        stack: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ErrorRecord:
        """
        Insert a new error row or bump the count of the existing one.

        Must be atomic per fingerprint: N concurrent calls leave count == N.
        """

    @abstractmethod
    async def list_errors(
        self,
        level: Optional[AuditLogLevel] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ErrorRecord]:
        """Return error rows, most recently seen first."""

    async def close(self) -> None:
        pass


class InMemoryAuditStore(AuditStore):
    """
    Bounded in-memory audit store.

    Oldest events are dropped once `max_events` is reached. Error rows are
    kept per fingerprint without a bound.
    """

    def __init__(self, max_events: int = 10000):
        self.max_events = max_events
        self._events: Deque[AuditEvent] = deque(maxlen=max_events)
        self._errors: Dict[str, ErrorRecord] = {}
        self._lock = asyncio.Lock()

    async def append(self, event: AuditEvent) -> None:
        async with self._lock:
            self._events.append(event)

    async def query(self, audit_filter: AuditFilter) -> List[AuditEvent]:
        async with self._lock:
            matched = [e for e in self._events if audit_filter.matches(e)]
        matched = sort_newest_first(matched)
        return matched[audit_filter.offset:audit_filter.offset + audit_filter.limit]

    async def events_between(self, start: datetime, end: datetime) -> List[AuditEvent]:
        async with self._lock:
            return [e for e in self._events if start <= e.timestamp <= end]

    async def record_error(
        self,
        fingerprint: str,
        level: AuditLogLevel,
        message: str,
        category: str,
        seen_at: datetime,
        component: Optional[str] = None,
        stack: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ErrorRecord:
        async with self._lock:
            record = self._errors.get(fingerprint)
            if record is None:
                record = ErrorRecord(
                    id=str(uuid.uuid4()),
                    fingerprint=fingerprint,
                    level=level,
                    message=message,
                    component=component,
                    category=category,
                    first_seen=seen_at,
                    last_seen=seen_at,
                    count=1,
                    stack=stack,
                    context=dict(context or {}),
                )
                self._errors[fingerprint] = record
            else:
                record.count += 1
                record.last_seen = max(record.last_seen, seen_at)
                if context:
                    record.context = dict(context)
            return replace(record, context=dict(record.context))

    async def list_errors(
        self,
        level: Optional[AuditLogLevel] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ErrorRecord]:
        async with self._lock:
            records = [
                r for r in self._errors.values()
                if level is None or r.level == AuditLogLevel(level)
            ]
        records.sort(key=lambda r: r.last_seen, reverse=True)
        return records[offset:offset + limit]
