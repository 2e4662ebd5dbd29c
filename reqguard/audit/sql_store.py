"""
SQL Audit Store
===============
SQLAlchemy-backed audit trail (``audit_logs``) and deduplicated error
records (``error_logs``).

Error dedup never reads then writes: the count is bumped with a single
``UPDATE ... SET count = count + 1``; only when no row exists is one
inserted, and a lost insert race (unique violation on fingerprint) falls
back to the UPDATE.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    case,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from reqguard.database import Base, session_scope
from .event_types import AuditEventType, AuditLogLevel
from .models import AuditEvent, AuditFilter, ErrorRecord
from .store import AuditStore

logger = structlog.get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything is stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AuditLogRow(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    level: Mapped[str] = mapped_column(String(16))
    event_type: Mapped[str] = mapped_column(String(64))
    action: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text)
    success: Mapped[bool] = mapped_column(Boolean)
    user_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    user_role: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    target_resource_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    target_resource_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    event_metadata: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    __table_args__ = (
        Index("ix_audit_logs_user_id", "user_id"),
        Index("ix_audit_logs_event_type", "event_type"),
        Index("ix_audit_logs_level", "level"),
        Index("ix_audit_logs_user_ts", "user_id", "timestamp"),
        Index("ix_audit_logs_type_ts", "event_type", "timestamp"),
        Index("ix_audit_logs_level_ts", "level", "timestamp"),
    )


class ErrorLogRow(Base):
    __tablename__ = "error_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    fingerprint: Mapped[str] = mapped_column(String(64), unique=True)
    level: Mapped[str] = mapped_column(String(16), index=True)
    message: Mapped[str] = mapped_column(Text)
    component: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    category: Mapped[str] = mapped_column(String(32))
    stack: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    context: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    count: Mapped[int] = mapped_column(Integer, default=1)
    first_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


def _event_from_row(row: AuditLogRow) -> AuditEvent:
    return AuditEvent(
        id=row.id,
        timestamp=_as_utc(row.timestamp),
        level=AuditLogLevel(row.level),
        event_type=AuditEventType(row.event_type),
        action=row.action,
        description=row.description,
        success=row.success,
        user_id=row.user_id,
        user_role=row.user_role,
        target_resource_type=row.target_resource_type,
        target_resource_id=row.target_resource_id,
        error_message=row.error_message,
        metadata=dict(row.event_metadata or {}),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        request_id=row.request_id,
        session_id=row.session_id,
    )


def _record_from_row(row: ErrorLogRow) -> ErrorRecord:
    return ErrorRecord(
        id=row.id,
        fingerprint=row.fingerprint,
        level=AuditLogLevel(row.level),
        message=row.message,
        component=row.component,
        category=row.category,
        first_seen=_as_utc(row.first_seen),
        last_seen=_as_utc(row.last_seen),
        count=row.count,
        stack=row.stack,
        context=dict(row.context or {}),
    )


class SQLAlchemyAuditStore(AuditStore):
    """Audit store on any async SQLAlchemy dialect."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """
        Args:
            session_factory: From reqguard.database.create_session_factory()
        """
        self._session_factory = session_factory

    async def append(self, event: AuditEvent) -> None:
        async with session_scope(self._session_factory) as session:
            session.add(AuditLogRow(
                id=event.id,
                timestamp=event.timestamp,
                level=event.level.value,
                event_type=event.event_type.value,
                action=event.action,
                description=event.description,
                success=event.success,
                user_id=event.user_id,
                user_role=event.user_role,
                target_resource_type=event.target_resource_type,
                target_resource_id=event.target_resource_id,
                error_message=event.error_message,
                event_metadata=event.metadata,
                ip_address=event.ip_address,
                user_agent=event.user_agent,
                request_id=event.request_id,
                session_id=event.session_id,
            ))

    async def query(self, audit_filter: AuditFilter) -> List[AuditEvent]:
        stmt = select(AuditLogRow)
        if audit_filter.user_id is not None:
            stmt = stmt.where(AuditLogRow.user_id == audit_filter.user_id)
        if audit_filter.event_type is not None:
            stmt = stmt.where(AuditLogRow.event_type == AuditEventType(audit_filter.event_type).value)
        if audit_filter.level is not None:
            stmt = stmt.where(AuditLogRow.level == AuditLogLevel(audit_filter.level).value)
        if audit_filter.start_date is not None:
            stmt = stmt.where(AuditLogRow.timestamp >= audit_filter.start_date)
        if audit_filter.end_date is not None:
            stmt = stmt.where(AuditLogRow.timestamp <= audit_filter.end_date)
        if audit_filter.success is not None:
            stmt = stmt.where(AuditLogRow.success == audit_filter.success)
        stmt = (
            stmt.order_by(AuditLogRow.timestamp.desc(), AuditLogRow.id.desc())
            .limit(audit_filter.limit)
            .offset(audit_filter.offset)
        )

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_event_from_row(row) for row in rows]

    async def events_between(self, start: datetime, end: datetime) -> List[AuditEvent]:
        stmt = select(AuditLogRow).where(
            AuditLogRow.timestamp >= start,
            AuditLogRow.timestamp <= end,
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_event_from_row(row) for row in rows]

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
        values: Dict[str, Any] = {
            "count": ErrorLogRow.count + 1,
            "last_seen": case(
                (ErrorLogRow.last_seen < seen_at, seen_at),
                else_=ErrorLogRow.last_seen,
            ),
        }
        if context:
            values["context"] = context

        bump = (
            update(ErrorLogRow)
            .where(ErrorLogRow.fingerprint == fingerprint)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        try:
            return await self._bump_or_insert(
                bump, fingerprint, level, message, category, seen_at, component, stack, context
            )
        except IntegrityError:
            # Another writer inserted the fingerprint first; bump instead
            logger.debug("error_log_insert_race", fingerprint=fingerprint)
            return await self._bump_or_insert(
                bump, fingerprint, level, message, category, seen_at, component, stack, context
            )

    async def _bump_or_insert(
        self,
        bump,
        fingerprint: str,
        level: AuditLogLevel,
        message: str,
        category: str,
        seen_at: datetime,
        component: Optional[str],
        stack: Optional[str],
        context: Optional[Dict[str, Any]],
    ) -> ErrorRecord:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(bump)
            if result.rowcount == 0:
                session.add(ErrorLogRow(
                    id=str(uuid.uuid4()),
                    fingerprint=fingerprint,
                    level=AuditLogLevel(level).value,
                    message=message,
                    component=component,
                    category=category,
                    stack=stack,
                    context=dict(context or {}),
                    count=1,
                    first_seen=seen_at,
                    last_seen=seen_at,
                ))
                await session.flush()
            row = (await session.execute(
                select(ErrorLogRow).where(ErrorLogRow.fingerprint == fingerprint)
            )).scalar_one()
            return _record_from_row(row)

    async def list_errors(
        self,
        level: Optional[AuditLogLevel] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ErrorRecord]:
        stmt = select(ErrorLogRow)
        if level is not None:
            stmt = stmt.where(ErrorLogRow.level == AuditLogLevel(level).value)
        stmt = stmt.order_by(ErrorLogRow.last_seen.desc()).limit(limit).offset(offset)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_record_from_row(row) for row in rows]
