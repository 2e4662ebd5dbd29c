"""
Pipeline Factory
================
Builds a SecurityPipeline and its collaborators from Settings.

Usage:
    components = await build_pipeline(Settings.from_env(), session_provider=sessions)
    app = Starlette(
        routes=[...components.pipeline.as_starlette_endpoint(...)...],
        on_shutdown=[components.aclose],
    )

With REDIS_URL set, rate limit counters and CSRF hashes live in Redis;
otherwise they are kept in process memory. Audit rows always go to
DATABASE_URL.
"""

from dataclasses import dataclass
from typing import Any, List, Optional

import redis.asyncio as redis
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from reqguard.alerts import AlertChannel, AlertDispatcher, EmailAlertChannel, SlackWebhookChannel
from reqguard.audit import AuditLogger, SQLAlchemyAuditStore
from reqguard.config import Settings
from reqguard.csrf import CSRFProtection, InMemoryCSRFHashStore, RedisCSRFHashStore
from reqguard.database import close_engine, create_async_engine, create_session_factory, create_tables
from reqguard.pipeline import SecurityPipeline
from reqguard.rate_limit import CategoryRateLimiter, InMemoryRateLimiter, RedisRateLimiter
from reqguard.request import SessionProvider

logger = structlog.get_logger(__name__)


@dataclass
class PipelineComponents:
    """A built pipeline plus the resources to release at shutdown."""
    pipeline: SecurityPipeline
    alerts: AlertDispatcher
    engine: AsyncEngine
    redis: Optional[Any] = None

    async def aclose(self) -> None:
        await self.alerts.aclose()
        await close_engine(self.engine)
        if self.redis is not None:
            await self.redis.aclose()


def build_alert_dispatcher(settings: Settings) -> AlertDispatcher:
    """Slack and email channels for whichever destinations are configured."""
    channels: List[AlertChannel] = []
    if settings.slack_webhook_url:
        channels.append(SlackWebhookChannel(settings.slack_webhook_url))
    if settings.alert_emails:
        if settings.smtp_host:
            channels.append(EmailAlertChannel(
                settings.smtp_host,
                settings.alert_emails,
                smtp_port=settings.smtp_port,
            ))
        else:
            logger.warning("ALERT_EMAIL set without SMTP_HOST, email alerts disabled")
    return AlertDispatcher(channels)


async def build_pipeline(
    settings: Optional[Settings] = None,
    session_provider: Optional[SessionProvider] = None,
    create_schema: bool = True,
) -> PipelineComponents:
    """
    Wire a pipeline from settings.

    Args:
        settings: Defaults to Settings.from_env()
        session_provider: Identity lookup for routes that require auth
        create_schema: Create the audit tables if missing

    Returns:
        PipelineComponents; call aclose() at shutdown
    """
    settings = settings or Settings.from_env()

    redis_client = None
    if settings.redis_url:
        redis_client = redis.from_url(settings.redis_url, decode_responses=True)
        backend = RedisRateLimiter(redis_client)
        hash_store = RedisCSRFHashStore(redis_client, ttl_seconds=settings.csrf_token_ttl_seconds)
    else:
        backend = InMemoryRateLimiter()
        hash_store = InMemoryCSRFHashStore(ttl_seconds=settings.csrf_token_ttl_seconds)

    engine = create_async_engine(settings.database_url)
    if create_schema:
        await create_tables(engine)

    alerts = build_alert_dispatcher(settings)
    audit = AuditLogger(
        SQLAlchemyAuditStore(create_session_factory(engine)),
        alerts=alerts,
        fallback_path=settings.audit_fallback_path,
    )

    pipeline = SecurityPipeline(
        CategoryRateLimiter(backend),
        audit,
        CSRFProtection(hash_store),
        settings,
        session_provider=session_provider,
    )
    logger.info(
        "Security pipeline built",
        environment=settings.environment,
        shared_counters=redis_client is not None,
        alert_channels=[c.name for c in alerts.channels],
    )
    return PipelineComponents(pipeline=pipeline, alerts=alerts, engine=engine, redis=redis_client)
