"""Service container wiring settings to collaborators."""

import logging
from dataclasses import dataclass, field

import httpx
from fastapi import Request
from redis import asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.ledger_console.access import AccessResolver
from backend.ledger_console.audit import AuditRecorder
from backend.ledger_console.config import Settings
from backend.ledger_console.csrf import CsrfGuard
from backend.ledger_console.db.engine import (
    create_async_engine_from_settings,
    create_session_factory,
)
from backend.ledger_console.db.inmemory import (
    InMemoryAuditSink,
    InMemoryMembershipStore,
    InMemoryRateLimiter,
)
from backend.ledger_console.db.repositories import (
    AuditSink,
    MembershipStore,
    RateLimiter,
    RateLimitRule,
)
from backend.ledger_console.db.sql_repositories import SqlAuditSink, SqlMembershipStore
from backend.ledger_console.ledger_engine import HttpLedgerEngine, LedgerEngine
from backend.ledger_console.middleware.ratelimit import (
    RateLimitMiddleware,
    create_default_route_limits,
)
from backend.ledger_console.notifications import (
    HttpNotificationSender,
    LoggingNotificationSender,
    NotificationDispatcher,
    NotificationSender,
)
from backend.ledger_console.pipeline import RequestPipeline
from backend.ledger_console.ratelimit import RedisRateLimiter
from backend.ledger_console.session import HttpIdentityProvider, IdentityProvider, SessionRefresher

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Collaborators shared by the pipeline and the handlers."""

    settings: Settings
    identity_provider: IdentityProvider
    membership_store: MembershipStore
    audit_sink: AuditSink
    rate_limiter: RateLimiter
    ledger_engine: LedgerEngine
    notification_sender: NotificationSender
    http_clients: list[httpx.AsyncClient] = field(default_factory=list)
    redis_client: aioredis.Redis | None = None
    session_factory: async_sessionmaker[AsyncSession] | None = None

    def __post_init__(self) -> None:
        settings = self.settings
        self.csrf = CsrfGuard(
            secure=settings.is_production, allowed_origins=settings.allowed_origins
        )
        self.refresher = SessionRefresher(
            self.identity_provider,
            cookie_name=settings.session_cookie_name,
            chunk_size=settings.session_chunk_size,
            max_age=settings.session_cookie_max_age,
            shared_domain=settings.shared_cookie_domain,
            secure=settings.is_production,
        )
        self.access = AccessResolver(
            self.membership_store,
            conceal_inaccessible=settings.conceal_inaccessible_ledgers,
        )
        self.audit = AuditRecorder(
            self.audit_sink,
            max_attempts=settings.audit_max_attempts,
            backoff_ms=settings.audit_retry_backoff_ms,
        )
        self.notifications = NotificationDispatcher(self.notification_sender)
        self.rate_limit = RateLimitMiddleware(
            self.rate_limiter,
            create_default_route_limits(),
            RateLimitRule(
                requests=settings.default_rate_limit,
                window_seconds=settings.rate_limit_window_seconds,
            ),
        )

    def build_pipeline(self) -> RequestPipeline:
        return RequestPipeline(
            refresher=self.refresher,
            csrf=self.csrf,
            rate_limiter=self.rate_limit,
            audit=self.audit,
            force_readonly=self.settings.force_readonly,
            max_body_size=self.settings.max_body_size,
        )

    async def aclose(self) -> None:
        """Finish background work and release connections."""
        await self.audit.drain()
        await self.notifications.drain()
        for client in self.http_clients:
            await client.aclose()
        if self.redis_client is not None:
            await self.redis_client.aclose()


def build_services(settings: Settings) -> Services:
    """Build production services from settings.

    Without DATABASE_URL the membership store and audit sink are in-memory;
    without REDIS_URL the rate limiter is in-memory.
    """
    identity_client = httpx.AsyncClient(
        base_url=settings.identity_provider_url,
        timeout=settings.identity_timeout_seconds,
    )
    engine_client = httpx.AsyncClient(
        base_url=settings.ledger_engine_url,
        timeout=settings.ledger_engine_timeout_seconds,
    )
    http_clients = [identity_client, engine_client]

    membership_store: MembershipStore
    audit_sink: AuditSink
    session_factory = None
    if settings.database_url:
        session_factory = create_session_factory(create_async_engine_from_settings(settings))
        membership_store = SqlMembershipStore(session_factory)
        audit_sink = SqlAuditSink(session_factory)
    else:
        logger.warning("DATABASE_URL not set - using in-memory membership store and audit sink")
        membership_store = InMemoryMembershipStore()
        audit_sink = InMemoryAuditSink()

    redis_client = None
    rate_limiter: RateLimiter
    if settings.redis_url:
        redis_client = aioredis.from_url(settings.redis_url, decode_responses=True)
        rate_limiter = RedisRateLimiter(redis_client)
    else:
        rate_limiter = InMemoryRateLimiter()

    notification_sender: NotificationSender
    if settings.notification_url:
        notification_client = httpx.AsyncClient(
            base_url=settings.notification_url,
            timeout=settings.notification_timeout_seconds,
        )
        http_clients.append(notification_client)
        notification_sender = HttpNotificationSender(notification_client)
    else:
        notification_sender = LoggingNotificationSender()

    return Services(
        settings=settings,
        identity_provider=HttpIdentityProvider(identity_client, settings.identity_provider_api_key),
        membership_store=membership_store,
        audit_sink=audit_sink,
        rate_limiter=rate_limiter,
        ledger_engine=HttpLedgerEngine(engine_client, settings.internal_function_token),
        notification_sender=notification_sender,
        http_clients=http_clients,
        redis_client=redis_client,
        session_factory=session_factory,
    )


def get_services(request: Request) -> Services:
    """Services attached to the running application."""
    services: Services = request.app.state.services
    return services
