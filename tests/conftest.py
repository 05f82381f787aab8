"""Shared pytest fixtures for all test suites."""

import json
from collections.abc import AsyncGenerator
from typing import Any

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.testclient import TestClient

from backend.ledger_console.config import Settings
from backend.ledger_console.csrf import CSRF_COOKIE_NAME, CSRF_HEADER_NAME
from backend.ledger_console.db.context import Identity
from backend.ledger_console.db.inmemory import (
    InMemoryAuditSink,
    InMemoryMembershipStore,
    InMemoryRateLimiter,
)
from backend.ledger_console.db.repositories import MembershipRole
from backend.ledger_console.ledger_engine import LedgerEngineResult
from backend.ledger_console.main import create_app
from backend.ledger_console.services import Services
from backend.ledger_console.session import (
    IdentityProviderError,
    InvalidSessionError,
    ProviderSession,
)

SESSION_COOKIE = "sb-auth-token"
CSRF_TOKEN = "a" * 64

ORG_ID = "org_1"
OTHER_ORG_ID = "org_2"
LEDGER_ID = "ledger_1"
OTHER_LEDGER_ID = "ledger_2"

OWNER = Identity(user_id="user_owner", email="owner@example.com")
MEMBER = Identity(user_id="user_member", email="member@example.com")
VIEWER = Identity(user_id="user_viewer", email="viewer@example.com")
OUTSIDER = Identity(user_id="user_outsider", email="outsider@example.com")
READONLY_MEMBER = Identity(user_id="user_readonly", email="ro@example.com", readonly=True)


class FakeIdentityProvider:
    """Identity provider keyed by session token."""

    def __init__(self) -> None:
        self.sessions: dict[str, Identity] = {}
        self.rotations: dict[str, str] = {}
        self.unavailable = False
        self.calls: list[str] = []

    def add_session(self, token: str, identity: Identity) -> None:
        self.sessions[token] = identity

    async def refresh_session(self, session_token: str) -> ProviderSession:
        self.calls.append(session_token)
        if self.unavailable:
            raise IdentityProviderError("connection refused")
        identity = self.sessions.get(session_token)
        if identity is None:
            raise InvalidSessionError("unknown session")
        return ProviderSession(identity=identity, session_token=self.rotations.get(session_token))


class FakeLedgerEngine:
    """Ledger engine that records calls and answers from a table."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.responses: dict[str, LedgerEngineResult] = {}
        self.error: Exception | None = None

    async def call(
        self,
        action: str,
        *,
        ledger_id: str,
        method: str = "POST",
        body: dict[str, Any] | None = None,
        query: dict[str, str] | None = None,
        idempotency_key: str | None = None,
    ) -> LedgerEngineResult:
        self.calls.append(
            {
                "action": action,
                "ledger_id": ledger_id,
                "method": method,
                "body": body,
                "query": query,
                "idempotency_key": idempotency_key,
            }
        )
        if self.error is not None:
            raise self.error
        return self.responses.get(
            action, json_result(200, {"success": True, "transaction_id": "txn_1"})
        )


class FakeNotificationSender:
    """Notification sender that records sends."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    async def send(self, event: str, recipient: str, payload: dict[str, Any]) -> None:
        self.sent.append((event, recipient, payload))


def json_result(status_code: int, payload: dict[str, Any]) -> LedgerEngineResult:
    """Build a JSON ledger engine result."""
    return LedgerEngineResult(
        status_code=status_code,
        content=json.dumps(payload).encode(),
        content_type="application/json",
    )


def request_headers(
    session: str | None = None,
    *,
    csrf: bool = True,
    extra_cookies: dict[str, str] | None = None,
) -> dict[str, str]:
    """Headers for a browser request carrying a session and the CSRF pair."""
    cookies: dict[str, str] = dict(extra_cookies or {})
    headers: dict[str, str] = {}
    if session is not None:
        cookies[SESSION_COOKIE] = session
    if csrf:
        cookies[CSRF_COOKIE_NAME] = CSRF_TOKEN
        headers[CSRF_HEADER_NAME] = CSRF_TOKEN
    if cookies:
        headers["cookie"] = "; ".join(f"{name}={value}" for name, value in cookies.items())
    return headers


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    provider = FakeIdentityProvider()
    provider.add_session("owner-session", OWNER)
    provider.add_session("member-session", MEMBER)
    provider.add_session("viewer-session", VIEWER)
    provider.add_session("outsider-session", OUTSIDER)
    provider.add_session("readonly-session", READONLY_MEMBER)
    return provider


@pytest.fixture
def membership_store() -> InMemoryMembershipStore:
    store = InMemoryMembershipStore()
    store.add_ledger(LEDGER_ID, ORG_ID, livemode=False, ledger_group_id="group_1")
    store.add_ledger(OTHER_LEDGER_ID, OTHER_ORG_ID)
    store.add_membership(ORG_ID, OWNER.user_id, MembershipRole.owner)
    store.add_membership(ORG_ID, MEMBER.user_id, MembershipRole.member)
    store.add_membership(ORG_ID, VIEWER.user_id, MembershipRole.viewer)
    store.add_membership(ORG_ID, READONLY_MEMBER.user_id, MembershipRole.member)
    store.add_membership(OTHER_ORG_ID, OUTSIDER.user_id, MembershipRole.owner)
    return store


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def ledger_engine() -> FakeLedgerEngine:
    return FakeLedgerEngine()


@pytest.fixture
def notification_sender() -> FakeNotificationSender:
    return FakeNotificationSender()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        database_url=None,
        redis_url=None,
        internal_function_token="test-internal-token",
        audit_retry_backoff_ms=1,
    )


@pytest.fixture
def services(
    settings: Settings,
    identity_provider: FakeIdentityProvider,
    membership_store: InMemoryMembershipStore,
    audit_sink: InMemoryAuditSink,
    ledger_engine: FakeLedgerEngine,
    notification_sender: FakeNotificationSender,
) -> Services:
    return Services(
        settings=settings,
        identity_provider=identity_provider,
        membership_store=membership_store,
        audit_sink=audit_sink,
        rate_limiter=InMemoryRateLimiter(),
        ledger_engine=ledger_engine,
        notification_sender=notification_sender,
    )


@pytest.fixture
def app(services: Services) -> FastAPI:
    return create_app(services)


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Create test client."""
    return TestClient(app, base_url="http://localhost")


@pytest_asyncio.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Client sharing the test's event loop, so background audit writes can be drained."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://localhost") as ac:
        yield ac


@pytest.fixture
def auth_headers() -> Any:
    """Factory for request headers: ``auth_headers("owner-session")``."""
    return request_headers
