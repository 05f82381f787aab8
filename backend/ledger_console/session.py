"""Session refresh against the external identity provider.

The session token is opaque. It is stored in one cookie, or split across
``<name>.0``, ``<name>.1``, ... when larger than the chunk size.

Fail-safe rule: if the identity provider cannot be reached or answers with a
transient error, the refresher emits no cookies at all. The response then
matches the untouched passthrough and a provider hiccup cannot clear sessions
for every user. A definitive "invalid session" answer is not swallowed: the
identity is None and the session cookies are cleared.
"""

import ipaddress
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
from starlette.responses import Response

from backend.ledger_console.db.context import Identity
from backend.ledger_console.utils.metrics import identity_failsafe_total

logger = logging.getLogger(__name__)

DEVELOPMENT_HOSTS = frozenset({"localhost", "0.0.0.0"})


class IdentityProviderError(Exception):
    """Transient identity-provider failure (network, timeout, 5xx)."""


class InvalidSessionError(Exception):
    """The identity provider definitively rejected the session."""


@dataclass(frozen=True)
class ProviderSession:
    """Successful verification result."""

    identity: Identity
    session_token: str | None = None


class IdentityProvider(Protocol):
    """Identity provider interface."""

    async def refresh_session(self, session_token: str) -> ProviderSession:
        """Verify and possibly refresh a session.

        Args:
            session_token: Current opaque session token

        Returns:
            Identity plus the refreshed token (None when unchanged)

        Raises:
            InvalidSessionError: Session is definitively invalid
            IdentityProviderError: Provider unreachable or transient failure
        """
        ...


class HttpIdentityProvider:
    """Identity provider reached over HTTP."""

    def __init__(self, client: httpx.AsyncClient, api_key: str) -> None:
        self._client = client
        self._api_key = api_key

    async def refresh_session(self, session_token: str) -> ProviderSession:
        try:
            response = await self._client.post(
                "/session/refresh",
                json={"session": session_token},
                headers={"apikey": self._api_key},
            )
        except httpx.HTTPError as e:
            raise IdentityProviderError(f"{type(e).__name__}: {e}") from e

        if response.status_code in (401, 403):
            raise InvalidSessionError(f"identity provider rejected session ({response.status_code})")

        if response.status_code != 200:
            raise IdentityProviderError(f"identity provider returned {response.status_code}")

        try:
            payload: dict[str, Any] = response.json()
            user = payload["user"]
            identity = Identity(
                user_id=str(user["id"]),
                email=user.get("email"),
                readonly=bool(user.get("readonly", False)),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise IdentityProviderError("malformed identity provider response") from e

        return ProviderSession(identity=identity, session_token=payload.get("session"))


def _strip_port(host: str) -> str:
    if host.startswith("["):
        return host[1:].split("]", 1)[0]
    if host.count(":") == 1:
        return host.split(":", 1)[0]
    return host


def is_development_host(host: str) -> bool:
    """Loopback and local development hosts."""
    hostname = _strip_port(host).lower()
    if hostname in DEVELOPMENT_HOSTS or hostname.endswith(".localhost"):
        return True
    try:
        return ipaddress.ip_address(hostname).is_loopback
    except ValueError:
        return False


def cookie_domain_for(host: str, shared_domain: str | None) -> str | None:
    """Domain attribute for session cookies on a request to ``host``.

    The shared domain and its ``www.`` variant get the leading-dot parent
    domain so both hosts see one session. Development hosts and any other
    host get no domain attribute.
    """
    if not shared_domain or is_development_host(host):
        return None

    hostname = _strip_port(host).lower()
    shared = shared_domain.lower().lstrip(".")
    if hostname in (shared, f"www.{shared}"):
        return f".{shared}"
    return None


def session_cookie_names(cookies: Mapping[str, str], base_name: str) -> list[str]:
    """Names of the session cookies present: the base cookie and/or its chunks."""
    return [
        name
        for name in cookies
        if name == base_name
        or (name.startswith(f"{base_name}.") and name[len(base_name) + 1 :].isdigit())
    ]


def read_session_token(cookies: Mapping[str, str], base_name: str) -> str | None:
    """Reassemble the session token from the base cookie or its chunks."""
    if cookies.get(base_name):
        return cookies[base_name]

    chunks: list[str] = []
    index = 0
    while f"{base_name}.{index}" in cookies:
        chunks.append(cookies[f"{base_name}.{index}"])
        index += 1

    return "".join(chunks) or None


def chunk_value(value: str, chunk_size: int) -> list[str]:
    """Split ``value`` into pieces of at most ``chunk_size`` characters."""
    return [value[i : i + chunk_size] for i in range(0, len(value), chunk_size)] or [""]


@dataclass(frozen=True)
class PendingCookie:
    """A Set-Cookie to emit on the final response."""

    name: str
    value: str
    max_age: int
    domain: str | None
    secure: bool
    delete: bool = False

    def apply(self, response: Response) -> None:
        if self.delete:
            response.delete_cookie(
                self.name,
                path="/",
                domain=self.domain,
                secure=self.secure,
                httponly=True,
                samesite="lax",
            )
            return
        response.set_cookie(
            self.name,
            self.value,
            max_age=self.max_age,
            path="/",
            domain=self.domain,
            secure=self.secure,
            httponly=True,
            samesite="lax",
        )


@dataclass(frozen=True)
class RefreshOutcome:
    """Result of refreshing one request's session."""

    identity: Identity | None
    cookies: list[PendingCookie] = field(default_factory=list)
    failed_safe: bool = False

    def apply(self, response: Response) -> None:
        for cookie in self.cookies:
            cookie.apply(response)


class SessionRefresher:
    """Validates and refreshes the caller's session once per request."""

    def __init__(
        self,
        provider: IdentityProvider,
        *,
        cookie_name: str,
        chunk_size: int,
        max_age: int,
        shared_domain: str | None,
        secure: bool,
    ) -> None:
        self._provider = provider
        self._cookie_name = cookie_name
        self._chunk_size = chunk_size
        self._max_age = max_age
        self._shared_domain = shared_domain
        self._secure = secure

    async def refresh(self, cookies: Mapping[str, str], host: str) -> RefreshOutcome:
        """Refresh the session carried by ``cookies``."""
        token = read_session_token(cookies, self._cookie_name)
        if token is None:
            return RefreshOutcome(identity=None)

        existing = session_cookie_names(cookies, self._cookie_name)
        domain = cookie_domain_for(host, self._shared_domain)

        try:
            result = await self._provider.refresh_session(token)
        except InvalidSessionError as e:
            logger.info("Session invalidated: %s", e)
            return RefreshOutcome(
                identity=None,
                cookies=[self._deletion(name, domain) for name in existing],
            )
        except IdentityProviderError as e:
            logger.warning("Identity provider unavailable, passing request through: %s", e)
            identity_failsafe_total.inc()
            return RefreshOutcome(identity=None, failed_safe=True)

        if not result.session_token or result.session_token == token:
            return RefreshOutcome(identity=result.identity)

        return RefreshOutcome(
            identity=result.identity,
            cookies=self._session_cookies(result.session_token, existing, domain),
        )

    def _session_cookies(
        self, token: str, existing: list[str], domain: str | None
    ) -> list[PendingCookie]:
        chunks = chunk_value(token, self._chunk_size)
        if len(chunks) == 1:
            names = [self._cookie_name]
        else:
            names = [f"{self._cookie_name}.{i}" for i in range(len(chunks))]

        pending = [
            PendingCookie(
                name=name,
                value=chunk,
                max_age=self._max_age,
                domain=domain,
                secure=self._secure,
            )
            for name, chunk in zip(names, chunks, strict=True)
        ]
        # Stale chunks from a previous, differently-sized token
        pending.extend(self._deletion(name, domain) for name in existing if name not in names)
        return pending

    def _deletion(self, name: str, domain: str | None) -> PendingCookie:
        return PendingCookie(
            name=name, value="", max_age=0, domain=domain, secure=self._secure, delete=True
        )
