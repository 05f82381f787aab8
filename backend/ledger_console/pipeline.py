"""Request pipeline wrapping every API handler.

Fixed execution order, identical for every route:

1. Session refresh. ``require_auth`` routes answer 401 without an identity.
2. CSRF check for mutating methods (403 ``csrf_failed``).
3. Rate limit keyed by user (or IP) and route path (429 + Retry-After).
4. Request body size (413).
5. Read-only mode for mutating, non-exempt routes (403 ``readonly_mode``).
6. Handler, called with the request-scoped RequestContext.
7. Uncaught errors from the checks or the handler become a generic 500
   carrying only the request id.

Every response gets the request id and security headers, the refreshed
session cookies (never on a 401), and a CSRF cookie when the request had
none. Audit events staged by the handler are emitted only for responses
below 400.
"""

import time
import uuid
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from pydantic import BaseModel, ConfigDict

from backend.ledger_console.audit import AuditRecorder
from backend.ledger_console.csrf import CsrfGuard, is_mutating
from backend.ledger_console.db.context import RequestContext
from backend.ledger_console.db.repositories import ActorType, AuditEvent, RateLimitRule
from backend.ledger_console.errors import (
    ApiError,
    AuthenticationError,
    AuthorizationError,
    InternalError,
    PayloadTooLargeError,
    RateLimitedError,
    UpstreamError,
)
from backend.ledger_console.middleware.ratelimit import RateLimitMiddleware
from backend.ledger_console.mode import read_mode
from backend.ledger_console.ratelimit import rate_limit_subject
from backend.ledger_console.session import RefreshOutcome, SessionRefresher
from backend.ledger_console.utils.logging import StructuredRequestLogger
from backend.ledger_console.utils.metrics import PrometheusPipelineMetrics

ROUTE_PATH_HEADER = "X-Route-Path"
DEFAULT_MAX_BODY_SIZE = 1024 * 1024

Handler = Callable[[Request, RequestContext], Awaitable[Response]]


class RouteConfig(BaseModel):
    """Per-route pipeline options. Every option is explicit."""

    model_config = ConfigDict(frozen=True)

    route_path: str
    require_auth: bool = True
    rate_limit: bool = True
    csrf_protection: bool = True
    readonly_exempt: bool = False
    rate_limit_rule: RateLimitRule | None = None
    max_body_size: int | None = None


def generate_request_id() -> str:
    """Generate a unique request ID."""
    return f"req_{uuid.uuid4().hex[:24]}"


def get_client_ip(request: Request) -> str:
    """Client IP from proxy headers, falling back to the socket peer."""
    for header in ("cf-connecting-ip", "x-real-ip", "x-forwarded-for"):
        candidate = (request.headers.get(header) or "").split(",")[0].strip()
        if candidate:
            return candidate
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class RequestPipeline:
    """Composes session, CSRF, rate limit, read-only and audit around handlers."""

    def __init__(
        self,
        *,
        refresher: SessionRefresher,
        csrf: CsrfGuard,
        rate_limiter: RateLimitMiddleware,
        audit: AuditRecorder,
        force_readonly: bool = False,
        max_body_size: int = DEFAULT_MAX_BODY_SIZE,
        metrics: PrometheusPipelineMetrics | None = None,
        request_logger: StructuredRequestLogger | None = None,
    ) -> None:
        self._refresher = refresher
        self._csrf = csrf
        self._rate_limiter = rate_limiter
        self._audit = audit
        self._force_readonly = force_readonly
        self._max_body_size = max_body_size
        self._metrics = metrics or PrometheusPipelineMetrics()
        self._log = request_logger or StructuredRequestLogger()

    async def execute(self, request: Request, config: RouteConfig, handler: Handler) -> Response:
        """Run ``handler`` for ``request`` under ``config``."""
        started = time.perf_counter()
        method = request.method.upper()
        cookies = request.cookies

        session = await self._refresher.refresh(cookies, request.headers.get("host", ""))
        identity = session.identity
        readonly = self._force_readonly or bool(identity and identity.readonly)

        ctx = RequestContext(
            request_id=generate_request_id(),
            route_path=config.route_path,
            client_ip=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
            user=identity,
            mode=read_mode(cookies, readonly=readonly),
        )

        try:
            await self._guard(request, config, ctx, method)
        except ApiError as e:
            self._metrics.inc_rejection(config.route_path, e.code)
            self._log.log_rejection(ctx, method, e.status_code, e.code)
            return self._finalize(request, e.to_response(ctx.request_id), ctx, session, started)
        except Exception as e:
            # Infrastructure failures (rate limit store down) still get the envelope
            self._metrics.inc_rejection(config.route_path, "internal_error")
            self._log.log_handler_error(ctx, method, e)
            response = InternalError().to_response(ctx.request_id)
            return self._finalize(request, response, ctx, session, started)

        response = await self._invoke(request, handler, ctx, method)
        self._log.log_completed(
            ctx, method, response.status_code, (time.perf_counter() - started) * 1000
        )
        return self._finalize(request, response, ctx, session, started)

    async def _guard(
        self, request: Request, config: RouteConfig, ctx: RequestContext, method: str
    ) -> None:
        # 1. Authentication
        if config.require_auth and ctx.user is None:
            raise AuthenticationError()

        # 2. CSRF
        if config.csrf_protection:
            self._csrf.validate(method, request.cookies, request.headers)

        # 3. Rate limiting
        if config.rate_limit:
            subject = rate_limit_subject(ctx.user.user_id if ctx.user else None, ctx.client_ip)
            allowed, retry_after = await self._rate_limiter.check_rate_limit(
                config.route_path, subject, config.rate_limit_rule
            )
            if not allowed:
                raise RateLimitedError(retry_after)

        # 4. Body size
        limit = config.max_body_size or self._max_body_size
        content_length = request.headers.get("content-length", "0")
        if content_length.isdigit() and int(content_length) > limit:
            raise PayloadTooLargeError()

        # 5. Read-only mode
        if ctx.mode.readonly and is_mutating(method) and not config.readonly_exempt:
            raise AuthorizationError(
                "Read-only mode is enabled. Write operations are disabled.",
                code="readonly_mode",
            )

    async def _invoke(
        self, request: Request, handler: Handler, ctx: RequestContext, method: str
    ) -> Response:
        try:
            response = await handler(request, ctx)
        except UpstreamError as e:
            self._log.log_handler_error(ctx, method, e)
            return e.to_response(ctx.request_id)
        except ApiError as e:
            return e.to_response(ctx.request_id)
        except Exception as e:
            self._log.log_handler_error(ctx, method, e)
            self._audit.emit(
                AuditEvent(
                    ledger_id=None,
                    action="api_error",
                    entity_type=None,
                    entity_id=None,
                    actor_type=ActorType.system,
                    actor_id=None,
                    ip_address=ctx.client_ip,
                    user_agent=ctx.user_agent,
                    request_id=ctx.request_id,
                    request_body={"route": ctx.route_path, "error_type": type(e).__name__},
                )
            )
            return InternalError().to_response(ctx.request_id)

        if response.status_code < 400:
            for event in ctx.staged_audit:
                self._audit.emit(event)

        return response

    def _finalize(
        self,
        request: Request,
        response: Response,
        ctx: RequestContext,
        session: RefreshOutcome,
        started: float,
    ) -> Response:
        # A 401 must never carry session cookies
        if response.status_code != 401:
            session.apply(response)

        response.headers["X-Request-Id"] = ctx.request_id
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers[ROUTE_PATH_HEADER] = ctx.route_path

        self._csrf.ensure_cookie(request.cookies, response)

        self._metrics.record_latency(
            ctx.route_path, response.status_code, (time.perf_counter() - started) * 1000
        )
        return response


def api_route(config: RouteConfig) -> Callable[[Handler], Callable[[Request], Awaitable[Response]]]:
    """Wrap a handler so FastAPI runs it through the application's pipeline.

    The wrapped endpoint only takes the Request; the handler receives the
    RequestContext as its second argument.
    """

    def decorator(handler: Handler) -> Callable[[Request], Awaitable[Response]]:
        async def endpoint(request: Request) -> Response:
            pipeline: RequestPipeline = request.app.state.pipeline
            return await pipeline.execute(request, config, handler)

        endpoint.__name__ = handler.__name__
        endpoint.__doc__ = handler.__doc__
        return endpoint

    return decorator
