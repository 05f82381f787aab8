"""Allow-listed proxy from the console to ledger engine actions.

The ledger id comes from the ``ledger_id`` query parameter, or for methods
with a body from the body's ``ledger_id`` field. Access is resolved before
anything is forwarded; viewers may only read and a handful of money-moving
actions are reserved to owners and admins.
"""

from typing import Any

from fastapi import APIRouter, Request, Response

from backend.ledger_console.access import OWNER_OR_ADMIN, LedgerAccess, require_role
from backend.ledger_console.api.body import read_json_object
from backend.ledger_console.csrf import is_mutating
from backend.ledger_console.db.context import RequestContext
from backend.ledger_console.db.repositories import MembershipRole
from backend.ledger_console.errors import AuthorizationError, NotFoundError, ValidationError
from backend.ledger_console.idempotency import IDEMPOTENCY_HEADER, derive, derive_strict
from backend.ledger_console.ledger_engine import BODYLESS_METHODS, LedgerEngineResult
from backend.ledger_console.pipeline import RouteConfig, api_route
from backend.ledger_console.services import get_services

router = APIRouter(prefix="/api/ledger-functions", tags=["ledger-functions"])

ALLOWED_ENDPOINTS = frozenset(
    {
        "health-check",
        "create-creator",
        "release-funds",
        "record-sale",
        "record-expense",
        "record-income",
        "record-refund",
        "record-transfer",
        "record-adjustment",
        "process-payout",
        "webhooks",
        "import-transactions",
        "tax-documents",
        "send-statements",
        "profit-loss",
        "trial-balance",
        "generate-pdf",
        "export-report",
    }
)

OWNER_ADMIN_ONLY_ENDPOINTS = frozenset(
    {"process-payout", "release-funds", "import-transactions", "send-statements"}
)

# Retrying these must never move money twice
STRICT_IDEMPOTENCY_ENDPOINTS = frozenset({"process-payout", "release-funds"})

ROUTE_CONFIG = RouteConfig(route_path="/api/ledger-functions/[endpoint]")


async def _proxy(request: Request, ctx: RequestContext) -> Response:
    services = get_services(request)
    user = ctx.require_user()
    method = request.method.upper()

    endpoint = request.path_params["endpoint"]
    if endpoint not in ALLOWED_ENDPOINTS:
        raise NotFoundError("Unsupported function endpoint")

    query = {k: v for k, v in request.query_params.items() if k != "ledger_id"}
    ledger_id = request.query_params.get("ledger_id")
    body: dict[str, Any] | None = None

    if method not in BODYLESS_METHODS:
        body = await read_json_object(request)
        raw_ledger_id = body.pop("ledger_id", None)
        if isinstance(raw_ledger_id, str) and raw_ledger_id.strip():
            ledger_id = raw_ledger_id.strip()

    if not ledger_id:
        raise ValidationError("ledger_id is required", code="ledger_id_required")

    access = await services.access.require_ledger_access(user.user_id, ledger_id)

    if is_mutating(method) and access.role is MembershipRole.viewer:
        raise AuthorizationError("Insufficient permissions", code="insufficient_role")
    if endpoint in OWNER_ADMIN_ONLY_ENDPOINTS:
        require_role(access, OWNER_OR_ADMIN, "Only owners and admins can perform this action")

    idempotency_key = None
    if is_mutating(method):
        idempotency_key = _idempotency_key(request, endpoint, access, body)

    result = await services.ledger_engine.call(
        endpoint,
        ledger_id=access.ledger_id,
        method=method,
        body=body,
        query=query,
        idempotency_key=idempotency_key,
    )

    if result.ok and is_mutating(method):
        ctx.audit(
            ledger_id=access.ledger_id,
            action=endpoint.replace("-", "_"),
            entity_type="ledger_function",
            entity_id=_entity_id(result),
            request_body=body,
        )
        if endpoint == "process-payout" and ctx.user is not None:
            services.notifications.dispatch(
                "payout.requested",
                ctx.user.email,
                {
                    "ledger_id": access.ledger_id,
                    "amount": (body or {}).get("amount"),
                    "request_id": ctx.request_id,
                },
            )

    return _relay(result)


def _idempotency_key(
    request: Request, endpoint: str, access: LedgerAccess, body: dict[str, Any] | None
) -> str:
    reference_id = (body or {}).get("reference_id")
    natural_key = reference_id if isinstance(reference_id, str) and reference_id else None
    header = request.headers.get(IDEMPOTENCY_HEADER)

    if endpoint in STRICT_IDEMPOTENCY_ENDPOINTS:
        return derive_strict(endpoint, access.ledger_id, natural_key, header)
    return derive(endpoint, access.ledger_id, natural_key or header)


def _entity_id(result: LedgerEngineResult) -> str | None:
    if not result.is_json:
        return None
    payload = result.json()
    for key in ("transaction_id", "payout_id", "id"):
        if payload.get(key) is not None:
            return str(payload[key])
    return None


def _relay(result: LedgerEngineResult) -> Response:
    """Pass the engine's answer through verbatim, JSON and file downloads alike."""
    response = Response(
        content=result.content,
        status_code=result.status_code,
        media_type=result.content_type or None,
    )
    if result.content_disposition:
        response.headers["Content-Disposition"] = result.content_disposition
    return response


@router.api_route("/{endpoint}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
@api_route(ROUTE_CONFIG)
async def ledger_function(request: Request, ctx: RequestContext) -> Response:
    """Forward an allow-listed action to the ledger engine."""
    return await _proxy(request, ctx)
