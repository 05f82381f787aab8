"""Ledger transaction endpoints - POST sales and expenses."""

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from backend.ledger_console.access import WRITER_ROLES, require_role
from backend.ledger_console.api.body import parse_json_body
from backend.ledger_console.db.context import RequestContext
from backend.ledger_console.idempotency import IDEMPOTENCY_HEADER, derive, derive_strict
from backend.ledger_console.ledger_engine import LedgerEngineResult
from backend.ledger_console.pipeline import RouteConfig, api_route
from backend.ledger_console.services import get_services

router = APIRouter(prefix="/api/ledgers", tags=["ledgers"])


class SaleRequest(BaseModel):
    """Request body for POST /api/ledgers/{ledger_id}/sales."""

    amount: int = Field(..., gt=0, description="Amount in cents")
    creator_id: str = Field(..., min_length=1)
    reference_id: str = Field(..., min_length=1, max_length=255)
    description: str | None = None


class ExpenseRequest(BaseModel):
    """Request body for POST /api/ledgers/{ledger_id}/expenses."""

    amount: int = Field(..., gt=0, description="Amount in cents")
    description: str = Field(..., min_length=1)
    category: str | None = None
    vendor_name: str | None = None
    reference_id: str | None = Field(None, max_length=255)


def _engine_response(
    result: LedgerEngineResult, ctx: RequestContext, fallback_error: str
) -> JSONResponse:
    payload = result.json()
    if result.ok:
        return JSONResponse(payload, status_code=result.status_code)

    error = payload.get("error")
    return JSONResponse(
        {
            "error": error if isinstance(error, str) and error.strip() else fallback_error,
            "request_id": ctx.request_id,
        },
        status_code=result.status_code,
    )


@router.post("/{ledger_id}/sales")
@api_route(RouteConfig(route_path="/api/ledgers/[id]/sales"))
async def record_sale(request: Request, ctx: RequestContext) -> Response:
    """Record a sale on a ledger through the ledger engine."""
    services = get_services(request)
    user = ctx.require_user()

    access = await services.access.require_ledger_access(
        user.user_id, request.path_params["ledger_id"]
    )
    require_role(access, WRITER_ROLES)

    body = await parse_json_body(request, SaleRequest)

    result = await services.ledger_engine.call(
        "record-sale",
        ledger_id=access.ledger_id,
        body=body.model_dump(exclude_none=True),
        idempotency_key=derive("sale", access.ledger_id, body.reference_id),
    )

    if result.ok:
        ctx.audit(
            ledger_id=access.ledger_id,
            action="record_sale",
            entity_type="transaction",
            entity_id=_transaction_id(result),
            request_body=body.model_dump(exclude_none=True),
        )

    return _engine_response(result, ctx, "Failed to record sale")


@router.post("/{ledger_id}/expenses")
@api_route(RouteConfig(route_path="/api/ledgers/[id]/expenses"))
async def record_expense(request: Request, ctx: RequestContext) -> Response:
    """Record an expense; requires reference_id or an Idempotency-Key header."""
    services = get_services(request)
    user = ctx.require_user()

    access = await services.access.require_ledger_access(
        user.user_id, request.path_params["ledger_id"]
    )
    require_role(access, WRITER_ROLES)

    body = await parse_json_body(request, ExpenseRequest)
    idempotency_key = derive_strict(
        "expense",
        access.ledger_id,
        body.reference_id,
        request.headers.get(IDEMPOTENCY_HEADER),
    )

    result = await services.ledger_engine.call(
        "record-expense",
        ledger_id=access.ledger_id,
        body=body.model_dump(exclude_none=True),
        idempotency_key=idempotency_key,
    )

    if result.ok:
        ctx.audit(
            ledger_id=access.ledger_id,
            action="record_expense",
            entity_type="transaction",
            entity_id=_transaction_id(result),
            request_body=body.model_dump(exclude_none=True),
        )

    return _engine_response(result, ctx, "Failed to record expense")


def _transaction_id(result: LedgerEngineResult) -> str | None:
    value = result.json().get("transaction_id")
    return str(value) if value is not None else None
