"""Mode endpoints - read and switch the live/test partition."""

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from backend.ledger_console.api.body import parse_json_body
from backend.ledger_console.db.context import RequestContext
from backend.ledger_console.mode import UNSET, ModeContext, write_mode
from backend.ledger_console.pipeline import RouteConfig, api_route
from backend.ledger_console.services import get_services

router = APIRouter(prefix="/api/mode", tags=["mode"])


class ModeUpdate(BaseModel):
    """Request body for POST /api/mode.

    Omitting ``active_ledger_group_id`` keeps the current partition; an
    explicit null clears it.
    """

    livemode: bool
    active_ledger_group_id: str | None = Field(None, min_length=1, max_length=255)


def _mode_body(mode: ModeContext) -> dict[str, object]:
    return {
        "livemode": mode.livemode,
        "active_ledger_group_id": mode.active_partition_id,
        "readonly": mode.readonly,
    }


@router.get("")
@api_route(RouteConfig(route_path="/api/mode"))
async def get_mode(request: Request, ctx: RequestContext) -> Response:
    """Current mode as resolved from the request cookies."""
    return JSONResponse(_mode_body(ctx.mode))


@router.post("")
@api_route(RouteConfig(route_path="/api/mode", readonly_exempt=True))
async def set_mode(request: Request, ctx: RequestContext) -> Response:
    """Switch mode. Allowed in read-only mode since it changes no ledger data."""
    settings = get_services(request).settings
    update = await parse_json_body(request, ModeUpdate)

    partition_given = "active_ledger_group_id" in update.model_fields_set
    new_mode = ModeContext(
        livemode=update.livemode,
        active_partition_id=(
            update.active_ledger_group_id if partition_given else ctx.mode.active_partition_id
        ),
        readonly=ctx.mode.readonly,
    )

    response = JSONResponse(_mode_body(new_mode))
    write_mode(
        response,
        update.livemode,
        update.active_ledger_group_id if partition_given else UNSET,
        secure=settings.is_production,
    )
    return response
