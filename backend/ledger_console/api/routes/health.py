"""Health check endpoints.

- ``/health`` answers as long as the process is up
- ``/healthz`` checks the database and Redis, 503 when either fails
"""

from typing import Any

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text

from backend.ledger_console.services import Services, get_services

router = APIRouter()


async def check_db(services: Services) -> tuple[bool, str]:
    """Check database connectivity.

    Returns:
        (is_ok, status_message)
    """
    if services.session_factory is None:
        return (True, "not_configured")

    try:
        async with services.session_factory() as session:
            await session.execute(text("SELECT 1"))
        return (True, "ok")
    except Exception as e:
        return (False, f"error: {type(e).__name__}")


async def check_redis(services: Services) -> tuple[bool, str]:
    """Check Redis connectivity.

    Returns:
        (is_ok, status_message)
    """
    if services.redis_client is None:
        return (True, "not_configured")

    try:
        await services.redis_client.ping()
        return (True, "ok")
    except Exception as e:
        return (False, f"error: {type(e).__name__}")


@router.get("/health")
async def health() -> dict[str, str]:
    """Simple health check for Docker/k8s.

    Returns:
        200 OK always (application is running)
    """
    return {"status": "ok"}


@router.get("/healthz", response_model=None)
async def healthz(request: Request) -> dict[str, Any] | Response:
    """Health check with component status.

    Returns:
        200 with component status if core systems ok
        503 if the database or Redis fails
    """
    services = get_services(request)

    db_ok, db_status = await check_db(services)
    redis_ok, redis_status = await check_redis(services)
    core_ok = db_ok and redis_ok

    response_body = {
        "status": "ok" if core_ok else "degraded",
        "components": {
            "db": db_status,
            "redis": redis_status,
            "audit_pending": services.audit.pending,
        },
    }

    if not core_ok:
        return JSONResponse(response_body, status_code=503)

    return response_body
