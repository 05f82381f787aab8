"""FastAPI application for the ledger console."""

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.ledger_console.api.routes.health import router as health_router
from backend.ledger_console.api.routes.ledger_functions import router as ledger_functions_router
from backend.ledger_console.api.routes.ledgers import router as ledgers_router
from backend.ledger_console.api.routes.metrics import router as metrics_router
from backend.ledger_console.api.routes.mode import router as mode_router
from backend.ledger_console.config import get_settings
from backend.ledger_console.errors import ApiError, ValidationError
from backend.ledger_console.pipeline import ROUTE_PATH_HEADER
from backend.ledger_console.services import Services, build_services

# Probes and scrapes never touch the identity provider
UNSESSIONED_PATHS = frozenset({"/health", "/healthz", "/metrics"})


def create_app(services: Services | None = None) -> FastAPI:
    """Build the application.

    Args:
        services: Prebuilt services (tests); built from settings when omitted

    Returns:
        Configured FastAPI app
    """
    services = services or build_services(get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await services.aclose()

    app = FastAPI(title="Ledger Console API", version="0.1.0", lifespan=lifespan)
    app.state.services = services
    app.state.pipeline = services.build_pipeline()

    # Register routes
    app.include_router(health_router, tags=["health"])
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(ledgers_router)
    app.include_router(ledger_functions_router)
    app.include_router(mode_router)

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
        return exc.to_response()

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return ValidationError().to_response()

    @app.middleware("http")
    async def page_session(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Refresh the session and mint the CSRF cookie on page requests.

        API routes do this inside the request pipeline.
        """
        path = request.url.path
        if path.startswith("/api/") or path in UNSESSIONED_PATHS:
            return await call_next(request)

        session = await services.refresher.refresh(
            request.cookies, request.headers.get("host", "")
        )
        response = await call_next(request)
        session.apply(response)
        services.csrf.ensure_cookie(request.cookies, response)
        response.headers[ROUTE_PATH_HEADER] = path
        return response

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {"message": "Ledger Console API", "version": "0.1.0"}

    return app


app = create_app()
