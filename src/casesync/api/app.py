"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from casesync.api.routes import config_router, health_router, payments_router, sync_router
from casesync.api.websocket import ws_router
from casesync.config import Settings, get_settings
from casesync.services import Services, close_services, open_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Builds the services unless they were injected, and runs the background
    sync when enabled.
    """
    owned = app.state.services is None
    if owned:
        app.state.services = await open_services(app.state.settings)
    services: Services = app.state.services

    if services.settings.background_sync_enabled:
        services.start_background_sync()
    yield
    if owned:
        await close_services(services)
    else:
        await services.stop_background_sync()


def create_app(
    settings: Settings | None = None,
    services: Services | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="casesync API",
        description="Case-management sync and payment reconciliation",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings or (services.settings if services else get_settings())
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(sync_router, prefix="/api")
    app.include_router(config_router, prefix="/api")
    app.include_router(payments_router, prefix="/api")
    app.include_router(ws_router)

    return app


# Default app instance for uvicorn
app = create_app()
