"""FastAPI application for the DAM webhook service."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dam import __version__
from dam.config import Settings
from dam.exceptions import AuthenticationError, DamError, NotFoundError, ValidationError
from dam.logging import configure_logging, get_logger
from dam.service import WebhookService

from .router import router, set_service

logger = get_logger(__name__)


def _lifespan(settings: Settings, service: WebhookService | None):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Initialize the WebhookService on startup and close it on shutdown."""
        configure_logging(level=settings.log_level, format=settings.log_format)
        logger.info("Starting webhook API", env=settings.env, storage=settings.storage_backend)

        webhooks = service or WebhookService.create(settings)
        await webhooks.initialize()
        set_service(webhooks)

        if settings.dispatcher_enabled:
            webhooks.start_dispatcher()

        try:
            yield
        finally:
            await webhooks.close()
            set_service(None)

    return lifespan


def create_app(
    settings: Settings | None = None,
    service: WebhookService | None = None,
) -> FastAPI:
    """Create a FastAPI application.

    Args:
        settings: Optional settings. Uses environment if None.
        service: Prebuilt service to serve instead of one built from settings.

    Returns:
        Configured FastAPI application.

    Example:
        ```python
        from dam.api import create_app

        app = create_app()
        # Run with: uvicorn dam.api:app --reload
        ```
    """
    if settings is None:
        settings = service.settings if service is not None else Settings()

    app = FastAPI(
        title="DAM Webhooks",
        description="Signed webhook delivery for the digital asset management backend.",
        version=__version__,
        lifespan=_lifespan(settings, service),
        docs_url="/docs",
        redoc_url="/redoc",
    )

    if settings.cors_enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_methods=settings.cors_allow_methods,
            allow_headers=settings.cors_allow_headers,
        )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        """Handle validation errors with 400 status."""
        logger.warning(
            "Validation error", field=exc.field, error=exc.message, path=str(request.url)
        )
        return JSONResponse(status_code=400, content=exc.to_dict())

    @app.exception_handler(NotFoundError)
    async def not_found_error_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        """Handle not found errors with 404 status."""
        logger.info(
            "Resource not found",
            resource_type=exc.resource_type,
            resource_id=exc.resource_id,
            path=str(request.url),
        )
        return JSONResponse(status_code=404, content=exc.to_dict())

    @app.exception_handler(AuthenticationError)
    async def authentication_error_handler(
        request: Request, exc: AuthenticationError
    ) -> JSONResponse:
        """Handle signature and authentication failures with 401 status."""
        logger.warning("Authentication failed", error=exc.message, path=str(request.url))
        return JSONResponse(status_code=401, content=exc.to_dict())

    @app.exception_handler(DamError)
    async def dam_error_handler(request: Request, exc: DamError) -> JSONResponse:
        """Handle all other service errors with 500 status."""
        logger.error("Service error", error=exc.message, code=exc.code, path=str(request.url))
        return JSONResponse(status_code=500, content=exc.to_dict())

    app.include_router(router, prefix="/api")

    return app


# Default app instance for uvicorn
app = create_app()
