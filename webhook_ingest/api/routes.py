"""FastAPI application for the webhook ingest service.

This module provides:
- Application factory with lifespan management
- Inbound webhook routes
- Health check endpoint
- Error handling for verification and payload errors
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from webhook_ingest.api.webhooks import create_webhook_router
from webhook_ingest.config import Settings, configure_logging
from webhook_ingest.errors import AdapterError, VerificationError
from webhook_ingest.webhooks.manager import (
    WebhookManager,
    build_webhook_manager,
    set_webhook_manager,
)

logger = structlog.get_logger(__name__)


# ============================================================================
# Response Models
# ============================================================================


class ErrorResponse(BaseModel):
    """Error response body."""

    error: str = Field(..., description="Error code")
    message: str | None = Field(default=None, description="Operator-facing detail")


class HealthResponse(BaseModel):
    """Liveness response."""

    status: str = Field(default="ok")
    timestamp: str
    sources: list[str] = Field(default_factory=list)


OPENAPI_TAGS = [
    {
        "name": "Webhooks",
        "description": "Inbound provider webhooks, one route per enabled source and event type.",
    },
    {
        "name": "Health",
        "description": "Liveness check.",
    },
]


# ============================================================================
# Application Factory
# ============================================================================


def create_app(
    title: str = "Webhook Ingest API",
    version: str = "0.1.0",
    *,
    settings: Settings | None = None,
    manager: WebhookManager | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        title: API title.
        version: API version.
        settings: Settings (read from the environment if not provided).
        manager: Pre-built webhook manager (built from settings if not provided).

    Returns:
        Configured FastAPI application.
    """
    app_settings = settings or Settings.from_env()
    webhook_manager = manager or build_webhook_manager(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:  # noqa: ARG001
        configure_logging(app_settings.LOG_LEVEL)
        set_webhook_manager(webhook_manager)
        logger.info(
            "application_starting",
            sources=webhook_manager.sources,
            data_dir=app_settings.DATA_DIR,
        )

        yield

        await webhook_manager.aclose()
        set_webhook_manager(None)
        logger.info("application_shutting_down")

    app = FastAPI(
        title=title,
        version=version,
        description="Verifies, deduplicates, normalizes and persists provider webhooks.",
        lifespan=lifespan,
        openapi_tags=OPENAPI_TAGS,
    )
    app.state.settings = app_settings
    app.state.webhook_manager = webhook_manager

    install_exception_handlers(app)
    register_routes(app, webhook_manager)

    return app


def install_exception_handlers(app: FastAPI) -> None:
    """Map ingestion errors to HTTP responses.

    Args:
        app: FastAPI application.
    """

    @app.exception_handler(VerificationError)
    async def verification_exception_handler(
        request: Request, exc: VerificationError
    ) -> JSONResponse:
        logger.warning(
            "webhook_rejected",
            path=request.url.path,
            source=exc.source,
            reason=exc.message,
        )
        return JSONResponse(
            status_code=401,
            content=ErrorResponse(error="unauthorized").model_dump(exclude_none=True),
        )

    @app.exception_handler(AdapterError)
    async def adapter_exception_handler(request: Request, exc: AdapterError) -> JSONResponse:
        logger.warning(
            "webhook_invalid_payload",
            path=request.url.path,
            source=exc.source,
            event_type=exc.event_type,
            error=exc.message,
        )
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="invalid_payload", message=exc.message).model_dump(),
        )

    @app.exception_handler(ValidationError)
    async def validation_exception_handler(
        request: Request, exc: ValidationError
    ) -> JSONResponse:
        logger.warning("webhook_invalid_payload", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(
                error="invalid_payload",
                message=f"{exc.error_count()} validation error(s)",
            ).model_dump(),
        )


def register_routes(app: FastAPI, manager: WebhookManager) -> None:
    """Register all routes on the application.

    Args:
        app: FastAPI application.
        manager: Webhook manager providing the inbound routes.
    """
    app.include_router(create_webhook_router(manager))

    @app.get("/health", tags=["Health"])
    async def health() -> dict[str, Any]:
        """Basic liveness check."""
        return HealthResponse(
            timestamp=datetime.now(UTC).isoformat(),
            sources=manager.sources,
        ).model_dump()


# Default application instance
app = create_app()
