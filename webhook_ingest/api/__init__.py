"""FastAPI application for the webhook ingest service.

This module contains:
- Application factory and default instance
- Inbound webhook router
- Error and health response models
"""

from webhook_ingest.api.routes import ErrorResponse, HealthResponse, app, create_app
from webhook_ingest.api.webhooks import create_webhook_router

__all__ = [
    "ErrorResponse",
    "HealthResponse",
    "app",
    "create_app",
    "create_webhook_router",
]
