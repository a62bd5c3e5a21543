"""Inbound webhook API endpoints.

Exposes ``POST /webhooks/<source>/<event_type>`` for every enabled source.
Routes are generated from the configured adapters, so disabled sources
have no routes at all.
"""

import structlog
from fastapi import APIRouter

from webhook_ingest.webhooks.manager import WebhookManager

logger = structlog.get_logger(__name__)

WEBHOOK_PREFIX = "/webhooks"


def create_webhook_router(manager: WebhookManager) -> APIRouter:
    """Build the webhook router for a manager.

    Args:
        manager: Manager holding the enabled adapters.

    Returns:
        Router with one POST route per (source, event type).
    """
    router = APIRouter(prefix=WEBHOOK_PREFIX, tags=["Webhooks"])
    manager.register_routes(router)
    logger.info("webhook_router_created", routes=len(manager.routes()))
    return router
