"""Webhook source registration.

Builds the provider adapters for every enabled source, registers one POST
route per (source, event type), and wires the processing pipeline from
configuration.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from webhook_ingest.config import (
    AttentionConfig,
    Settings,
    WebhookConfig,
    WebhookSourceConfig,
    load_attention_config,
    load_webhook_config,
)
from webhook_ingest.errors import AdapterError, VerificationError
from webhook_ingest.notifications.attention import AttentionRouter
from webhook_ingest.notifications.dispatcher import NotificationDispatcher
from webhook_ingest.notifications.slack import SlackTransport
from webhook_ingest.providers.base import EndpointSpec, ProviderAdapter
from webhook_ingest.providers.calendar import CalendarAdapter
from webhook_ingest.providers.ios import IOSAdapter
from webhook_ingest.providers.whoop import WhoopAdapter
from webhook_ingest.providers.whoop_client import ProviderAPIClient, WhoopClient
from webhook_ingest.storage.daily import DailyStore, JsonDailyStore
from webhook_ingest.timeutils import resolve_zone
from webhook_ingest.webhooks.archive import EventArchive
from webhook_ingest.webhooks.dedupe import ArchiveDedupChecker, DedupChain, VolatileDedupChecker
from webhook_ingest.webhooks.enrichment import EntryEnricher
from webhook_ingest.webhooks.events import WebhookEventLogger
from webhook_ingest.webhooks.models import WebhookDelivery
from webhook_ingest.webhooks.processor import WebhookProcessor

logger = structlog.get_logger(__name__)

KNOWN_SOURCES = ("whoop", "calendar", "ios")

# Global manager instance
_webhook_manager: WebhookManager | None = None


class WebhookManager:
    """Owns the adapters and the processor for all webhook sources."""

    def __init__(
        self,
        processor: WebhookProcessor,
        adapters: list[ProviderAdapter] | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            processor: Shared processing pipeline.
            adapters: Adapters for enabled sources.
        """
        self.processor = processor
        self._adapters: dict[str, ProviderAdapter] = {}
        self._logger = logger.bind(component="webhook_manager")
        for adapter in adapters or []:
            self.add_adapter(adapter)

    def add_adapter(self, adapter: ProviderAdapter) -> None:
        """Register an adapter, replacing any adapter for the same source."""
        self._adapters[adapter.source] = adapter

    def get_adapter(self, source: str) -> ProviderAdapter | None:
        return self._adapters.get(source)

    @property
    def sources(self) -> list[str]:
        return list(self._adapters)

    def routes(self) -> list[tuple[str, str]]:
        """(source, event_type) pairs served."""
        return [
            (source, spec.event_type)
            for source, adapter in self._adapters.items()
            for spec in adapter.endpoints()
        ]

    def register_routes(self, router: APIRouter) -> None:
        """Add one POST route per (source, event type) to a router."""
        for source, adapter in self._adapters.items():
            for spec in adapter.endpoints():
                router.add_api_route(
                    f"/{source}/{spec.event_type}",
                    self._route_for(adapter, spec),
                    methods=["POST"],
                    name=f"webhook_{source}_{spec.event_type}",
                    include_in_schema=True,
                )
                self._logger.info(
                    "webhook_route_registered", source=source, event_type=spec.event_type
                )

    def _route_for(self, adapter: ProviderAdapter, spec: EndpointSpec):
        async def receive(request: Request) -> Response:
            return await self.handle(adapter, spec, request)

        receive.__name__ = f"receive_{adapter.source}_{spec.event_type}"
        return receive

    async def handle(
        self,
        adapter: ProviderAdapter,
        spec: EndpointSpec,
        request: Request,
    ) -> Response:
        """Turn an HTTP request into a delivery and process it.

        Verification and payload errors propagate to the application's
        exception handlers; anything else becomes a 500 with a message.
        """
        raw_body = await request.body()
        payload, payload_error = _parse_body(raw_body)

        delivery = WebhookDelivery(
            source=adapter.source,
            event_type=spec.event_type,
            headers=dict(request.headers),
            raw_body=raw_body,
            payload=payload,
            path=request.url.path,
            method=request.method,
        )

        try:
            response = await self.processor.process(
                adapter, spec, delivery, payload_error=payload_error
            )
        except (VerificationError, AdapterError, ValidationError):
            raise
        except Exception as e:
            self._logger.error(
                "webhook_handler_error",
                source=adapter.source,
                event_type=spec.event_type,
                path=delivery.path,
                error=str(e),
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={"error": "webhook_handler_error", "message": str(e)},
            )

        if response.body is None:
            return Response(status_code=response.status_code)
        return JSONResponse(status_code=response.status_code, content=response.body)

    async def aclose(self) -> None:
        """Release adapter resources."""
        for adapter in self._adapters.values():
            await adapter.aclose()


def _parse_body(raw_body: bytes) -> tuple[dict[str, Any], str | None]:
    if not raw_body.strip():
        return {}, None
    try:
        parsed = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        return {}, str(e)
    if not isinstance(parsed, dict):
        return {}, "JSON body must be an object"
    return parsed, None


def build_adapter(
    source: str,
    config: WebhookSourceConfig,
    settings: Settings,
    *,
    whoop_client: ProviderAPIClient | None = None,
) -> ProviderAdapter | None:
    """Create the adapter for a configured source.

    Returns:
        Adapter, or None for an unknown source.
    """
    zone = resolve_zone(settings.REPORTING_TIMEZONE)
    timeout = settings.HYDRATION_TIMEOUT_SECONDS

    if source == "whoop":
        client = whoop_client
        if client is None and settings.WHOOP_API_KEY:
            client = WhoopClient(
                settings.WHOOP_API_KEY,
                base_url=config.endpoints.base_url or settings.WHOOP_BASE_URL,
                timeout=timeout,
            )
        return WhoopAdapter(config, zone=zone, client=client, hydration_timeout=timeout)
    if source == "calendar":
        return CalendarAdapter(config, zone=zone, hydration_timeout=timeout)
    if source == "ios":
        return IOSAdapter(config, zone=zone, hydration_timeout=timeout)

    logger.warning("unknown_webhook_source", source=source)
    return None


def build_webhook_manager(
    settings: Settings,
    *,
    webhook_config: WebhookConfig | None = None,
    attention_config: AttentionConfig | None = None,
    whoop_client: ProviderAPIClient | None = None,
    daily_store: DailyStore | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> WebhookManager:
    """Wire the full pipeline from settings and configuration files.

    Args:
        settings: Process settings.
        webhook_config: Webhook configuration (loaded from DATA_DIR if omitted).
        attention_config: Attention configuration (loaded from DATA_DIR if omitted).
        whoop_client: Provider client override.
        daily_store: Daily store override.
        dispatcher: Notification dispatcher override.

    Returns:
        Configured manager.
    """
    data_dir = settings.data_path
    config = webhook_config or load_webhook_config(data_dir)
    attention = attention_config or load_attention_config(data_dir)
    zone = resolve_zone(settings.REPORTING_TIMEZONE)

    archive = EventArchive(data_dir, store_payloads=settings.ARCHIVE_PAYLOADS)
    dedupe = DedupChain(
        [
            VolatileDedupChecker(ttl_seconds=settings.DEDUPE_TTL_SECONDS),
            ArchiveDedupChecker(archive),
        ]
    )

    if dispatcher is None:
        dispatcher = NotificationDispatcher()
        dispatcher.register_transport(
            "slack",
            SlackTransport(
                attention.dispatch_targets.slack,
                data_dir=data_dir,
                shared_token=settings.SLACK_BOT_TOKEN,
            ),
        )

    processor = WebhookProcessor(
        dedupe=dedupe,
        archive=archive,
        event_logger=WebhookEventLogger(data_dir, zone),
        enricher=EntryEnricher(zone),
        daily_store=daily_store or JsonDailyStore(data_dir),
        attention=AttentionRouter(attention, dispatcher),
        debug=config.debug,
    )

    manager = WebhookManager(processor)
    for source in config.enabled_sources():
        adapter = build_adapter(
            source, config.source(source), settings, whoop_client=whoop_client
        )
        if adapter is not None:
            manager.add_adapter(adapter)

    logger.info("webhook_manager_built", sources=manager.sources)
    return manager


def get_webhook_manager() -> WebhookManager | None:
    """Get the global webhook manager instance, if one was set."""
    return _webhook_manager


def set_webhook_manager(manager: WebhookManager | None) -> None:
    """Set the global webhook manager instance.

    Useful for testing.

    Args:
        manager: WebhookManager instance.
    """
    global _webhook_manager
    _webhook_manager = manager
