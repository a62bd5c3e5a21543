"""Webhook processing pipeline.

Runs one verified delivery through its adapter and, per canonical result:
dedupe check, audit log, enrichment, attention forwarding, daily-store
persistence and archive append. Owns the HTTP response contract.
"""

from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from webhook_ingest.errors import AdapterError
from webhook_ingest.notifications.models import AttentionEvent
from webhook_ingest.providers.base import EndpointSpec, ProviderAdapter
from webhook_ingest.storage.daily import DailyAppendRequest, DailyStore
from webhook_ingest.webhooks.archive import ArchiveRecord, EventArchive
from webhook_ingest.webhooks.dedupe import DedupChain, DedupeContext
from webhook_ingest.webhooks.enrichment import EntryEnricher
from webhook_ingest.webhooks.events import WebhookEventLogger
from webhook_ingest.webhooks.models import CanonicalResult, WebhookDelivery
from webhook_ingest.webhooks.security import verify_delivery

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class WebhookResponse:
    """HTTP status and JSON body for a processed delivery (None = no body)."""

    status_code: int
    body: Any | None = None


SKIPPED = WebhookResponse(202, {"status": "skipped"})
NO_CONTENT = WebhookResponse(204, None)


class AttentionSink(Protocol):
    """Receives processed events for classification and notification."""

    async def submit(self, event: AttentionEvent) -> Any:
        ...


class WebhookProcessor:
    """Orchestrates verification, adapters, dedupe and persistence."""

    def __init__(
        self,
        *,
        dedupe: DedupChain,
        archive: EventArchive,
        event_logger: WebhookEventLogger,
        enricher: EntryEnricher,
        daily_store: DailyStore,
        attention: AttentionSink | None = None,
        debug: bool = False,
    ) -> None:
        """Initialize the processor.

        Args:
            dedupe: Dedupe chain (volatile then archive tier).
            archive: Persistent event archive.
            event_logger: Audit log writer.
            enricher: Entry enricher.
            daily_store: Daily store collaborator.
            attention: Optional attention router.
            debug: Log received payloads at debug level.
        """
        self.dedupe = dedupe
        self.archive = archive
        self.event_logger = event_logger
        self.enricher = enricher
        self.daily_store = daily_store
        self.attention = attention
        self.debug = debug
        self._logger = logger.bind(component="webhook_processor")

    async def process(
        self,
        adapter: ProviderAdapter,
        endpoint: EndpointSpec,
        delivery: WebhookDelivery,
        *,
        payload_error: str | None = None,
    ) -> WebhookResponse:
        """Process one delivery.

        Args:
            adapter: Adapter owning the source.
            endpoint: Endpoint that received the delivery.
            delivery: The delivery.
            payload_error: Set when the body was not valid JSON; reported
                only after authentication succeeds.

        Returns:
            Response to send.

        Raises:
            VerificationError: Auth token or signature check failed.
            AdapterError: Body unparseable or payload unmappable.
            PersistenceError: Archive or daily store write failed.
        """
        if self.debug:
            self._logger.debug(
                "webhook_payload_received",
                source=delivery.source,
                event_type=delivery.event_type,
                path=delivery.path,
                payload=delivery.payload,
            )

        verify_delivery(
            delivery.raw_body,
            delivery.headers,
            adapter.config,
            source=adapter.source,
            require_signature=endpoint.require_signature,
            require_auth_token=endpoint.require_auth_token,
        )

        if payload_error is not None:
            raise AdapterError(
                f"Invalid JSON body: {payload_error}",
                source=adapter.source,
                event_type=endpoint.event_type,
            )

        output = await endpoint.handler(delivery)
        if output is None:
            return NO_CONTENT

        results = [result for result in (output if isinstance(output, list) else [output]) if result]
        if not results:
            return NO_CONTENT

        processed = False
        for result in results:
            if await self._process_result(adapter, endpoint, delivery, result):
                processed = True

        if not processed:
            return SKIPPED

        first = results[0]
        body = first.response_body if first.response_body is not None else {"status": "ok"}
        return WebhookResponse(first.status_code or 200, body)

    def resolve_dedupe_key(
        self,
        adapter: ProviderAdapter,
        endpoint: EndpointSpec,
        delivery: WebhookDelivery,
        result: CanonicalResult,
    ) -> str | None:
        """Adapter key, else endpoint extractor, else id header, else event id."""
        if result.dedupe_key:
            return result.dedupe_key
        if endpoint.extract_event_id is not None:
            extracted = endpoint.extract_event_id(delivery.payload, delivery)
            if extracted:
                return extracted
        return adapter.delivery_id(delivery) or result.event_id

    async def _process_result(
        self,
        adapter: ProviderAdapter,
        endpoint: EndpointSpec,
        delivery: WebhookDelivery,
        result: CanonicalResult,
    ) -> bool:
        """Process one canonical result. Returns False for duplicates."""
        source = adapter.source
        event_type = endpoint.event_type
        dedupe_key = self.resolve_dedupe_key(adapter, endpoint, delivery, result)

        ctx: DedupeContext | None = None
        if dedupe_key:
            ctx = DedupeContext(
                source=source, event_type=event_type, dedupe_key=dedupe_key, date=result.date
            )
            if await self.dedupe.claim(ctx) is not None:
                return False

        try:
            await self.event_logger.log(delivery, dedupe_key=dedupe_key)

            self.enricher.enrich(result)

            await self._forward_attention(delivery, result, dedupe_key)

            if not result.skip_store:
                await self.daily_store.append_entries(
                    self._daily_request(source, event_type, result, dedupe_key)
                )

            await self.archive.append(
                ArchiveRecord(
                    dedupe_key=dedupe_key,
                    source=source,
                    event_type=event_type,
                    received_at=delivery.received_at,
                    event_date=result.date,
                    payload=delivery.payload,
                    metadata={
                        "path": delivery.path,
                        "method": delivery.method,
                        "entries": len(result.entries),
                        "skip_store": result.skip_store,
                    },
                )
            )
        except Exception:
            if ctx is not None:
                await self.dedupe.release(ctx)
            raise

        if ctx is not None:
            await self.dedupe.commit(ctx)

        self._logger.info(
            "webhook_result_processed",
            source=source,
            event_type=event_type,
            dedupe_key=dedupe_key,
            date=result.date,
            entries=len(result.entries),
        )
        return True

    def _daily_request(
        self,
        source: str,
        event_type: str,
        result: CanonicalResult,
        dedupe_key: str | None,
    ) -> DailyAppendRequest:
        entries = [
            entry if entry.source else entry.model_copy(update={"source": f"{source}_webhook"})
            for entry in result.entries
        ]
        metadata = {
            **(result.metadata or {}),
            "webhook_source": source,
            "webhook_event_type": event_type,
        }
        if dedupe_key:
            metadata["webhook_dedupe_key"] = dedupe_key

        return DailyAppendRequest(
            date=result.date,
            entries=entries,
            metadata=metadata,
            totals=result.totals,
            summary=result.summary,
            timezone=result.timezone,
        )

    async def _forward_attention(
        self,
        delivery: WebhookDelivery,
        result: CanonicalResult,
        dedupe_key: str | None,
    ) -> None:
        if self.attention is None:
            return

        payload = result.attention_payload if result.attention_payload is not None else delivery.payload
        kind = payload.get("_webhook_kind") if isinstance(payload, dict) else None
        event = AttentionEvent(
            source=delivery.source,
            kind=str(kind or delivery.event_type),
            payload=payload,
            received_at=delivery.received_at,
            dedupe_key=dedupe_key,
            metadata={
                **(result.metadata or {}),
                "summary": result.summary,
                "date": result.date,
                "event_type": delivery.event_type,
            },
        )
        try:
            await self.attention.submit(event)
        except Exception as e:
            self._logger.warning(
                "attention_forward_failed",
                source=delivery.source,
                event_type=delivery.event_type,
                dedupe_key=dedupe_key,
                error=str(e),
            )
