"""Inbound webhook processing.

This module provides:
- WebhookDelivery, CanonicalResult, Entry: request and result models
- Signature and bearer-token verification
- DedupChain: volatile and archive-backed dedupe tiers
- EventArchive and WebhookEventLogger: persistence and audit trail
- EntryEnricher: time normalization, buckets and templates
- WebhookProcessor and WebhookManager: the processing pipeline and routes
"""

from webhook_ingest.webhooks.archive import ArchiveRecord, EventArchive
from webhook_ingest.webhooks.dedupe import (
    ArchiveDedupChecker,
    DedupChain,
    DedupChecker,
    DedupeContext,
    VolatileDedupChecker,
)
from webhook_ingest.webhooks.enrichment import EntryEnricher, time_of_day
from webhook_ingest.webhooks.events import WebhookEventLogger
from webhook_ingest.webhooks.manager import (
    WebhookManager,
    build_webhook_manager,
    get_webhook_manager,
    set_webhook_manager,
)
from webhook_ingest.webhooks.models import (
    CanonicalResult,
    Detailed,
    Entry,
    EntryCategory,
    Hydrated,
    HydrationFailed,
    HydrationOutcome,
    Thin,
    WebhookDelivery,
)
from webhook_ingest.webhooks.processor import WebhookProcessor, WebhookResponse
from webhook_ingest.webhooks.security import (
    generate_signature,
    verify_auth_token,
    verify_delivery,
    verify_signature,
)

__all__ = [
    # Models
    "CanonicalResult",
    "Entry",
    "EntryCategory",
    "WebhookDelivery",
    "Detailed",
    "Hydrated",
    "HydrationFailed",
    "HydrationOutcome",
    "Thin",
    # Security
    "generate_signature",
    "verify_auth_token",
    "verify_delivery",
    "verify_signature",
    # Dedupe
    "ArchiveDedupChecker",
    "DedupChain",
    "DedupChecker",
    "DedupeContext",
    "VolatileDedupChecker",
    # Persistence
    "ArchiveRecord",
    "EventArchive",
    "WebhookEventLogger",
    # Enrichment
    "EntryEnricher",
    "time_of_day",
    # Pipeline
    "WebhookManager",
    "WebhookProcessor",
    "WebhookResponse",
    "build_webhook_manager",
    "get_webhook_manager",
    "set_webhook_manager",
]
