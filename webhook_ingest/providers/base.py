"""Base class and helpers for provider adapters.

An adapter owns one webhook source. It declares its endpoints, resolves
the event kind, decides whether a payload is thin, optionally hydrates it
through the provider API, and maps the effective record into canonical
results.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar
from zoneinfo import ZoneInfo

import structlog

from webhook_ingest.config import WebhookSourceConfig
from webhook_ingest.errors import AdapterError
from webhook_ingest.timeutils import parse_timestamp, to_zone_date
from webhook_ingest.webhooks.models import (
    CanonicalResult,
    Detailed,
    Hydrated,
    HydrationFailed,
    HydrationOutcome,
    Thin,
    WebhookDelivery,
    finite_number,
)

logger = structlog.get_logger(__name__)

# Keys that carry delivery bookkeeping rather than resource data
ENVELOPE_KEYS = frozenset(
    {
        "id",
        "user_id",
        "type",
        "trace_id",
        "subscription_id",
        "signature",
        "timestamp",
        "event_id",
        "resource_type",
        "resource_id",
        "object_type",
        "object_id",
    }
)

HandlerOutput = CanonicalResult | list[CanonicalResult] | None
Handler = Callable[[WebhookDelivery], Awaitable[HandlerOutput]]
EventIdExtractor = Callable[[Mapping[str, Any], WebhookDelivery], str | None]
Fetcher = Callable[[], Awaitable[dict[str, Any] | None]]


# ============================================================================
# Payload helpers
# ============================================================================


def is_thin_payload(payload: Any) -> bool:
    """True when only envelope keys remain and no data/record object exists."""
    if not isinstance(payload, Mapping):
        return True
    if isinstance(payload.get("data"), Mapping) or isinstance(payload.get("record"), Mapping):
        return False
    return all(key in ENVELOPE_KEYS for key in payload)


def _get_path(data: Any, path: str) -> Any:
    current = data
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def first_value(data: Any, *paths: str) -> Any:
    """First non-None value among dotted paths, or None."""
    for path in paths:
        value = _get_path(data, path)
        if value is not None:
            return value
    return None


def first_number(data: Any, *paths: str) -> float | None:
    """First value among dotted paths that parses as a finite number."""
    for path in paths:
        number = finite_number(_get_path(data, path))
        if number is not None:
            return number
    return None


def collect_metrics(data: Any, mapping: Mapping[str, tuple[str, ...]]) -> dict[str, float]:
    """Build a metrics dict from ``{metric: (fallback paths...)}``.

    Metrics with no finite value are left out.
    """
    metrics: dict[str, float] = {}
    for name, paths in mapping.items():
        number = first_number(data, *paths)
        if number is not None:
            metrics[name] = number
    return metrics


def coerce_id(value: Any) -> str | None:
    """Stringify an identifier; empty values and booleans become None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (str, int, float)):
        text = str(value).strip()
        return text or None
    return None


def clean_metadata(metadata: Mapping[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is None."""
    return {key: value for key, value in metadata.items() if value is not None}


@dataclass(frozen=True)
class EndpointSpec:
    """One webhook route exposed by an adapter."""

    event_type: str
    handler: Handler
    require_signature: bool = False
    require_auth_token: bool = False
    extract_event_id: EventIdExtractor | None = None


# ============================================================================
# Adapter base
# ============================================================================


class ProviderAdapter(ABC):
    """Base class for webhook source adapters."""

    source: ClassVar[str]

    def __init__(
        self,
        config: WebhookSourceConfig,
        *,
        zone: ZoneInfo,
        hydration_timeout: float = 10.0,
    ) -> None:
        """Initialize the adapter.

        Args:
            config: Immutable configuration for this source.
            zone: Reporting time zone.
            hydration_timeout: Upper bound on a provider fetch, in seconds.
        """
        self.config = config
        self.zone = zone
        self.hydration_timeout = hydration_timeout
        self._logger = logger.bind(component=f"{self.source}_adapter")

    @abstractmethod
    def endpoints(self) -> list[EndpointSpec]:
        """Endpoints this adapter serves."""

    def endpoint(self, event_type: str) -> EndpointSpec | None:
        """Look up an endpoint by event type."""
        for spec in self.endpoints():
            if spec.event_type == event_type:
                return spec
        return None

    @property
    def require_signature(self) -> bool:
        return self.config.requires_signature

    @property
    def require_auth_token(self) -> bool:
        return bool(self.config.auth_token)

    def delivery_id(self, delivery: WebhookDelivery) -> str | None:
        """Provider delivery id from the configured id header."""
        return coerce_id(delivery.header(self.config.id_header))

    async def aclose(self) -> None:
        """Release adapter resources."""
        return None

    # ------------------------------------------------------------------
    # Hydration
    # ------------------------------------------------------------------

    async def hydrate(
        self,
        payload: dict[str, Any],
        *,
        kind: str,
        event_id: str | None,
        fetch: Fetcher | None,
    ) -> HydrationOutcome:
        """Resolve the effective payload for a delivery.

        Detailed payloads are used as-is. Thin payloads with an event id are
        fetched through ``fetch`` with a bounded timeout; any failure falls
        back to the thin payload.

        Args:
            payload: Delivery payload.
            kind: Effective event kind.
            event_id: Provider resource id.
            fetch: Coroutine factory performing the provider call.

        Returns:
            Tagged hydration outcome.
        """
        if not is_thin_payload(payload):
            return Detailed(payload)

        if not event_id or fetch is None:
            return Thin(payload)

        try:
            fetched = await asyncio.wait_for(fetch(), timeout=self.hydration_timeout)
        except TimeoutError:
            reason = f"timeout after {self.hydration_timeout}s"
            self._logger.warning(
                "webhook_hydration_failed", kind=kind, event_id=event_id, reason=reason
            )
            return HydrationFailed(payload, reason)
        except Exception as e:
            self._logger.warning(
                "webhook_hydration_failed", kind=kind, event_id=event_id, reason=str(e)
            )
            return HydrationFailed(payload, str(e))

        if not isinstance(fetched, Mapping) or not fetched:
            reason = "resource not found"
            self._logger.warning(
                "webhook_hydration_failed", kind=kind, event_id=event_id, reason=reason
            )
            return HydrationFailed(payload, reason)

        self._logger.info("webhook_hydrated", kind=kind, event_id=event_id)
        return Hydrated(dict(fetched), original=payload)

    # ------------------------------------------------------------------
    # Dates
    # ------------------------------------------------------------------

    def derive_date(
        self,
        *candidates: Any,
        event_type: str,
        fallback: datetime | None = None,
    ) -> str:
        """Event date in the reporting zone from the first parseable candidate.

        Args:
            candidates: Timestamps in preference order.
            event_type: Endpoint event type, for error context.
            fallback: Instant used when no candidate parses.

        Returns:
            ``YYYY-MM-DD``.

        Raises:
            AdapterError: If no date can be derived.
        """
        for candidate in candidates:
            parsed = parse_timestamp(candidate, self.zone)
            if parsed is not None:
                return to_zone_date(parsed, self.zone)

        if fallback is not None:
            return to_zone_date(fallback, self.zone)

        raise AdapterError(
            "Cannot derive event date from payload",
            source=self.source,
            event_type=event_type,
        )
