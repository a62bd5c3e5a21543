"""iOS Shortcuts webhook adapter.

Manual note, activity and food logs posted from phone shortcuts. Payloads
are already entry-shaped, so mapping is mostly validation.
"""

from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from webhook_ingest.errors import AdapterError
from webhook_ingest.providers.base import EndpointSpec, ProviderAdapter, coerce_id
from webhook_ingest.timeutils import is_valid_date, parse_timestamp, to_zone_date
from webhook_ingest.webhooks.models import (
    CanonicalResult,
    Entry,
    EntryCategory,
    WebhookDelivery,
)

# event_type -> (default name, default category)
IOS_ENDPOINTS: dict[str, tuple[str, EntryCategory]] = {
    "note": ("Note", EntryCategory.NOTE),
    "activity": ("Activity", EntryCategory.ACTIVITY),
    "food": ("Food item", EntryCategory.FOOD),
}


def extract_event_id(payload: Mapping[str, Any], delivery: WebhookDelivery | None = None) -> str | None:
    return coerce_id(payload.get("id"))


class IOSAdapter(ProviderAdapter):
    """Adapter for iOS Shortcuts logging endpoints."""

    source = "ios"

    def endpoints(self) -> list[EndpointSpec]:
        return [
            EndpointSpec(
                event_type=event_type,
                handler=self._handler_for(event_type),
                require_signature=self.require_signature,
                require_auth_token=self.require_auth_token,
                extract_event_id=extract_event_id,
            )
            for event_type in IOS_ENDPOINTS
        ]

    def _handler_for(self, event_type: str):
        async def handle(delivery: WebhookDelivery) -> CanonicalResult:
            return self.build_result(delivery, event_type)

        return handle

    def resolve_date(self, payload: Mapping[str, Any], delivery: WebhookDelivery, event_type: str) -> str:
        """Explicit ``date``, else the date of a full ``time`` timestamp, else today."""
        explicit = payload.get("date")
        if explicit is not None:
            if not is_valid_date(explicit):
                raise AdapterError(
                    "Date must be in YYYY-MM-DD format",
                    source=self.source,
                    event_type=event_type,
                    details={"date": explicit},
                )
            return explicit

        time_value = payload.get("time")
        if isinstance(time_value, str) and "T" in time_value:
            parsed = parse_timestamp(time_value, self.zone)
            if parsed is not None:
                return to_zone_date(parsed, self.zone)

        return to_zone_date(delivery.received_at, self.zone)

    def build_result(self, delivery: WebhookDelivery, event_type: str) -> CanonicalResult:
        """Build the canonical result for one shortcut payload.

        Raises:
            AdapterError: If the date or entry fields are invalid.
        """
        payload = delivery.payload
        default_name, default_category = IOS_ENDPOINTS[event_type]
        date = self.resolve_date(payload, delivery, event_type)

        category = payload.get("category") or default_category.value
        metadata = payload.get("metadata")

        try:
            entry = Entry(
                name=str(payload.get("name") or default_name),
                category=category,
                time=payload.get("time"),
                duration_minutes=payload.get("duration_minutes") if event_type == "activity" else None,
                notes=payload.get("notes"),
                tags=payload.get("tags") or [],
                metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
                metrics=payload.get("metrics") or {},
                source="ios_webhook",
            )
        except ValidationError as e:
            raise AdapterError(
                f"Invalid {event_type} payload: {e.error_count()} validation error(s)",
                source=self.source,
                event_type=event_type,
                details={"errors": [err["msg"] for err in e.errors()]},
            ) from e

        event_id = extract_event_id(payload)
        return CanonicalResult(
            date=date,
            entries=[entry],
            dedupe_key=event_id,
            event_id=event_id,
            summary=f"{entry.category.value}: {entry.name}",
            timezone=self.zone.key,
        )
