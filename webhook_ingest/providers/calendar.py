"""Calendar webhook adapter.

Accepts calendar event notifications pushed by a calendar bridge. Deliveries
must always carry the configured bearer token.
"""

from collections.abc import Mapping
from typing import Any

from webhook_ingest.providers.base import (
    EndpointSpec,
    ProviderAdapter,
    clean_metadata,
    coerce_id,
    first_value,
)
from webhook_ingest.timeutils import minutes_between, parse_timestamp
from webhook_ingest.webhooks.models import (
    CanonicalResult,
    Entry,
    EntryCategory,
    WebhookDelivery,
)

DEFAULT_TITLE = "Calendar Event"


def extract_event_id(payload: Mapping[str, Any], delivery: WebhookDelivery | None = None) -> str | None:
    return coerce_id(first_value(payload, "id", "eventId", "event_id", "data.id"))


def _event_time(value: Any) -> Any:
    # Google-style {"dateTime": ..., "date": ...}
    if isinstance(value, Mapping):
        return value.get("dateTime") or value.get("date")
    return value


class CalendarAdapter(ProviderAdapter):
    """Adapter for calendar event webhooks."""

    source = "calendar"

    def endpoints(self) -> list[EndpointSpec]:
        return [
            EndpointSpec(
                event_type="event",
                handler=self.handle_event,
                require_signature=self.require_signature,
                require_auth_token=True,
                extract_event_id=extract_event_id,
            )
        ]

    async def handle_event(self, delivery: WebhookDelivery) -> CanonicalResult | None:
        """Map a calendar event into an activity entry.

        Events from calendars outside ``calendar_ids`` (when configured) are
        ignored and produce no result.
        """
        payload = delivery.payload
        start = _event_time(first_value(payload, "start", "startTime", "start_date"))
        end = _event_time(first_value(payload, "end", "endTime", "end_date"))
        title = first_value(payload, "title", "summary") or DEFAULT_TITLE
        calendar_id = coerce_id(first_value(payload, "calendarId", "calendar_id"))
        status = first_value(payload, "status", "data.status")
        event_id = extract_event_id(payload)

        allowed = self.config.calendar_ids
        if allowed and calendar_id not in allowed:
            self._logger.info(
                "calendar_event_ignored", calendar_id=calendar_id, event_id=event_id
            )
            return None

        date = self.derive_date(start, end, event_type="event")

        entry = Entry(
            name=str(title),
            category=EntryCategory.ACTIVITY,
            time=str(start) if start is not None else None,
            duration_minutes=minutes_between(
                parse_timestamp(start, self.zone), parse_timestamp(end, self.zone)
            ),
            notes=str(status) if status is not None else None,
            metadata=clean_metadata(
                {
                    "calendar_id": calendar_id,
                    "event_id": event_id,
                    "location": payload.get("location"),
                    "attendees": payload.get("attendees"),
                    "status": status,
                }
            ),
        )

        version = coerce_id(first_value(payload, "updated", "etag", "sequence"))
        dedupe_key = f"{event_id}:{version}" if event_id and version else event_id

        return CanonicalResult(
            date=date,
            entries=[entry],
            dedupe_key=dedupe_key,
            event_id=event_id,
            summary=f"Calendar: {title}",
            timezone=self.zone.key,
        )
