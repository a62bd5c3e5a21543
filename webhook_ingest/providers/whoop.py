"""WHOOP webhook adapter.

WHOOP sends sleep, recovery and workout notifications. Many deliveries are
thin envelopes (``{"id": ..., "type": "sleep.updated"}``), so the adapter
hydrates them through the WHOOP API before mapping them into entries.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo

from webhook_ingest.config import WebhookSourceConfig
from webhook_ingest.errors import AdapterError
from webhook_ingest.providers.base import (
    EndpointSpec,
    ProviderAdapter,
    clean_metadata,
    coerce_id,
    collect_metrics,
    first_value,
)
from webhook_ingest.providers.whoop_client import ProviderAPIClient
from webhook_ingest.timeutils import minutes_between, parse_timestamp, to_zone_date
from webhook_ingest.webhooks.models import (
    CanonicalResult,
    Entry,
    EntryCategory,
    HydrationFailed,
    HydrationOutcome,
    Thin,
    WebhookDelivery,
)


class WhoopKind(str, Enum):
    """WHOOP resource kinds with a dedicated endpoint."""

    SLEEP = "sleep"
    RECOVERY = "recovery"
    WORKOUT = "workout"


EVENT_ID_FIELDS = (
    "id",
    "uuid",
    "sleep_id",
    "recovery_id",
    "workout_id",
    "cycle_id",
    "event_id",
    "data.id",
    "data.uuid",
)

# Sports renamed for display
SPORT_NAMES = {"lacrosse": "Kendama training"}

SLEEP_METRICS: dict[str, tuple[str, ...]] = {
    "strain": ("score.strain", "strain"),
    "heart_rate_avg": ("average_heart_rate", "score.average_heart_rate"),
    "calories": ("calorie_burn", "score.calories_burned"),
    "respiratory_rate": ("respiratory_rate", "score.respiratory_rate"),
}

RECOVERY_METRICS: dict[str, tuple[str, ...]] = {
    "strain": ("strain",),
    "heart_rate_avg": ("resting_heart_rate", "score.resting_heart_rate"),
    "hrv": ("heart_rate_variability", "hrv", "score.hrv_rmssd_milli"),
}

WORKOUT_METRICS: dict[str, tuple[str, ...]] = {
    "strain": ("strain", "score.strain"),
    "heart_rate_avg": ("average_heart_rate", "heart_rate_avg", "score.average_heart_rate"),
    "calories": ("calorie_burn", "calories"),
    "kilojoules": ("kilojoule", "score.kilojoule"),
    "reps": ("reps",),
    "sets": ("sets",),
}


def extract_event_id(payload: Mapping[str, Any], delivery: WebhookDelivery | None = None) -> str | None:
    """Provider event id from the first populated id field."""
    return coerce_id(first_value(payload, *EVENT_ID_FIELDS))


def resolve_kind(raw_type: str | None, fallback: WhoopKind) -> WhoopKind:
    """Kind named by the payload ``type`` (substring match), else the fallback."""
    if not raw_type:
        return fallback
    value = raw_type.lower()
    if "sleep" in value:
        return WhoopKind.SLEEP
    if "recovery" in value:
        return WhoopKind.RECOVERY
    if "workout" in value or "activity" in value:
        return WhoopKind.WORKOUT
    return fallback


def sport_name(value: Any) -> str:
    """Display name for a WHOOP sport, defaulting to "Workout"."""
    if not isinstance(value, str) or not value.strip():
        return "Workout"
    lowered = value.strip().lower()
    if lowered in SPORT_NAMES:
        return SPORT_NAMES[lowered]
    return lowered[0].upper() + lowered[1:]


def unwrap_record(payload: Any) -> dict[str, Any]:
    """Resource body from ``record``, ``data`` or ``sleep`` wrappers."""
    if not isinstance(payload, Mapping):
        return {}
    for key in ("record", "data", "sleep"):
        nested = payload.get(key)
        if isinstance(nested, Mapping):
            return dict(nested)
    return dict(payload)


@dataclass(frozen=True)
class WhoopEvent:
    """A WHOOP delivery after kind resolution and hydration."""

    kind: WhoopKind
    outcome: HydrationOutcome
    event_id: str | None
    raw_type: str | None
    kind_mismatch: bool
    original: dict[str, Any] = field(default_factory=dict)

    @property
    def record(self) -> dict[str, Any]:
        return unwrap_record(self.outcome.effective)

    @property
    def hydrated(self) -> bool:
        return self.outcome.hydrated


def decorate_metadata(event: WhoopEvent, extra: Mapping[str, Any]) -> dict[str, Any]:
    """Entry metadata with webhook provenance."""
    metadata = clean_metadata(extra)
    metadata["webhook_kind"] = event.kind.value
    if event.raw_type:
        metadata["webhook_event_type"] = event.raw_type
        metadata["original_type"] = event.raw_type
    metadata["webhook_kind_mismatch"] = event.kind_mismatch
    metadata["webhook_hydrated"] = event.hydrated
    if isinstance(event.outcome, HydrationFailed):
        metadata["webhook_hydration_error"] = event.outcome.reason
    for key in ("trace_id", "user_id"):
        if event.original.get(key) is not None:
            metadata[key] = event.original[key]
    return metadata


def compose_attention_payload(event: WhoopEvent) -> dict[str, Any]:
    """Effective record plus ``_webhook_*`` markers for the attention layer."""
    payload: dict[str, Any] = dict(event.record)
    payload["_webhook_kind"] = event.kind.value
    if event.raw_type:
        payload["_webhook_event_type"] = event.raw_type
    if event.kind_mismatch:
        payload["_webhook_kind_mismatch"] = True
    if event.hydrated:
        payload["_webhook_hydrated"] = True
        payload["_webhook_original"] = event.original
    if event.event_id and "id" not in payload:
        payload["id"] = event.event_id
    for key in ("trace_id", "user_id"):
        if event.original.get(key) is not None and key not in payload:
            payload[key] = event.original[key]
    return payload


class WhoopAdapter(ProviderAdapter):
    """Adapter for WHOOP sleep, recovery and workout webhooks."""

    source = "whoop"

    def __init__(
        self,
        config: WebhookSourceConfig,
        *,
        zone: ZoneInfo,
        client: ProviderAPIClient | None = None,
        hydration_timeout: float = 10.0,
    ) -> None:
        super().__init__(config, zone=zone, hydration_timeout=hydration_timeout)
        self._client = client

    def endpoints(self) -> list[EndpointSpec]:
        return [
            EndpointSpec(
                event_type=kind.value,
                handler=self._handler_for(kind),
                require_signature=self.require_signature,
                require_auth_token=self.require_auth_token,
                extract_event_id=extract_event_id,
            )
            for kind in WhoopKind
        ]

    def _handler_for(self, fallback: WhoopKind):
        async def handle(delivery: WebhookDelivery) -> CanonicalResult:
            return await self.handle(delivery, fallback)

        return handle

    async def aclose(self) -> None:
        close = getattr(self._client, "aclose", None)
        if close is not None:
            await close()

    async def resolve_event(self, payload: dict[str, Any], fallback: WhoopKind) -> WhoopEvent:
        """Resolve kind and hydrate a delivery payload."""
        raw_type = payload.get("type") if isinstance(payload.get("type"), str) else None
        kind = resolve_kind(raw_type, fallback)
        kind_mismatch = kind != fallback
        if kind_mismatch:
            self._logger.info(
                "whoop_kind_mismatch",
                expected=fallback.value,
                resolved=kind.value,
                raw_type=raw_type,
            )

        event_id = extract_event_id(payload)
        fetch = None
        if self._client is not None and event_id:
            client = self._client

            async def fetch() -> dict[str, Any] | None:
                return await client.fetch(kind.value, event_id)

        outcome = await self.hydrate(payload, kind=kind.value, event_id=event_id, fetch=fetch)
        return WhoopEvent(
            kind=kind,
            outcome=outcome,
            event_id=event_id,
            raw_type=raw_type,
            kind_mismatch=kind_mismatch,
            original=payload,
        )

    async def handle(self, delivery: WebhookDelivery, fallback: WhoopKind) -> CanonicalResult:
        """Map one WHOOP delivery to a canonical result."""
        event = await self.resolve_event(delivery.payload, fallback)
        if event.kind == WhoopKind.SLEEP:
            result = self._sleep_result(event, delivery)
        elif event.kind == WhoopKind.RECOVERY:
            result = self._recovery_result(event, delivery)
        else:
            result = self._workout_result(event, delivery)

        result.attention_payload = compose_attention_payload(event)
        result.timezone = self.zone.key
        return result

    def _event_date(
        self, event: WhoopEvent, delivery: WebhookDelivery, *candidates: Any
    ) -> tuple[str, str | None]:
        """Event date plus its provenance when the receipt day stood in.

        Only envelopes that were never hydrated fall back to ``received_at``;
        a full record without timestamps is an invalid payload.

        Raises:
            AdapterError: If a full record carries no usable timestamp.
        """
        try:
            return self.derive_date(*candidates, event_type=event.kind.value), None
        except AdapterError:
            if not isinstance(event.outcome, (Thin, HydrationFailed)):
                raise
        return to_zone_date(delivery.received_at, self.zone), "received_at"

    # ------------------------------------------------------------------
    # Kind mappers
    # ------------------------------------------------------------------

    def _sleep_result(self, event: WhoopEvent, delivery: WebhookDelivery) -> CanonicalResult:
        record = event.record
        start = first_value(record, "start", "start_time", "sleep_start")
        end = first_value(record, "end", "end_time", "sleep_end")
        stages = first_value(record, "score.stage_summary")
        date, date_source = self._event_date(event, delivery, end, start)

        entry = Entry(
            name="Sleep session",
            category=EntryCategory.ACTIVITY,
            time=_as_text(end or start),
            duration_minutes=minutes_between(
                parse_timestamp(start, self.zone), parse_timestamp(end, self.zone)
            ),
            metrics=collect_metrics(record, SLEEP_METRICS),
            notes=f"Stages: {stages}" if stages else None,
            metadata=decorate_metadata(
                event,
                {
                    "whoop_id": event.event_id,
                    "cycle_id": first_value(record, "cycle_id", "cycle.id"),
                    "sleep_id": first_value(record, "id", "sleep_id"),
                    "sleep_performance": first_value(
                        record,
                        "score.sleep_performance_percentage",
                        "score.sleep_performance",
                        "sleep_performance_percentage",
                    ),
                    "date_source": date_source,
                },
            ),
        )
        return CanonicalResult(
            date=date,
            entries=[entry],
            dedupe_key=event.event_id,
            event_id=event.event_id,
            summary=_summary("Sleep session", entry.duration_minutes),
        )

    def _recovery_result(self, event: WhoopEvent, delivery: WebhookDelivery) -> CanonicalResult:
        record = event.record
        captured_at = first_value(record, "recorded_at", "created_at", "timestamp")
        date, date_source = self._event_date(event, delivery, captured_at)
        score = first_value(
            record,
            "recovery_score",
            "score.recovery_score",
            "status",
            "sleep_performance_percentage",
        )
        if score is None and not isinstance(record.get("score"), Mapping):
            score = record.get("score")

        if isinstance(score, (int, float)) and not isinstance(score, bool):
            notes = f"Recovery {score:g}%"
        else:
            notes = _as_text(score)

        entry = Entry(
            name="WHOOP Recovery",
            category=EntryCategory.NOTE,
            time=_as_text(captured_at),
            metrics=collect_metrics(record, RECOVERY_METRICS),
            notes=notes,
            metadata=decorate_metadata(
                event,
                {
                    "whoop_id": event.event_id,
                    "recovery_score": score,
                    "hrv": first_value(record, "heart_rate_variability", "hrv", "score.hrv_rmssd_milli"),
                    "sleep_need": record.get("sleep_need"),
                    "date_source": date_source,
                },
            ),
        )
        return CanonicalResult(
            date=date,
            entries=[entry],
            dedupe_key=event.event_id,
            event_id=event.event_id,
            summary=notes or "WHOOP Recovery",
        )

    def _workout_result(self, event: WhoopEvent, delivery: WebhookDelivery) -> CanonicalResult:
        record = event.record
        start = first_value(record, "start", "start_time")
        end = first_value(record, "end", "end_time")
        sport = first_value(record, "sport", "sport_type", "sport_name", "segment_type")
        name = sport_name(sport)
        date, date_source = self._event_date(event, delivery, end, start)

        entry = Entry(
            name=name,
            category=EntryCategory.ACTIVITY,
            time=_as_text(start),
            duration_minutes=minutes_between(
                parse_timestamp(start, self.zone), parse_timestamp(end, self.zone)
            ),
            metrics=collect_metrics(record, WORKOUT_METRICS),
            notes=_as_text(first_value(record, "notes", "description")),
            metadata=decorate_metadata(
                event,
                {
                    "whoop_id": event.event_id,
                    "sport": sport,
                    "intensity_zones": record.get("intensity_zones"),
                    "score": record.get("score"),
                    "date_source": date_source,
                },
            ),
        )
        return CanonicalResult(
            date=date,
            entries=[entry],
            dedupe_key=event.event_id,
            event_id=event.event_id,
            summary=_summary(name, entry.duration_minutes),
        )


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _summary(name: str, duration: float | None) -> str:
    if duration is None:
        return name
    return f"{name} ({duration:g} min)"
