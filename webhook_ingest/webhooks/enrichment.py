"""Entry enrichment.

Normalizes entry times into the reporting time zone, derives a time-of-day
bucket, attaches a category template and removes duplicate tags. Enriching
an already-enriched entry is a no-op.
"""

import re
from datetime import datetime, time
from typing import Any
from zoneinfo import ZoneInfo

import structlog

from webhook_ingest.timeutils import DATE_PATTERN, parse_timestamp
from webhook_ingest.webhooks.models import CanonicalResult, Entry, EntryCategory, dedupe_tags

logger = structlog.get_logger(__name__)

BARE_TIME_PATTERN = re.compile(
    r"^\s*(\d{1,2}):(\d{2})(?::(\d{2}))?\s*([ap])\.?\s*m\.?\s*$|^\s*(\d{1,2}):(\d{2})(?::(\d{2}))?\s*$",
    re.IGNORECASE,
)

TIME_OF_DAY_BUCKETS = ("morning", "afternoon", "evening", "night")

ACTIVITY_CATEGORIES = frozenset({EntryCategory.ACTIVITY, EntryCategory.TRAINING})
NUTRITION_CATEGORIES = frozenset(
    {
        EntryCategory.FOOD,
        EntryCategory.DRINK,
        EntryCategory.SNACK,
        EntryCategory.SUPPLEMENT,
        EntryCategory.SUBSTANCE,
    }
)


def time_of_day(hour: int) -> str:
    """Bucket a local hour: [5,12) morning, [12,17) afternoon, [17,21) evening, else night."""
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def _parse_bare_time(value: str) -> time | None:
    match = BARE_TIME_PATTERN.match(value)
    if not match:
        return None

    if match.group(1) is not None:
        hour, minute, second, meridiem = (
            int(match.group(1)),
            int(match.group(2)),
            int(match.group(3) or 0),
            match.group(4).lower(),
        )
        if not 1 <= hour <= 12:
            return None
        hour = hour % 12 + (12 if meridiem == "p" else 0)
    else:
        hour, minute, second = (
            int(match.group(5)),
            int(match.group(6)),
            int(match.group(7) or 0),
        )

    if hour > 23 or minute > 59 or second > 59:
        return None
    return time(hour, minute, second)


def build_template(entry: Entry) -> dict[str, Any] | None:
    """Category template derived only from the entry's own fields."""
    bucket = entry.metadata.get("time_of_day")

    if entry.category in ACTIVITY_CATEGORIES:
        return {
            "type": "activity_event",
            "name": entry.name,
            "category": entry.category.value,
            "time": entry.time,
            "time_of_day": bucket,
            "duration_minutes": entry.duration_minutes,
            "metrics": dict(entry.metrics),
        }

    if entry.category in NUTRITION_CATEGORIES:
        return {
            "type": "nutrition_event",
            "name": entry.name,
            "category": entry.category.value,
            "time": entry.time,
            "time_of_day": bucket,
            "quantity": entry.metadata.get("quantity"),
            "unit": entry.metadata.get("unit"),
            "calories": entry.metrics.get("calories"),
        }

    if entry.category == EntryCategory.NOTE:
        return {
            "type": "context_event",
            "name": entry.name,
            "time": entry.time,
            "time_of_day": bucket,
            "notes": entry.notes,
        }

    return None


class EntryEnricher:
    """Enriches canonical results in place."""

    def __init__(self, zone: ZoneInfo) -> None:
        self._zone = zone
        self._logger = logger.bind(component="entry_enricher")

    @property
    def zone(self) -> ZoneInfo:
        return self._zone

    def normalize_time(self, value: str, date: str) -> datetime | None:
        """Resolve a bare or full time string to an aware local datetime.

        Args:
            value: ``H:MM[:SS][am|pm]`` or an ISO-8601 timestamp.
            date: Event date used with bare times.

        Returns:
            Datetime in the reporting zone, or None when unparseable.
        """
        bare = _parse_bare_time(value)
        if bare is not None:
            try:
                day = datetime.fromisoformat(date).date()
            except ValueError:
                return None
            return datetime.combine(day, bare, tzinfo=self._zone)

        if DATE_PATTERN.match(value.strip()):
            return None

        parsed = parse_timestamp(value, self._zone)
        if parsed is None:
            return None
        return parsed.astimezone(self._zone)

    def enrich_entry(self, entry: Entry, date: str) -> str | None:
        """Enrich one entry in place.

        Returns:
            The entry's time-of-day bucket, if its time could be resolved.
        """
        bucket: str | None = None

        if entry.time:
            local = self.normalize_time(entry.time, date)
            if local is None:
                entry.metadata["original_time"] = entry.time
                self._logger.debug(
                    "entry_time_unparsed", name=entry.name, time=entry.time
                )
            else:
                bucket = time_of_day(local.hour)
                entry.time = local.strftime("%H:%M")
                entry.metadata["normalized_time"] = local.isoformat()
                entry.metadata["time_of_day"] = bucket
                entry.metadata.pop("original_time", None)

        tags = list(entry.tags)
        if bucket:
            tags.append(bucket)
        entry.tags = dedupe_tags(tags)

        entry.template = build_template(entry)
        return bucket

    def enrich(self, result: CanonicalResult) -> CanonicalResult:
        """Enrich every entry of a result and record the summary bucket."""
        buckets = [self.enrich_entry(entry, result.date) for entry in result.entries]

        summary_bucket = next((b for b in buckets if b), None)
        if summary_bucket:
            metadata = dict(result.metadata or {})
            metadata["time_of_day"] = summary_bucket
            result.metadata = metadata

        return result
