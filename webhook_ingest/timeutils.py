"""Time-zone helpers shared by adapters and the entry enricher."""

import math
import re
from datetime import UTC, date, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

logger = structlog.get_logger(__name__)

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Epoch values above this are treated as milliseconds
_EPOCH_MS_THRESHOLD = 1e11


def resolve_zone(name: str | None) -> ZoneInfo:
    """Resolve an IANA zone name, falling back to UTC when unknown."""
    if not name:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("unknown_timezone", timezone=name)
        return ZoneInfo("UTC")


def parse_timestamp(value: Any, zone: ZoneInfo) -> datetime | None:
    """Parse a provider timestamp into an aware datetime.

    Accepts ISO-8601 strings (including a trailing ``Z``), ``YYYY-MM-DD``
    dates, and epoch seconds or milliseconds. Naive values are interpreted
    in ``zone``.

    Args:
        value: Raw value from a payload.
        zone: Zone applied to naive values.

    Returns:
        Aware datetime, or None when the value cannot be parsed.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        seconds = value / 1000 if abs(value) > _EPOCH_MS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return parsed


def to_zone_date(value: datetime, zone: ZoneInfo) -> str:
    """Calendar date (YYYY-MM-DD) of ``value`` in ``zone``."""
    return value.astimezone(zone).date().isoformat()


def minutes_between(start: datetime | None, end: datetime | None) -> float | None:
    """Whole minutes between two instants, or None when unusable."""
    if start is None or end is None:
        return None
    delta: timedelta = end - start
    minutes = delta.total_seconds() / 60
    if minutes < 0:
        return None
    return round(minutes)


def now_in_zone(zone: ZoneInfo) -> datetime:
    """Current time in ``zone``."""
    return datetime.now(UTC).astimezone(zone)


def is_valid_date(value: Any) -> bool:
    """Check a ``YYYY-MM-DD`` string that also names a real calendar day."""
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True
