"""Data models for inbound webhook processing.

Defines the request-scoped delivery, the canonical result that provider
adapters produce, the log entry shape handed to the daily store, and the
tagged hydration outcome.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from webhook_ingest.timeutils import is_valid_date


class EntryCategory(str, Enum):
    """Category of a log entry."""

    FOOD = "food"
    DRINK = "drink"
    SNACK = "snack"
    SUPPLEMENT = "supplement"
    SUBSTANCE = "substance"
    NOTE = "note"
    ACTIVITY = "activity"
    TRAINING = "training"


def finite_number(value: Any) -> float | None:
    """Coerce a value to a finite float, or None.

    Numeric strings are accepted; booleans are not numbers here.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def dedupe_tags(tags: list[str]) -> list[str]:
    """Remove exact duplicates, keeping first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for tag in tags:
        if tag in seen:
            continue
        seen.add(tag)
        result.append(tag)
    return result


class Entry(BaseModel):
    """A normalized log entry.

    Created by an adapter, mutated in place by the enricher, then handed to
    the daily store.
    """

    model_config = ConfigDict(validate_assignment=False, use_enum_values=False)

    name: str = Field(..., min_length=1, description="Display name")
    category: EntryCategory = Field(..., description="Entry category")
    time: str | None = Field(default=None, description="Local wall-clock time (HH:MM)")
    duration_minutes: float | None = Field(default=None, ge=0)
    metrics: dict[str, float] = Field(
        default_factory=dict, description="Finite numeric metrics"
    )
    notes: str | None = Field(default=None)
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    source: str | None = Field(default=None, description="Origin, e.g. whoop_webhook")
    template: dict[str, Any] | None = Field(
        default=None, description="Category template attached by the enricher"
    )

    @field_validator("metrics", mode="before")
    @classmethod
    def _keep_finite_metrics(cls, value: Any) -> dict[str, float]:
        if not isinstance(value, dict):
            return {}
        cleaned: dict[str, float] = {}
        for key, raw in value.items():
            number = finite_number(raw)
            if number is not None:
                cleaned[str(key)] = number
        return cleaned

    @field_validator("tags", mode="before")
    @classmethod
    def _dedupe_tags(cls, value: Any) -> list[str]:
        if not value:
            return []
        return dedupe_tags([str(tag) for tag in value])


class CanonicalResult(BaseModel):
    """Provider-agnostic result produced by an adapter for one event."""

    date: str = Field(..., description="Event date (YYYY-MM-DD)")
    entries: list[Entry] = Field(default_factory=list)
    totals: dict[str, Any] | None = Field(default=None)
    metadata: dict[str, Any] | None = Field(default=None)
    response_body: Any | None = Field(default=None)
    status_code: int | None = Field(default=None, ge=100, le=599)
    dedupe_key: str | None = Field(default=None)
    event_id: str | None = Field(default=None)
    skip_store: bool = Field(default=False)
    summary: str | None = Field(default=None, description="One-line human summary")
    timezone: str | None = Field(default=None)
    attention_payload: dict[str, Any] | None = Field(
        default=None,
        description="Payload forwarded to the attention layer (defaults to the delivery payload)",
    )

    @field_validator("date")
    @classmethod
    def _validate_date(cls, value: str) -> str:
        if not is_valid_date(value):
            raise ValueError(f"date must be YYYY-MM-DD, got {value!r}")
        return value


class WebhookDelivery(BaseModel):
    """One inbound webhook HTTP call. Exists only for one request."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    source: str
    event_type: str
    headers: dict[str, str] = Field(default_factory=dict)
    raw_body: bytes = b""
    payload: dict[str, Any] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    path: str | None = None
    method: str = "POST"

    @field_validator("headers", mode="before")
    @classmethod
    def _lowercase_headers(cls, value: Any) -> dict[str, str]:
        if not value:
            return {}
        return {str(k).lower(): str(v) for k, v in dict(value).items()}

    def header(self, name: str | None) -> str | None:
        """Case-insensitive header lookup."""
        if not name:
            return None
        return self.headers.get(name.lower())


# ============================================================================
# Hydration Outcomes
# ============================================================================


@dataclass(frozen=True)
class Detailed:
    """Payload already carries the resource; no fetch needed."""

    payload: dict[str, Any]

    @property
    def effective(self) -> dict[str, Any]:
        return self.payload

    @property
    def hydrated(self) -> bool:
        return False


@dataclass(frozen=True)
class Thin:
    """Payload is an envelope only and no fetch was attempted."""

    payload: dict[str, Any]

    @property
    def effective(self) -> dict[str, Any]:
        return self.payload

    @property
    def hydrated(self) -> bool:
        return False


@dataclass(frozen=True)
class Hydrated:
    """Full resource fetched from the provider API."""

    payload: dict[str, Any]
    original: dict[str, Any] = field(default_factory=dict)

    @property
    def effective(self) -> dict[str, Any]:
        return self.payload

    @property
    def hydrated(self) -> bool:
        return True


@dataclass(frozen=True)
class HydrationFailed:
    """Fetch failed or timed out; processing continues with the thin payload."""

    payload: dict[str, Any]
    reason: str

    @property
    def effective(self) -> dict[str, Any]:
        return self.payload

    @property
    def hydrated(self) -> bool:
        return False


HydrationOutcome = Detailed | Thin | Hydrated | HydrationFailed
