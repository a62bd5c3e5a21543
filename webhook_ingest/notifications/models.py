"""Models for attention routing and notification dispatch."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EscalationLevel(str, Enum):
    """How loudly an attention event should be surfaced."""

    MONITOR = "monitor"
    NOTIFY = "notify"
    URGENT = "urgent"


class AttentionEvent(BaseModel):
    """A processed webhook result forwarded to the attention layer."""

    source: str = Field(..., description="Webhook source, e.g. whoop")
    kind: str = Field(..., description="Event kind, e.g. sleep")
    payload: Any = Field(default=None, description="Provider payload or composed record")
    received_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    dedupe_key: str | None = Field(default=None)
    metadata: dict[str, Any] = Field(default_factory=dict)


class FollowUpAction(BaseModel):
    """A suggested action shown with a notification."""

    label: str
    tool: str | None = None
    args: dict[str, Any] = Field(default_factory=dict)


class EventInfo(BaseModel):
    """Footer details for a notification."""

    source: str
    kind: str
    received_at: str


class DispatchPayload(BaseModel):
    """Channel-agnostic rendered event descriptor."""

    summary: str | None = None
    escalation_level: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    event: EventInfo | None = None
    follow_up_actions: list[FollowUpAction] = Field(default_factory=list)


class DispatchRequest(BaseModel):
    """One notification to deliver on one channel."""

    channel: str
    audience: str = "default"
    payload: DispatchPayload = Field(default_factory=DispatchPayload)
    metadata: dict[str, Any] = Field(default_factory=dict)


class DispatchResult(BaseModel):
    """Outcome of a delivery attempt. Failures are values, not exceptions."""

    channel: str
    delivered: bool
    message_id: str | None = None
    error: str | None = None


class ClassificationResult(BaseModel):
    """Urgency estimate for an attention event."""

    urgency_score: int = Field(..., ge=0, le=10)
    relevance: str = Field(..., description="none, low, medium or high")
    filtered: bool = False
    reasons: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    version: str = "fallback-heuristic"


class ThresholdDecision(BaseModel):
    """Escalate-or-discard decision for a classified event."""

    action: str = Field(..., description="escalate or discard")
    threshold: int
    score: int
    rule_id: str
    notes: str | None = None


class AttentionOutcome(BaseModel):
    """Result of routing one attention event."""

    outcome: str = Field(..., description="discarded, escalated or dispatched")
    classification: ClassificationResult
    decision: ThresholdDecision
    dispatch_results: list[DispatchResult] = Field(default_factory=list)
