"""Attention routing and notification dispatch.

This module provides:
- AttentionRouter: heuristic classification and threshold decisions
- NotificationDispatcher: channel routing that never raises
- SlackTransport: Slack Block Kit rendering and delivery
"""

from webhook_ingest.notifications.attention import AttentionRouter, classify
from webhook_ingest.notifications.dispatcher import NotificationDispatcher
from webhook_ingest.notifications.models import (
    AttentionEvent,
    AttentionOutcome,
    ClassificationResult,
    DispatchPayload,
    DispatchRequest,
    DispatchResult,
    EscalationLevel,
    FollowUpAction,
    ThresholdDecision,
)
from webhook_ingest.notifications.slack import SlackTransport, render_message

__all__ = [
    "AttentionEvent",
    "AttentionOutcome",
    "AttentionRouter",
    "ClassificationResult",
    "DispatchPayload",
    "DispatchRequest",
    "DispatchResult",
    "EscalationLevel",
    "FollowUpAction",
    "NotificationDispatcher",
    "SlackTransport",
    "ThresholdDecision",
    "classify",
    "render_message",
]
