"""Attention routing for processed webhook events.

Scores each event with a heuristic classifier, compares the score with the
per ``source:kind`` threshold, and dispatches escalated events to the
source's preferred channels.
"""

from collections.abc import Iterator
from typing import Any

import structlog

from webhook_ingest.config import AttentionConfig
from webhook_ingest.notifications.dispatcher import NotificationDispatcher
from webhook_ingest.notifications.models import (
    AttentionEvent,
    AttentionOutcome,
    ClassificationResult,
    DispatchPayload,
    DispatchRequest,
    EscalationLevel,
    EventInfo,
    FollowUpAction,
    ThresholdDecision,
)
from webhook_ingest.webhooks.models import finite_number

logger = structlog.get_logger(__name__)

URGENT_KEYWORDS = ("urgent", "asap", "notify user", "notify asap", "immediately")
URGENT_SCORE = 9
DEFAULT_SCORE = 3
MAX_SCORE = 10


def _strings(value: Any) -> Iterator[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _strings(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _strings(item)


def classify(event: AttentionEvent) -> ClassificationResult:
    """Heuristic urgency score.

    Metadata ``priority`` wins (capped at 10); urgent keywords anywhere in
    the payload or metadata, or a ``critical`` kind, score 9; otherwise 3.
    """
    priority = finite_number(event.metadata.get("priority"))
    reasons = ["fallback_heuristic"]

    if priority is not None and priority > 0:
        score = min(MAX_SCORE, int(priority))
        reasons.append("metadata_priority")
    else:
        text = " ".join([*_strings(event.payload), *_strings(event.metadata)]).lower()
        if any(keyword in text for keyword in URGENT_KEYWORDS):
            score = URGENT_SCORE
            reasons.append("urgent_keyword")
        elif "critical" in event.kind.lower():
            score = URGENT_SCORE
            reasons.append("critical_kind")
        else:
            score = DEFAULT_SCORE

    if score >= 7:
        relevance = "high"
    elif score >= 4:
        relevance = "medium"
    else:
        relevance = "low"

    return ClassificationResult(
        urgency_score=score,
        relevance=relevance,
        filtered=score < 1,
        reasons=reasons,
    )


class AttentionRouter:
    """Classifies attention events and dispatches the ones worth escalating."""

    def __init__(
        self,
        config: AttentionConfig,
        dispatcher: NotificationDispatcher,
    ) -> None:
        self._config = config
        self._dispatcher = dispatcher
        self._logger = logger.bind(component="attention_router")

    def decide(self, event: AttentionEvent, classification: ClassificationResult) -> ThresholdDecision:
        """Escalate when the score reaches the ``source:kind`` threshold."""
        rule_id = f"{event.source}:{event.kind}"
        threshold = self._config.threshold_for(event.source, event.kind)
        escalate = classification.urgency_score >= threshold
        decision = ThresholdDecision(
            action="escalate" if escalate else "discard",
            threshold=threshold,
            score=classification.urgency_score,
            rule_id=rule_id,
            notes="score_above_threshold" if escalate else "below_threshold",
        )
        self._logger.debug(
            "threshold_decision",
            rule_id=rule_id,
            action=decision.action,
            score=decision.score,
            threshold=threshold,
        )
        return decision

    def build_requests(
        self,
        event: AttentionEvent,
        classification: ClassificationResult,
    ) -> list[DispatchRequest]:
        """Dispatch requests for each preferred channel of the event's source."""
        channels = self._config.channels_for(event.source)
        if not channels:
            self._logger.info("no_attention_channels", source=event.source)
            return []

        level = (
            EscalationLevel.URGENT
            if classification.urgency_score >= URGENT_SCORE
            else EscalationLevel.NOTIFY
        )
        summary = event.metadata.get("summary") or f"{event.source} {event.kind} event"
        context: dict[str, Any] = {
            "urgency_score": classification.urgency_score,
            "reasons": ", ".join(classification.reasons),
        }
        if event.dedupe_key:
            context["dedupe_key"] = event.dedupe_key
        if event.metadata.get("date"):
            context["date"] = event.metadata["date"]

        actions = [
            FollowUpAction.model_validate(action)
            for action in event.metadata.get("follow_up_actions", [])
            if isinstance(action, dict) and action.get("label")
        ]

        payload = DispatchPayload(
            summary=str(summary),
            escalation_level=level.value,
            context=context,
            event=EventInfo(
                source=event.source,
                kind=event.kind,
                received_at=event.received_at.isoformat(),
            ),
            follow_up_actions=actions,
        )
        audience = event.metadata.get("audience") or "default"
        return [
            DispatchRequest(channel=channel, audience=str(audience), payload=payload)
            for channel in channels
        ]

    async def submit(self, event: AttentionEvent) -> AttentionOutcome:
        """Route one event.

        Returns:
            Outcome with the classification, decision and any dispatch results.
        """
        classification = classify(event)
        decision = self.decide(event, classification)

        if decision.action == "discard":
            return AttentionOutcome(
                outcome="discarded", classification=classification, decision=decision
            )

        requests = self.build_requests(event, classification)
        if not requests:
            return AttentionOutcome(
                outcome="escalated", classification=classification, decision=decision
            )

        results = await self._dispatcher.dispatch(requests)
        self._logger.info(
            "attention_dispatched",
            source=event.source,
            kind=event.kind,
            score=classification.urgency_score,
            delivered=sum(1 for result in results if result.delivered),
        )
        return AttentionOutcome(
            outcome="dispatched",
            classification=classification,
            decision=decision,
            dispatch_results=results,
        )
