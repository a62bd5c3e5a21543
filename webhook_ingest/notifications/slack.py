"""Slack notification transport.

Renders a dispatch payload into Block Kit blocks plus a plain-text
fallback and posts it with ``chat.postMessage``.
"""

import json
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import httpx
import structlog

from webhook_ingest.config import SlackDispatchTarget
from webhook_ingest.notifications.models import DispatchPayload, DispatchRequest, DispatchResult

logger = structlog.get_logger(__name__)

SLACK_API_URL = "https://slack.com/api"
DEDICATED_TOKEN_ENV_VARS = ("ATTENTION_SLACK_USER_TOKEN", "ATTENTION_SLACK_BOT_TOKEN")

# *bold* and _italic_ spans; underscores inside words are left alone
_BOLD = re.compile(r"\*([^*]+)\*")
_ITALIC = re.compile(r"(?<!\w)_([^_]+)_(?!\w)")


def _strip_markup(text: str) -> str:
    return _ITALIC.sub(r"\1", _BOLD.sub(r"\1", text))


def render_message(
    payload: DispatchPayload,
    target: SlackDispatchTarget,
) -> tuple[str, list[dict[str, Any]]]:
    """Render a dispatch payload for Slack.

    Args:
        payload: Rendered event descriptor.
        target: Slack target (mention settings).

    Returns:
        Tuple of (plain-text fallback, blocks).
    """
    summary = payload.summary or "Attention alert"
    escalation = (
        f":warning: Escalation level: *{payload.escalation_level.upper()}*"
        if payload.escalation_level
        else None
    )
    context_lines = [
        f"• *{key}*: {value if isinstance(value, str) else json.dumps(value, default=str)}"
        for key, value in payload.context.items()
    ]
    follow_ups = [
        f"• {action.label}" + (f" _(tool: {action.tool})_" if action.tool else "")
        for action in payload.follow_up_actions
    ]
    mention = (
        f"<@{target.mention_user_id}> "
        if target.mention_user_id and not target.suppress_mentions
        else ""
    )

    blocks: list[dict[str, Any]] = [
        {"type": "section", "text": {"type": "mrkdwn", "text": f"{mention}*{summary}*"}}
    ]
    if escalation:
        blocks.append(
            {"type": "context", "elements": [{"type": "mrkdwn", "text": escalation}]}
        )
    if context_lines:
        blocks.append(
            {"type": "section", "text": {"type": "mrkdwn", "text": "\n".join(context_lines)}}
        )
    if follow_ups:
        blocks.append(
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": "*Suggested actions*\n" + "\n".join(follow_ups),
                },
            }
        )
    if payload.event is not None:
        footer = (
            f"Source: *{payload.event.source}* • Kind: *{payload.event.kind}* "
            f"• Received: {payload.event.received_at}"
        )
        blocks.append({"type": "context", "elements": [{"type": "mrkdwn", "text": footer}]})

    fallback_parts = [summary]
    if escalation:
        fallback_parts.append(_strip_markup(escalation))
    if context_lines:
        fallback_parts.append("\n".join(_strip_markup(line) for line in context_lines))
    if follow_ups:
        fallback_parts.append(
            "Follow-ups:\n" + "\n".join(_strip_markup(line) for line in follow_ups)
        )

    return "\n".join(fallback_parts), blocks


class SlackTransport:
    """Delivers dispatch requests to a Slack channel.

    Token resolution order:
    1. ``ATTENTION_SLACK_USER_TOKEN`` / ``ATTENTION_SLACK_BOT_TOKEN``
    2. ``<data_dir>/attention/slack/tokens.json``
    3. the shared token, unless the target requires a dedicated one
    """

    channel = "slack"

    def __init__(
        self,
        target: SlackDispatchTarget,
        *,
        data_dir: Path | str,
        shared_token: str | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            target: Channel and mention settings.
            data_dir: Data directory root (token file location).
            shared_token: Shared account token used as last resort.
            env: Environment mapping (defaults to ``os.environ``).
            timeout: HTTP timeout in seconds.
            transport: Optional httpx transport (tests use MockTransport).
        """
        self.target = target
        self.token_file = Path(data_dir) / "attention" / "slack" / "tokens.json"
        self._shared_token = shared_token
        self._env = os.environ if env is None else env
        self._timeout = timeout
        self._transport = transport
        self._logger = logger.bind(component="slack_transport")

    def _dedicated_token(self) -> str | None:
        for name in DEDICATED_TOKEN_ENV_VARS:
            value = self._env.get(name)
            if value:
                return value

        try:
            data = json.loads(self.token_file.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            self._logger.warning(
                "slack_token_file_unreadable", path=str(self.token_file), error=str(e)
            )
            return None

        if isinstance(data, str):
            return data or None
        if isinstance(data, Mapping):
            return data.get("userToken") or data.get("botToken") or None
        return None

    def resolve_token(self) -> str | None:
        """Token to post with, or None when unavailable (fail closed)."""
        dedicated = self._dedicated_token()
        if dedicated:
            return dedicated

        if self.target.use_dedicated_token:
            self._logger.error("slack_dedicated_token_missing")
            return None

        return self._shared_token or None

    async def __call__(self, request: DispatchRequest) -> DispatchResult:
        return await self.send(request)

    async def send(self, request: DispatchRequest) -> DispatchResult:
        """Post a notification. Never raises."""
        if not self.target.channel_id:
            self._logger.warning("slack_not_configured")
            return DispatchResult(
                channel=request.channel, delivered=False, error="slack_not_configured"
            )

        if request.channel != self.channel:
            return DispatchResult(
                channel=request.channel, delivered=False, error="unsupported_channel"
            )

        token = self.resolve_token()
        if not token:
            return DispatchResult(
                channel=request.channel, delivered=False, error="slack_token_unavailable"
            )

        fallback, blocks = render_message(request.payload, self.target)
        body: dict[str, Any] = {
            "channel": self.target.channel_id,
            "text": fallback,
            "blocks": blocks,
            "unfurl_links": False,
            "unfurl_media": False,
        }
        if self.target.thread_ts:
            body["thread_ts"] = self.target.thread_ts

        try:
            async with httpx.AsyncClient(
                base_url=SLACK_API_URL, timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    "/chat.postMessage",
                    json=body,
                    headers={"Authorization": f"Bearer {token}"},
                )
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            self._logger.error("slack_dispatch_failed", error=str(e))
            return DispatchResult(channel=request.channel, delivered=False, error=str(e))

        if not isinstance(data, dict):
            data = {}
        if not response.is_success or not data.get("ok"):
            error = data.get("error") or f"HTTP {response.status_code}"
            self._logger.error(
                "slack_dispatch_rejected", status_code=response.status_code, error=error
            )
            return DispatchResult(channel=request.channel, delivered=False, error=error)

        return DispatchResult(
            channel=request.channel, delivered=True, message_id=data.get("ts")
        )
