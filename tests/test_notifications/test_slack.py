"""Tests for the Slack transport."""

import json

import httpx
import pytest

from webhook_ingest.config import SlackDispatchTarget
from webhook_ingest.notifications.models import (
    DispatchPayload,
    DispatchRequest,
    EventInfo,
    FollowUpAction,
)
from webhook_ingest.notifications.slack import SlackTransport, render_message

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def target():
    """Slack target with a mention."""
    return SlackDispatchTarget(channel_id="C123", mention_user_id="U42")


@pytest.fixture
def payload():
    """Fully populated dispatch payload."""
    return DispatchPayload(
        summary="Recovery 30%",
        escalation_level="urgent",
        context={"urgency_score": 9, "date": "2025-01-02"},
        event=EventInfo(source="whoop", kind="recovery", received_at="2025-01-02T18:00:00+00:00"),
        follow_up_actions=[FollowUpAction(label="Plan rest day", tool="calendar")],
    )


def _transport(target, tmp_path, handler=None, **kwargs):
    return SlackTransport(
        target,
        data_dir=tmp_path,
        env=kwargs.pop("env", {}),
        transport=httpx.MockTransport(handler) if handler else None,
        **kwargs,
    )


# ============================================================================
# render_message Tests
# ============================================================================


class TestRenderMessage:
    """Tests for Block Kit rendering."""

    def test_blocks(self, payload, target):
        """All payload parts are rendered as blocks."""
        _, blocks = render_message(payload, target)

        assert blocks[0]["text"]["text"] == "<@U42> *Recovery 30%*"
        assert blocks[1]["elements"][0]["text"] == ":warning: Escalation level: *URGENT*"
        assert blocks[2]["text"]["text"] == "• *urgency_score*: 9\n• *date*: 2025-01-02"
        assert blocks[3]["text"]["text"] == "*Suggested actions*\n• Plan rest day _(tool: calendar)_"
        assert blocks[4]["elements"][0]["text"] == (
            "Source: *whoop* • Kind: *recovery* • Received: 2025-01-02T18:00:00+00:00"
        )

    def test_fallback_text(self, payload, target):
        """The fallback text strips markup and lists follow-ups."""
        fallback, _ = render_message(payload, target)

        assert fallback.splitlines() == [
            "Recovery 30%",
            ":warning: Escalation level: URGENT",
            "• urgency_score: 9",
            "• date: 2025-01-02",
            "Follow-ups:",
            "• Plan rest day (tool: calendar)",
        ]

    def test_suppressed_mentions(self, payload):
        """Mentions can be suppressed."""
        target = SlackDispatchTarget(channel_id="C1", mention_user_id="U42", suppress_mentions=True)

        _, blocks = render_message(payload, target)

        assert blocks[0]["text"]["text"] == "*Recovery 30%*"

    def test_minimal_payload(self, target):
        """An empty payload still renders a headline."""
        fallback, blocks = render_message(DispatchPayload(), SlackDispatchTarget())

        assert fallback == "Attention alert"
        assert len(blocks) == 1


# ============================================================================
# Token resolution Tests
# ============================================================================


class TestResolveToken:
    """Tests for SlackTransport.resolve_token."""

    def test_env_token_first(self, target, tmp_path):
        """Dedicated env tokens win."""
        transport = _transport(
            target, tmp_path, env={"ATTENTION_SLACK_BOT_TOKEN": "xoxb-env"}, shared_token="shared"
        )

        assert transport.resolve_token() == "xoxb-env"

    def test_token_file(self, target, tmp_path):
        """The token file is read when no env token exists."""
        token_dir = tmp_path / "attention" / "slack"
        token_dir.mkdir(parents=True)
        (token_dir / "tokens.json").write_text(json.dumps({"botToken": "xoxb-file"}))

        assert _transport(target, tmp_path, shared_token="shared").resolve_token() == "xoxb-file"

    def test_shared_fallback(self, target, tmp_path):
        """The shared token is the last resort."""
        assert _transport(target, tmp_path, shared_token="shared").resolve_token() == "shared"

    def test_dedicated_required(self, tmp_path):
        """Targets requiring a dedicated token never use the shared one."""
        target = SlackDispatchTarget(channel_id="C1", use_dedicated_token=True)

        assert _transport(target, tmp_path, shared_token="shared").resolve_token() is None


# ============================================================================
# send Tests
# ============================================================================


class TestSend:
    """Tests for SlackTransport.send."""

    @pytest.mark.asyncio
    async def test_posts_message(self, target, payload, tmp_path):
        """Messages are posted with the resolved token."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True, "ts": "1700000000.0001"})

        transport = _transport(target, tmp_path, handler, shared_token="xoxb-shared")

        result = await transport(DispatchRequest(channel="slack", payload=payload))

        assert result.delivered is True
        assert result.message_id == "1700000000.0001"
        request = seen[0]
        assert request.url.path == "/api/chat.postMessage"
        assert request.headers["authorization"] == "Bearer xoxb-shared"
        body = json.loads(request.content)
        assert body["channel"] == "C123"
        assert body["text"].startswith("Recovery 30%")
        assert "thread_ts" not in body

    @pytest.mark.asyncio
    async def test_thread_reply(self, payload, tmp_path):
        """A configured thread is replied to."""
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"ok": True, "ts": "1"})

        target = SlackDispatchTarget(channel_id="C1", thread_ts="123.456")
        transport = _transport(target, tmp_path, handler, shared_token="tok")

        await transport.send(DispatchRequest(channel="slack", payload=payload))

        assert seen[0]["thread_ts"] == "123.456"

    @pytest.mark.asyncio
    async def test_slack_error(self, target, payload, tmp_path):
        """Slack API errors are reported as failed results."""
        transport = _transport(
            target,
            tmp_path,
            lambda request: httpx.Response(200, json={"ok": False, "error": "channel_not_found"}),
            shared_token="tok",
        )

        result = await transport.send(DispatchRequest(channel="slack", payload=payload))

        assert result.delivered is False
        assert result.error == "channel_not_found"

    @pytest.mark.asyncio
    async def test_not_configured(self, payload, tmp_path):
        """A target without a channel id is not configured."""
        transport = _transport(SlackDispatchTarget(), tmp_path, shared_token="tok")

        result = await transport.send(DispatchRequest(channel="slack", payload=payload))

        assert result.error == "slack_not_configured"

    @pytest.mark.asyncio
    async def test_no_token(self, target, payload, tmp_path):
        """Missing tokens fail closed."""
        result = await _transport(target, tmp_path).send(
            DispatchRequest(channel="slack", payload=payload)
        )

        assert result.delivered is False
        assert result.error == "slack_token_unavailable"

    @pytest.mark.asyncio
    async def test_unsupported_channel(self, target, payload, tmp_path):
        """Only the slack channel is handled."""
        result = await _transport(target, tmp_path, shared_token="tok").send(
            DispatchRequest(channel="email", payload=payload)
        )

        assert result.error == "unsupported_channel"
