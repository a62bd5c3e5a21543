"""Tests for the notification dispatcher."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from webhook_ingest.notifications.dispatcher import NotificationDispatcher
from webhook_ingest.notifications.models import DispatchPayload, DispatchRequest, DispatchResult

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def request_slack():
    """Dispatch request for the slack channel."""
    return DispatchRequest(channel="slack", payload=DispatchPayload(summary="Low recovery"))


@pytest.fixture
def ok_transport():
    """Transport that always delivers."""
    return AsyncMock(
        side_effect=lambda request: DispatchResult(
            channel=request.channel, delivered=True, message_id="m-1"
        )
    )


# ============================================================================
# Registration Tests
# ============================================================================


class TestTransportRegistration:
    """Tests for transport registration."""

    def test_register_and_remove(self, ok_transport):
        """Transports are keyed by channel."""
        dispatcher = NotificationDispatcher()

        dispatcher.register_transport("slack", ok_transport)
        assert dispatcher.channels == ["slack"]

        dispatcher.remove_transport("slack")
        assert dispatcher.channels == []

    def test_remove_unknown_channel(self):
        """Removing an unknown channel is a no-op."""
        dispatcher = NotificationDispatcher()

        dispatcher.remove_transport("email")

        assert dispatcher.channels == []


# ============================================================================
# Dispatch Tests
# ============================================================================


class TestDispatch:
    """Tests for NotificationDispatcher.dispatch."""

    @pytest.mark.asyncio
    async def test_empty(self):
        """No requests means no results."""
        assert await NotificationDispatcher().dispatch([]) == []

    @pytest.mark.asyncio
    async def test_delivered(self, ok_transport, request_slack):
        """Registered transports deliver requests."""
        dispatcher = NotificationDispatcher({"slack": ok_transport})

        results = await dispatcher.dispatch([request_slack])

        assert results == [DispatchResult(channel="slack", delivered=True, message_id="m-1")]
        ok_transport.assert_awaited_once_with(request_slack)

    @pytest.mark.asyncio
    async def test_unknown_channel(self):
        """Unregistered channels fail as results."""
        results = await NotificationDispatcher().dispatch([DispatchRequest(channel="sms")])

        assert results[0].delivered is False
        assert results[0].error == "transport_not_registered"

    @pytest.mark.asyncio
    async def test_transport_exception_captured(self, request_slack):
        """Transport exceptions never propagate."""
        failing = AsyncMock(side_effect=RuntimeError("socket closed"))
        dispatcher = NotificationDispatcher({"slack": failing})

        results = await dispatcher.dispatch([request_slack])

        assert results == [DispatchResult(channel="slack", delivered=False, error="socket closed")]

    @pytest.mark.asyncio
    async def test_results_in_request_order(self, ok_transport):
        """Results line up with requests."""
        dispatcher = NotificationDispatcher({"slack": ok_transport})
        requests = [DispatchRequest(channel="slack"), DispatchRequest(channel="email")]

        results = await dispatcher.dispatch(requests)

        assert [result.channel for result in results] == ["slack", "email"]
        assert [result.delivered for result in results] == [True, False]

    @pytest.mark.asyncio
    async def test_bounded_concurrency(self):
        """No more than max_concurrent_deliveries run at once."""
        active = 0
        peak = 0

        async def transport(request):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return DispatchResult(channel=request.channel, delivered=True)

        dispatcher = NotificationDispatcher({"slack": transport}, max_concurrent_deliveries=2)

        results = await dispatcher.dispatch([DispatchRequest(channel="slack") for _ in range(6)])

        assert len(results) == 6
        assert peak <= 2
