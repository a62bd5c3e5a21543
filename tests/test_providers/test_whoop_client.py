"""Tests for the WHOOP API client."""

import httpx
import pytest

from webhook_ingest.errors import (
    ProviderAPIError,
    ProviderAuthError,
    ProviderRateLimitError,
    RetryConfig,
)
from webhook_ingest.providers.whoop_client import WhoopClient

FAST_RETRY = RetryConfig(max_attempts=3, min_wait_seconds=0, max_wait_seconds=0)


def _client(handler, **kwargs):
    return WhoopClient(
        "token-1",
        base_url="https://whoop.test/developer",
        retry_config=FAST_RETRY,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestWhoopClientInit:
    """Tests for WhoopClient initialization."""

    def test_default_base_url(self):
        """The production API is the default."""
        client = WhoopClient("tok")

        assert client.base_url == "https://api.prod.whoop.com/developer"
        assert client.is_configured is True

    def test_not_configured(self):
        """A client without a token reports unconfigured."""
        assert WhoopClient().is_configured is False


class TestWhoopClientRequests:
    """Tests for resource fetches."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("kind", "path"),
        [
            ("sleep", "/developer/v2/activity/sleep/abc123"),
            ("recovery", "/developer/v2/cycle/abc123/recovery"),
            ("workout", "/developer/v2/activity/workout/abc123"),
        ],
    )
    async def test_fetch_paths(self, kind, path):
        """Each kind hits its resource path with the bearer token."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"id": "abc123"})

        client = _client(handler)
        try:
            data = await client.fetch(kind, "abc123")
        finally:
            await client.aclose()

        assert data == {"id": "abc123"}
        assert seen[0].url.path == path
        assert seen[0].headers["authorization"] == "Bearer token-1"

    @pytest.mark.asyncio
    async def test_not_found_returns_none(self):
        """404 means the resource does not exist."""
        client = _client(lambda request: httpx.Response(404))

        assert await client.get_sleep_by_id("missing") is None

    @pytest.mark.asyncio
    async def test_missing_token(self):
        """Requests without a token fail with an auth error."""
        client = WhoopClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))

        with pytest.raises(ProviderAuthError):
            await client.get_sleep_by_id("abc123")

    @pytest.mark.asyncio
    async def test_unauthorized_not_retried(self):
        """401 responses are not retried."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401)

        client = _client(handler)

        with pytest.raises(ProviderAuthError):
            await client.get_workout_by_id("abc123")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        """Transient 5xx errors are retried until success."""
        responses = iter([httpx.Response(503), httpx.Response(200, json={"id": "x"})])

        client = _client(lambda request: next(responses))

        assert await client.get_recovery_by_id("x") == {"id": "x"}

    @pytest.mark.asyncio
    async def test_server_error_exhausts_retries(self):
        """Persistent 5xx errors surface after the last attempt."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, text="oops")

        client = _client(handler)

        with pytest.raises(ProviderAPIError) as exc_info:
            await client.get_sleep_by_id("abc123")
        assert exc_info.value.status == 500
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_rate_limit(self):
        """429 responses raise a rate limit error with Retry-After."""
        client = _client(
            lambda request: httpx.Response(429, headers={"Retry-After": "0"}),
        )

        with pytest.raises(ProviderRateLimitError) as exc_info:
            await client.get_sleep_by_id("abc123")
        assert exc_info.value.retry_after == 0.0

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        """Other 4xx responses fail immediately."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, text="bad")

        client = _client(handler)

        with pytest.raises(ProviderAPIError):
            await client.get_sleep_by_id("abc123")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_transport_error(self):
        """Connection failures become status-0 API errors."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = _client(handler)

        with pytest.raises(ProviderAPIError) as exc_info:
            await client.get_sleep_by_id("abc123")
        assert exc_info.value.status == 0
