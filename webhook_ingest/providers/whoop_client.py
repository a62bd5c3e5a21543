"""WHOOP API client used to hydrate thin webhook payloads.

Provides an async client for the WHOOP developer REST API with retry on
rate limits and server errors.
"""

from typing import Any, Protocol

import httpx
import structlog

from webhook_ingest.errors import (
    ProviderAPIError,
    ProviderAuthError,
    ProviderRateLimitError,
    RetryConfig,
    retrying,
)

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://api.prod.whoop.com/developer"


class ProviderAPIClient(Protocol):
    """Fetches full provider resources by id."""

    async def fetch(self, kind: str, resource_id: str) -> dict[str, Any] | None:
        ...


class WhoopClient:
    """Async client for the WHOOP REST API.

    Example:
        client = WhoopClient(api_key="...")
        sleep = await client.get_sleep_by_id("abc123")
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str | None = None,
        timeout: float = 10.0,
        retry_config: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the WHOOP client.

        Args:
            api_key: OAuth access token.
            base_url: API base URL.
            timeout: HTTP timeout in seconds.
            retry_config: Retry behaviour for transient failures.
            transport: Optional httpx transport (tests use MockTransport).
        """
        self.api_key = api_key
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self._timeout = timeout
        self._retry_config = retry_config or RetryConfig()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._logger = logger.bind(component="whoop_client")

    @property
    def is_configured(self) -> bool:
        """Check if an access token is configured."""
        return bool(self.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(self, endpoint: str) -> dict[str, Any] | None:
        """Make one authenticated GET request.

        Returns:
            JSON body, or None on 404.

        Raises:
            ProviderAuthError: If the token is missing or rejected.
            ProviderRateLimitError: On HTTP 429.
            ProviderAPIError: For other failures.
        """
        if not self.api_key:
            raise ProviderAuthError("WHOOP_API_KEY not configured")

        client = await self._get_client()
        self._logger.debug("whoop_request", endpoint=endpoint)

        try:
            response = await client.get(endpoint)
        except httpx.RequestError as e:
            self._logger.error("whoop_client_error", endpoint=endpoint, error=str(e))
            raise ProviderAPIError(0, str(e)) from e

        if response.status_code == 404:
            return None

        if response.status_code in (401, 403):
            raise ProviderAuthError("Invalid WHOOP access token")

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise ProviderRateLimitError(
                retry_after=float(retry_after) if retry_after else None
            )

        if response.status_code != 200:
            raise ProviderAPIError(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderAPIError(response.status_code, "Invalid JSON response") from e

        self._logger.debug("whoop_response", endpoint=endpoint, status=response.status_code)
        return data if isinstance(data, dict) else None

    async def _get(self, endpoint: str) -> dict[str, Any] | None:
        async for attempt in retrying(self._retry_config):
            with attempt:
                return await self._request(endpoint)
        return None

    async def get_sleep_by_id(self, sleep_id: str) -> dict[str, Any] | None:
        """Fetch a sleep by id (``/v2/activity/sleep/{id}``)."""
        return await self._get(f"/v2/activity/sleep/{sleep_id}")

    async def get_recovery_by_id(self, cycle_id: str) -> dict[str, Any] | None:
        """Fetch the recovery for a cycle (``/v2/cycle/{id}/recovery``)."""
        return await self._get(f"/v2/cycle/{cycle_id}/recovery")

    async def get_workout_by_id(self, workout_id: str) -> dict[str, Any] | None:
        """Fetch a workout by id (``/v2/activity/workout/{id}``)."""
        return await self._get(f"/v2/activity/workout/{workout_id}")

    async def fetch(self, kind: str, resource_id: str) -> dict[str, Any] | None:
        """Fetch a resource by kind.

        Args:
            kind: "sleep", "recovery" or "workout".
            resource_id: Provider id.
        """
        if kind == "sleep":
            return await self.get_sleep_by_id(resource_id)
        if kind == "recovery":
            return await self.get_recovery_by_id(resource_id)
        return await self.get_workout_by_id(resource_id)
