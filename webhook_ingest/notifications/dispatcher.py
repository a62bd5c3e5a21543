"""Notification dispatcher.

Routes dispatch requests to registered channel transports. Transport
failures are reported as ``DispatchResult(delivered=False)`` and never
raised to the caller.
"""

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from webhook_ingest.notifications.models import DispatchRequest, DispatchResult

logger = structlog.get_logger(__name__)

# Type for channel transports
DispatchTransport = Callable[[DispatchRequest], Awaitable[DispatchResult]]


class NotificationDispatcher:
    """Dispatches notifications to channel transports.

    Features:
    - Transports registered by channel name
    - Bounded concurrent deliveries
    - Failures captured as results
    """

    def __init__(
        self,
        transports: dict[str, DispatchTransport] | None = None,
        *,
        max_concurrent_deliveries: int = 5,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            transports: Initial channel -> transport mapping.
            max_concurrent_deliveries: Max concurrent delivery calls.
        """
        self._transports: dict[str, DispatchTransport] = dict(transports or {})
        self._semaphore = asyncio.Semaphore(max_concurrent_deliveries)
        self._logger = logger.bind(component="notification_dispatcher")

    @property
    def channels(self) -> list[str]:
        return list(self._transports)

    def register_transport(self, channel: str, transport: DispatchTransport) -> None:
        """Register or replace the transport for a channel."""
        self._transports[channel] = transport

    def remove_transport(self, channel: str) -> None:
        """Remove a channel transport if present."""
        self._transports.pop(channel, None)

    async def dispatch(self, requests: list[DispatchRequest]) -> list[DispatchResult]:
        """Deliver every request, returning one result per request in order.

        Args:
            requests: Requests to deliver.

        Returns:
            Delivery results.
        """
        if not requests:
            return []

        results = await asyncio.gather(*(self._deliver(request) for request in requests))

        self._logger.info(
            "notifications_dispatched",
            total=len(results),
            delivered=sum(1 for result in results if result.delivered),
        )
        return list(results)

    async def _deliver(self, request: DispatchRequest) -> DispatchResult:
        transport = self._transports.get(request.channel)
        if transport is None:
            self._logger.warning("transport_not_registered", channel=request.channel)
            return DispatchResult(
                channel=request.channel, delivered=False, error="transport_not_registered"
            )

        try:
            async with self._semaphore:
                return await transport(request)
        except Exception as e:
            self._logger.error(
                "dispatch_transport_failed", channel=request.channel, error=str(e)
            )
            return DispatchResult(channel=request.channel, delivered=False, error=str(e))
