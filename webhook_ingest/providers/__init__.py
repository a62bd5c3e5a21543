"""Provider adapters and API clients.

This module provides:
- ProviderAdapter: base class with thin-payload detection and hydration
- WhoopAdapter, CalendarAdapter, IOSAdapter: per-source adapters
- WhoopClient: async WHOOP API client used for hydration
"""

from webhook_ingest.providers.base import EndpointSpec, ProviderAdapter, is_thin_payload
from webhook_ingest.providers.calendar import CalendarAdapter
from webhook_ingest.providers.ios import IOSAdapter
from webhook_ingest.providers.whoop import WhoopAdapter, WhoopKind
from webhook_ingest.providers.whoop_client import ProviderAPIClient, WhoopClient

__all__ = [
    "CalendarAdapter",
    "EndpointSpec",
    "IOSAdapter",
    "ProviderAPIClient",
    "ProviderAdapter",
    "WhoopAdapter",
    "WhoopClient",
    "WhoopKind",
    "is_thin_payload",
]
