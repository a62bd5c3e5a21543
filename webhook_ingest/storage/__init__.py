"""File-backed storage used by the ingestion pipeline."""

from webhook_ingest.storage.daily import DailyAppendRequest, DailyStore, JsonDailyStore

__all__ = [
    "DailyAppendRequest",
    "DailyStore",
    "JsonDailyStore",
]
