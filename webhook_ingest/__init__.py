"""Webhook ingestion service.

Verifies, deduplicates, normalizes and persists provider webhooks, and
forwards classified summaries to notification channels.
"""

__version__ = "0.1.0"
