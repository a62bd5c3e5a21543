"""Append-only audit log of accepted webhook deliveries.

Every delivery that clears verification and dedupe is written as one JSON
line, partitioned by source, event type and receipt day::

    <data_dir>/webhooks/events/<source>/<event_type>/<YYYY-MM-DD>.jsonl

Writes are best-effort: failures are logged and never fail the request.
"""

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

import structlog

from webhook_ingest.webhooks.models import WebhookDelivery

logger = structlog.get_logger(__name__)


class WebhookEventLogger:
    """Writes the raw-event audit trail."""

    def __init__(self, data_dir: Path | str, zone: ZoneInfo) -> None:
        self.root = Path(data_dir) / "webhooks" / "events"
        self._zone = zone
        self._logger = logger.bind(component="webhook_event_logger")

    def path_for(self, source: str, event_type: str, received_at: datetime) -> Path:
        day = received_at.astimezone(self._zone).date().isoformat()
        return self.root / source / event_type / f"{day}.jsonl"

    async def log(
        self,
        delivery: WebhookDelivery,
        *,
        dedupe_key: str | None,
        payload: dict[str, Any] | None = None,
    ) -> bool:
        """Append one record for a delivery.

        Args:
            delivery: Delivery being processed.
            dedupe_key: Resolved dedupe key, if any.
            payload: Payload to record (defaults to the delivery payload).

        Returns:
            True if the line was written.
        """
        record = {
            "received_at": delivery.received_at.isoformat(),
            "source": delivery.source,
            "event_type": delivery.event_type,
            "dedupe_key": dedupe_key,
            "metadata": {"path": delivery.path, "method": delivery.method},
            "payload": delivery.payload if payload is None else payload,
        }
        path = self.path_for(delivery.source, delivery.event_type, delivery.received_at)

        try:
            line = json.dumps(record, default=str)
            await asyncio.to_thread(self._append_line, path, line)
        except (OSError, TypeError, ValueError) as e:
            self._logger.warning(
                "webhook_event_log_failed",
                source=delivery.source,
                event_type=delivery.event_type,
                path=str(path),
                error=str(e),
            )
            return False
        return True

    @staticmethod
    def _append_line(path: Path, line: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
