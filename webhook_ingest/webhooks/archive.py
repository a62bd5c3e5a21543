"""Persistent event archive.

One JSON document per (source, date) holding an append-only list of
delivery summaries. The archive doubles as the persistent dedupe tier.

Layout::

    <data_dir>/webhooks/archive/<source>/<YYYY>/<MM>/<DD>.json
    {"version": 1, "source": "whoop", "date": "2025-01-01", "records": [...]}
"""

import asyncio
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field

from webhook_ingest.errors import PersistenceError
from webhook_ingest.storage.files import KeyedLocks, read_json, write_json_atomic

logger = structlog.get_logger(__name__)

ARCHIVE_VERSION = 1


class ArchiveRecord(BaseModel):
    """Summary of one accepted delivery result."""

    dedupe_key: str | None = Field(default=None, description="Dedupe key, if resolved")
    source: str
    event_type: str
    received_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    event_date: str
    payload: dict[str, Any] | None = Field(
        default=None, description="Raw payload, or None when payload archiving is off"
    )
    metadata: dict[str, Any] = Field(default_factory=dict)


class EventArchive:
    """File-backed archive of accepted deliveries.

    Reads and writes run in worker threads; a per-document lock serializes
    read-then-append on the same (source, date).
    """

    def __init__(self, data_dir: Path | str, *, store_payloads: bool = True) -> None:
        """Initialize the archive.

        Args:
            data_dir: Data directory root.
            store_payloads: Keep full payloads in records.
        """
        self.root = Path(data_dir) / "webhooks" / "archive"
        self._store_payloads = store_payloads
        self._locks = KeyedLocks()
        self._logger = logger.bind(component="event_archive")

    def path_for(self, source: str, date: str) -> Path:
        """Document path for a (source, date)."""
        year, month, day = date.split("-")
        return self.root / source / year / month / f"{day}.json"

    def _load_records(self, path: Path) -> list[dict[str, Any]]:
        document = read_json(path)
        if document is None:
            return []
        if not isinstance(document, dict) or not isinstance(document.get("records"), list):
            raise ValueError(f"Malformed archive document: {path}")
        return document["records"]

    async def list_records(self, source: str, date: str) -> list[ArchiveRecord]:
        """All records archived for a (source, date).

        A missing document yields an empty list.
        """
        path = self.path_for(source, date)
        try:
            raw = await asyncio.to_thread(self._load_records, path)
        except (OSError, ValueError) as e:
            raise PersistenceError(
                f"Failed to read archive: {e}", target="archive", path=str(path)
            ) from e
        return [ArchiveRecord.model_validate(item) for item in raw]

    async def has_event(
        self,
        date: str,
        dedupe_key: str,
        *,
        source: str,
        event_type: str,
    ) -> bool:
        """Check for a record with the same (dedupe_key, source, event_type).

        Unreadable documents are treated as "not seen" with a warning, so a
        damaged archive never blocks ingestion; the following append reports
        the damage as a persistence failure.
        """
        path = self.path_for(source, date)
        try:
            records = await asyncio.to_thread(self._load_records, path)
        except (OSError, ValueError) as e:
            self._logger.warning(
                "archive_read_failed", path=str(path), error=str(e)
            )
            return False

        return any(
            record.get("dedupe_key") == dedupe_key
            and record.get("source") == source
            and record.get("event_type") == event_type
            for record in records
        )

    async def append(self, record: ArchiveRecord) -> ArchiveRecord:
        """Append a record to its (source, date) document.

        Args:
            record: Record to append.

        Returns:
            The stored record (payload dropped when payload archiving is off).

        Raises:
            PersistenceError: If the document cannot be read or written.
        """
        if not self._store_payloads and record.payload is not None:
            record = record.model_copy(update={"payload": None})

        path = self.path_for(record.source, record.event_date)
        async with self._locks.get(path):
            try:
                await asyncio.to_thread(self._append_sync, path, record)
            except (OSError, ValueError, TypeError) as e:
                self._logger.error(
                    "archive_append_failed",
                    path=str(path),
                    dedupe_key=record.dedupe_key,
                    error=str(e),
                )
                raise PersistenceError(
                    f"Failed to append archive record: {e}",
                    target="archive",
                    path=str(path),
                ) from e

        self._logger.debug(
            "archive_record_appended",
            source=record.source,
            event_type=record.event_type,
            date=record.event_date,
            dedupe_key=record.dedupe_key,
        )
        return record

    def _append_sync(self, path: Path, record: ArchiveRecord) -> None:
        records = self._load_records(path)
        records.append(json.loads(record.model_dump_json()))
        write_json_atomic(
            path,
            {
                "version": ARCHIVE_VERSION,
                "source": record.source,
                "date": record.event_date,
                "records": records,
            },
        )
