"""Daily log store.

Persists normalized entries per calendar day in a single JSON document::

    <data_dir>/daily/logs.json
    {"version": 1, "days": {"2025-01-01": {...day record...}}}

Each write also refreshes a per-day snapshot under
``<data_dir>/daily/<YYYY>/<MM>/<DD>.json`` on a best-effort basis.
"""

import asyncio
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import structlog
from pydantic import BaseModel, Field

from webhook_ingest.errors import PersistenceError
from webhook_ingest.storage.files import KeyedLocks, read_json, write_json_atomic
from webhook_ingest.webhooks.models import Entry

logger = structlog.get_logger(__name__)

DAILY_VERSION = 1
DEFAULT_CATEGORY = "food"


class DailyAppendRequest(BaseModel):
    """Entries and day-level fields to merge into a day."""

    date: str
    entries: list[Entry] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    totals: dict[str, Any] | None = None
    summary: str | None = None
    timezone: str | None = None
    notes: list[str] | None = None


@runtime_checkable
class DailyStore(Protocol):
    """Collaborator that persists normalized entries."""

    async def append_entries(self, request: DailyAppendRequest) -> dict[str, Any]:
        ...


def _normalize_notes(*groups: list[str] | None) -> list[str] | None:
    notes = [
        note.strip()
        for group in groups
        if group
        for note in group
        if isinstance(note, str) and note.strip()
    ]
    return notes or None


def _normalize_entry(entry: Entry) -> dict[str, Any]:
    data = json.loads(entry.model_dump_json(exclude_none=True))
    data["category"] = data.get("category") or DEFAULT_CATEGORY
    tags = [tag.strip() for tag in data.get("tags", []) if tag.strip()]
    if tags:
        data["tags"] = tags
    else:
        data.pop("tags", None)
    source = (data.get("source") or "").strip()
    if source:
        data["source"] = source
    else:
        data.pop("source", None)
    return data


class JsonDailyStore:
    """File-backed implementation of ``DailyStore``."""

    def __init__(self, data_dir: Path | str) -> None:
        """Initialize the store.

        Args:
            data_dir: Data directory root.
        """
        self.root = Path(data_dir) / "daily"
        self.path = self.root / "logs.json"
        self._locks = KeyedLocks()
        self._logger = logger.bind(component="daily_store")

    def _read(self) -> dict[str, Any]:
        data = read_json(self.path)
        if data is None:
            return {"version": DAILY_VERSION, "days": {}}
        if not isinstance(data, dict) or not isinstance(data.get("days"), dict):
            raise ValueError(f"Malformed daily log: {self.path}")
        return data

    async def get_day(self, date: str) -> dict[str, Any] | None:
        """Stored record for a day, or None."""
        try:
            data = await asyncio.to_thread(self._read)
        except (OSError, ValueError) as e:
            raise PersistenceError(
                f"Failed to read daily log: {e}", target="daily_store", path=str(self.path)
            ) from e
        return data["days"].get(date)

    async def append_entries(self, request: DailyAppendRequest) -> dict[str, Any]:
        """Merge entries into a day, creating it if needed.

        Args:
            request: Entries and day-level fields.

        Returns:
            The updated day record.

        Raises:
            PersistenceError: If the log cannot be read or written.
        """
        async with self._locks.get(self.path):
            try:
                record = await asyncio.to_thread(self._append_sync, request)
            except (OSError, ValueError, TypeError) as e:
                self._logger.error(
                    "daily_append_failed", date=request.date, error=str(e)
                )
                raise PersistenceError(
                    f"Failed to append daily entries: {e}",
                    target="daily_store",
                    path=str(self.path),
                ) from e

        self._logger.info(
            "daily_entries_appended",
            date=request.date,
            added=len(request.entries),
            total=len(record.get("entries", [])),
        )
        return record

    def _append_sync(self, request: DailyAppendRequest) -> dict[str, Any]:
        data = self._read()
        now = datetime.now(UTC).isoformat()
        existing = data["days"].get(request.date)
        new_entries = [_normalize_entry(entry) for entry in request.entries]

        if existing is None:
            record: dict[str, Any] = {
                "date": request.date,
                "timezone": request.timezone,
                "summary": request.summary,
                "notes": _normalize_notes(request.notes),
                "entries": new_entries,
                "totals": request.totals,
                "metadata": dict(request.metadata),
                "created_at": now,
                "updated_at": now,
            }
        else:
            record = {
                **existing,
                "timezone": request.timezone or existing.get("timezone"),
                "summary": request.summary or existing.get("summary"),
                "notes": _normalize_notes(existing.get("notes"), request.notes),
                "entries": [*existing.get("entries", []), *new_entries],
                "totals": request.totals if request.totals is not None else existing.get("totals"),
                "metadata": {**(existing.get("metadata") or {}), **request.metadata},
                "updated_at": now,
            }

        data["days"][request.date] = record
        write_json_atomic(self.path, data)
        self._write_snapshot(record)
        return record

    def _write_snapshot(self, record: dict[str, Any]) -> None:
        year, month, day = record["date"].split("-")
        path = self.root / year / month / f"{day}.json"
        try:
            write_json_atomic(path, record)
        except OSError as e:
            self._logger.warning(
                "daily_snapshot_failed", date=record["date"], error=str(e)
            )
