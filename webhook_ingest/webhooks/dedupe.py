"""Two-tier deduplication of webhook deliveries.

A volatile in-process tier absorbs retry storms within one run and a
persistent tier backed by the event archive survives restarts. Both sit
behind the same ``DedupChecker`` interface and are composed in a
``DedupChain``.
"""

import time
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import structlog

from webhook_ingest.webhooks.archive import EventArchive

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DedupeContext:
    """Identity of one canonical result for dedupe purposes."""

    source: str
    event_type: str
    dedupe_key: str
    date: str


@runtime_checkable
class DedupChecker(Protocol):
    """Interface shared by every dedupe tier."""

    name: str

    async def is_duplicate(self, ctx: DedupeContext) -> bool:
        """Return True if this key was already observed."""
        ...

    async def begin(self, ctx: DedupeContext) -> None:
        """Claim the key while the result is being processed."""
        ...

    async def mark(self, ctx: DedupeContext) -> None:
        """Remember the key as processed."""
        ...

    async def release(self, ctx: DedupeContext) -> None:
        """Drop an in-flight claim after a failed attempt."""
        ...


class VolatileDedupChecker:
    """In-process set of seen keys, reset on restart.

    Mutations happen synchronously on the event loop, so no lock is needed.
    Keys being processed are held as in-flight so a concurrent retry of the
    same delivery is skipped rather than double-processed.
    """

    name = "volatile"

    def __init__(self, ttl_seconds: float | None = None) -> None:
        """Initialize the checker.

        Args:
            ttl_seconds: Forget keys after this many seconds
                (None keeps them for the process lifetime).
        """
        self._ttl = ttl_seconds
        self._seen: dict[str, float] = {}
        self._in_flight: set[str] = set()

    @staticmethod
    def _key(ctx: DedupeContext) -> str:
        return f"{ctx.source}:{ctx.dedupe_key}"

    def _expired(self, marked_at: float) -> bool:
        return self._ttl is not None and time.monotonic() - marked_at > self._ttl

    async def is_duplicate(self, ctx: DedupeContext) -> bool:
        key = self._key(ctx)
        if key in self._in_flight:
            return True
        marked_at = self._seen.get(key)
        if marked_at is None:
            return False
        if self._expired(marked_at):
            del self._seen[key]
            return False
        return True

    async def begin(self, ctx: DedupeContext) -> None:
        self._in_flight.add(self._key(ctx))

    async def mark(self, ctx: DedupeContext) -> None:
        key = self._key(ctx)
        self._in_flight.discard(key)
        # Re-insert so _seen stays ordered by mark time
        self._seen.pop(key, None)
        self._seen[key] = time.monotonic()
        self.sweep()

    def sweep(self) -> int:
        """Drop expired keys.

        Returns:
            Number of keys removed.
        """
        if self._ttl is None:
            return 0
        removed = 0
        for key, marked_at in list(self._seen.items()):
            if not self._expired(marked_at):
                break
            del self._seen[key]
            removed += 1
        if removed:
            logger.debug("dedupe_keys_swept", tier=self.name, removed=removed)
        return removed

    async def release(self, ctx: DedupeContext) -> None:
        self._in_flight.discard(self._key(ctx))

    def __len__(self) -> int:
        return len(self._seen)

    def clear(self) -> None:
        """Forget every key."""
        self._seen.clear()
        self._in_flight.clear()


class ArchiveDedupChecker:
    """Persistent tier: looks the key up in the event archive for its date.

    The archive append performed by the orchestrator is what marks a key,
    so ``begin``, ``mark`` and ``release`` are no-ops here.
    """

    name = "archive"

    def __init__(self, archive: EventArchive) -> None:
        self._archive = archive

    async def is_duplicate(self, ctx: DedupeContext) -> bool:
        return await self._archive.has_event(
            ctx.date,
            ctx.dedupe_key,
            source=ctx.source,
            event_type=ctx.event_type,
        )

    async def begin(self, ctx: DedupeContext) -> None:
        return None

    async def mark(self, ctx: DedupeContext) -> None:
        return None

    async def release(self, ctx: DedupeContext) -> None:
        return None


class DedupChain:
    """Runs dedupe tiers in order; the first hit wins.

    Example:
        chain = DedupChain([VolatileDedupChecker(), ArchiveDedupChecker(archive)])
        if await chain.claim(ctx) is None:
            try:
                ...  # process
                await chain.commit(ctx)
            except Exception:
                await chain.release(ctx)
                raise
    """

    def __init__(self, checkers: list[DedupChecker]) -> None:
        self._checkers = list(checkers)
        self._logger = logger.bind(component="dedup_chain")

    @property
    def checkers(self) -> list[DedupChecker]:
        return list(self._checkers)

    async def is_duplicate(self, ctx: DedupeContext) -> str | None:
        """Name of the first tier that has seen the key, or None."""
        for checker in self._checkers:
            if await checker.is_duplicate(ctx):
                return checker.name
        return None

    async def claim(self, ctx: DedupeContext) -> str | None:
        """Check every tier and claim the key if nobody has seen it.

        A hit in a slower tier is copied back into the faster tiers before it
        so later retries short-circuit earlier.

        Returns:
            Name of the tier that reported a duplicate, or None if claimed.
        """
        for index, checker in enumerate(self._checkers):
            if await checker.is_duplicate(ctx):
                for earlier in self._checkers[:index]:
                    await earlier.mark(ctx)
                self._logger.info(
                    "webhook_duplicate_skipped",
                    source=ctx.source,
                    event_type=ctx.event_type,
                    dedupe_key=ctx.dedupe_key,
                    tier=checker.name,
                )
                return checker.name

        for checker in self._checkers:
            await checker.begin(ctx)
        return None

    async def commit(self, ctx: DedupeContext) -> None:
        """Mark the key as processed in every tier."""
        for checker in self._checkers:
            await checker.mark(ctx)

    async def release(self, ctx: DedupeContext) -> None:
        """Drop in-flight claims so the provider's retry is processed."""
        for checker in self._checkers:
            await checker.release(ctx)
