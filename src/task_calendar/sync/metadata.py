"""Sync metadata persistence interface.

The session only needs the last successful sync time per calendar (and
keeps the last error for display). Storage is pluggable: an in-memory store
for tests and embedding, or the database-backed store in
`task_calendar.database.store`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable


@dataclass
class SyncMetadata:
    """Persisted sync state of one calendar."""

    calendar_id: str
    last_sync_at: datetime | None = None
    last_error: str | None = None


@runtime_checkable
class SyncMetadataStore(Protocol):
    """Where the session records sync outcomes."""

    async def get(self, calendar_id: str) -> SyncMetadata:
        """Get the stored state, empty if the calendar was never synced."""
        ...

    async def record_success(self, calendar_id: str, synced_at: datetime) -> None:
        """Store the completion time of a successful pass."""
        ...

    async def record_failure(self, calendar_id: str, error: str) -> None:
        """Store the error of a failed pass; the last sync time is kept."""
        ...


class InMemorySyncMetadataStore:
    """Process-local metadata store."""

    def __init__(self) -> None:
        self._states: dict[str, SyncMetadata] = {}

    async def get(self, calendar_id: str) -> SyncMetadata:
        state = self._states.get(calendar_id)
        if state is None:
            return SyncMetadata(calendar_id=calendar_id)
        return SyncMetadata(
            calendar_id=state.calendar_id,
            last_sync_at=state.last_sync_at,
            last_error=state.last_error,
        )

    async def record_success(self, calendar_id: str, synced_at: datetime) -> None:
        state = self._states.setdefault(calendar_id, SyncMetadata(calendar_id=calendar_id))
        state.last_sync_at = synced_at
        state.last_error = None

    async def record_failure(self, calendar_id: str, error: str) -> None:
        state = self._states.setdefault(calendar_id, SyncMetadata(calendar_id=calendar_id))
        state.last_error = error
