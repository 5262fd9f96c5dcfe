"""Database-backed sync metadata store."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from task_calendar.database.connection import get_db
from task_calendar.database.models import CalendarSync
from task_calendar.models.task import utc_now
from task_calendar.sync.metadata import SyncMetadata

logger = logging.getLogger(__name__)


class DatabaseSyncMetadataStore:
    """Stores sync metadata in the `sync_states` table.

    Requires `init_db()` (and `create_tables()` on a fresh database) to have
    been awaited first.
    """

    async def get(self, calendar_id: str) -> SyncMetadata:
        async with get_db() as session:
            state = await session.get(CalendarSync, calendar_id)
            if state is None:
                return SyncMetadata(calendar_id=calendar_id)
            return SyncMetadata(
                calendar_id=calendar_id,
                last_sync_at=state.last_sync_at_utc,
                last_error=state.last_error,
            )

    async def record_success(self, calendar_id: str, synced_at: datetime) -> None:
        async with get_db() as session:
            state = await session.get(CalendarSync, calendar_id)
            if state is None:
                state = CalendarSync(calendar_id=calendar_id)
                session.add(state)
            state.last_sync_at = synced_at.astimezone(timezone.utc)
            state.last_error = None
            state.last_error_at = None
            await session.commit()
        logger.debug(f"Recorded sync of calendar {calendar_id} at {synced_at.isoformat()}")

    async def record_failure(self, calendar_id: str, error: str) -> None:
        async with get_db() as session:
            state = await session.get(CalendarSync, calendar_id)
            if state is None:
                state = CalendarSync(calendar_id=calendar_id)
                session.add(state)
            state.last_error = error
            state.last_error_at = utc_now()
            await session.commit()
