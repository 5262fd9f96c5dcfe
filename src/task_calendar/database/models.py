"""Database models for sync metadata.

Only what the sync session needs to survive restarts is stored: one row per
mirrored calendar with its last successful sync time and last error. Tasks
themselves belong to the host application.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""


class CalendarSync(Base):
    """Sync bookkeeping for one calendar."""

    __tablename__ = "sync_states"

    calendar_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    # Sync state
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_error: Mapped[str | None] = mapped_column(Text)
    last_error_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Timestamps
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @property
    def last_sync_at_utc(self) -> datetime | None:
        """Last sync time as aware UTC; SQLite drops the offset on read."""
        if self.last_sync_at is None:
            return None
        if self.last_sync_at.tzinfo is None:
            return self.last_sync_at.replace(tzinfo=timezone.utc)
        return self.last_sync_at.astimezone(timezone.utc)

    def __repr__(self) -> str:
        return f"<CalendarSync {self.calendar_id} last_sync_at={self.last_sync_at}>"
