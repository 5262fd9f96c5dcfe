"""Database module for sync metadata.

This module provides:
- SQLAlchemy async database connection
- The sync state model
- A sync metadata store backed by it
"""

from task_calendar.database.connection import (
    close_db,
    create_tables,
    drop_tables,
    get_db,
    init_db,
)
from task_calendar.database.models import Base, CalendarSync
from task_calendar.database.store import DatabaseSyncMetadataStore

__all__ = [
    # Connection
    "get_db",
    "init_db",
    "close_db",
    "create_tables",
    "drop_tables",
    # Models
    "Base",
    "CalendarSync",
    # Store
    "DatabaseSyncMetadataStore",
]
