"""Domain models for task/calendar synchronization."""

from task_calendar.models.task import Priority, Recurrence, Task, utc_now
from task_calendar.models.remote_event import EventStatus, RemoteEvent
from task_calendar.models.changes import (
    Change,
    ChangeKind,
    ChangeSet,
    Conflict,
    ConflictChoice,
    ConflictType,
    CreateEvent,
    DeleteEvent,
    ImportEvent,
    MergeEvent,
    PendingChange,
    UpdateEvent,
)

__all__ = [
    # Task
    "Task",
    "Priority",
    "Recurrence",
    "utc_now",
    # Remote event
    "RemoteEvent",
    "EventStatus",
    # Changes
    "Change",
    "ChangeKind",
    "ChangeSet",
    "Conflict",
    "ConflictChoice",
    "ConflictType",
    "CreateEvent",
    "DeleteEvent",
    "ImportEvent",
    "MergeEvent",
    "PendingChange",
    "UpdateEvent",
]
