"""Local task model.

A `Task` is the authoritative local record. The sync engine only reads and
mutates the fields below; storage of the task collection belongs to the
task-management layer.

The `remote_event_id` and `last_modified` fields double as the durable sync
state: `remote_event_id` links the task to its mirrored calendar event and
`last_modified` is the last known local state the remote side is compared
against.
"""

from __future__ import annotations

import calendar
import uuid
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class Priority(str, Enum):
    """Task priority."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @classmethod
    def _missing_(cls, value: object) -> Priority | None:
        # Values written by older clients
        aliases = {
            "haute": cls.HIGH,
            "normale": cls.NORMAL,
            "medium": cls.NORMAL,
            "basse": cls.LOW,
        }
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
            return aliases.get(lowered)
        return None


class Recurrence(str, Enum):
    """How often a task repeats."""

    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def _add_month(value: date) -> date:
    year = value.year + value.month // 12
    month = value.month % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(value.day, last_day))


class Task(BaseModel):
    """A local to-do item that may be mirrored to a calendar event."""

    # Identity
    id: str = Field(
        default_factory=lambda: uuid.uuid4().hex,
        description="Stable, caller-assigned identifier",
    )

    # Content
    title: str = Field(default="", description="Task title")
    description: str = Field(default="", description="Free-form notes")
    completed: bool = False
    category: str | None = None
    tags: list[str] = Field(default_factory=list, description="Labels (set semantics)")

    # Scheduling
    due_date: date | None = None
    due_time: time | None = Field(
        default=None, description="Time of day, interpreted in the calendar timezone"
    )
    priority: Priority = Priority.NORMAL
    estimate: int = Field(default=0, ge=0, description="Estimated duration in minutes")
    recurrence: Recurrence = Recurrence.NONE

    # Timestamps
    created_at: datetime = Field(default_factory=utc_now)
    last_modified: datetime = Field(default_factory=utc_now)

    # Sync state
    sync_enabled: bool = Field(
        default=False, description="Whether this task should be mirrored remotely"
    )
    remote_event_id: str | None = Field(
        default=None, description="ID of the mirrored calendar event"
    )

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        """Older task files use numeric ids."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("created_at", "last_modified")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        """Treat naive timestamps as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, v: list[str]) -> list[str]:
        """Drop duplicate tags, keeping first-seen order."""
        return list(dict.fromkeys(v))

    @property
    def is_linked(self) -> bool:
        """Whether a mirrored remote event is known."""
        return self.remote_event_id is not None

    def touch(self, at: datetime | None = None) -> None:
        """Record a modification."""
        self.last_modified = at or utc_now()

    def unsync(self) -> None:
        """Stop mirroring this task and forget its remote event."""
        self.sync_enabled = False
        self.remote_event_id = None

    def next_occurrence(self) -> date | None:
        """Get the due date of the next instance of a recurring task.

        Returns:
            The next due date, or None if the task has no due date or
            does not recur
        """
        if self.due_date is None:
            return None
        if self.recurrence == Recurrence.DAILY:
            return self.due_date + timedelta(days=1)
        if self.recurrence == Recurrence.WEEKLY:
            return self.due_date + timedelta(days=7)
        if self.recurrence == Recurrence.MONTHLY:
            return _add_month(self.due_date)
        return None

    def spawn_recurrence(self) -> Task | None:
        """Create the next instance of a recurring task.

        The new instance gets a fresh id, starts uncompleted and has no
        remote link, so a sync pass will create its own event.
        """
        next_date = self.next_occurrence()
        if next_date is None:
            return None
        return Task(
            title=self.title,
            description=self.description,
            category=self.category,
            tags=list(self.tags),
            due_date=next_date,
            due_time=self.due_time,
            priority=self.priority,
            estimate=self.estimate,
            recurrence=self.recurrence,
            sync_enabled=self.sync_enabled,
        )
