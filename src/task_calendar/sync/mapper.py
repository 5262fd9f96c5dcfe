"""Translation between local tasks and calendar event resources.

The mapper is pure and stateless apart from its configuration. Fields the
event resource has no slot for travel in the event's private extended
properties; the task id in particular never relies on the event id, since
task ids need not fit the calendar's id namespace.

## Wire Format

```
{
  "summary": title,
  "description": description,
  "start": {"dateTime": "2024-06-10T09:00:00", "timeZone": "Europe/Paris"}
           | {"date": "2024-06-10"},
  "end":   {"dateTime": start + estimate, "timeZone": ...}
           | {"date": "2024-06-11"},          # exclusive end
  "colorId": "11" | "6" | "10" | "8",
  "extendedProperties": {"private": {
      "appId": marker, "todoId": id, "completed": "true" | "false",
      "priority": ..., "tags": "[...]", "recurrence": ...,
      "estimate": "30", "category": ""
  }}
}
```

Malformed remote data never raises: unknown values fall back to task
defaults.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, time, timedelta
from typing import Any

from task_calendar.config import Settings, get_settings
from task_calendar.models.remote_event import (
    META_APP,
    META_CATEGORY,
    META_COMPLETED,
    META_ESTIMATE,
    META_PRIORITY,
    META_RECURRENCE,
    META_TAGS,
    META_TASK_ID,
    RemoteEvent,
)
from task_calendar.models.task import Priority, Recurrence, Task, utc_now

logger = logging.getLogger(__name__)

UNTITLED = "(No title)"

# Google Calendar event color ids used as visual hints
PRIORITY_COLORS = {
    Priority.HIGH: "11",  # Red
    Priority.NORMAL: "6",  # Orange
    Priority.LOW: "10",  # Green
}
COMPLETED_COLOR = "8"  # Grey
COLOR_PRIORITIES = {color: priority for priority, color in PRIORITY_COLORS.items()}

# Task fields carried by the event and overwritten on merge
MAPPED_FIELDS = (
    "title",
    "description",
    "completed",
    "priority",
    "tags",
    "recurrence",
    "estimate",
    "category",
    "due_date",
    "due_time",
)


def parse_priority(value: str | None) -> Priority | None:
    """Parse a priority string, None if absent or unknown."""
    if not value:
        return None
    try:
        return Priority(value)
    except ValueError:
        return None


def parse_tags(value: str | None) -> list[str]:
    """Decode the JSON tag list; anything malformed yields no tags."""
    if not value:
        return []
    try:
        decoded = json.loads(value)
    except (json.JSONDecodeError, TypeError):
        logger.debug(f"Ignoring malformed tag list: {value!r}")
        return []
    if not isinstance(decoded, list):
        return []
    return [str(tag) for tag in decoded if tag is not None]


def parse_estimate(value: str | None) -> int | None:
    """Parse a stringified minute count, None if absent or invalid."""
    if value is None or value == "":
        return None
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        return None
    return minutes if minutes >= 0 else None


class FieldMapper:
    """Bidirectional mapping between `Task` and event resources.

    Example:
        ```python
        mapper = FieldMapper()
        payload = mapper.to_wire(task)
        event_id = await client.create_event(payload)
        ```
    """

    def __init__(self, settings: Settings | None = None):
        settings = settings or get_settings()
        self.app_marker = settings.app_marker
        self.time_zone = settings.calendar_time_zone
        self.default_minutes = settings.default_event_minutes
        self._zone = settings.zone

    def color_for(self, task: Task) -> str:
        """Visual hint for a task: priority color, grey once completed."""
        if task.completed:
            return COMPLETED_COLOR
        return PRIORITY_COLORS.get(task.priority, PRIORITY_COLORS[Priority.NORMAL])

    def metadata_for(self, task: Task) -> dict[str, str]:
        """Private metadata bag for a task. All values are strings."""
        return {
            META_APP: self.app_marker,
            META_TASK_ID: task.id,
            META_COMPLETED: "true" if task.completed else "false",
            META_PRIORITY: task.priority.value,
            META_TAGS: json.dumps(task.tags, ensure_ascii=False),
            META_RECURRENCE: task.recurrence.value,
            META_ESTIMATE: str(task.estimate),
            META_CATEGORY: task.category or "",
        }

    def to_wire(self, task: Task) -> dict[str, Any]:
        """Build an event resource for a task.

        Tasks with a due date and time become timed events lasting the
        estimate (or the default duration); tasks with only a due date
        become all-day events. Tasks without a due date get no start/end.
        """
        payload: dict[str, Any] = {
            "summary": task.title,
            "description": task.description or "",
            "colorId": self.color_for(task),
            "extendedProperties": {"private": self.metadata_for(task)},
        }

        if task.due_date is not None and task.due_time is not None:
            start = datetime.combine(task.due_date, task.due_time.replace(microsecond=0, tzinfo=None))
            minutes = task.estimate if task.estimate > 0 else self.default_minutes
            end = start + timedelta(minutes=minutes)
            payload["start"] = {
                "dateTime": start.isoformat(timespec="seconds"),
                "timeZone": self.time_zone,
            }
            payload["end"] = {
                "dateTime": end.isoformat(timespec="seconds"),
                "timeZone": self.time_zone,
            }
        elif task.due_date is not None:
            payload["start"] = {"date": task.due_date.isoformat()}
            payload["end"] = {"date": (task.due_date + timedelta(days=1)).isoformat()}

        return payload

    def remote_due(self, event: RemoteEvent) -> tuple[date | None, time | None]:
        """Due date and time-of-day of an event in the calendar timezone."""
        if event.start is not None:
            start = event.start
            if start.tzinfo is not None:
                start = start.astimezone(self._zone)
            return start.date(), start.time().replace(microsecond=0, tzinfo=None)
        if event.start_date is not None:
            return event.start_date, None
        return None, None

    def from_wire(self, event: RemoteEvent) -> Task:
        """Build a task from an event.

        Metadata fields that are missing or malformed leave the task
        default in place.
        """
        meta = event.private
        now = utc_now()

        due_date, due_time = self.remote_due(event)

        priority = parse_priority(meta.get(META_PRIORITY))
        if priority is None:
            priority = COLOR_PRIORITIES.get(event.color_id or "", Priority.NORMAL)

        try:
            recurrence = Recurrence(meta.get(META_RECURRENCE) or Recurrence.NONE.value)
        except ValueError:
            recurrence = Recurrence.NONE

        estimate = parse_estimate(meta.get(META_ESTIMATE))
        if estimate is None:
            estimate = 0
            if event.start is not None and event.end is not None:
                estimate = max(0, round((event.end - event.start).total_seconds() / 60))

        return Task(
            id=meta.get(META_TASK_ID) or event.id,
            title=event.summary or "",
            description=event.description or "",
            completed=meta.get(META_COMPLETED) == "true",
            category=meta.get(META_CATEGORY) or None,
            tags=parse_tags(meta.get(META_TAGS)),
            due_date=due_date,
            due_time=due_time,
            priority=priority,
            estimate=estimate,
            recurrence=recurrence,
            created_at=event.created or now,
            last_modified=event.updated or now,
            sync_enabled=True,
            remote_event_id=event.id,
        )

    def merge_into(self, task: Task, event: RemoteEvent) -> Task:
        """Overwrite a local task with the content of its remote event.

        The task keeps its id and creation time. It is linked to the event
        and its `last_modified` becomes the event's update time, the last
        state both sides agree on.
        """
        mapped = self.from_wire(event)
        for name in MAPPED_FIELDS:
            value = getattr(mapped, name)
            setattr(task, name, list(value) if isinstance(value, list) else value)
        task.sync_enabled = True
        task.remote_event_id = event.id
        task.last_modified = event.updated or utc_now()
        return task

    def import_task(self, event: RemoteEvent) -> Task:
        """Build a new local task from an event created elsewhere.

        Like `from_wire`, except an untitled event gets a placeholder title.
        """
        task = self.from_wire(event)
        if not task.title:
            task.title = UNTITLED
        return task

    @staticmethod
    def same_title(title: str, summary: str | None) -> bool:
        """Check a task title against an event summary.

        The import placeholder matches an event without a summary.
        """
        summary = summary or ""
        return title == summary or (title == UNTITLED and not summary)
