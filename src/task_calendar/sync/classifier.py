"""Change classification.

Compares the full local task collection with the full fetched event window
and decides, for every task and every event we own, what has to happen.

## Classification Rules

For each task marked for sync:

1. No linked event id: create.
2. Linked event missing from the window: create (the link was lost).
3. Linked event cancelled:
   a. local edits relative to the event: conflict (deleted remotely,
      modified locally);
   b. otherwise: unsync the task in place, no network action.
4. Linked event updated after the task's last known state:
   a. local edits as well: conflict (both modified);
   b. otherwise: merge the event into the task.
5. Local edits only: update the event.
6. Otherwise nothing.

Tasks no longer marked for sync but still linked: delete their event,
unless another task already holds that event, in which case only the
stale link is dropped.

Events left unmatched that are not cancelled and carry our marker:
import as new tasks. Foreign events are never touched.

Conflicts always win over merge/update; a cancelled event with local edits
is never deleted silently. Remote is "newer" only when its update time is
strictly later than the task's `last_modified`: on a tie, local wins.
"""

from __future__ import annotations

import logging
from typing import Iterable

from task_calendar.config import Settings, get_settings
from task_calendar.models.changes import (
    ChangeSet,
    Conflict,
    ConflictType,
    CreateEvent,
    DeleteEvent,
    ImportEvent,
    MergeEvent,
    UpdateEvent,
)
from task_calendar.models.remote_event import META_COMPLETED, META_PRIORITY, RemoteEvent
from task_calendar.models.task import Task
from task_calendar.sync.mapper import FieldMapper, parse_priority

logger = logging.getLogger(__name__)


class ChangeClassifier:
    """Builds a `ChangeSet` from local tasks and remote events.

    Classification is synchronous. It mutates tasks in two cases, both
    reported in `ChangeSet.unlinked`: a task whose event was cancelled
    remotely, with no local edits, is unsynced on the spot; an unsynced
    task linked to an event another task holds loses its link.
    """

    def __init__(
        self,
        mapper: FieldMapper | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self.mapper = mapper or FieldMapper(settings)
        self.app_marker = settings.app_marker

    def has_local_changes(self, task: Task, event: RemoteEvent) -> bool:
        """Check if a task diverged from what its event currently holds.

        Compares title, description, due date (and time of day when the
        task has one), completion and priority. This comparison, not a
        dirty flag, decides whether a task has unsynced local edits.
        """
        if not self.mapper.same_title(task.title, event.summary):
            return True
        if task.description != (event.description or ""):
            return True

        remote_date, remote_time = self.mapper.remote_due(event)
        if task.due_date is not None:
            if remote_date is None or remote_date != task.due_date:
                return True
            if task.due_time is not None and event.is_timed:
                if remote_time is None or remote_time.strftime("%H:%M") != task.due_time.strftime("%H:%M"):
                    return True
        elif event.has_start:
            return True

        if task.completed != (event.private.get(META_COMPLETED) == "true"):
            return True

        if task.priority != parse_priority(event.private.get(META_PRIORITY)):
            return True

        return False

    @staticmethod
    def is_remote_newer(task: Task, event: RemoteEvent) -> bool:
        """Check if the event changed after the task's last known state.

        Unknown timestamps count as not newer; equal timestamps favor local.
        """
        if event.updated is None or task.last_modified is None:
            return False
        return event.updated > task.last_modified

    def classify(
        self,
        tasks: Iterable[Task],
        events: Iterable[RemoteEvent],
    ) -> ChangeSet:
        """Classify local tasks and remote events into a change set.

        Args:
            tasks: The full local task collection
            events: Every event fetched for the sync window

        Returns:
            ChangeSet describing what the pass should do
        """
        changes = ChangeSet()
        remaining: dict[str, RemoteEvent] = {event.id: event for event in events}

        tasks = list(tasks)
        claimed: set[str] = set()
        for task in tasks:
            if task.sync_enabled:
                if task.remote_event_id:
                    claimed.add(task.remote_event_id)
                self._classify_synced(task, remaining, changes)

        for task in tasks:
            if task.sync_enabled or not task.remote_event_id:
                continue
            if task.remote_event_id in claimed:
                logger.warning(
                    f"Task {task.id} shares event {task.remote_event_id} "
                    f"with another task, dropping its link"
                )
                task.remote_event_id = None
                changes.unlinked.append(task)
                continue
            claimed.add(task.remote_event_id)
            # The link is cleared by the applicator once the delete succeeds
            remaining.pop(task.remote_event_id, None)
            changes.add(DeleteEvent(remote_event_id=task.remote_event_id, task=task))

        for event in remaining.values():
            if event.is_cancelled:
                continue
            if not event.is_owned_by(self.app_marker):
                continue
            changes.add(ImportEvent(event=event))

        if not changes.is_empty:
            logger.debug(f"Classified changes: {changes.summary()}")
        return changes

    def _classify_synced(
        self,
        task: Task,
        remaining: dict[str, RemoteEvent],
        changes: ChangeSet,
    ) -> None:
        if not task.remote_event_id:
            changes.add(CreateEvent(task=task))
            return

        event = remaining.pop(task.remote_event_id, None)
        if event is None:
            logger.info(
                f"Event {task.remote_event_id} for task {task.id} not found, recreating"
            )
            changes.add(CreateEvent(task=task))
            return

        if event.is_cancelled:
            if self.has_local_changes(task, event):
                changes.add(
                    Conflict(
                        type=ConflictType.DELETED_REMOTELY_MODIFIED_LOCALLY,
                        task=task,
                        event=event,
                    )
                )
            else:
                task.unsync()
                changes.unlinked.append(task)
            return

        if self.is_remote_newer(task, event):
            if self.has_local_changes(task, event):
                changes.add(
                    Conflict(type=ConflictType.BOTH_MODIFIED, task=task, event=event)
                )
            else:
                changes.add(MergeEvent(task=task, event=event))
            return

        if self.has_local_changes(task, event):
            changes.add(UpdateEvent(task=task))
