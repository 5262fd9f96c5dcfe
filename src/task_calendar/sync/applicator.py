"""Change application.

Executes the non-conflicting part of a change set. Remote mutations run
sequentially, one category at a time (create, then update, then delete),
to respect the calendar's rate limits and keep ordering predictable.
Imports and merges are local-only and run last.

## Failure Isolation

A failing create/update/delete never aborts the batch. The item goes to
the pending change queue and the next item proceeds. Only an
authentication failure stops the pass, since no further call can succeed.

Imports and merges only fail on malformed data; such items are skipped
and logged, not retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, MutableSequence

from pydantic import ValidationError

from task_calendar.calendar.client import (
    AuthenticationError,
    CalendarError,
    EventNotFoundError,
    RemoteCalendarClient,
)
from task_calendar.models.changes import (
    ChangeKind,
    ChangeSet,
    CreateEvent,
    DeleteEvent,
    PendingChange,
    UpdateEvent,
)
from task_calendar.models.task import Task, utc_now
from task_calendar.sync.mapper import FieldMapper

logger = logging.getLogger(__name__)


class PendingChangeQueue:
    """Remote mutations deferred to the next pass.

    One entry per action and item; a repeated failure replaces the entry
    and bumps its attempt count. Lives for the current process only.
    """

    def __init__(self) -> None:
        self._items: dict[tuple[str, str], PendingChange] = {}

    def add(self, change: PendingChange) -> PendingChange:
        existing = self._items.get(change.key)
        if existing is not None:
            change.attempts = max(change.attempts, existing.attempts + 1)
        self._items[change.key] = change
        return change

    def drain(self) -> list[PendingChange]:
        """Remove and return every pending change."""
        items = list(self._items.values())
        self._items.clear()
        return items

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[PendingChange]:
        return iter(list(self._items.values()))


@dataclass
class ApplyReport:
    """Outcome of applying a change set."""

    created: list[str] = field(default_factory=list)  # Task ids
    updated: list[str] = field(default_factory=list)  # Task ids
    deleted: list[str] = field(default_factory=list)  # Remote event ids
    imported: list[str] = field(default_factory=list)  # Task ids
    merged: list[str] = field(default_factory=list)  # Task ids
    skipped: list[str] = field(default_factory=list)  # Task or event ids
    failed: list[PendingChange] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)


class ChangeApplicator:
    """Applies change sets through a remote calendar client.

    Example:
        ```python
        applicator = ChangeApplicator(client, mapper)
        report = await applicator.apply(change_set, tasks)
        print(len(applicator.queue), "changes deferred")
        ```
    """

    def __init__(
        self,
        client: RemoteCalendarClient,
        mapper: FieldMapper,
        queue: PendingChangeQueue | None = None,
    ):
        self.client = client
        self.mapper = mapper
        self.queue = queue if queue is not None else PendingChangeQueue()
        self._attempts: dict[tuple[str, str], int] = {}

    async def apply(
        self,
        change_set: ChangeSet,
        tasks: MutableSequence[Task],
        report: ApplyReport | None = None,
    ) -> ApplyReport:
        """Apply every non-conflicting change.

        Args:
            change_set: Classified changes; conflicts must be resolved first
            tasks: The local task collection, extended in place by imports
            report: Report to fill in (a new one if omitted)

        Returns:
            ApplyReport listing what succeeded, failed and was skipped

        Raises:
            ValueError: If the change set still holds conflicts
            AuthenticationError: If the client lost its authorization
        """
        if change_set.conflicts:
            raise ValueError("Cannot apply a change set with unresolved conflicts")

        report = report if report is not None else ApplyReport()
        carried = self.queue.drain()
        self._attempts = {pending.key: pending.attempts for pending in carried}
        deletes = change_set.to_delete + self._carried_deletes(carried, change_set, tasks)

        for create in change_set.to_create:
            await self._create(create, report)

        for update in change_set.to_update:
            await self._update(update, report)

        for delete in deletes:
            await self._delete(delete, report)

        known_ids = {task.id for task in tasks}
        for change in change_set.to_import:
            event = change.event
            try:
                task = self.mapper.import_task(event)
            except (ValueError, ValidationError) as e:
                report.skipped.append(event.id)
                report.warn(f"Skipping import of malformed event {event.id}: {e}")
                continue
            if task.id in known_ids:
                report.skipped.append(event.id)
                report.warn(
                    f"Skipping import of event {event.id}: task {task.id} already exists"
                )
                continue
            tasks.append(task)
            known_ids.add(task.id)
            report.imported.append(task.id)

        for change in change_set.to_merge:
            try:
                self.mapper.merge_into(change.task, change.event)
            except (ValueError, ValidationError) as e:
                report.skipped.append(change.task.id)
                report.warn(
                    f"Skipping merge of event {change.event.id} into task "
                    f"{change.task.id}: {e}"
                )
                continue
            report.merged.append(change.task.id)

        return report

    def _carried_deletes(
        self,
        carried: list[PendingChange],
        change_set: ChangeSet,
        tasks: MutableSequence[Task],
    ) -> list[DeleteEvent]:
        """Take over deferred deletes classification cannot re-derive.

        Creates and updates of tasks still in the collection come back
        through classification; deletes of tasks removed from it would be
        lost, so they are replayed by remote id.
        """
        scheduled = {delete.remote_event_id for delete in change_set.to_delete}
        present = {task.id for task in tasks}
        replay = []
        for pending in carried:
            if pending.kind != ChangeKind.DELETE or not pending.remote_event_id:
                continue
            if pending.remote_event_id in scheduled:
                continue
            if pending.task is not None and pending.task.id in present:
                continue
            scheduled.add(pending.remote_event_id)
            replay.append(pending.to_change())
            logger.info(f"Retrying deferred delete of event {pending.remote_event_id}")
        return replay

    def _defer(
        self,
        kind: ChangeKind,
        task: Task | None,
        remote_event_id: str | None,
        error: Exception,
        report: ApplyReport,
    ) -> None:
        pending = PendingChange(
            kind=kind,
            task=task,
            remote_event_id=remote_event_id,
            error=f"{type(error).__name__}: {error}",
        )
        pending.attempts += self._attempts.get(pending.key, 0)
        self.queue.add(pending)
        report.failed.append(pending)
        target = task.id if task is not None else remote_event_id
        if isinstance(error, CalendarError):
            report.warn(f"Deferred {kind.value} of {target}: {error}")
        else:
            logger.exception(f"Unexpected error during {kind.value} of {target}: {error}")
            report.warnings.append(f"Deferred {kind.value} of {target}: {error}")

    async def _create(self, change: CreateEvent, report: ApplyReport) -> None:
        task = change.task
        if task.due_date is None:
            report.skipped.append(task.id)
            report.warn(f"Task {task.id} has no due date; not creating an event")
            return
        try:
            event_id = await self.client.create_event(self.mapper.to_wire(task))
        except AuthenticationError:
            raise
        except Exception as e:
            self._defer(ChangeKind.CREATE, task, None, e, report)
            return
        task.remote_event_id = event_id
        task.last_modified = utc_now()
        report.created.append(task.id)
        logger.debug(f"Created event {event_id} for task {task.id}")

    async def _update(self, change: UpdateEvent, report: ApplyReport) -> None:
        task = change.task
        if task.remote_event_id is None or task.due_date is None:
            report.skipped.append(task.id)
            report.warn(f"Task {task.id} cannot be mirrored; not updating its event")
            return
        try:
            await self.client.update_event(task.remote_event_id, self.mapper.to_wire(task))
        except AuthenticationError:
            raise
        except Exception as e:
            self._defer(ChangeKind.UPDATE, task, task.remote_event_id, e, report)
            return
        task.last_modified = utc_now()
        report.updated.append(task.id)
        logger.debug(f"Updated event {task.remote_event_id} for task {task.id}")

    async def _delete(self, change: DeleteEvent, report: ApplyReport) -> None:
        try:
            await self.client.delete_event(change.remote_event_id)
        except AuthenticationError:
            raise
        except EventNotFoundError:
            logger.info(f"Event {change.remote_event_id} already gone")
        except Exception as e:
            self._defer(ChangeKind.DELETE, change.task, change.remote_event_id, e, report)
            return
        task = change.task
        if task is not None and task.remote_event_id == change.remote_event_id:
            task.remote_event_id = None
        report.deleted.append(change.remote_event_id)
        logger.debug(f"Deleted event {change.remote_event_id}")
