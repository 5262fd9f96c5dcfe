"""Change set models produced by reconciliation.

A reconciliation pass classifies every local task and remote event into
exactly one outcome. Each outcome is its own record type; `Change` is the
closed union of them, so consumers dispatch on the record type rather than
on string tags.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import ClassVar, Iterator, Union

from task_calendar.models.remote_event import RemoteEvent
from task_calendar.models.task import Task, utc_now


class ChangeKind(str, Enum):
    """Category of a classified change."""

    CREATE = "create"  # Push a new event
    UPDATE = "update"  # Push local edits to an existing event
    DELETE = "delete"  # Remove a remote event
    IMPORT = "import"  # New local task from a remote event
    MERGE = "merge"  # Pull remote edits into a local task
    CONFLICT = "conflict"  # Needs an external decision


class ConflictType(str, Enum):
    """Why a task/event pair could not be reconciled automatically."""

    BOTH_MODIFIED = "both_modified"
    DELETED_REMOTELY_MODIFIED_LOCALLY = "deleted_remotely_modified_locally"


class ConflictChoice(str, Enum):
    """Which side wins a conflict."""

    KEEP_LOCAL = "keep_local"
    KEEP_REMOTE = "keep_remote"


@dataclass(frozen=True)
class CreateEvent:
    task: Task
    kind: ClassVar[ChangeKind] = ChangeKind.CREATE


@dataclass(frozen=True)
class UpdateEvent:
    task: Task
    kind: ClassVar[ChangeKind] = ChangeKind.UPDATE


@dataclass(frozen=True)
class DeleteEvent:
    """Delete a remote event.

    `task` is None when replaying a delete for a task that no longer
    exists locally.
    """

    remote_event_id: str
    task: Task | None = None
    kind: ClassVar[ChangeKind] = ChangeKind.DELETE


@dataclass(frozen=True)
class ImportEvent:
    event: RemoteEvent
    kind: ClassVar[ChangeKind] = ChangeKind.IMPORT


@dataclass(frozen=True)
class MergeEvent:
    task: Task
    event: RemoteEvent
    kind: ClassVar[ChangeKind] = ChangeKind.MERGE


@dataclass(frozen=True, eq=False)
class Conflict:
    """A task/event pair whose divergence needs an external decision.

    Compared by identity so a conflict can key a mapping of choices.
    """

    type: ConflictType
    task: Task
    event: RemoteEvent
    kind: ClassVar[ChangeKind] = ChangeKind.CONFLICT

    @property
    def description(self) -> str:
        if self.type == ConflictType.BOTH_MODIFIED:
            return f"'{self.task.title}' was edited locally and in the calendar"
        return f"'{self.task.title}' was edited locally but deleted from the calendar"


Change = Union[CreateEvent, UpdateEvent, DeleteEvent, ImportEvent, MergeEvent, Conflict]


@dataclass
class ChangeSet:
    """Classified outcome of one reconciliation pass.

    A task appears in at most one of create/update/merge/conflict, and a
    remote event in at most one of delete/import/conflict.
    """

    changes: list[Change] = field(default_factory=list)
    # Tasks unlinked in place because their event was cancelled remotely
    unlinked: list[Task] = field(default_factory=list)

    def add(self, change: Change) -> None:
        """Add a change, enforcing the one-outcome-per-item rule."""
        task = getattr(change, "task", None)
        if task is not None and not isinstance(change, DeleteEvent):
            if any(
                getattr(existing, "task", None) is task
                and not isinstance(existing, DeleteEvent)
                for existing in self.changes
            ):
                raise ValueError(f"Task {task.id} already classified in this pass")
        event_id = _event_id_of(change)
        if event_id is not None and not isinstance(change, MergeEvent):
            if any(
                _event_id_of(existing) == event_id and not isinstance(existing, MergeEvent)
                for existing in self.changes
            ):
                raise ValueError(f"Event {event_id} already classified in this pass")
        self.changes.append(change)

    def __iter__(self) -> Iterator[Change]:
        return iter(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    @property
    def is_empty(self) -> bool:
        return not self.changes and not self.unlinked

    @property
    def to_create(self) -> list[CreateEvent]:
        return [c for c in self.changes if isinstance(c, CreateEvent)]

    @property
    def to_update(self) -> list[UpdateEvent]:
        return [c for c in self.changes if isinstance(c, UpdateEvent)]

    @property
    def to_delete(self) -> list[DeleteEvent]:
        return [c for c in self.changes if isinstance(c, DeleteEvent)]

    @property
    def to_import(self) -> list[ImportEvent]:
        return [c for c in self.changes if isinstance(c, ImportEvent)]

    @property
    def to_merge(self) -> list[MergeEvent]:
        return [c for c in self.changes if isinstance(c, MergeEvent)]

    @property
    def conflicts(self) -> list[Conflict]:
        return [c for c in self.changes if isinstance(c, Conflict)]

    @property
    def network_action_count(self) -> int:
        """Number of changes that need a remote call."""
        return len(self.to_create) + len(self.to_update) + len(self.to_delete)

    def summary(self) -> dict[str, int]:
        """Count of changes per kind."""
        counts = {kind.value: 0 for kind in ChangeKind}
        for change in self.changes:
            counts[change.kind.value] += 1
        counts["unlinked"] = len(self.unlinked)
        return counts


def _event_id_of(change: Change) -> str | None:
    if isinstance(change, DeleteEvent):
        return change.remote_event_id
    if isinstance(change, (ImportEvent, MergeEvent, Conflict)):
        return change.event.id
    return None


@dataclass
class PendingChange:
    """A remote mutation that failed and waits for the next pass.

    Pending changes live only for the current process; there is no
    durable queue.
    """

    kind: ChangeKind
    task: Task | None
    remote_event_id: str | None
    error: str
    attempts: int = 1
    failed_at: datetime = field(default_factory=utc_now)

    @property
    def key(self) -> tuple[str, str]:
        """Identity of the deferred action; one entry per key."""
        if self.kind == ChangeKind.DELETE:
            return (self.kind.value, self.remote_event_id or "")
        return (self.kind.value, self.task.id if self.task else "")

    def to_change(self) -> Change:
        """Rebuild the change record this entry defers."""
        if self.kind == ChangeKind.DELETE and self.remote_event_id:
            return DeleteEvent(remote_event_id=self.remote_event_id, task=self.task)
        if self.kind == ChangeKind.CREATE and self.task is not None:
            return CreateEvent(task=self.task)
        if self.kind == ChangeKind.UPDATE and self.task is not None:
            return UpdateEvent(task=self.task)
        raise ValueError(f"Cannot replay pending {self.kind.value} change")
