"""Conflict resolution.

A conflict moves from pending to resolved once a decision-maker picks a
side. The decision-maker is whatever the caller plugs in: a UI prompt, or a
policy function for unattended runs and tests. Resolution itself is a pure
function of (conflict, choice) plus the mapper.

## Outcomes

| Choice      | Both modified            | Deleted remotely, modified locally |
|-------------|--------------------------|------------------------------------|
| keep local  | update the event         | drop the link, create a new event  |
| keep remote | merge event into task    | unsync the task                    |

Scheduled remote work is not performed here. Once every conflict of a pass
is resolved the session classifies again from scratch, and the resolved
state makes classification derive exactly the scheduled change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from task_calendar.models.changes import (
    Conflict,
    ConflictChoice,
    ConflictType,
    CreateEvent,
    UpdateEvent,
)
from task_calendar.models.task import utc_now
from task_calendar.sync.mapper import FieldMapper

logger = logging.getLogger(__name__)

# Returns None to leave the conflict for someone else to decide
ConflictPolicy = Callable[[Conflict], "ConflictChoice | None"]


@dataclass
class Resolution:
    """Result of resolving one conflict."""

    conflict: Conflict
    choice: ConflictChoice
    scheduled: CreateEvent | UpdateEvent | None = None


def resolve_conflict(
    conflict: Conflict,
    choice: ConflictChoice,
    mapper: FieldMapper,
) -> Resolution:
    """Apply a decision to the conflicting task.

    Args:
        conflict: The conflict to resolve
        choice: Which side wins
        mapper: Field mapper used to pull remote content

    Returns:
        Resolution with the remote change the next pass will perform
    """
    task = conflict.task
    event = conflict.event

    if choice == ConflictChoice.KEEP_LOCAL:
        if conflict.type == ConflictType.BOTH_MODIFIED:
            # Local becomes the newest known state so the edit is pushed
            now = utc_now()
            task.last_modified = max(now, event.updated) if event.updated else now
            return Resolution(conflict, choice, scheduled=UpdateEvent(task=task))
        # The remote object is gone; a fresh one must be created
        task.remote_event_id = None
        return Resolution(conflict, choice, scheduled=CreateEvent(task=task))

    if conflict.type == ConflictType.BOTH_MODIFIED:
        mapper.merge_into(task, event)
    else:
        task.unsync()
    return Resolution(conflict, choice)


def keep_local_policy(conflict: Conflict) -> ConflictChoice:
    """Always keep the local version."""
    return ConflictChoice.KEEP_LOCAL


def keep_remote_policy(conflict: Conflict) -> ConflictChoice:
    """Always keep the calendar version."""
    return ConflictChoice.KEEP_REMOTE


def newest_wins_policy(conflict: Conflict) -> ConflictChoice:
    """Keep the calendar version if it was modified more recently."""
    updated = conflict.event.updated
    if updated is not None and updated > conflict.task.last_modified:
        return ConflictChoice.KEEP_REMOTE
    return ConflictChoice.KEEP_LOCAL


class ConflictResolver:
    """Tracks one batch of conflicts until all are resolved.

    Example:
        ```python
        resolver = ConflictResolver(mapper)
        resolver.begin(change_set.conflicts)
        for conflict in resolver.pending:
            resolver.resolve(conflict, ask_user(conflict))
        assert resolver.all_resolved
        ```
    """

    def __init__(self, mapper: FieldMapper):
        self.mapper = mapper
        self._pending: list[Conflict] = []
        self._resolutions: list[Resolution] = []

    def begin(self, conflicts: Iterable[Conflict]) -> None:
        """Start a new batch, discarding any previous one."""
        self._pending = list(conflicts)
        self._resolutions = []

    def clear(self) -> None:
        self.begin(())

    @property
    def pending(self) -> list[Conflict]:
        """Conflicts still waiting for a decision."""
        return list(self._pending)

    @property
    def resolutions(self) -> list[Resolution]:
        return list(self._resolutions)

    @property
    def all_resolved(self) -> bool:
        return not self._pending

    def resolve(self, conflict: Conflict, choice: ConflictChoice) -> Resolution:
        """Resolve one conflict of the current batch.

        Raises:
            KeyError: If the conflict is not pending in this batch
        """
        if conflict not in self._pending:
            raise KeyError(f"Conflict for task {conflict.task.id} is not pending")

        resolution = resolve_conflict(conflict, ConflictChoice(choice), self.mapper)
        self._pending.remove(conflict)
        self._resolutions.append(resolution)

        logger.info(
            f"Resolved {conflict.type.value} conflict for task {conflict.task.id}: "
            f"{resolution.choice.value}"
        )
        return resolution

    def apply_policy(self, policy: ConflictPolicy) -> list[Resolution]:
        """Resolve every pending conflict the policy has an answer for."""
        resolved = []
        for conflict in self.pending:
            choice = policy(conflict)
            if choice is not None:
                resolved.append(self.resolve(conflict, choice))
        return resolved
