"""Sync session orchestration.

One session object drives synchronization between a local task collection
and one calendar. It is constructed explicitly and handed to whatever needs
to trigger or observe syncs; there is no global instance.

## Sync Process

1. Check the client is connected (fatal otherwise, nothing modified)
2. Fetch the event window (3 months back to 12 months ahead by default)
3. Classify local tasks against the fetched events
4. If there are conflicts: ask the policy, if any, then go back to 2.
   Conflicts left undecided, or still present after MAX_POLICY_ROUNDS
   policy rounds, suspend the session until the caller resolves them
   all; the last resolution re-runs the whole pass.
5. Apply the change set; per-item failures are deferred, not fatal
6. Record the completion time

## States

```
Idle -> Running -> Idle                             (success / failure)
                -> AwaitingConflictResolution -> Running (all resolved)
```

A sync request while a pass is running is rejected as already running.
The task collection is owned by the session for the duration of a pass.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, MutableSequence

from task_calendar.calendar.client import (
    AuthenticationError,
    CalendarError,
    RemoteCalendarClient,
)
from task_calendar.config import Settings, get_settings
from task_calendar.models.changes import Conflict, ConflictChoice
from task_calendar.models.task import Task, utc_now
from task_calendar.sync.applicator import ApplyReport, ChangeApplicator, PendingChangeQueue
from task_calendar.sync.classifier import ChangeClassifier
from task_calendar.sync.mapper import FieldMapper
from task_calendar.sync.metadata import InMemorySyncMetadataStore, SyncMetadataStore
from task_calendar.sync.resolver import ConflictPolicy, ConflictResolver

logger = logging.getLogger(__name__)

# Passes run back to back when a policy resolves every conflict
MAX_POLICY_ROUNDS = 3


class SyncState(str, Enum):
    """Lifecycle state of a sync session."""

    IDLE = "idle"
    RUNNING = "running"
    AWAITING_CONFLICT_RESOLUTION = "awaiting_conflict_resolution"


class SyncStatus(str, Enum):
    """Outcome of a sync request."""

    SUCCESS = "success"
    CONFLICTS = "conflicts"
    ALREADY_RUNNING = "already_running"
    NOT_CONNECTED = "not_connected"
    ERROR = "error"


@dataclass
class SyncResult:
    """Result of a sync request."""

    status: SyncStatus
    trigger: str
    message: str = ""
    created: int = 0
    updated: int = 0
    deleted: int = 0
    imported: int = 0
    merged: int = 0
    unlinked: int = 0
    resolved: int = 0  # Conflicts decided before this pass applied
    skipped: int = 0
    pending: int = 0  # Deferred changes waiting for the next pass
    warnings: list[str] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)
    duration_ms: int = 0
    synced_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def success(self) -> bool:
        return self.status == SyncStatus.SUCCESS

    @property
    def changes_applied(self) -> int:
        return self.created + self.updated + self.deleted + self.imported + self.merged

    def absorb(self, report: ApplyReport) -> None:
        """Copy counters from an apply report."""
        self.created += len(report.created)
        self.updated += len(report.updated)
        self.deleted += len(report.deleted)
        self.imported += len(report.imported)
        self.merged += len(report.merged)
        self.skipped += len(report.skipped)
        self.warnings.extend(report.warnings)


SyncListener = Callable[[SyncResult], None]


def shift_months(value: datetime, months: int) -> datetime:
    """Move a datetime by whole calendar months, clamping the day."""
    index = value.year * 12 + value.month - 1 + months
    year, month = divmod(index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


class SyncSession:
    """Single-flight synchronization between tasks and a calendar.

    Example:
        ```python
        session = SyncSession(client, metadata_store)

        result = await session.sync(tasks)
        if result.status == SyncStatus.CONFLICTS:
            for conflict in session.pending_conflicts:
                result = await session.resolve(conflict, ask_user(conflict))
        ```
    """

    def __init__(
        self,
        client: RemoteCalendarClient,
        metadata_store: SyncMetadataStore | None = None,
        settings: Settings | None = None,
        mapper: FieldMapper | None = None,
        policy: ConflictPolicy | None = None,
        listeners: Iterable[SyncListener] = (),
        queue: PendingChangeQueue | None = None,
    ):
        """Initialize the session.

        Args:
            client: Calendar client bound to the mirrored calendar
            metadata_store: Where sync completion times are kept
            settings: Application settings (defaults to cached settings)
            mapper: Field mapper (built from settings if omitted)
            policy: Decides conflicts automatically; None suspends on conflicts
            listeners: Called with every finished SyncResult
            queue: Pending change queue (a fresh one if omitted)
        """
        self.settings = settings or get_settings()
        self.client = client
        self.metadata_store = metadata_store or InMemorySyncMetadataStore()
        self.mapper = mapper or FieldMapper(self.settings)
        self.policy = policy
        self.listeners = list(listeners)
        self.classifier = ChangeClassifier(self.mapper, self.settings)
        self.resolver = ConflictResolver(self.mapper)
        self.applicator = ChangeApplicator(client, self.mapper, queue)
        self.calendar_id = getattr(client, "calendar_id", None) or self.settings.default_calendar_id

        self.state = SyncState.IDLE
        self._tasks: MutableSequence[Task] | None = None
        self._resolved_before_resume = 0

    @property
    def is_syncing(self) -> bool:
        return self.state == SyncState.RUNNING

    @property
    def pending_conflicts(self) -> list[Conflict]:
        """Conflicts of the suspended pass still waiting for a decision."""
        if self.state != SyncState.AWAITING_CONFLICT_RESOLUTION:
            return []
        return self.resolver.pending

    @property
    def pending_changes(self) -> PendingChangeQueue:
        return self.applicator.queue

    async def last_sync_at(self) -> datetime | None:
        """Completion time of the last successful pass."""
        return (await self.metadata_store.get(self.calendar_id)).last_sync_at

    def fetch_window(self, now: datetime | None = None) -> tuple[datetime, datetime]:
        """Time range of events fetched for a pass."""
        now = now or utc_now()
        return (
            shift_months(now, -self.settings.sync_past_months),
            shift_months(now, self.settings.sync_future_months),
        )

    async def sync(
        self,
        tasks: MutableSequence[Task],
        trigger: str = "manual",
    ) -> SyncResult:
        """Run one synchronization pass.

        Args:
            tasks: The local task collection; mutated in place
            trigger: What requested the sync (for logging and results)

        Returns:
            SyncResult describing the outcome
        """
        if self.state == SyncState.RUNNING:
            logger.info("Sync already in progress, request ignored")
            return SyncResult(
                status=SyncStatus.ALREADY_RUNNING,
                trigger=trigger,
                message="A sync is already in progress",
            )

        if self.state == SyncState.AWAITING_CONFLICT_RESOLUTION:
            logger.info("Discarding unresolved conflicts of the previous pass")
            self.resolver.clear()

        self.state = SyncState.RUNNING
        self._tasks = tasks
        resolved, self._resolved_before_resume = self._resolved_before_resume, 0
        started_at = utc_now()
        try:
            result = await self._run(tasks, trigger)
        finally:
            if self.state == SyncState.RUNNING:
                self.state = SyncState.IDLE

        result.resolved += resolved
        result.duration_ms = int((utc_now() - started_at).total_seconds() * 1000)
        self._notify(result)
        return result

    async def resolve(
        self,
        conflict: Conflict,
        choice: ConflictChoice,
    ) -> SyncResult | None:
        """Resolve one conflict of the suspended pass.

        Returns:
            The result of the resumed pass once the last conflict is
            resolved, otherwise None

        Raises:
            RuntimeError: If the session is not awaiting conflict resolution
            KeyError: If the conflict is not pending
        """
        if self.state != SyncState.AWAITING_CONFLICT_RESOLUTION:
            raise RuntimeError("No conflicts are awaiting resolution")

        self.resolver.resolve(conflict, choice)
        if not self.resolver.all_resolved:
            return None

        logger.info("All conflicts resolved, resuming sync")
        self._resolved_before_resume = len(self.resolver.resolutions)
        self.resolver.clear()
        self.state = SyncState.IDLE
        if self._tasks is None:
            raise RuntimeError("No task collection to resume the sync with")
        return await self.sync(self._tasks, trigger="conflict_resolution")

    async def resolve_all(self, choice: ConflictChoice) -> SyncResult | None:
        """Resolve every pending conflict the same way."""
        result = None
        for conflict in self.pending_conflicts:
            result = await self.resolve(conflict, choice)
        return result

    async def _run(self, tasks: MutableSequence[Task], trigger: str) -> SyncResult:
        if not self.client.is_authenticated():
            return await self._fail(SyncStatus.NOT_CONNECTED, trigger, "Not connected to the calendar")

        resolved = 0
        # Every policy round is followed by a fresh fetch and classification
        for round_number in range(MAX_POLICY_ROUNDS + 1):
            time_min, time_max = self.fetch_window()
            try:
                events = await self.client.list_events(time_min, time_max)
            except AuthenticationError as e:
                return await self._fail(SyncStatus.NOT_CONNECTED, trigger, f"Not connected: {e}")
            except CalendarError as e:
                logger.error(f"Error listing events: {e}")
                return await self._fail(SyncStatus.ERROR, trigger, f"Error listing events: {e}")

            change_set = self.classifier.classify(tasks, events)
            if not change_set.conflicts:
                break

            self.resolver.begin(change_set.conflicts)
            if self.policy is not None and round_number < MAX_POLICY_ROUNDS:
                resolved += len(self.resolver.apply_policy(self.policy))
            elif self.policy is not None:
                logger.warning(
                    f"Conflicts still present after {MAX_POLICY_ROUNDS} policy rounds, "
                    f"asking for a decision"
                )
            if not self.resolver.all_resolved:
                return self._suspend(trigger, change_set.unlinked)
            logger.info("Conflicts resolved by policy, classifying again")

        result = SyncResult(status=SyncStatus.SUCCESS, trigger=trigger, resolved=resolved)
        result.unlinked = len(change_set.unlinked)
        report = ApplyReport()
        try:
            await self.applicator.apply(change_set, tasks, report)
        except AuthenticationError as e:
            failed = await self._fail(SyncStatus.NOT_CONNECTED, trigger, f"Not connected: {e}")
            failed.absorb(report)
            failed.unlinked = result.unlinked
            failed.pending = len(self.applicator.queue)
            return failed

        result.absorb(report)
        result.pending = len(self.applicator.queue)
        result.synced_at = utc_now()
        await self.metadata_store.record_success(self.calendar_id, result.synced_at)

        if result.pending:
            result.message = f"Sync completed, {result.pending} change(s) deferred"
        else:
            result.message = "Sync completed"
        logger.info(
            f"Synced calendar {self.calendar_id}: "
            f"{result.created} created, {result.updated} updated, "
            f"{result.deleted} deleted, {result.imported} imported, "
            f"{result.merged} merged, {result.pending} deferred"
        )
        return result

    def _suspend(self, trigger: str, unlinked: list[Task]) -> SyncResult:
        self.state = SyncState.AWAITING_CONFLICT_RESOLUTION
        conflicts = self.resolver.pending
        logger.warning(f"Sync paused: {len(conflicts)} conflict(s) need a decision")
        return SyncResult(
            status=SyncStatus.CONFLICTS,
            trigger=trigger,
            message=f"{len(conflicts)} conflict(s) need to be resolved",
            unlinked=len(unlinked),
            conflicts=conflicts,
            pending=len(self.applicator.queue),
        )

    async def _fail(self, status: SyncStatus, trigger: str, message: str) -> SyncResult:
        logger.warning(f"Sync failed ({status.value}): {message}")
        await self.metadata_store.record_failure(self.calendar_id, message)
        return SyncResult(status=status, trigger=trigger, message=message)

    def _notify(self, result: SyncResult) -> None:
        for listener in self.listeners:
            listener(result)
