"""Tests for the sync session."""

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from task_calendar.calendar.client import AuthenticationError, TransientCalendarError
from task_calendar.models.changes import Conflict, ConflictChoice, ConflictType
from task_calendar.models.remote_event import RemoteEvent
from task_calendar.models.task import Task, utc_now
from task_calendar.sync.metadata import InMemorySyncMetadataStore
from task_calendar.sync.resolver import keep_local_policy, keep_remote_policy
from task_calendar.sync.session import (
    MAX_POLICY_ROUNDS,
    SyncSession,
    SyncState,
    SyncStatus,
    shift_months,
)

from conftest import FakeCalendarClient


class RestlessCalendarClient(FakeCalendarClient):
    """Calendar whose events are edited by someone else before every listing."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.restless = False
        self.listings = 0

    async def list_events(self, time_min, time_max):
        self.listings += 1
        if self.restless:
            for event_id in list(self.events):
                self.edit_event(event_id, summary=f"Remote edit {self.listings}")
                self.events[event_id]["updated"] = (
                    utc_now() + timedelta(hours=1, seconds=self.listings)
                ).isoformat()
        return await super().list_events(time_min, time_max)


def dated_task(task_id: str, title: str) -> Task:
    return Task(id=task_id, title=title, due_date=date(2024, 6, 10), sync_enabled=True)


@pytest.fixture
def metadata_store() -> InMemorySyncMetadataStore:
    return InMemorySyncMetadataStore()


@pytest.fixture
def session(calendar_client, metadata_store, settings) -> SyncSession:
    return SyncSession(calendar_client, metadata_store, settings=settings)


async def synced(session: SyncSession, tasks: list[Task]) -> list[Task]:
    """Run a first pass that mirrors every task."""
    result = await session.sync(tasks)
    assert result.status == SyncStatus.SUCCESS
    return tasks


class TestSyncPass:
    """Tests for plain sync passes."""

    @pytest.mark.asyncio
    async def test_first_sync_creates_events(self, session, calendar_client, metadata_store, timed_task, all_day_task):
        """Test new tasks are mirrored and the sync time recorded."""
        tasks = [timed_task, all_day_task]

        result = await session.sync(tasks)

        assert result.success
        assert result.created == 2
        assert all(task.remote_event_id for task in tasks)
        assert len(calendar_client.events) == 2
        assert session.state == SyncState.IDLE
        state = await metadata_store.get("primary")
        assert state.last_sync_at == result.synced_at
        assert await session.last_sync_at() == result.synced_at

    @pytest.mark.asyncio
    async def test_second_sync_is_noop(self, session, calendar_client, timed_task, all_day_task):
        """Test syncing an unchanged collection performs no mutation."""
        tasks = await synced(session, [timed_task, all_day_task])
        calendar_client.calls.clear()

        result = await session.sync(tasks)

        assert result.success
        assert result.changes_applied == 0
        assert calendar_client.mutation_calls() == []

    @pytest.mark.asyncio
    async def test_local_edit_pushed(self, session, calendar_client, timed_task):
        tasks = await synced(session, [timed_task])
        timed_task.title = "Dentist at 10"
        timed_task.touch()

        result = await session.sync(tasks)

        assert result.updated == 1
        assert calendar_client.events[timed_task.remote_event_id]["summary"] == "Dentist at 10"

    @pytest.mark.asyncio
    async def test_remote_metadata_edit_merged(self, session, calendar_client, timed_task):
        """Test a remote edit outside the compared fields is pulled."""
        tasks = await synced(session, [timed_task])
        calendar_client.set_private(timed_task.remote_event_id, "tags", '["moved"]')

        result = await session.sync(tasks)

        assert result.merged == 1
        assert timed_task.tags == ["moved"]
        calendar_client.calls.clear()
        await session.sync(tasks)
        assert calendar_client.mutation_calls() == []

    @pytest.mark.asyncio
    async def test_remote_event_imported(self, session, calendar_client, owned_event_data, foreign_event_data):
        """Test events we own are imported and foreign ones left alone."""
        calendar_client.add_event(owned_event_data)
        calendar_client.add_event(foreign_event_data)
        tasks: list[Task] = []

        result = await session.sync(tasks)

        assert result.imported == 1
        assert [task.id for task in tasks] == ["phone-42"]
        assert calendar_client.mutation_calls() == []

    @pytest.mark.asyncio
    async def test_remote_cancel_unsyncs(self, session, calendar_client, timed_task):
        """Test a cancelled event unsyncs an unedited task without network calls."""
        tasks = await synced(session, [timed_task])
        calendar_client.cancel_event(timed_task.remote_event_id)
        calendar_client.calls.clear()

        result = await session.sync(tasks)

        assert result.success
        assert result.unlinked == 1
        assert timed_task.sync_enabled is False
        assert timed_task.remote_event_id is None
        assert calendar_client.mutation_calls() == []

    @pytest.mark.asyncio
    async def test_disabling_sync_deletes_event(self, session, calendar_client, timed_task):
        tasks = await synced(session, [timed_task])
        event_id = timed_task.remote_event_id
        timed_task.sync_enabled = False

        result = await session.sync(tasks)

        assert result.deleted == 1
        assert timed_task.remote_event_id is None
        assert calendar_client.events[event_id]["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_listeners_notified(self, calendar_client, settings, timed_task):
        received = []
        session = SyncSession(calendar_client, settings=settings, listeners=[received.append])

        result = await session.sync([timed_task], trigger="task_saved")

        assert received == [result]
        assert result.trigger == "task_saved"


class TestFailures:
    """Tests for failed and partially failed passes."""

    @pytest.mark.asyncio
    async def test_not_connected(self, metadata_store, settings, timed_task):
        """Test a disconnected client fails fast without touching tasks."""
        client = FakeCalendarClient(authenticated=False)
        session = SyncSession(client, metadata_store, settings=settings)

        result = await session.sync([timed_task])

        assert result.status == SyncStatus.NOT_CONNECTED
        assert client.calls == []
        assert timed_task.remote_event_id is None
        assert session.state == SyncState.IDLE
        state = await metadata_store.get("primary")
        assert state.last_sync_at is None
        assert state.last_error

    @pytest.mark.asyncio
    async def test_listing_failure(self, session, calendar_client, timed_task):
        calendar_client.list_error = TransientCalendarError("Service unavailable")

        result = await session.sync([timed_task])

        assert result.status == SyncStatus.ERROR
        assert "Service unavailable" in result.message
        assert calendar_client.mutation_calls() == []
        assert session.state == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_partial_failure_reports_success(self, session, calendar_client):
        """Test per-item failures are deferred and retried next pass."""
        tasks = [dated_task("a", "First"), dated_task("b", "Second"), dated_task("c", "Third")]
        calendar_client.fail_create["Second"] = TransientCalendarError("Unavailable")

        result = await session.sync(tasks)

        assert result.success
        assert result.created == 2
        assert result.pending == 1
        assert len(session.pending_changes) == 1

        del calendar_client.fail_create["Second"]
        retry = await session.sync(tasks)

        assert retry.created == 1
        assert retry.pending == 0
        assert all(task.remote_event_id for task in tasks)

    @pytest.mark.asyncio
    async def test_authorization_lost_mid_pass(self, session, calendar_client):
        """Test losing authorization keeps counts of what went through."""
        tasks = [dated_task("a", "First"), dated_task("b", "Second")]
        calendar_client.fail_create["Second"] = AuthenticationError("Token revoked")

        result = await session.sync(tasks)

        assert result.status == SyncStatus.NOT_CONNECTED
        assert result.created == 1
        assert tasks[0].remote_event_id is not None
        assert session.state == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_single_flight(self, settings, timed_task):
        """Test a sync request during a running pass is rejected."""
        release = asyncio.Event()

        class SlowClient(FakeCalendarClient):
            async def list_events(self, time_min, time_max):
                await release.wait()
                return await super().list_events(time_min, time_max)

        session = SyncSession(SlowClient(), settings=settings)
        running = asyncio.create_task(session.sync([timed_task]))
        await asyncio.sleep(0)

        assert session.is_syncing
        second = await session.sync([timed_task])
        assert second.status == SyncStatus.ALREADY_RUNNING

        release.set()
        first = await running
        assert first.success
        assert session.state == SyncState.IDLE


class TestConflicts:
    """Tests for conflicts during a pass."""

    async def _conflicted(self, session, calendar_client, task) -> list[Task]:
        tasks = await synced(session, [task])
        calendar_client.edit_event(task.remote_event_id, summary="Remote title")
        task.title = "Local title"
        return tasks

    @pytest.mark.asyncio
    async def test_conflict_suspends_pass(self, session, calendar_client, timed_task):
        """Test conflicts block the pass until resolved."""
        tasks = await self._conflicted(session, calendar_client, timed_task)
        calendar_client.calls.clear()

        result = await session.sync(tasks)

        assert result.status == SyncStatus.CONFLICTS
        assert session.state == SyncState.AWAITING_CONFLICT_RESOLUTION
        assert [c.type for c in session.pending_conflicts] == [ConflictType.BOTH_MODIFIED]
        assert result.conflicts == session.pending_conflicts
        assert calendar_client.mutation_calls() == []

    @pytest.mark.asyncio
    async def test_resolve_keep_remote_resumes(self, session, calendar_client, timed_task):
        tasks = await self._conflicted(session, calendar_client, timed_task)
        await session.sync(tasks)

        result = await session.resolve(session.pending_conflicts[0], ConflictChoice.KEEP_REMOTE)

        assert result is not None
        assert result.success
        assert result.resolved == 1
        assert timed_task.title == "Remote title"
        assert session.state == SyncState.IDLE
        calendar_client.calls.clear()
        await session.sync(tasks)
        assert calendar_client.mutation_calls() == []

    @pytest.mark.asyncio
    async def test_resolve_keep_local_pushes(self, session, calendar_client, timed_task):
        tasks = await self._conflicted(session, calendar_client, timed_task)
        await session.sync(tasks)

        result = await session.resolve_all(ConflictChoice.KEEP_LOCAL)

        assert result.success
        assert result.updated == 1
        assert calendar_client.events[timed_task.remote_event_id]["summary"] == "Local title"
        calendar_client.calls.clear()
        await session.sync(tasks)
        assert calendar_client.mutation_calls() == []

    @pytest.mark.asyncio
    async def test_resume_waits_for_last_conflict(self, session, calendar_client, timed_task, all_day_task):
        tasks = await synced(session, [timed_task, all_day_task])
        for task in tasks:
            calendar_client.edit_event(task.remote_event_id, summary="Remote title")
            task.title = "Local title"
        await session.sync(tasks)
        first, second = session.pending_conflicts

        assert await session.resolve(first, ConflictChoice.KEEP_REMOTE) is None
        assert session.state == SyncState.AWAITING_CONFLICT_RESOLUTION

        result = await session.resolve(second, ConflictChoice.KEEP_LOCAL)
        assert result.success
        assert result.resolved == 2

    @pytest.mark.asyncio
    async def test_policy_resolves_without_suspending(self, calendar_client, settings, timed_task):
        session = SyncSession(calendar_client, settings=settings, policy=keep_remote_policy)
        tasks = await self._conflicted(session, calendar_client, timed_task)

        result = await session.sync(tasks)

        assert result.success
        assert result.resolved == 1
        assert timed_task.title == "Remote title"

    @pytest.mark.asyncio
    async def test_policy_rounds_exhausted(self, settings, timed_task):
        """Test conflicts that keep coming back are handed to the caller."""
        client = RestlessCalendarClient()
        session = SyncSession(client, settings=settings, policy=keep_local_policy)
        tasks = await synced(session, [timed_task])
        timed_task.title = "Local title"
        client.restless = True
        client.calls.clear()

        result = await session.sync(tasks)

        assert result.status == SyncStatus.CONFLICTS
        assert session.state == SyncState.AWAITING_CONFLICT_RESOLUTION
        assert len(session.pending_conflicts) == 1
        assert result.conflicts == session.pending_conflicts
        assert result.conflicts[0].type == ConflictType.BOTH_MODIFIED
        assert [call[0] for call in client.calls] == ["list"] * (MAX_POLICY_ROUNDS + 1)
        assert client.mutation_calls() == []

        client.restless = False
        result = await session.resolve_all(ConflictChoice.KEEP_LOCAL)

        assert result.success
        assert session.state == SyncState.IDLE
        assert session.pending_conflicts == []
        assert client.events[timed_task.remote_event_id]["summary"] == "Local title"

    @pytest.mark.asyncio
    async def test_deleted_remotely_keep_local_recreates(self, calendar_client, settings, timed_task):
        """Test keeping a task whose event was deleted creates a new event."""
        session = SyncSession(calendar_client, settings=settings, policy=keep_local_policy)
        tasks = await synced(session, [timed_task])
        old_id = timed_task.remote_event_id
        calendar_client.cancel_event(old_id)
        timed_task.title = "Still needed"

        result = await session.sync(tasks)

        assert result.success
        assert result.created == 1
        assert timed_task.remote_event_id not in (None, old_id)

    @pytest.mark.asyncio
    async def test_sync_while_awaiting_starts_over(self, session, calendar_client, timed_task):
        """Test a new request discards the stale batch."""
        tasks = await self._conflicted(session, calendar_client, timed_task)
        await session.sync(tasks)
        stale = session.pending_conflicts[0]

        result = await session.sync(tasks)

        assert result.status == SyncStatus.CONFLICTS
        assert session.pending_conflicts[0] is not stale
        with pytest.raises(KeyError):
            await session.resolve(stale, ConflictChoice.KEEP_LOCAL)

    @pytest.mark.asyncio
    async def test_resolve_when_not_awaiting(self, session, timed_task):
        """Test resolving outside a suspended pass fails."""
        conflict = Conflict(
            type=ConflictType.BOTH_MODIFIED,
            task=timed_task,
            event=RemoteEvent.from_api({"id": "evt1"}),
        )
        with pytest.raises(RuntimeError):
            await session.resolve(conflict, ConflictChoice.KEEP_LOCAL)

    @pytest.mark.asyncio
    async def test_resume_without_tasks(self, session, timed_task):
        """Test a suspended session that never saw a task collection fails cleanly."""
        conflict = Conflict(
            type=ConflictType.BOTH_MODIFIED,
            task=timed_task,
            event=RemoteEvent.from_api({"id": "evt1"}),
        )
        session.resolver.begin([conflict])
        session.state = SyncState.AWAITING_CONFLICT_RESOLUTION

        with pytest.raises(RuntimeError):
            await session.resolve(conflict, ConflictChoice.KEEP_LOCAL)


class TestFetchWindow:
    """Tests for the event window."""

    def test_default_window(self, session):
        now = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)
        start, end = session.fetch_window(now)
        assert start == datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
        assert end == datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)

    def test_shift_months_clamps_day(self):
        value = datetime(2024, 5, 31, tzinfo=timezone.utc)
        assert shift_months(value, -3) == datetime(2024, 2, 29, tzinfo=timezone.utc)
        assert shift_months(value, 12) == datetime(2025, 5, 31, tzinfo=timezone.utc)
