"""Pytest fixtures for task/calendar sync tests.

This module provides test fixtures that ensure:
1. No external API calls are made (Google APIs)
2. No database connections except to temporary SQLite files
3. Isolated test environment with controlled configuration
"""

import copy
import os
from datetime import date, time, timedelta
from typing import Any

import pytest

# Set test environment BEFORE importing application modules
# This ensures no real services are contacted during test collection
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("CALENDAR_TIME_ZONE", "UTC")
os.environ.setdefault("APP_MARKER", "todoListPro")

from task_calendar.calendar.client import (
    AuthenticationError,
    EventNotFoundError,
)
from task_calendar.config import Settings
from task_calendar.models.remote_event import RemoteEvent
from task_calendar.models.task import Priority, Recurrence, Task, utc_now
from task_calendar.sync.mapper import FieldMapper


# =============================================================================
# Fake Calendar
# =============================================================================


class FakeCalendarClient:
    """In-memory calendar behaving like the Google API for the sync engine.

    Events are stored as API resources and parsed with `RemoteEvent.from_api`
    on listing. Deleted events stay listed as cancelled, like `showDeleted`.
    Failures are injected per operation through the `fail_*` mappings.
    """

    def __init__(self, authenticated: bool = True, calendar_id: str = "primary"):
        self.authenticated = authenticated
        self.calendar_id = calendar_id
        self.events: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.fail_create: dict[str, Exception] = {}  # By summary
        self.fail_update: dict[str, Exception] = {}  # By event id
        self.fail_delete: dict[str, Exception] = {}  # By event id
        self.list_error: Exception | None = None
        self._next_id = 1

    # Remote calendar client interface

    def is_authenticated(self) -> bool:
        return self.authenticated

    async def list_events(self, time_min, time_max) -> list[RemoteEvent]:
        self.calls.append(("list", None))
        if not self.authenticated:
            raise AuthenticationError("Not connected")
        if self.list_error is not None:
            raise self.list_error
        return [RemoteEvent.from_api(copy.deepcopy(data)) for data in self.events.values()]

    async def create_event(self, payload: dict[str, Any]) -> str:
        self.calls.append(("create", payload.get("summary")))
        error = self.fail_create.get(payload.get("summary"))
        if error is not None:
            raise error
        event_id = f"evt{self._next_id}"
        self._next_id += 1
        now = utc_now().isoformat()
        self.events[event_id] = {
            **copy.deepcopy(payload),
            "id": event_id,
            "status": "confirmed",
            "created": now,
            "updated": now,
        }
        return event_id

    async def update_event(self, event_id: str, payload: dict[str, Any]) -> None:
        self.calls.append(("update", event_id))
        error = self.fail_update.get(event_id)
        if error is not None:
            raise error
        existing = self.events.get(event_id)
        if existing is None or existing["status"] == "cancelled":
            raise EventNotFoundError(f"Event {event_id} not found", status_code=404)
        self.events[event_id] = {
            **copy.deepcopy(payload),
            "id": event_id,
            "status": "confirmed",
            "created": existing["created"],
            "updated": utc_now().isoformat(),
        }

    async def delete_event(self, event_id: str) -> None:
        self.calls.append(("delete", event_id))
        error = self.fail_delete.get(event_id)
        if error is not None:
            raise error
        existing = self.events.get(event_id)
        if existing is not None:
            existing["status"] = "cancelled"
            existing["updated"] = utc_now().isoformat()

    # Test helpers

    def add_event(self, data: dict[str, Any]) -> str:
        """Insert an event resource as if created by another client."""
        now = utc_now().isoformat()
        event = {"status": "confirmed", "created": now, "updated": now, **data}
        self.events[event["id"]] = event
        return event["id"]

    def edit_event(self, event_id: str, **fields: Any) -> None:
        """Change an event remotely, strictly after anything local so far."""
        self.events[event_id].update(fields)
        self.events[event_id]["updated"] = (utc_now() + timedelta(seconds=5)).isoformat()

    def set_private(self, event_id: str, key: str, value: str) -> None:
        private = self.events[event_id].setdefault("extendedProperties", {}).setdefault(
            "private", {}
        )
        private[key] = value
        self.events[event_id]["updated"] = (utc_now() + timedelta(seconds=5)).isoformat()

    def cancel_event(self, event_id: str) -> None:
        self.edit_event(event_id, status="cancelled")

    def mutation_calls(self) -> list[tuple[str, str | None]]:
        return [call for call in self.calls if call[0] != "list"]


# =============================================================================
# Test Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset settings cache before each test to ensure clean state."""
    from task_calendar.config import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    """Settings with the calendar in UTC."""
    return Settings(calendar_time_zone="UTC", app_marker="todoListPro")


@pytest.fixture
def mapper(settings: Settings) -> FieldMapper:
    return FieldMapper(settings)


@pytest.fixture
def calendar_client() -> FakeCalendarClient:
    """Connected fake calendar with no events."""
    return FakeCalendarClient()


@pytest.fixture
def timed_task() -> Task:
    """Sample task due at a time of day, marked for sync."""
    return Task(
        id="task-1",
        title="Dentist",
        description="Bring insurance card",
        category="health",
        tags=["errand", "health"],
        due_date=date(2024, 6, 10),
        due_time=time(9, 0),
        priority=Priority.HIGH,
        estimate=45,
        recurrence=Recurrence.NONE,
        sync_enabled=True,
    )


@pytest.fixture
def all_day_task() -> Task:
    """Sample task due on a date only, marked for sync."""
    return Task(
        id="task-2",
        title="Pay rent",
        due_date=date(2024, 6, 10),
        priority=Priority.NORMAL,
        recurrence=Recurrence.MONTHLY,
        sync_enabled=True,
    )


@pytest.fixture
def owned_event_data() -> dict[str, Any]:
    """Event resource created by the to-do application on another device."""
    return {
        "id": "remote-1",
        "summary": "Water the plants",
        "description": "Balcony only",
        "start": {"dateTime": "2024-06-12T18:30:00", "timeZone": "UTC"},
        "end": {"dateTime": "2024-06-12T18:45:00", "timeZone": "UTC"},
        "colorId": "10",
        "extendedProperties": {
            "private": {
                "appId": "todoListPro",
                "todoId": "phone-42",
                "completed": "false",
                "priority": "low",
                "tags": '["home"]',
                "recurrence": "weekly",
                "estimate": "15",
                "category": "home",
            }
        },
    }


@pytest.fixture
def foreign_event_data() -> dict[str, Any]:
    """Event resource created by someone else."""
    return {
        "id": "foreign-1",
        "summary": "Team lunch",
        "start": {"dateTime": "2024-06-11T12:00:00Z"},
        "end": {"dateTime": "2024-06-11T13:00:00Z"},
    }
