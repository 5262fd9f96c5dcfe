"""Remote calendar client interface.

The sync engine talks to the calendar service only through this interface,
so the transport (Google API, a test double, another provider) stays
swappable. Every method is a coroutine; these calls are the only points
where a sync pass suspends.

## Error Taxonomy

- `AuthenticationError`: credentials missing, expired or revoked. Fatal for
  the whole sync session.
- `RateLimitError` / `TransientCalendarError`: network trouble, quota, 5xx.
  Recoverable per item: the failing change is deferred to the next pass.
- `EventNotFoundError`: the addressed event no longer exists.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from task_calendar.models.remote_event import RemoteEvent


class CalendarError(Exception):
    """Base exception for calendar service errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class AuthenticationError(CalendarError):
    """Raised when the client is not connected or authorization fails."""

    pass


class TransientCalendarError(CalendarError):
    """Raised for failures worth retrying on a later pass."""

    pass


class RateLimitError(TransientCalendarError):
    """Raised when the calendar service rate limit is exceeded."""

    def __init__(
        self,
        message: str = "Calendar rate limit exceeded",
        retry_after: int | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class EventNotFoundError(CalendarError):
    """Raised when an event does not exist (or was already deleted)."""

    pass


@runtime_checkable
class RemoteCalendarClient(Protocol):
    """Operations the sync engine needs from a calendar service.

    A client is bound to a single calendar for its lifetime.
    """

    def is_authenticated(self) -> bool:
        """Whether the client holds usable credentials."""
        ...

    async def list_events(
        self,
        time_min: datetime,
        time_max: datetime,
    ) -> list[RemoteEvent]:
        """List events in a time range.

        Must include cancelled events and expand recurring events into
        single occurrences.
        """
        ...

    async def create_event(self, payload: dict[str, Any]) -> str:
        """Insert an event and return its identifier."""
        ...

    async def update_event(self, event_id: str, payload: dict[str, Any]) -> None:
        """Replace an event's content."""
        ...

    async def delete_event(self, event_id: str) -> None:
        """Delete an event."""
        ...
