"""Calendar integration module.

Provides the interface the sync engine uses to talk to a calendar service
and its Google Calendar implementation.

## Google Calendar API

Uses the Google Calendar API v3:
- https://developers.google.com/calendar/api/v3/reference

Only a single calendar is mirrored per client. Events created by this
application are recognized by a marker in their private extended
properties; all other events are left untouched.
"""

from task_calendar.calendar.client import (
    AuthenticationError,
    CalendarError,
    EventNotFoundError,
    RateLimitError,
    RemoteCalendarClient,
    TransientCalendarError,
)
from task_calendar.calendar.google_calendar import GoogleCalendarClient

__all__ = [
    "RemoteCalendarClient",
    "GoogleCalendarClient",
    "CalendarError",
    "AuthenticationError",
    "TransientCalendarError",
    "RateLimitError",
    "EventNotFoundError",
]
