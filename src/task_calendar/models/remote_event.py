"""Remote calendar event model.

Events are fetched fresh on every sync pass and never cached across
sessions. The model follows the Google Calendar API v3 event resource:
https://developers.google.com/calendar/api/v3/reference/events
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

# Keys of the private metadata bag (extendedProperties.private)
META_APP = "appId"
META_TASK_ID = "todoId"
META_COMPLETED = "completed"
META_PRIORITY = "priority"
META_TAGS = "tags"
META_RECURRENCE = "recurrence"
META_ESTIMATE = "estimate"
META_CATEGORY = "category"


class EventStatus(str, Enum):
    """Event status as reported by the calendar service."""

    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


def parse_api_datetime(value: str | None, time_zone: str | None = None) -> datetime | None:
    """Parse an RFC 3339 timestamp from the API.

    Values without an offset are wall-clock times in `time_zone`.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed timestamp from the calendar: {value!r}")
        return None
    if parsed.tzinfo is None and time_zone:
        try:
            parsed = parsed.replace(tzinfo=ZoneInfo(time_zone))
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return parsed


def _parse_api_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed date from the calendar: {value!r}")
        return None


@dataclass
class RemoteEvent:
    """A calendar event as returned by the calendar service."""

    id: str
    summary: str | None = None
    description: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    start_date: date | None = None  # For all-day events
    end_date: date | None = None  # Exclusive
    time_zone: str | None = None
    status: EventStatus = EventStatus.CONFIRMED
    color_id: str | None = None
    created: datetime | None = None
    updated: datetime | None = None
    private: dict[str, str] = field(default_factory=dict)
    raw_data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RemoteEvent:
        """Create from a Google Calendar API event resource."""
        start_data = data.get("start") or {}
        end_data = data.get("end") or {}
        time_zone = start_data.get("timeZone")

        try:
            status = EventStatus(data.get("status", "confirmed"))
        except ValueError:
            status = EventStatus.CONFIRMED

        extended = data.get("extendedProperties") or {}
        private = {
            str(key): str(value)
            for key, value in (extended.get("private") or {}).items()
            if value is not None
        }

        return cls(
            id=data["id"],
            summary=data.get("summary"),
            description=data.get("description"),
            start=parse_api_datetime(start_data.get("dateTime"), time_zone),
            end=parse_api_datetime(end_data.get("dateTime"), end_data.get("timeZone") or time_zone),
            start_date=_parse_api_date(start_data.get("date")),
            end_date=_parse_api_date(end_data.get("date")),
            time_zone=time_zone,
            status=status,
            color_id=data.get("colorId"),
            created=parse_api_datetime(data.get("created")),
            updated=parse_api_datetime(data.get("updated")),
            private=private,
            raw_data=data,
        )

    @property
    def is_cancelled(self) -> bool:
        return self.status == EventStatus.CANCELLED

    @property
    def is_all_day(self) -> bool:
        return self.start is None and self.start_date is not None

    @property
    def is_timed(self) -> bool:
        return self.start is not None

    @property
    def has_start(self) -> bool:
        return self.start is not None or self.start_date is not None

    def is_owned_by(self, app_marker: str) -> bool:
        """Check whether the event was created by this application.

        Events without the marker are foreign and never imported or mutated.
        """
        return self.private.get(META_APP) == app_marker
