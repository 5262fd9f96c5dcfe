"""Google Calendar API client.

Implements `RemoteCalendarClient` on top of the Google Calendar API v3:
- List events (including cancelled ones, recurring events expanded)
- Insert, update and delete events

## API Documentation

https://developers.google.com/calendar/api/v3/reference

## Authentication

Uses OAuth 2.0 tokens obtained by the sign-in flow (not part of this
package). Tokens are refreshed by google-auth when a refresh token and
client credentials are available.

## Rate Limits

Google Calendar API has quotas:
- 1,000,000 queries per day (default)
- 500 queries per 100 seconds per user

The sync engine issues mutations sequentially to stay well within them.
The discovery client is blocking, so each request runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from task_calendar.calendar.client import (
    AuthenticationError,
    CalendarError,
    EventNotFoundError,
    RateLimitError,
    TransientCalendarError,
)
from task_calendar.config import Settings, get_settings
from task_calendar.models.remote_event import RemoteEvent

logger = logging.getLogger(__name__)

RATE_LIMIT_REASONS = ("ratelimitexceeded", "userratelimitexceeded", "rate limit")


def _translate_http_error(error: HttpError) -> CalendarError:
    """Map an API error response onto the calendar error taxonomy."""
    status = getattr(error.resp, "status", None)
    try:
        status = int(status) if status is not None else None
    except (TypeError, ValueError):
        status = None
    reason = str(getattr(error, "reason", "") or "")
    body = error.content.decode("utf-8", errors="replace") if error.content else None
    detail = f"{reason} {body or ''}".lower()

    if status == 429 or (status == 403 and any(r in detail for r in RATE_LIMIT_REASONS)):
        return RateLimitError(f"Rate limit exceeded: {reason}", status_code=status)
    if status in (401, 403):
        return AuthenticationError(
            f"Not authorized: {reason}", status_code=status, response_body=body
        )
    if status in (404, 410):
        return EventNotFoundError(
            f"Event not found: {reason}", status_code=status, response_body=body
        )
    if status is not None and status >= 500:
        return TransientCalendarError(
            f"Calendar service error {status}: {reason}",
            status_code=status,
            response_body=body,
        )
    return CalendarError(
        f"Calendar request failed ({status}): {reason}",
        status_code=status,
        response_body=body,
    )


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class GoogleCalendarClient:
    """Client for one Google calendar.

    Example:
        ```python
        client = GoogleCalendarClient(access_token, refresh_token)

        # List events
        events = await client.list_events(time_min, time_max)

        # Insert an event built by the field mapper
        event_id = await client.create_event(payload)
        ```
    """

    def __init__(
        self,
        access_token: str | None,
        refresh_token: str | None = None,
        calendar_id: str | None = None,
        settings: Settings | None = None,
    ):
        """Initialize the client.

        Args:
            access_token: OAuth access token
            refresh_token: OAuth refresh token for auto-refresh
            calendar_id: Calendar to operate on (defaults to the configured one)
            settings: Application settings (defaults to cached settings)
        """
        settings = settings or get_settings()
        if refresh_token and not settings.google_oauth_configured:
            logger.warning("Google OAuth client not configured, refresh token ignored")
            refresh_token = None
        credentials = Credentials(
            token=access_token,
            refresh_token=refresh_token,
            token_uri=settings.google_token_uri,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            scopes=settings.google_calendar_scopes,
        )
        self._init(credentials, calendar_id or settings.default_calendar_id, settings)

    @classmethod
    def from_credentials(
        cls,
        credentials: Credentials,
        calendar_id: str | None = None,
        settings: Settings | None = None,
    ) -> GoogleCalendarClient:
        """Create a client from existing google-auth credentials."""
        settings = settings or get_settings()
        client = cls.__new__(cls)
        client._init(credentials, calendar_id or settings.default_calendar_id, settings)
        return client

    @classmethod
    def from_authorized_user_file(
        cls,
        path: str,
        calendar_id: str | None = None,
        settings: Settings | None = None,
    ) -> GoogleCalendarClient:
        """Create a client from a saved authorized-user JSON file."""
        settings = settings or get_settings()
        credentials = Credentials.from_authorized_user_file(
            path, scopes=settings.google_calendar_scopes
        )
        return cls.from_credentials(credentials, calendar_id, settings)

    def _init(self, credentials: Credentials, calendar_id: str, settings: Settings) -> None:
        self.calendar_id = calendar_id
        self.max_results = settings.max_results
        self._credentials = credentials
        self._service = build(
            "calendar", "v3", credentials=credentials, cache_discovery=False
        )

    def is_authenticated(self) -> bool:
        """Check whether credentials are present (refreshable or still valid)."""
        return bool(self._credentials.token or self._credentials.refresh_token)

    async def _execute(self, request: Any) -> Any:
        """Run a prepared API request off the event loop."""
        try:
            return await asyncio.to_thread(request.execute)
        except HttpError as e:
            raise _translate_http_error(e) from e
        except RefreshError as e:
            raise AuthenticationError(f"Token refresh failed: {e}") from e
        except (TransportError, TimeoutError, ConnectionError) as e:
            raise TransientCalendarError(f"Network error: {e}") from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(TransientCalendarError),
        reraise=True,
    )
    async def _list_page(self, params: dict[str, Any]) -> dict[str, Any]:
        """Fetch one page of events, retrying transient failures."""
        return await self._execute(self._service.events().list(**params))

    async def list_events(
        self,
        time_min: datetime,
        time_max: datetime,
    ) -> list[RemoteEvent]:
        """List events from the calendar.

        Args:
            time_min: Lower bound (exclusive) for an event's end time
            time_max: Upper bound (exclusive) for an event's start time

        Returns:
            Events in the window, cancelled ones included, at most
            `max_results` of them
        """
        if not self.is_authenticated():
            raise AuthenticationError("Not connected to Google Calendar")

        events: list[RemoteEvent] = []
        params: dict[str, Any] = {
            "calendarId": self.calendar_id,
            "timeMin": _ensure_aware(time_min).isoformat(),
            "timeMax": _ensure_aware(time_max).isoformat(),
            "showDeleted": True,
            "singleEvents": True,  # Expand recurring events
            "maxResults": min(self.max_results, 2500),
        }

        while True:
            result = await self._list_page(params)

            for item in result.get("items", []):
                if "id" not in item:
                    logger.warning("Skipping event without id in listing")
                    continue
                events.append(RemoteEvent.from_api(item))

            page_token = result.get("nextPageToken")
            if not page_token or len(events) >= self.max_results:
                break
            params["pageToken"] = page_token

        if len(events) > self.max_results:
            events = events[: self.max_results]

        logger.debug(f"Listed {len(events)} events from calendar {self.calendar_id}")
        return events

    async def create_event(self, payload: dict[str, Any]) -> str:
        """Insert an event.

        Args:
            payload: Event resource built by the field mapper

        Returns:
            The new event's identifier
        """
        result = await self._execute(
            self._service.events().insert(calendarId=self.calendar_id, body=payload)
        )
        return result["id"]

    async def update_event(self, event_id: str, payload: dict[str, Any]) -> None:
        """Replace an event with the given payload.

        Args:
            event_id: Event ID
            payload: Full event resource built by the field mapper
        """
        await self._execute(
            self._service.events().update(
                calendarId=self.calendar_id,
                eventId=event_id,
                body=payload,
            )
        )

    async def delete_event(self, event_id: str) -> None:
        """Delete an event.

        An event that is already gone counts as deleted.

        Args:
            event_id: Event ID
        """
        try:
            await self._execute(
                self._service.events().delete(
                    calendarId=self.calendar_id, eventId=event_id
                )
            )
        except EventNotFoundError:
            logger.info(f"Event {event_id} already deleted")
