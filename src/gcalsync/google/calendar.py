"""Google Calendar API client (one page per call, sync-token aware).

Features
- list_calendars(): the user's calendar list (all pages).
- list_events(): a single page of event changes for one calendar.
  - With `cursor` (a stored nextSyncToken): only changes since that cursor.
  - Without: a bounded window [now - time_window_days, +infty).
  - Always showDeleted=True (cancellations are visible) and singleEvents=True
    (recurring series arrive as expanded instances, never masters mixed with
    exceptions).
- HTTP 410 Gone is surfaced as CursorInvalidError; the engine decides how to
  recover. No other automatic retries happen here.

Notes
- When using `syncToken`, the API forbids filters like timeMin, so the window
  only applies to full fetches.

Refs:
- https://developers.google.com/calendar/api/guides/sync
- https://developers.google.com/calendar/api/v3/reference/events/list
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from google.auth.exceptions import RefreshError, TransportError  # type: ignore[import-not-found]
from googleapiclient.discovery import build as gapi_build  # type: ignore[import-not-found]
from googleapiclient.errors import HttpError  # type: ignore[import-not-found]
from pydantic import ValidationError

from ..errors import CredentialError, CursorInvalidError, RemoteProtocolError
from .models import RemoteCalendar, RemoteEvent

__all__ = ["CalendarClient", "EventPage"]

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 2500


@dataclass(frozen=True)
class EventPage:
    items: list[RemoteEvent] = field(default_factory=list)
    next_page_token: str | None = None
    next_sync_token: str | None = None


def _status_of(err: Exception) -> int | None:
    code = getattr(err, "status_code", None) or getattr(getattr(err, "resp", None), "status", None)
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


class CalendarClient:
    def __init__(self, credentials: Any = None, *, service: Any = None) -> None:
        """Build the v3 service from credentials, or use a prebuilt `service` (tests)."""
        if service is None:
            service = gapi_build("calendar", "v3", credentials=credentials, cache_discovery=False)
        self._svc = service

    def _execute(self, req: Any, *, calendar_id: str | None = None) -> dict[str, Any]:
        try:
            resp = req.execute()  # type: ignore[no-untyped-call]
        except HttpError as he:  # type: ignore[misc]
            code = _status_of(he)
            if code == 410 and calendar_id is not None:
                raise CursorInvalidError(calendar_id) from he
            if code == 401:
                raise CredentialError("Google rejected the access token (401).") from he
            raise RemoteProtocolError(
                f"Google Calendar API request failed ({code})", status_code=code
            ) from he
        except (RefreshError, TransportError) as exc:
            raise CredentialError(f"Google token refresh failed: {exc}") from exc
        if not isinstance(resp, dict):
            raise RemoteProtocolError("Google Calendar API returned a non-object payload")
        return resp

    def list_calendars(self) -> list[RemoteCalendar]:
        calendars: list[RemoteCalendar] = []
        page_token: str | None = None
        while True:
            req = self._svc.calendarList().list(  # type: ignore[no-untyped-call]
                pageToken=page_token,
                showDeleted=False,
                showHidden=False,
            )
            resp = self._execute(req)
            for item in resp.get("items", []) or []:
                try:
                    calendars.append(RemoteCalendar.model_validate(item))
                except ValidationError as ve:
                    raise RemoteProtocolError(f"Malformed calendar list entry: {ve}") from ve
            page_token = resp.get("nextPageToken")
            if not page_token:
                return calendars

    def list_events(
        self,
        calendar_id: str,
        *,
        cursor: str | None = None,
        page_token: str | None = None,
        page_size: int = 250,
        time_window_days: int = 365,
    ) -> EventPage:
        """Fetch one page of changes. Raises CursorInvalidError on 410."""
        params: dict[str, Any] = {
            "calendarId": calendar_id,
            "maxResults": min(page_size, MAX_PAGE_SIZE),
            "showDeleted": True,
            "singleEvents": True,
        }
        if cursor:
            params["syncToken"] = cursor
        else:
            since = datetime.now(tz=UTC) - timedelta(days=time_window_days)
            params["timeMin"] = since.strftime("%Y-%m-%dT%H:%M:%SZ")
        if page_token:
            params["pageToken"] = page_token

        req = self._svc.events().list(**params)  # type: ignore[no-untyped-call]
        resp = self._execute(req, calendar_id=calendar_id)

        items: list[RemoteEvent] = []
        for raw in resp.get("items", []) or []:
            if not isinstance(raw, dict) or not raw.get("id"):
                continue
            try:
                items.append(RemoteEvent.model_validate(raw))
            except ValidationError as ve:
                raise RemoteProtocolError(f"Malformed event in {calendar_id}: {ve}") from ve

        return EventPage(
            items=items,
            next_page_token=resp.get("nextPageToken"),
            next_sync_token=resp.get("nextSyncToken"),
        )
